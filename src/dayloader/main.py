from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from typing import Any, List, Optional

from .app import DEFAULT_POLL_INTERVAL, DayloaderApp
from .clock import SystemClock
from .lock_events import create_lock_source
from .storage import JsonStorage, default_data_folder


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dayloader", description="Workday progress tracker in the system tray.")
    parser.add_argument("--data-dir", default=None, help=f"folder for settings and history (default: {default_data_folder()})")
    parser.add_argument("--poll-interval", type=float, default=DEFAULT_POLL_INTERVAL, help="seconds between refreshes")
    parser.add_argument("--no-tray", action="store_true", help="run without the tray icon")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def configure_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else os.environ.get("DAYLOADER_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    clock = SystemClock()
    storage = JsonStorage(args.data_dir)
    tray = None
    if not args.no_tray:
        # pystray picks its backend at import time; headless runs never load it
        from .system_tray import SystemTrayManager

        tray = SystemTrayManager()
    app = DayloaderApp(
        storage,
        clock=clock,
        lock_source=create_lock_source(clock),
        tray=tray,
        poll_interval=max(0.5, args.poll_interval),
    )

    def _signal_handler(signum: int, frame: Any) -> None:
        logging.getLogger(__name__).info("Received signal %s, shutting down...", signum)
        app.request_stop()

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
