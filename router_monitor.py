#!/usr/bin/env python3
"""
Router Monitor - headless router traffic monitoring service.
Polls routers over the native API, REST or SNMP, keeps live throughput in
memory, persists it in batches and alerts on low traffic or lost routers.
"""
import argparse
import atexit
import signal
import sys
import threading
from pathlib import Path

from app.controller import MonitorController
from app.dependencies import create_dependencies
from config import STORAGE, get_logger, setup_logging
from config.singleton import InstanceLock

logger = get_logger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="router-monitor",
        description="Poll routers and alert on low traffic or lost connectivity.",
    )
    parser.add_argument(
        "--data-dir", type=Path, default=Path.home() / STORAGE.DATA_DIR_NAME,
        help=f"Database, settings and log directory (default: ~/{STORAGE.DATA_DIR_NAME})",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--once", action="store_true",
        help="Run one poll cycle, one alert pass and one flush, then exit",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Entry point for the service."""
    args = parse_args(argv)

    lock = InstanceLock(args.data_dir)
    if not lock.acquire():
        pid = lock.get_running_pid()
        print(f"Router Monitor is already running for {args.data_dir}"
              f"{f' (PID {pid})' if pid else ''}.", file=sys.stderr)
        return 1
    atexit.register(lock.release)

    setup_logging(data_dir=args.data_dir, debug=args.debug, console_output=True)
    logger.info("Router Monitor starting...")

    deps = create_dependencies(args.data_dir)
    controller = MonitorController(deps)

    if args.once:
        summary = controller.run_once()
        deps.event_bus.wait_until_idle()
        deps.event_bus.shutdown()
        deps.scheduler.shutdown()
        logger.info(
            f"Single run: {summary['connected']}/{summary['polled']} devices connected, "
            f"{summary['alerts_created']} alerts, {summary['samples_flushed']} samples flushed"
        )
        return 0

    stop_requested = threading.Event()

    def signal_handler(signum, frame):
        """Handle SIGTERM/SIGINT by stopping cleanly."""
        logger.info(f"Received signal {signum}, shutting down...")
        stop_requested.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        controller.start()
        while not stop_requested.wait(1.0):
            pass
    except Exception as e:
        logger.critical(f"Service crashed: {e}", exc_info=True)
        raise
    finally:
        # Final flush happens in stop()
        controller.stop()
        lock.release()

    return 0


if __name__ == "__main__":
    sys.exit(main())
