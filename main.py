#!/usr/bin/env python3
"""
Reading Goals - Main Entry Point
Runs the expiration sweeper against the goal database

Usage:
    python main.py                 # Run the sweeper until interrupted
    python main.py --sweep-once    # Expire overdue goals once and exit
    python main.py -i 60           # Sweep every 60 seconds
"""

import sys
import signal
import threading
import argparse
from pathlib import Path

# Ensure we can import from project root
sys.path.insert(0, str(Path(__file__).parent))

import config
from core.logger import (
    setup_logging,
    log_startup_banner,
    log_section,
    log_config,
    log_success,
    log_warning,
    log_error,
)
from core.database import init_database
from goals.store import GoalStore
from goals.sweeper import init_expiration_sweeper


# Global shutdown event
_shutdown_event = threading.Event()


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    print()  # New line after ^C
    log_warning("Shutdown signal received...")
    _shutdown_event.set()


def initialize_system(db_path: Path) -> bool:
    """
    Initialize logging and the database.

    Returns:
        True if successful, False otherwise
    """
    setup_logging(
        log_file_path=config.DIAGNOSTIC_LOG_PATH,
        level=config.LOG_LEVEL,
        log_to_file=config.LOG_TO_FILE,
        log_to_console=config.LOG_TO_CONSOLE
    )

    log_startup_banner(config.VERSION, config.PROJECT_NAME)

    if init_database(db_path=db_path, busy_timeout_ms=config.DB_BUSY_TIMEOUT_MS) is None:
        log_error("Failed to initialize database")
        return False

    print_configuration()
    return True


def print_configuration() -> None:
    """Print configuration summary."""
    log_section("Configuration", "⚙️")
    log_config("Busy timeout", f"{config.DB_BUSY_TIMEOUT_MS}ms", indent=1)
    log_config("Max attempts", str(config.DB_MAX_ATTEMPTS), indent=1)
    log_config("Sweeper", "enabled" if config.SWEEPER_ENABLED else "disabled", indent=1)
    log_config("Log level", config.LOG_LEVEL, indent=1)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reading goals expiration sweeper")
    parser.add_argument(
        "--sweep-once",
        action="store_true",
        help="Expire overdue goals once and exit"
    )
    parser.add_argument(
        "-i", "--interval",
        type=float,
        default=config.SWEEPER_INTERVAL,
        help="Seconds between sweeps (default: %(default)s)"
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=config.DATABASE_PATH,
        help="Path to the goal database (default: %(default)s)"
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    if not initialize_system(args.db):
        return 1

    sweeper = init_expiration_sweeper(
        store=GoalStore(),
        interval=args.interval,
        enabled=config.SWEEPER_ENABLED
    )

    if args.sweep_once:
        expired = sweeper.sweep()
        log_success(f"Sweep complete: {len(expired)} goal(s) expired")
        return 0

    if not config.SWEEPER_ENABLED:
        log_warning("Sweeper disabled (SWEEPER_ENABLED=false), nothing to run")
        return 0

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    sweeper.start()
    _shutdown_event.wait()
    sweeper.stop()

    log_success("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
