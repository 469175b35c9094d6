"""
Form submission scheduler - command line entry point.

Builds the scheduler service from environment settings and either serves the
HTTP API, runs the poller headless, or performs a single maintenance action.

Examples:
  # API server with the poller (SCHEDULER_AUTOSTART=true)
  python main.py serve --host 127.0.0.1 --port 8000

  # Poller only, until SIGINT/SIGTERM
  python main.py run

  # One processing pass, then exit
  python main.py tick

  # Job counts / remove terminal jobs older than 30 days
  python main.py stats
  python main.py cleanup --days-old 30
"""

import argparse
import json
import logging
import signal
import sys
import threading

from src.infra.config import SchedulerSettings, load_settings
from src.infra.logging_config import setup_logging
from src.scheduler import SchedulerService


logger = logging.getLogger("src.main")

# Graceful shutdown support
shutdown_requested = threading.Event()


def signal_handler(signum, frame):
    """SIGINT / SIGTERM handler - let the in-flight batch finish, then exit."""
    signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
    logger.info(f"{signal_name} received - stopping after the current job")
    shutdown_requested.set()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Form submission scheduler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:", 1)[1],
    )
    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Path to a .env file (default: search from the working directory)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API server")
    serve.add_argument("--host", type=str, default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    run = subparsers.add_parser("run", help="Run the poller without the API")
    run.add_argument(
        "--skip-recovery",
        action="store_true",
        default=False,
        help="Do not run the startup recovery sweep"
    )

    subparsers.add_parser("tick", help="Run one processing pass and exit")
    subparsers.add_parser("stats", help="Print job counts per status")

    cleanup = subparsers.add_parser("cleanup", help="Delete old terminal jobs")
    cleanup.add_argument(
        "--days-old",
        type=int,
        default=30,
        help="Delete completed/failed/cancelled jobs older than this. Default=30"
    )

    return parser.parse_args(argv)


def serve(settings: SchedulerSettings, host: str, port: int) -> None:
    import uvicorn

    from src.api.main import create_app

    uvicorn.run(create_app(settings=settings), host=host, port=port)


def run_poller(service: SchedulerService, run_recovery: bool) -> None:
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    service.start(run_recovery=run_recovery)
    try:
        shutdown_requested.wait()
    finally:
        service.close()


def main(argv=None) -> int:
    args = parse_args(argv)
    settings = load_settings(args.env_file)

    if args.command == "serve":
        serve(settings, args.host, args.port)
        return 0

    setup_logging(settings.log_level, settings.log_dir, settings.log_retention_days)
    service = SchedulerService.create(settings)

    if args.command == "run":
        run_poller(service, run_recovery=not args.skip_recovery)
        return 0

    try:
        if args.command == "tick":
            service.trigger_processing()
        elif args.command == "stats":
            print(json.dumps(service.get_stats().to_dict(), indent=2))
        elif args.command == "cleanup":
            deleted = service.cleanup_old_jobs(days_old=args.days_old)
            print(f"Deleted {deleted} job(s)")
    finally:
        service.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
