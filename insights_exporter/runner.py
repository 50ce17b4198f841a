"""Command line entry point with graceful shutdown support."""

import argparse
import json
import logging
import os
import sys
import threading
from typing import NoReturn

from paste.translogger import TransLogger  # type: ignore[import-untyped]
from waitress import serve

from insights_exporter.config import Settings
from insights_exporter.exceptions import ConfigError, InsightsFetchError
from insights_exporter.utils.lifecycle_coordinator import (
    EXIT_CONFIG_ERROR,
    EXIT_FETCH_FAILED,
    EXIT_OK,
    LifecycleEvent,
)

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CI workflow insights Prometheus exporter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "serve",
        help="Serve /metrics and refresh workflow insights periodically (default)",
    )
    subparsers.add_parser(
        "snapshot",
        help="Fetch workflow insights once and print the success rates as JSON",
    )

    return parser


def run_server(settings: Settings) -> int:
    """Run the metrics server until shutdown.

    Returns:
        The exit code recorded by the lifecycle coordinator.
    """
    from insights_exporter import create_app
    from insights_exporter.services.container import start_background_services

    app = create_app(settings, skip_background_services=True)

    lifecycle_coordinator = app.container.lifecycle_coordinator()
    lifecycle_coordinator.initialize()

    event = threading.Event()

    def signal_shutdown(lifecycle_event: LifecycleEvent) -> None:
        if lifecycle_event == LifecycleEvent.AFTER_SHUTDOWN:
            event.set()

    # Registered before STARTUP so an escalation on the first tick is not missed
    lifecycle_coordinator.register_lifecycle_notification(signal_shutdown)

    start_background_services(app.container)
    lifecycle_coordinator.fire_startup()

    def runner() -> None:
        wsgi = TransLogger(app, setup_console_handler=False)
        wsgi.logger.info(
            f"Using Waitress WSGI server with {settings.waitress_threads} threads"
        )
        serve(wsgi, host=settings.host, port=settings.port, threads=settings.waitress_threads)

    # Run server in daemon thread so the lifecycle coordinator controls exit
    thread = threading.Thread(target=runner, daemon=True)
    thread.start()

    event.wait()

    return lifecycle_coordinator.exit_code


def handle_snapshot(settings: Settings) -> int:
    from insights_exporter.services.insights_client import InsightsClient
    from insights_exporter.services.snapshot_scheduler import build_snapshot

    client = InsightsClient(settings)
    try:
        records = client.fetch_all(settings.api_credential)
    except InsightsFetchError as e:
        print(f"Snapshot failed: {e}", file=sys.stderr)
        return EXIT_FETCH_FAILED

    print(json.dumps(build_snapshot(records), indent=2, sort_keys=True))
    return EXIT_OK


def main(argv: list[str] | None = None) -> NoReturn:
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # Configuration problems are fatal before the scheduler is armed
    try:
        settings = Settings.load()
    except ConfigError as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    if args.command == "snapshot":
        sys.exit(handle_snapshot(settings))

    sys.exit(run_server(settings))


if __name__ == "__main__":
    main()
