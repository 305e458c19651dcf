"""Command-line entry point for the notification queue service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import json
import signal
import sys
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import List, Optional, Tuple

from coralqueue.admin.service import DEFAULT_CLEANUP_DAYS, QueueAdmin
from coralqueue.config.environment import EnvironmentConfig
from coralqueue.config.exceptions import ConfigurationError
from coralqueue.config.loader import load_config
from coralqueue.config.models import AppConfig
from coralqueue.domain.models import NotificationType
from coralqueue.logging import get_logger
from coralqueue.logging.config import configure_logging
from coralqueue.notifications.channels import NotificationChannel, build_channel
from coralqueue.persistence.database import close_database, init_database
from coralqueue.persistence.exceptions import PersistenceError
from coralqueue.queue.backoff import BackoffPolicy
from coralqueue.queue.batcher import Batcher
from coralqueue.queue.dispatcher import Dispatcher
from coralqueue.queue.store import SqlJobStore
from coralqueue.scheduler import SchedulerService

logger = get_logger(__name__, component="cli")


@dataclass
class Services:
    """Everything a command needs, wired from configuration."""

    store: SqlJobStore
    batcher: Batcher
    dispatcher: Dispatcher
    admin: QueueAdmin
    channel: NotificationChannel


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and settle the effective log level.

    Log level priority: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level

    return app_config, env_config


def build_services(app_config: AppConfig, env_config: EnvironmentConfig) -> Services:
    """Wire store, batcher, dispatcher and admin from configuration."""
    store = SqlJobStore()
    queue_config = app_config.queue

    batcher = Batcher(
        store,
        policies=app_config.batching.policies,
        default_max_attempts=queue_config.default_max_attempts,
        default_batch_window=queue_config.default_batch_window_seconds,
        enabled=app_config.batching.enabled,
    )
    channel = build_channel(env_config, app_config.email)
    dispatcher = Dispatcher(
        store,
        channel,
        backoff=BackoffPolicy(
            initial_delay=app_config.backoff.initial_delay_seconds,
            multiplier=app_config.backoff.multiplier,
            max_delay=app_config.backoff.max_delay_seconds,
        ),
        batch_size=queue_config.batch_size,
        stale_after=timedelta(seconds=queue_config.stale_after_seconds),
        max_workers=queue_config.max_workers,
    )

    return Services(
        store=store,
        batcher=batcher,
        dispatcher=dispatcher,
        admin=QueueAdmin(store),
        channel=channel,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coralqueue",
        description="Coral notification queue - batched, retried notification delivery",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml or config/config.yaml if present)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("worker", help="Run the dispatcher until interrupted")
    sub.add_parser("run-once", help="Run a single dispatch tick and exit")

    serve = sub.add_parser("serve", help="Serve the admin HTTP API")
    serve.add_argument("--host", default=None, help="Bind address (default: api.host)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: api.port)")
    serve.add_argument(
        "--with-worker",
        action="store_true",
        help="Also run the dispatcher in this process",
    )

    sub.add_parser("status", help="Print queue status as JSON")

    retry = sub.add_parser("retry", help="Re-queue FAILED jobs")
    retry.add_argument("ids", nargs="+", help="Job ids to retry")

    cleanup = sub.add_parser("cleanup", help="Delete finished jobs older than N days")
    cleanup.add_argument("--days", type=int, default=DEFAULT_CLEANUP_DAYS)

    purge = sub.add_parser("purge", help="Delete every job, in every state")
    purge.add_argument("--yes", action="store_true", help="Confirm the purge")

    send_test = sub.add_parser("send-test", help="Queue a test notification")
    send_test.add_argument("--recipient", default=None)

    enqueue = sub.add_parser("enqueue", help="Queue a notification")
    enqueue.add_argument("type", choices=[t.value for t in NotificationType])
    enqueue.add_argument("payload", help="Payload as a JSON object")
    enqueue.add_argument("--max-attempts", type=int, default=None)
    enqueue.add_argument("--batch-window", type=int, default=None, help="Seconds")

    return parser


def _run_worker(services: Services, app_config: AppConfig) -> int:
    shutdown_event = threading.Event()
    cleanup_days = app_config.queue.auto_cleanup_days

    scheduler_service = SchedulerService(
        dispatch_callable=services.dispatcher.run_once,
        interval_seconds=app_config.queue.poll_interval_seconds,
        cleanup_callable=(lambda: services.admin.cleanup(cleanup_days)) if cleanup_days else None,
        shutdown_event=shutdown_event,
    )

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        scheduler_service.shutdown(wait=False)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler_service.start()
    logger.info(
        "Worker started. Press Ctrl+C to stop",
        extra={"event": "service.worker.started", "channel": services.channel.name},
    )

    try:
        shutdown_event.wait()
    except KeyboardInterrupt:
        scheduler_service.shutdown(wait=False)

    return 0


def _run_serve(args, services: Services, app_config: AppConfig, env_config: EnvironmentConfig) -> int:
    import uvicorn

    from coralqueue.admin.api import create_app

    scheduler_service = None
    if args.with_worker:
        scheduler_service = SchedulerService(
            dispatch_callable=services.dispatcher.run_once,
            interval_seconds=app_config.queue.poll_interval_seconds,
        )
        scheduler_service.start()

    app = create_app(services.admin, services.batcher, api_token=env_config.admin_api_token)
    try:
        uvicorn.run(
            app,
            host=args.host or app_config.api.host,
            port=args.port or app_config.api.port,
            log_config=None,
        )
    finally:
        if scheduler_service is not None:
            scheduler_service.shutdown(wait=True)
    return 0


def _dispatch_command(
    args, services: Services, app_config: AppConfig, env_config: EnvironmentConfig
) -> int:
    if args.command == "worker":
        return _run_worker(services, app_config)

    if args.command == "serve":
        return _run_serve(args, services, app_config, env_config)

    if args.command == "run-once":
        result = services.dispatcher.run_once()
        print(
            f"claimed={result.claimed} completed={result.completed} "
            f"rescheduled={result.rescheduled} failed={result.failed} "
            f"lease_lost={result.lease_lost}"
        )
        return 1 if result.had_errors else 0

    if args.command == "status":
        print(json.dumps(services.admin.queue_status().to_dict(), indent=2))
        return 0

    if args.command == "retry":
        reset = services.admin.retry(args.ids)
        print(f"Queued {reset} of {len(args.ids)} notification(s) for retry")
        return 0

    if args.command == "cleanup":
        deleted = services.admin.cleanup(args.days)
        print(f"Cleaned up {deleted} finished notifications older than {args.days} days")
        return 0

    if args.command == "purge":
        if not args.yes:
            print("Refusing to delete every notification without --yes", file=sys.stderr)
            return 2
        deleted = services.admin.delete_all()
        print(f"Deleted {deleted} notification(s)")
        return 0

    if args.command == "send-test":
        job = services.admin.send_test(recipient=args.recipient)
        print(f"Queued test notification {job.id}")
        return 0

    if args.command == "enqueue":
        payload = json.loads(args.payload)
        if not isinstance(payload, dict):
            raise ValueError("payload must be a JSON object")
        job = services.batcher.enqueue(
            NotificationType(args.type),
            payload,
            max_attempts=args.max_attempts,
            batch_window=args.batch_window,
        )
        print(job.id)
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 success, 1 runtime/config failure, 2 invalid input)
    """
    start_time = time.time()
    args = build_parser().parse_args(argv)

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)
        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        logger.info(
            "Notification queue starting",
            extra={
                "event": "service.starting",
                "command": args.command,
                "log_level": env_config.log_level,
            },
        )

        init_database(env_config.database_url)
        services = build_services(app_config, env_config)

        try:
            return _dispatch_command(args, services, app_config, env_config)
        finally:
            close_database()
            logger.info(
                "Notification queue stopped",
                extra={
                    "event": "service.stopping",
                    "command": args.command,
                    "uptime_seconds": round(time.time() - start_time, 2),
                },
            )

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        return 1
    except PersistenceError as e:
        print(f"Store error: {e}", file=sys.stderr)
        logger.error(
            f"Store error: {e}",
            extra={"event": "service.store_error", "error_type": type(e).__name__},
        )
        return 1
    except ValueError as e:
        print(f"Invalid input: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
