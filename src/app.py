"""Application entry point for the event pager.

One invocation runs one notification tick; an external scheduler (cron)
provides the cadence. Exit code 0 means the tick completed, even if nothing
was due; 1 means a fatal error (configuration or schedule fetch).
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

from adapters.dapnet_transport import DapnetTransport
from adapters.fingerprint_store import FileFingerprintStore
from adapters.schedule_source import HttpScheduleSource
from adapters.simulated_transport import SimulatedTransport
from core.ports import PagingTransportPort
from core.processor import DispatchProcessor
from core.queue import DeliveryQueue
from core.rooms import LARGE_ROOMS
from core.window import WindowMatcher
from settings import Settings, SettingsError, load_settings

NAME = "EVENT PAGER"
FONT = "tarty-1"

EXIT_OK = 0
EXIT_ERROR = 1


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging(config: dict, base_dir: str) -> None:
    if not config.get("enabled", True):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/event-pager.log")
        if not os.path.isabs(path):
            path = os.path.join(base_dir, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers, force=True)


def build_transport(settings: Settings) -> PagingTransportPort:
    """Select the paging transport once, based on configuration."""

    if settings.delivery_mode == "live":
        return DapnetTransport(
            api_url=settings.dapnet_api_url or "",
            username=settings.dapnet_username or "",
            password=settings.dapnet_password or "",
            transmitter_groups=settings.transmitter_groups,
            timeout=settings.delivery_timeout,
        )
    if settings.delivery_mode == "simulate":
        return SimulatedTransport()
    raise SettingsError("delivery.mode must be 'simulate' or 'live'")


def build_processor(settings: Settings, transport: PagingTransportPort) -> DispatchProcessor:
    """Wire the core pipeline from settings."""

    simulated = settings.simulated_time
    if simulated is not None:
        # The store must age fingerprints on the same clock the window uses.
        def clock() -> datetime:
            return simulated

        store = FileFingerprintStore(settings.fingerprint_path, settings.retention, clock=simulated.timestamp)
    else:
        def clock() -> datetime:
            return datetime.now().astimezone()

        store = FileFingerprintStore(settings.fingerprint_path, settings.retention)

    queue = DeliveryQueue(
        transport=transport,
        config=settings.queue,
        broadcast_recipient=settings.directory.broadcast_recipient(),
    )
    return DispatchProcessor(
        matcher=WindowMatcher(settings.dispatch),
        store=store,
        queue=queue,
        directory=settings.directory,
        call_config=settings.call,
        dispatch_config=settings.dispatch,
        clock=clock,
    )


def _run(config_path: Optional[str]) -> int:
    _print_banner()
    settings = load_settings(config_path)
    _configure_logging(settings.logging, settings.base_dir)
    logger = logging.getLogger(__name__)

    logger.info("=== Event pager tick started ===")
    if settings.simulated_time is not None:
        logger.info("Using simulated time %s", settings.simulated_time.isoformat())

    transport = build_transport(settings)
    logger.info("Selected delivery mode - %s", settings.delivery_mode)

    processor = build_processor(settings, transport)
    source = HttpScheduleSource(settings.schedule_url, timeout=settings.schedule_timeout)
    delivered = processor.run(source)

    logger.info("=== Event pager tick completed: %s calls delivered ===", delivered)
    return EXIT_OK


def _check(config_path: Optional[str]) -> int:
    _print_banner()
    settings = load_settings(config_path)

    print(f"Schedule:      {settings.schedule_url}")
    print(f"Delivery mode: {settings.delivery_mode}")
    if settings.delivery_mode == "live":
        print(f"DAPNET API:    {settings.dapnet_api_url} (groups: {', '.join(settings.transmitter_groups)})")
    print(
        f"Window:        {settings.dispatch.match_mode}, lead {settings.dispatch.lead_minutes} min"
        + (" (TEST MODE)" if settings.dispatch.test_mode else "")
    )
    if settings.simulated_time is not None:
        print(f"Simulated now: {settings.simulated_time.isoformat()}")
    print(
        f"Queue:         delay {settings.queue.delay_seconds}s, retries {settings.queue.max_retries}, "
        f"retry delay {settings.queue.retry_delay_seconds}s, "
        f"broadcast extra {settings.queue.broadcast_extra_delay_seconds}s ({settings.queue.broadcast_delay_policy})"
    )
    print(f"Fingerprints:  {settings.fingerprint_path} ({settings.retention.retention_hours}h retention)")
    print("Recipients:")
    for room in LARGE_ROOMS:
        recipient = settings.directory.recipient_for_room(room) or "(unmapped)"
        print(f"  {room:<8} {recipient}")
    print(f"  {'all':<8} {settings.directory.broadcast_recipient() or '(unmapped)'}")
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="event-pager")
    parser.add_argument("--config", help="Path to config.json")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Run one notification tick")
    subparsers.add_parser("check", help="Validate configuration and show the effective settings")

    args = parser.parse_args(argv)
    try:
        if args.command == "check":
            return _check(args.config)
        return _run(args.config)
    except SettingsError as exc:
        logging.getLogger(__name__).error("Configuration error: %s", exc)
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except Exception:
        logging.getLogger(__name__).exception("Notification tick failed")
        return EXIT_ERROR


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
