"""Configuration loading for the event pager.

User-editable settings (schedule, rooms, queue pacing, dedup, delivery,
logging) live in a single JSON file. Secrets such as the DAPNET credentials
come from the environment, loaded from ``.env`` via python-dotenv.

Nothing is read at import time: ``load_settings`` returns an immutable
``Settings`` object that the app threads through constructors.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from dotenv import load_dotenv

from core.config import (
    BROADCAST_DELAY_POLICIES,
    MATCH_MODES,
    CallConfig,
    DispatchConfig,
    QueueConfig,
    RetentionConfig,
)
from core.models import MAX_EXPIRATION_SECONDS, MAX_PRIORITY, MIN_EXPIRATION_SECONDS, MIN_PRIORITY
from core.rooms import DEFAULT_BROADCAST_SUBSCRIBER, DEFAULT_ROOM_SUBSCRIBERS, LARGE_ROOMS, RoomDirectory
from core.window import parse_start_time

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# config.json sits in the project root unless overridden.
DEFAULT_CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")
CONFIG_ENV_VAR = "EVENT_PAGER_CONFIG"

DELIVERY_MODES = ("simulate", "live")


class SettingsError(RuntimeError):
    """Raised for missing or invalid configuration."""


@dataclass(frozen=True)
class Settings:
    """Validated configuration for one invocation."""

    base_dir: str
    schedule_url: str
    schedule_timeout: float
    dispatch: DispatchConfig
    simulated_time: Optional[datetime]
    directory: RoomDirectory
    call: CallConfig
    queue: QueueConfig
    retention: RetentionConfig
    fingerprint_path: str
    delivery_mode: str
    dapnet_api_url: Optional[str]
    dapnet_username: Optional[str] = field(default=None, repr=False)
    dapnet_password: Optional[str] = field(default=None, repr=False)
    transmitter_groups: tuple = ("all",)
    delivery_timeout: float = 5
    logging: dict = field(default_factory=dict)


def _load_json_config(path: str) -> dict:
    if not os.path.exists(path):
        raise SettingsError(f"Config file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        raise SettingsError(f"Could not read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise SettingsError(f"Config file must contain a JSON object: {path}")
    return data


def _section(config: dict, name: str) -> dict:
    value = config.get(name) or {}
    if not isinstance(value, dict):
        raise SettingsError(f"Config section '{name}' must be an object")
    return value


def _int(section: dict, key: str, default: int, *, minimum: int = 1, maximum: Optional[int] = None) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool):
        raise SettingsError(f"'{key}' must be an integer, got {raw!r}")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise SettingsError(f"'{key}' must be an integer, got {raw!r}") from None
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise SettingsError(f"'{key}' must be {bounds}, got {value}")
    return value


def _seconds(section: dict, key: str, default: float) -> float:
    raw = section.get(key, default)
    if isinstance(raw, bool):
        raise SettingsError(f"'{key}' must be a number, got {raw!r}")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise SettingsError(f"'{key}' must be a number, got {raw!r}") from None
    if value < 0:
        raise SettingsError(f"'{key}' must not be negative, got {value}")
    return value


def _choice(section: dict, key: str, default: str, choices: tuple) -> str:
    value = str(section.get(key, default)).strip().lower()
    if value not in choices:
        raise SettingsError(f"'{key}' must be one of {', '.join(choices)}, got {value!r}")
    return value


def _resolve_path(base_dir: str, path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(base_dir, path)


def _simulated_time(raw: Any) -> Optional[datetime]:
    if raw in (None, ""):
        return None
    parsed = parse_start_time(str(raw))
    if parsed is None:
        raise SettingsError(f"Simulated time must be ISO-8601 with offset, got {raw!r}")
    return parsed


def _directory(rooms: dict) -> RoomDirectory:
    configured = rooms.get("subscribers") or {}
    if not isinstance(configured, dict):
        raise SettingsError("'rooms.subscribers' must be an object")
    unknown = sorted(set(configured) - set(LARGE_ROOMS))
    if unknown:
        raise SettingsError(f"Unknown rooms in 'rooms.subscribers': {', '.join(unknown)}")
    subscribers = dict(DEFAULT_ROOM_SUBSCRIBERS)
    subscribers.update({room: str(value) for room, value in configured.items() if value is not None})
    broadcast = rooms.get("broadcast", DEFAULT_BROADCAST_SUBSCRIBER)
    return RoomDirectory(subscribers=subscribers, broadcast=str(broadcast or ""))


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Load config.json plus environment secrets and validate everything."""

    path = config_path or os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    path = os.path.abspath(path)
    base_dir = os.path.dirname(path)

    env_file = os.path.join(base_dir, ".env")
    if os.path.exists(env_file):
        load_dotenv(env_file)
    else:
        load_dotenv()

    config = _load_json_config(path)

    schedule = _section(config, "schedule")
    schedule_url = os.getenv("SCHEDULE_URL") or schedule.get("url")
    if not schedule_url:
        raise SettingsError("Schedule URL missing: set 'schedule.url' or SCHEDULE_URL")

    dispatch_section = _section(config, "dispatch")
    simulated_time = _simulated_time(
        os.getenv("EVENT_PAGER_SIMULATED_TIME") or dispatch_section.get("simulated_time")
    )
    dispatch = DispatchConfig(
        lead_minutes=_int(dispatch_section, "lead_minutes", 15),
        match_mode=_choice(dispatch_section, "match_mode", "window", MATCH_MODES),
        tolerance_seconds=_int(dispatch_section, "tolerance_seconds", 30, minimum=0),
        test_mode=bool(dispatch_section.get("test_mode", False)),
        simulated_clock=simulated_time is not None,
    )

    call_section = _section(config, "call")
    call = CallConfig(
        priority=_int(call_section, "priority", 3, minimum=MIN_PRIORITY, maximum=MAX_PRIORITY),
        expiration_seconds=_int(
            call_section,
            "expiration_seconds",
            MAX_EXPIRATION_SECONDS,
            minimum=MIN_EXPIRATION_SECONDS,
            maximum=MAX_EXPIRATION_SECONDS,
        ),
        local=bool(call_section.get("local", False)),
        use_home_info=bool(call_section.get("use_home_info", False)),
    )

    queue_section = _section(config, "queue")
    queue = QueueConfig(
        delay_seconds=_seconds(queue_section, "delay_seconds", 5),
        max_retries=_int(queue_section, "max_retries", 3, minimum=0),
        retry_delay_seconds=_seconds(queue_section, "retry_delay_seconds", 5),
        broadcast_extra_delay_seconds=_seconds(queue_section, "broadcast_extra_delay_seconds", 0),
        broadcast_delay_policy=_choice(queue_section, "broadcast_delay_policy", "both", BROADCAST_DELAY_POLICIES),
    )

    dedup = _section(config, "dedup")
    retention_hours = _seconds(dedup, "retention_hours", 3)
    if retention_hours <= 0:
        raise SettingsError("'retention_hours' must be positive")
    retention = RetentionConfig(
        retention_hours=retention_hours,
        max_bytes=_int(dedup, "max_bytes", 1024 * 1024),
    )
    fingerprint_path = _resolve_path(base_dir, str(dedup.get("path", "data/sent-fingerprints.txt")))

    delivery = _section(config, "delivery")
    delivery_mode = _choice(delivery, "mode", "simulate", DELIVERY_MODES)
    groups = delivery.get("transmitter_groups", ["all"])
    if isinstance(groups, str):
        groups = [group.strip() for group in groups.split(",")]
    transmitter_groups = tuple(str(group) for group in groups if str(group).strip())
    api_url = os.getenv("DAPNET_API_URL") or delivery.get("api_url")
    username = os.getenv("DAPNET_API_USERNAME")
    password = os.getenv("DAPNET_API_PASSWORD")
    if delivery_mode == "live":
        # Live mode needs credentials before the first tick.
        if not api_url:
            raise SettingsError("DAPNET API URL missing: set 'delivery.api_url' or DAPNET_API_URL")
        if not username or not password:
            raise SettingsError("DAPNET_API_USERNAME and DAPNET_API_PASSWORD are required in live mode")
        if not transmitter_groups:
            raise SettingsError("'delivery.transmitter_groups' must not be empty in live mode")

    return Settings(
        base_dir=base_dir,
        schedule_url=str(schedule_url),
        schedule_timeout=_seconds(schedule, "timeout_seconds", 30),
        dispatch=dispatch,
        simulated_time=simulated_time,
        directory=_directory(_section(config, "rooms")),
        call=call,
        queue=queue,
        retention=retention,
        fingerprint_path=fingerprint_path,
        delivery_mode=delivery_mode,
        dapnet_api_url=api_url,
        dapnet_username=username,
        dapnet_password=password,
        transmitter_groups=transmitter_groups,
        delivery_timeout=_seconds(delivery, "timeout_seconds", 5),
        logging=_section(config, "logging"),
    )
