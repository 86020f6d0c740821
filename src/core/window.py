"""Notification window matching (core domain).

A talk is due when ``now`` lies inside the lead window before its start:
``0 < start - now <= lead_minutes``. The window stays open until the talk
starts, so a tick that runs late still matches.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from core.config import DispatchConfig
from core.models import TalkEvent

LOGGER = logging.getLogger(__name__)


def parse_start_time(raw: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 start time with offset, or return None."""

    if not raw:
        return None
    text = raw.strip()
    # fromisoformat before 3.11 does not accept a trailing Z.
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed


def _usable_start(talk: TalkEvent) -> Optional[datetime]:
    if not talk.title:
        LOGGER.warning("Talk without title ignored: %s", talk.id or "unknown")
        return None
    if not talk.room:
        LOGGER.warning("Talk without room ignored: %s", talk.id or "unknown")
        return None
    if not talk.start_time:
        LOGGER.warning("Talk without start time ignored: %s", talk.id or "unknown")
        return None
    start = parse_start_time(talk.start_time)
    if start is None:
        LOGGER.warning("Invalid start time ignored for %s: %s", talk.id or "unknown", talk.start_time)
    return start


def is_due(talk: TalkEvent, now: datetime, lead_minutes: int) -> bool:
    """Return True while ``now`` is within ``lead_minutes`` before the start."""

    start = _usable_start(talk)
    if start is None:
        return False
    if start <= now:
        return False
    return start - now <= timedelta(minutes=lead_minutes)


def is_due_at_instant(
    talk: TalkEvent,
    now: datetime,
    lead_minutes: int,
    tolerance_seconds: int = 30,
) -> bool:
    """Return True only around the exact notification instant.

    The instant is ``start - lead_minutes``; ``now`` must be within
    ``tolerance_seconds`` of it on either side.
    """

    start = _usable_start(talk)
    if start is None:
        return False
    if start <= now:
        return False
    notify_at = start - timedelta(minutes=lead_minutes)
    return abs((now - notify_at).total_seconds()) <= tolerance_seconds


class WindowMatcher:
    """Apply one matching semantic consistently for a whole process."""

    def __init__(self, config: DispatchConfig) -> None:
        if config.match_mode not in ("window", "instant"):
            raise ValueError(f"Unsupported match mode: {config.match_mode}")
        self._config = config

    @property
    def lead_minutes(self) -> int:
        return self._config.lead_minutes

    def is_due(self, talk: TalkEvent, now: datetime) -> bool:
        if self._config.match_mode == "instant":
            return is_due_at_instant(talk, now, self._config.lead_minutes, self._config.tolerance_seconds)
        return is_due(talk, now, self._config.lead_minutes)
