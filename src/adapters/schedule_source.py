"""Schedule source adapter.

Fetches the conference schedule JSON and flattens it into TalkEvent records.
The upstream layout is ``schedule.conference.days[].rooms{name: [events]}``;
events without their own ``room`` field inherit the room key.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any, List

from core.models import TalkEvent

LOGGER = logging.getLogger(__name__)

USER_AGENT = "EventPager/1.0"


class ScheduleSourceError(RuntimeError):
    """Raised when the schedule cannot be fetched or parsed."""


def extract_talks(document: Any) -> List[TalkEvent]:
    """Flatten a schedule document into talk records."""

    try:
        days = document["schedule"]["conference"]["days"]
    except (KeyError, TypeError):
        LOGGER.warning("Schedule does not contain a days structure")
        return []
    if not isinstance(days, list):
        LOGGER.warning("Schedule days is not a list")
        return []

    talks: List[TalkEvent] = []
    for day in days:
        rooms = day.get("rooms") if isinstance(day, dict) else None
        if not isinstance(rooms, dict):
            continue
        for room_name, events in rooms.items():
            if not isinstance(events, list):
                continue
            for event in events:
                if not isinstance(event, dict):
                    continue
                record = dict(event)
                record.setdefault("room", room_name)
                talks.append(TalkEvent.from_record(record))
    return talks


class HttpScheduleSource:
    """Schedule source reading from an HTTP(S) or file:// URL."""

    def __init__(self, url: str, timeout: float = 30) -> None:
        if not url:
            raise ValueError("Schedule URL is required")
        self._url = url
        self._timeout = timeout

    def fetch_talks(self) -> List[TalkEvent]:
        request = urllib.request.Request(self._url, method="GET")
        request.add_header("Accept", "application/json")
        request.add_header("User-Agent", USER_AGENT)
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as e:
            raise ScheduleSourceError(f"Schedule request failed with status {e.code}: {self._url}") from e
        except OSError as e:
            raise ScheduleSourceError(f"Schedule request failed: {self._url} - {e}") from e

        try:
            document = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ScheduleSourceError(f"Invalid schedule JSON from {self._url}: {e}") from e

        talks = extract_talks(document)
        LOGGER.info("Extracted %s talks from schedule", len(talks))
        return talks
