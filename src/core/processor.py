"""Core dispatch pipeline for one polling tick.

This module is integration-agnostic. It only relies on ports for the schedule,
the fingerprint store and the paging transport (behind the delivery queue).

Each tick runs in a strict order:
1) Keep talks in large rooms
2) Window match (or test mode: first large-room talk)
3) Build the room-specific and the all-rooms call per due talk
4) Skip calls whose fingerprint was already delivered
5) Drain the queue once for the whole tick
6) Record fingerprints of delivered calls
7) Store retention cleanup
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from core.config import CallConfig, DispatchConfig
from core.messages import build_call
from core.models import CallVariant, OutboundCall, TalkEvent
from core.ports import FingerprintStorePort, ScheduleSourcePort
from core.queue import DeliveryQueue
from core.rooms import RoomDirectory, filter_large_rooms
from core.window import WindowMatcher

LOGGER = logging.getLogger(__name__)

VARIANTS = (CallVariant.ROOM_SPECIFIC, CallVariant.ALL_ROOMS)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class DispatchProcessor:
    """Orchestrates matching, dedup, queueing, and fingerprint commits."""

    def __init__(
        self,
        matcher: WindowMatcher,
        store: FingerprintStorePort,
        queue: DeliveryQueue,
        directory: RoomDirectory,
        call_config: CallConfig,
        dispatch_config: DispatchConfig,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self._matcher = matcher
        self._store = store
        self._queue = queue
        self._directory = directory
        self._call_config = call_config
        self._clock = clock
        # Test mode never runs under a simulated clock.
        self._test_mode = dispatch_config.test_mode and not dispatch_config.simulated_clock
        if dispatch_config.test_mode and dispatch_config.simulated_clock:
            LOGGER.warning("Test mode ignored because a simulated clock is active")

    def run(self, source: ScheduleSourcePort, now: Optional[datetime] = None) -> int:
        """Fetch the schedule and run one tick. Source errors propagate."""

        now = now or self._clock()
        LOGGER.info(
            "Starting notification tick at %s%s",
            now.isoformat(timespec="seconds"),
            " (TEST MODE)" if self._test_mode else "",
        )
        talks = source.fetch_talks()
        LOGGER.info("Schedule fetch successful: %s talks loaded", len(talks))
        delivered = self.run_tick(talks, now)
        LOGGER.info("Notification tick completed: %s calls delivered", delivered)
        return delivered

    def run_tick(self, talks: Iterable[TalkEvent], now: datetime) -> int:
        """Process one batch of talks and return the number of delivered calls."""

        if now.tzinfo is None:
            now = now.astimezone()

        candidates = filter_large_rooms(talks)
        LOGGER.info("Filtered: %s talks in large rooms", len(candidates))

        due = self._select_due(candidates, now)
        LOGGER.info("%s talks due for notification", len(due))

        enqueued = 0
        for talk in due:
            for call in self._calls_for(talk):
                if call.fingerprint and self._store.is_duplicate(call.fingerprint, now.timestamp()):
                    LOGGER.info(
                        "Duplicate skipped (%s to %s): %s",
                        call.variant.value,
                        call.recipient_id,
                        talk.label,
                    )
                    continue
                self._queue.enqueue(call)
                enqueued += 1

        delivered = self._queue.drain() if enqueued else []

        # Only confirmed sends are recorded.
        for fingerprint in delivered:
            self._store.mark_sent(fingerprint, now.timestamp())

        removed = self._store.cleanup(now.timestamp())
        if removed:
            LOGGER.info("Fingerprint cleanup removed %s entries", removed)

        return len(delivered)

    def _select_due(self, candidates: List[TalkEvent], now: datetime) -> List[TalkEvent]:
        if self._test_mode:
            if not candidates:
                return []
            first = candidates[0]
            LOGGER.info("TEST MODE: matching first large-room talk: %s", first.label)
            return [first]

        due: List[TalkEvent] = []
        for talk in candidates:
            if self._matcher.is_due(talk, now):
                LOGGER.info("Talk due: %s (%s, %s)", talk.label, talk.room, talk.start_time)
                due.append(talk)
            else:
                LOGGER.debug("Talk not due: %s (%s)", talk.label, talk.start_time)
        return due

    def _calls_for(self, talk: TalkEvent) -> List[OutboundCall]:
        calls: List[OutboundCall] = []
        for variant in VARIANTS:
            recipient = self._directory.recipient_for(talk, variant)
            if recipient is None:
                LOGGER.warning("No recipient for %s call in room %s: %s", variant.value, talk.room, talk.label)
                continue
            try:
                calls.append(build_call(talk, variant, recipient, self._call_config))
            except ValueError as exc:
                LOGGER.warning("Call skipped for %s (%s): %s", talk.label, variant.value, exc)
        return calls
