"""Sequential delivery queue for outbound pager calls.

The paging API is rate-limit sensitive, so the queue never sends two calls
concurrently. Draining is synchronous: ``drain()`` returns only after every
entry reached SENT or FAILED, including all retries and pauses.

Retry policy by outcome:
- CONFLICT: the call already exists downstream, fail without retrying.
- RATE_LIMITED: retry after twice the standard retry delay.
- FAILURE: retry after the standard retry delay.
All retries are bounded by ``max_retries``.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, List, Optional

from core.config import BROADCAST_DELAY_POLICIES, QueueConfig
from core.models import DeliveryOutcome, OutboundCall, QueueEntry, QueueStatus
from core.ports import PagingTransportPort

LOGGER = logging.getLogger(__name__)

RATE_LIMIT_BACKOFF_FACTOR = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryQueue:
    """In-process FIFO that drains strictly one call at a time."""

    def __init__(
        self,
        transport: PagingTransportPort,
        config: QueueConfig,
        broadcast_recipient: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if config.broadcast_delay_policy not in BROADCAST_DELAY_POLICIES:
            raise ValueError(f"Unsupported broadcast delay policy: {config.broadcast_delay_policy}")
        self._transport = transport
        self._config = config
        self._broadcast_recipient = broadcast_recipient
        self._sleep = sleep
        self._clock = clock
        self._pending: Deque[QueueEntry] = deque()
        self._completed: List[QueueEntry] = []
        self._draining = False

    @property
    def size(self) -> int:
        return len(self._pending)

    @property
    def is_draining(self) -> bool:
        return self._draining

    @property
    def entries(self) -> List[QueueEntry]:
        """Terminal entries of the most recent drain, in completion order."""

        return list(self._completed)

    def enqueue(self, call: OutboundCall) -> QueueEntry:
        entry = QueueEntry(call=call, created_at=self._clock())
        self._pending.append(entry)
        LOGGER.info(
            "Call enqueued for %s: %s (queue size %s)",
            call.recipient_id,
            call.text,
            len(self._pending),
        )
        return entry

    def drain(self) -> List[str]:
        """Process every pending entry to a terminal state.

        Returns the fingerprints of calls that reached SENT, in send order.
        """

        if self._draining:
            return []

        self._draining = True
        self._completed = []
        delivered: List[str] = []
        try:
            while self._pending:
                entry = self._pending.popleft()
                self._attempt(entry)

                if entry.status is QueueStatus.RETRYING:
                    self._pause(self._retry_delay(entry.last_outcome), "retry backoff")
                    self._pending.appendleft(entry)
                    continue

                self._completed.append(entry)
                if entry.status is not QueueStatus.SENT:
                    continue

                if entry.fingerprint is not None:
                    delivered.append(entry.fingerprint)
                if self._pending:
                    self._pause(self._pause_between(entry, self._pending[0]), "inter-message delay")
        finally:
            self._draining = False

        LOGGER.info(
            "Queue drained: %s sent, %s failed",
            len(delivered),
            sum(1 for entry in self._completed if entry.status is QueueStatus.FAILED),
        )
        return delivered

    def _attempt(self, entry: QueueEntry) -> None:
        call = entry.call
        entry.status = QueueStatus.SENDING
        entry.attempts += 1
        entry.last_attempt_at = self._clock()

        try:
            outcome = self._transport.deliver(call)
        except Exception:
            LOGGER.exception("Transport raised while sending to %s: %s", call.recipient_id, call.text)
            outcome = DeliveryOutcome.FAILURE
        entry.last_outcome = outcome

        if outcome is DeliveryOutcome.SUCCESS:
            entry.status = QueueStatus.SENT
            LOGGER.info(
                "Call sent to %s (attempt %s): %s",
                call.recipient_id,
                entry.attempts,
                call.text,
            )
            return

        if outcome is DeliveryOutcome.CONFLICT:
            entry.status = QueueStatus.FAILED
            LOGGER.error("Call rejected as conflict by %s, not retrying: %s", call.recipient_id, call.text)
            return

        if entry.retry_count < self._config.max_retries:
            entry.retry_count += 1
            entry.status = QueueStatus.RETRYING
            LOGGER.warning(
                "Call to %s failed (%s), retry %s/%s: %s",
                call.recipient_id,
                outcome.value,
                entry.retry_count,
                self._config.max_retries,
                call.text,
            )
            return

        entry.status = QueueStatus.FAILED
        LOGGER.error(
            "Call to %s failed after %s attempts (%s): %s",
            call.recipient_id,
            entry.attempts,
            outcome.value,
            call.text,
        )

    def _retry_delay(self, outcome: Optional[DeliveryOutcome]) -> float:
        if outcome is DeliveryOutcome.RATE_LIMITED:
            return self._config.retry_delay_seconds * RATE_LIMIT_BACKOFF_FACTOR
        return self._config.retry_delay_seconds

    def _pause_between(self, sent: QueueEntry, upcoming: QueueEntry) -> float:
        delay = self._config.delay_seconds
        if self._needs_broadcast_pause(sent.call, upcoming.call):
            delay += self._config.broadcast_extra_delay_seconds
        return delay

    def _needs_broadcast_pause(self, previous: OutboundCall, upcoming: OutboundCall) -> bool:
        if self._broadcast_recipient is None:
            return False
        previous_is_broadcast = previous.recipient_id == self._broadcast_recipient
        upcoming_is_broadcast = upcoming.recipient_id == self._broadcast_recipient
        policy = self._config.broadcast_delay_policy
        if policy == "both":
            return previous_is_broadcast and upcoming_is_broadcast
        if policy == "previous":
            return previous_is_broadcast
        if policy == "next":
            return upcoming_is_broadcast
        return False

    def _pause(self, seconds: float, reason: str) -> None:
        if seconds <= 0:
            return
        LOGGER.debug("Sleeping %.1fs (%s)", seconds, reason)
        self._sleep(seconds)
