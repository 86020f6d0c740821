from __future__ import annotations

import time
from typing import Dict, List, Optional

from core.config import QueueConfig
from core.models import DeliveryOutcome, OutboundCall, QueueStatus
from core.queue import DeliveryQueue

BROADCAST = "1150"


class ScriptedTransport:
    """Returns scripted outcomes per recipient, then SUCCESS."""

    def __init__(self, script: Optional[Dict[str, List[DeliveryOutcome]]] = None) -> None:
        self._script = {key: list(value) for key, value in (script or {}).items()}
        self.attempts: List[str] = []

    def deliver(self, call: OutboundCall) -> DeliveryOutcome:
        self.attempts.append(call.recipient_id)
        outcomes = self._script.get(call.recipient_id)
        if outcomes:
            return outcomes.pop(0)
        return DeliveryOutcome.SUCCESS


class AlwaysTransport:
    def __init__(self, outcome: DeliveryOutcome) -> None:
        self._outcome = outcome
        self.attempts = 0

    def deliver(self, call: OutboundCall) -> DeliveryOutcome:
        self.attempts += 1
        return self._outcome


class RaisingTransport:
    def __init__(self) -> None:
        self.attempts = 0

    def deliver(self, call: OutboundCall) -> DeliveryOutcome:
        self.attempts += 1
        raise ConnectionError("boom")


class FakeSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _call(recipient: str, fingerprint: Optional[str] = None) -> OutboundCall:
    return OutboundCall(
        recipient_id=recipient,
        text=f"10:30, One, Talk for {recipient}",
        priority=3,
        expiration_seconds=600,
        fingerprint=fingerprint or f"fp-{recipient}",
    )


def _queue(transport, sleep: FakeSleep, **overrides) -> DeliveryQueue:
    values = {"delay_seconds": 5, "max_retries": 3, "retry_delay_seconds": 2}
    values.update(overrides)
    return DeliveryQueue(transport, QueueConfig(**values), broadcast_recipient=BROADCAST, sleep=sleep)


def test_drain_sends_in_fifo_order_and_returns_fingerprints() -> None:
    transport = ScriptedTransport()
    sleep = FakeSleep()
    queue = _queue(transport, sleep)
    for recipient in ("1141", "1142", "1143"):
        queue.enqueue(_call(recipient))

    assert queue.size == 3
    delivered = queue.drain()

    assert delivered == ["fp-1141", "fp-1142", "fp-1143"]
    assert transport.attempts == ["1141", "1142", "1143"]
    assert queue.size == 0
    assert not queue.is_draining
    assert all(entry.status is QueueStatus.SENT for entry in queue.entries)


def test_delay_only_between_successful_sends() -> None:
    sleep = FakeSleep()
    queue = _queue(ScriptedTransport(), sleep)
    queue.enqueue(_call("1141"))
    queue.enqueue(_call("1142"))

    queue.drain()

    # No pause before the first send or after the last one.
    assert sleep.calls == [5]


def test_failure_retried_until_bound_then_failed() -> None:
    transport = AlwaysTransport(DeliveryOutcome.FAILURE)
    sleep = FakeSleep()
    queue = _queue(transport, sleep, max_retries=3)
    queue.enqueue(_call("1141"))

    delivered = queue.drain()

    assert delivered == []
    assert transport.attempts == 4
    entry = queue.entries[0]
    assert entry.status is QueueStatus.FAILED
    assert entry.retry_count == 3
    assert entry.attempts == 4
    assert sleep.calls == [2, 2, 2]


def test_conflict_is_attempted_once() -> None:
    transport = AlwaysTransport(DeliveryOutcome.CONFLICT)
    sleep = FakeSleep()
    queue = _queue(transport, sleep)
    queue.enqueue(_call("1141"))

    assert queue.drain() == []
    assert transport.attempts == 1
    assert queue.entries[0].status is QueueStatus.FAILED
    assert sleep.calls == []


def test_rate_limit_doubles_retry_delay() -> None:
    transport = ScriptedTransport({"1141": [DeliveryOutcome.RATE_LIMITED]})
    sleep = FakeSleep()
    queue = _queue(transport, sleep, retry_delay_seconds=3)
    queue.enqueue(_call("1141"))

    assert queue.drain() == ["fp-1141"]
    assert transport.attempts == ["1141", "1141"]
    assert sleep.calls == [6]


def test_rate_limit_still_bounded_by_max_retries() -> None:
    transport = AlwaysTransport(DeliveryOutcome.RATE_LIMITED)
    sleep = FakeSleep()
    queue = _queue(transport, sleep, max_retries=2, retry_delay_seconds=1)
    queue.enqueue(_call("1141"))

    assert queue.drain() == []
    assert transport.attempts == 3
    assert sleep.calls == [2, 2]


def test_retry_keeps_order_of_following_entries() -> None:
    transport = ScriptedTransport({"1141": [DeliveryOutcome.FAILURE]})
    sleep = FakeSleep()
    queue = _queue(transport, sleep)
    queue.enqueue(_call("1141"))
    queue.enqueue(_call("1142"))

    assert queue.drain() == ["fp-1141", "fp-1142"]
    assert transport.attempts == ["1141", "1141", "1142"]
    assert sleep.calls == [2, 5]


def test_no_delay_after_failed_entry() -> None:
    transport = ScriptedTransport({"1141": [DeliveryOutcome.CONFLICT]})
    sleep = FakeSleep()
    queue = _queue(transport, sleep)
    queue.enqueue(_call("1141"))
    queue.enqueue(_call("1142"))

    assert queue.drain() == ["fp-1142"]
    assert sleep.calls == []


def test_transport_exception_counts_as_failure() -> None:
    transport = RaisingTransport()
    sleep = FakeSleep()
    queue = _queue(transport, sleep, max_retries=1)
    queue.enqueue(_call("1141"))

    assert queue.drain() == []
    assert transport.attempts == 2
    assert queue.entries[0].last_outcome is DeliveryOutcome.FAILURE


def test_broadcast_extra_delay_when_both_are_broadcast() -> None:
    sleep = FakeSleep()
    queue = _queue(ScriptedTransport(), sleep, broadcast_extra_delay_seconds=10)
    queue.enqueue(_call(BROADCAST, "a"))
    queue.enqueue(_call(BROADCAST, "b"))
    queue.enqueue(_call("1141", "c"))

    queue.drain()

    assert sleep.calls == [15, 5]


def test_broadcast_delay_policy_previous_and_next() -> None:
    previous_sleep = FakeSleep()
    previous = _queue(
        ScriptedTransport(), previous_sleep, broadcast_extra_delay_seconds=10, broadcast_delay_policy="previous"
    )
    previous.enqueue(_call(BROADCAST, "a"))
    previous.enqueue(_call("1141", "b"))
    previous.enqueue(_call(BROADCAST, "c"))
    previous.drain()
    assert previous_sleep.calls == [15, 5]

    next_sleep = FakeSleep()
    upcoming = _queue(ScriptedTransport(), next_sleep, broadcast_extra_delay_seconds=10, broadcast_delay_policy="next")
    upcoming.enqueue(_call(BROADCAST, "a"))
    upcoming.enqueue(_call("1141", "b"))
    upcoming.enqueue(_call(BROADCAST, "c"))
    upcoming.drain()
    assert next_sleep.calls == [5, 15]


def test_broadcast_delay_policy_never() -> None:
    sleep = FakeSleep()
    queue = _queue(ScriptedTransport(), sleep, broadcast_extra_delay_seconds=10, broadcast_delay_policy="never")
    queue.enqueue(_call(BROADCAST, "a"))
    queue.enqueue(_call(BROADCAST, "b"))
    queue.drain()
    assert sleep.calls == [5]


def test_sequential_pacing_wall_clock() -> None:
    queue = DeliveryQueue(ScriptedTransport(), QueueConfig(delay_seconds=0.05, max_retries=0, retry_delay_seconds=0))
    for recipient in ("1140", "1141", "1142", "1143"):
        queue.enqueue(_call(recipient))

    started = time.monotonic()
    assert len(queue.drain()) == 4
    elapsed = time.monotonic() - started

    assert elapsed >= 3 * 0.05


def test_drain_empty_queue() -> None:
    sleep = FakeSleep()
    queue = _queue(ScriptedTransport(), sleep)
    assert queue.drain() == []
    assert sleep.calls == []
