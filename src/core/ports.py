"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for the schedule source, the fingerprint
store, and the paging transport so the core can run against the live paging
network, a simulation, or test fakes without changes.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

from core.models import DeliveryOutcome, OutboundCall, TalkEvent


class ScheduleSourcePort(Protocol):
    """Provides the current list of talks; failures abort the tick."""

    def fetch_talks(self) -> List[TalkEvent]:
        ...


class FingerprintStorePort(Protocol):
    """Persisted record of already delivered calls."""

    def is_duplicate(self, fingerprint: str, now: Optional[float] = None) -> bool:
        ...

    def mark_sent(self, fingerprint: str, now: Optional[float] = None) -> None:
        ...

    def cleanup(self, now: Optional[float] = None) -> int:
        ...


class PagingTransportPort(Protocol):
    """Delivers one call and classifies the result."""

    def deliver(self, call: OutboundCall) -> DeliveryOutcome:
        ...
