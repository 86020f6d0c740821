"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any schedule- or transport-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

MAX_TEXT_LENGTH = 160
MIN_PRIORITY, MAX_PRIORITY = 0, 7
MIN_EXPIRATION_SECONDS, MAX_EXPIRATION_SECONDS = 60, 86400


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class TalkEvent:
    """A single talk as delivered by the schedule source."""

    id: Optional[str]
    title: Optional[str]
    room: Optional[str]
    start_time: Optional[str]

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "TalkEvent":
        """Build a talk from a schedule record, ignoring unknown fields."""

        start = record.get("startTime") or record.get("start_time") or record.get("date")
        return cls(
            id=_optional_str(record.get("id")),
            title=_optional_str(record.get("title")),
            room=_optional_str(record.get("room")),
            start_time=_optional_str(start),
        )

    @property
    def label(self) -> str:
        return self.title or self.id or "unknown"


class CallVariant(str, Enum):
    """The two independently deduplicated calls issued per talk."""

    ROOM_SPECIFIC = "ROOM_SPECIFIC"
    ALL_ROOMS = "ALL_ROOMS"


class DeliveryOutcome(str, Enum):
    """Classification every paging transport must map its results into."""

    SUCCESS = "success"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    FAILURE = "failure"


class QueueStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    RETRYING = "retrying"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class CallFlags:
    """Paging network flags carried with each call."""

    local: bool = False
    use_home_info: bool = False


@dataclass(frozen=True)
class OutboundCall:
    """A validated pager call ready for the delivery queue.

    Bounds are checked on construction so an invalid call can never be
    enqueued.
    """

    recipient_id: str
    text: str
    priority: int
    expiration_seconds: int
    flags: CallFlags = field(default_factory=CallFlags)
    fingerprint: Optional[str] = None
    variant: CallVariant = CallVariant.ROOM_SPECIFIC

    def __post_init__(self) -> None:
        if not self.recipient_id or not str(self.recipient_id).strip():
            raise ValueError("Call recipient is required")
        if not isinstance(self.priority, int) or not MIN_PRIORITY <= self.priority <= MAX_PRIORITY:
            raise ValueError(f"Call priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}: {self.priority!r}")
        if (
            not isinstance(self.expiration_seconds, int)
            or not MIN_EXPIRATION_SECONDS <= self.expiration_seconds <= MAX_EXPIRATION_SECONDS
        ):
            raise ValueError(
                f"Call expiration must be between {MIN_EXPIRATION_SECONDS} and "
                f"{MAX_EXPIRATION_SECONDS} seconds: {self.expiration_seconds!r}"
            )
        if len(self.text) > MAX_TEXT_LENGTH:
            raise ValueError(f"Call text must not exceed {MAX_TEXT_LENGTH} characters")
        if not self.text.isascii():
            raise ValueError("Call text must contain only ASCII characters")


@dataclass
class QueueEntry:
    """Mutable queue bookkeeping around one outbound call."""

    call: OutboundCall
    created_at: datetime
    retry_count: int = 0
    attempts: int = 0
    status: QueueStatus = QueueStatus.PENDING
    last_attempt_at: Optional[datetime] = None
    last_outcome: Optional[DeliveryOutcome] = None

    @property
    def fingerprint(self) -> Optional[str]:
        return self.call.fingerprint

    @property
    def is_terminal(self) -> bool:
        return self.status in (QueueStatus.SENT, QueueStatus.FAILED)
