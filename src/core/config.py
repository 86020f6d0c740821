"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass

MATCH_MODES = ("window", "instant")
BROADCAST_DELAY_POLICIES = ("both", "previous", "next", "never")


@dataclass(frozen=True)
class DispatchConfig:
    """Window matching and tick-level switches for the orchestrator."""

    lead_minutes: int = 15
    match_mode: str = "window"
    tolerance_seconds: int = 30
    test_mode: bool = False
    simulated_clock: bool = False


@dataclass(frozen=True)
class QueueConfig:
    """Pacing and retry settings for the delivery queue."""

    delay_seconds: float = 5
    max_retries: int = 3
    retry_delay_seconds: float = 5
    broadcast_extra_delay_seconds: float = 0
    broadcast_delay_policy: str = "both"


@dataclass(frozen=True)
class CallConfig:
    """Per-call paging attributes applied to every outbound call."""

    priority: int = 3
    expiration_seconds: int = 86400
    local: bool = False
    use_home_info: bool = False


@dataclass(frozen=True)
class RetentionConfig:
    """Fingerprint retention settings."""

    retention_hours: float = 3
    max_bytes: int = 1024 * 1024
