"""Shared call formatting helpers for the paging transports.

Keeping formatting here prevents drift between the live and the simulated
transport, so a simulated run logs exactly the payload a live run would send.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Sequence

from core.models import MAX_TEXT_LENGTH, OutboundCall


def format_dapnet_call(call: OutboundCall, transmitter_groups: Sequence[str]) -> Dict[str, Any]:
    """Return the DAPNET v2 ``/calls`` payload for one call."""

    payload = {
        "data": call.text,
        "expiration": call.expiration_seconds,
        "local": call.flags.local,
        "priority": call.priority,
        "subscriber_groups": [],
        "subscribers": [call.recipient_id],
        "transmitter_groups": list(transmitter_groups),
        "transmitters": [],
        "use_home_info": call.flags.use_home_info,
    }
    validate_dapnet_call(payload)
    return payload


def validate_dapnet_call(payload: Dict[str, Any]) -> None:
    """Raise ValueError when the payload violates the DAPNET call format."""

    data = payload.get("data")
    if not isinstance(data, str):
        raise ValueError("DAPNET call: data must be a string")
    if len(data) > MAX_TEXT_LENGTH:
        raise ValueError(f"DAPNET call: data must not exceed {MAX_TEXT_LENGTH} characters")
    if not data.isascii():
        raise ValueError("DAPNET call: data must contain only ASCII characters")

    for key in ("local", "use_home_info"):
        if not isinstance(payload.get(key), bool):
            raise ValueError(f"DAPNET call: {key} must be a boolean")

    subscribers = payload.get("subscribers") or []
    if not subscribers and not payload.get("subscriber_groups"):
        raise ValueError("DAPNET call: at least one subscriber or subscriber group is required")
    if not all(isinstance(item, str) for item in subscribers):
        raise ValueError("DAPNET call: subscribers must be strings")

    groups = payload.get("transmitter_groups") or []
    if not groups and not payload.get("transmitters"):
        raise ValueError("DAPNET call: at least one transmitter or transmitter group is required")
    if not all(isinstance(item, str) for item in groups):
        raise ValueError("DAPNET call: transmitter groups must be strings")


def render_call(call: OutboundCall) -> str:
    """Return a one-line, log-friendly rendering of a call."""

    details = {
        "to": call.recipient_id,
        "variant": call.variant.value,
        "priority": call.priority,
        "expiration": call.expiration_seconds,
        "local": call.flags.local,
        "use_home_info": call.flags.use_home_info,
    }
    return f"{json.dumps(call.text)} {json.dumps(details, sort_keys=True)}"
