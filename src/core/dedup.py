"""Deduplication helpers (core domain)."""

from __future__ import annotations

import hashlib

from core.models import CallVariant, TalkEvent


def compute_fingerprint(talk: TalkEvent, variant: CallVariant) -> str:
    """Return a deterministic fingerprint for one call variant of a talk.

    The variant tag is part of the payload so the room-specific and the
    all-rooms call for the same talk are tracked independently.
    """

    parts = [talk.id or "", talk.start_time or "", (talk.room or "").strip(), variant.value]
    payload = "\n".join(parts)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
