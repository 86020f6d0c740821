"""Pager text formatting and call construction.

Pagers only render ASCII, and the paging network caps a message at 160
characters, so every call text goes through ``sanitize_ascii`` and
``truncate_message`` before an ``OutboundCall`` is built.
"""

from __future__ import annotations

import re
import unicodedata

from core.config import CallConfig
from core.dedup import compute_fingerprint
from core.models import MAX_TEXT_LENGTH, CallFlags, CallVariant, OutboundCall, TalkEvent
from core.window import parse_start_time

ELLIPSIS = "..."

# Transliterations that NFKD decomposition alone would get wrong for German text.
_REPLACEMENTS = {
    "ä": "ae",
    "ö": "oe",
    "ü": "ue",
    "Ä": "Ae",
    "Ö": "Oe",
    "Ü": "Ue",
    "ß": "ss",
    "ẞ": "SS",
}


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def sanitize_ascii(text: str) -> str:
    """Transliterate to ASCII and drop anything that cannot be represented."""

    for source, target in _REPLACEMENTS.items():
        text = text.replace(source, target)
    decomposed = unicodedata.normalize("NFKD", text)
    ascii_text = decomposed.encode("ascii", "ignore").decode("ascii")
    return _collapse_whitespace(ascii_text)


def truncate_message(text: str, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Clip to ``max_length`` with an ellipsis, preferring a word boundary."""

    if len(text) <= max_length:
        return text
    truncated = text[: max_length - len(ELLIPSIS)]
    last_space = truncated.rfind(" ")
    if last_space > max_length - 20:
        truncated = truncated[:last_space]
    return f"{truncated.rstrip()}{ELLIPSIS}"


def format_message(talk: TalkEvent) -> str:
    """Return the ``"HH:MM, Room, Title"`` line for a talk.

    The clock time is taken in the start time's own offset, which is the
    venue's local time in the upstream schedule.
    """

    start = parse_start_time(talk.start_time)
    if start is None:
        raise ValueError(f"Cannot format talk with invalid start time: {talk.start_time!r}")
    room = (talk.room or "").strip()
    title = _collapse_whitespace(talk.title or "")
    return f"{start.strftime('%H:%M')}, {room}, {title}"


def pager_text(talk: TalkEvent) -> str:
    return truncate_message(sanitize_ascii(format_message(talk)))


def build_call(
    talk: TalkEvent,
    variant: CallVariant,
    recipient_id: str,
    call_config: CallConfig,
) -> OutboundCall:
    """Build a validated call for one talk/variant pair.

    Raises ValueError when the talk cannot be formatted or the configured
    call attributes are out of range.
    """

    return OutboundCall(
        recipient_id=recipient_id,
        text=pager_text(talk),
        priority=call_config.priority,
        expiration_seconds=call_config.expiration_seconds,
        flags=CallFlags(local=call_config.local, use_home_info=call_config.use_home_info),
        fingerprint=compute_fingerprint(talk, variant),
        variant=variant,
    )
