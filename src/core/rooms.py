"""Large-room set and the static room-to-recipient directory."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional

from core.models import CallVariant, TalkEvent

LARGE_ROOMS = ("One", "Ground", "Zero", "Fuse")

# Subscriber ids default to the RICs the venue pagers are programmed with.
DEFAULT_ROOM_SUBSCRIBERS = {
    "Zero": "1140",
    "One": "1141",
    "Ground": "1142",
    "Fuse": "1143",
}
DEFAULT_BROADCAST_SUBSCRIBER = "1150"


def is_large_room(room: Optional[str]) -> bool:
    """Return True when the room is one of the paging-enabled venues."""

    if not room:
        return False
    return room.strip() in LARGE_ROOMS


def filter_large_rooms(talks: Iterable[TalkEvent]) -> List[TalkEvent]:
    return [talk for talk in talks if is_large_room(talk.room)]


@dataclass(frozen=True)
class RoomDirectory:
    """Resolve the pager recipient for a room or for the all-rooms broadcast."""

    subscribers: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_ROOM_SUBSCRIBERS))
    broadcast: str = DEFAULT_BROADCAST_SUBSCRIBER

    def recipient_for_room(self, room: Optional[str]) -> Optional[str]:
        if not is_large_room(room):
            return None
        subscriber = self.subscribers.get(room.strip())
        if subscriber is None:
            return None
        subscriber = str(subscriber).strip()
        return subscriber or None

    def broadcast_recipient(self) -> Optional[str]:
        subscriber = str(self.broadcast or "").strip()
        return subscriber or None

    def recipient_for(self, talk: TalkEvent, variant: CallVariant) -> Optional[str]:
        if variant is CallVariant.ALL_ROOMS:
            return self.broadcast_recipient()
        return self.recipient_for_room(talk.room)

    def is_broadcast(self, recipient_id: Optional[str]) -> bool:
        broadcast = self.broadcast_recipient()
        return broadcast is not None and recipient_id == broadcast
