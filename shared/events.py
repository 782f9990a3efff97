from enum import Enum
from dataclasses import dataclass
from typing import Optional
import json

from . import clock


class EventType(str, Enum):
    # Tournament lifecycle
    STATE_CHANGED = "state.changed"

    # User notifications
    NOTIFICATION_CREATED = "notification.created"


@dataclass
class Event:
    type: EventType
    target_id: str
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = clock.utcnow().isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "target_id": self.target_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def state_changed_event(tournament_id, from_state: str, to_state: str) -> Event:
    return Event(
        type=EventType.STATE_CHANGED,
        target_id=str(tournament_id),
        data={
            "from_state": from_state,
            "to_state": to_state
        }
    )


def notification_event(user_id, notification: dict, link_url: Optional[str] = None) -> Event:
    return Event(
        type=EventType.NOTIFICATION_CREATED,
        target_id=str(user_id),
        data={
            "notification": notification,
            "link_url": link_url
        }
    )
