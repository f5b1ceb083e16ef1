"""Event type constants and realtime event naming.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover all event names clients can listen for.
Persistence events are named from a typed (entity, action) pair so the
wire name (persistence:Project:create) is always rendered the same way.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# ─── Channel events (client visible) ─────────────────────

REALTIME_EVENT = "realtime:event"  # generic envelope {event, payload, jobId, timestamp}
SOCKET_CONNECTED = "socket:connected"
SOCKET_DISCONNECTED = "socket:disconnected"

DEFAULT_SOURCE = "persistence"


# ─── Persistence operations ──────────────────────────────


class Action(str, Enum):
    """Operation kinds of the persistence client. Values are wire names."""

    CREATE = "create"
    CREATE_MANY = "createMany"
    UPDATE = "update"
    UPDATE_MANY = "updateMany"
    UPSERT = "upsert"
    DELETE = "delete"
    DELETE_MANY = "deleteMany"
    FIND_UNIQUE = "findUnique"
    FIND_MANY = "findMany"
    COUNT = "count"


MUTATION_ACTIONS = frozenset({
    Action.CREATE,
    Action.CREATE_MANY,
    Action.UPDATE,
    Action.UPDATE_MANY,
    Action.UPSERT,
    Action.DELETE,
    Action.DELETE_MANY,
})


class Entity(str, Enum):
    """Models whose changes are broadcast. Values match the ORM class names."""

    PROJECT = "Project"
    CERTIFICATE = "Certificate"
    SKILL = "Skill"
    CAREER = "Career"
    CONTACT = "Contact"
    SUBSCRIBER = "Subscriber"
    UNKNOWN = "unknown"

    @classmethod
    def from_model(cls, model: str | None) -> "Entity":
        try:
            return cls(model)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class EventName:
    """Wire name of a persistence event.

    `entity` is a plain model name only for models not listed in Entity.
    """

    entity: Entity | str
    action: Action
    source: str = DEFAULT_SOURCE

    def __str__(self) -> str:
        parts = [self.source] if self.source else []
        entity = self.entity.value if isinstance(self.entity, Entity) else self.entity
        parts += [entity, self.action.value]
        return ":".join(parts)


@dataclass
class EventDescriptor:
    """One completed mutation, ready to be queued."""

    name: EventName
    model: str
    action: Action
    args: Any = None
    result: Any = None
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    @property
    def payload(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "action": self.action.value,
            "args": self.args,
            "result": self.result,
            "timestamp": self.timestamp,
        }
