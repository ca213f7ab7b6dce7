"""Records handled by the queue core.

Tickets, counters and action log entries are plain dataclasses. The store
hands out copies, so mutating a returned record never changes stored state;
changes go through the state machine.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time
from typing import Any, Union

# Ticket statuses.
WAITING = "waiting"
CALLED = "called"
SERVING = "serving"
COMPLETED = "completed"
CANCELLED = "cancelled"

ACTIVE_STATUSES = frozenset({WAITING, CALLED, SERVING})
TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED})

# Counter statuses.
OPEN = "open"
BUSY = "busy"
CLOSED = "closed"
BREAK = "break"

COUNTER_STATUSES = (OPEN, BUSY, CLOSED, BREAK)

# Action log entries.
ACTION_CREATED = "created"
ACTION_CALLED = "called"
ACTION_STARTED = "started"
ACTION_COMPLETED = "completed"
ACTION_CANCELLED = "cancelled"

MetadataValue = Union[str, int, float, bool, None]


@dataclass(frozen=True)
class Service:
    """A service users queue for. Owned by the admin side, read by the core."""

    service_id: str
    name: str
    queue_prefix: str | None = None
    estimated_service_time: int = 5  # minutes per ticket
    max_queue_size: int = 0  # 0 means unlimited
    is_active: bool = True
    opens_at: time | None = None
    closes_at: time | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, default_service_minutes: int = 5) -> Service:
        def _time(value: Any) -> time | None:
            return time.fromisoformat(value) if value else None

        return cls(
            service_id=str(data["id"]),
            name=str(data["name"]),
            queue_prefix=data.get("queue_prefix") or data.get("prefix"),
            estimated_service_time=int(data.get("estimated_service_time") or default_service_minutes),
            max_queue_size=int(data.get("max_queue_size", 0) or 0),
            is_active=bool(data.get("is_active", True)),
            opens_at=_time(data.get("opens_at")),
            closes_at=_time(data.get("closes_at")),
        )


@dataclass
class Ticket:
    ticket_id: str
    user_id: str
    service_id: str
    queue_number: str
    queue_position: int
    service_day: date
    requested_at: datetime
    estimated_wait_time: int  # minutes
    status: str = WAITING
    counter_id: str | None = None
    called_at: datetime | None = None
    started_serving_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass
class Counter:
    counter_id: str
    service_id: str
    counter_number: int
    name: str = ""
    status: str = CLOSED
    current_serving_ticket: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or f"Counter {self.counter_number}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class QueueAction:
    """Append-only audit record written on every transition."""

    ticket_id: str
    service_id: str
    counter_id: str | None
    action: str
    at: datetime
    metadata: dict[str, MetadataValue] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class MaintenanceMode:
    """Read-only snapshot of the system-wide maintenance flag."""

    enabled: bool = False
    message: str = ""


def _jsonable(data: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, (datetime, date)):
            out[key] = value.isoformat()
        else:
            out[key] = value
    return out
