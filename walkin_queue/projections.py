from __future__ import annotations

# Read projections derived from the store: display-board status, live rank,
# user history and per-counter statistics. Nothing here writes.

from dataclasses import asdict, dataclass
from datetime import date
from typing import Any

from .models import ACTIVE_STATUSES, CALLED, CANCELLED, COMPLETED, SERVING, WAITING, Ticket
from .sequencer import waiting_order_key
from .store import QueueStore

_DISPLAY_ORDER = {SERVING: 0, CALLED: 1, WAITING: 2}


@dataclass(frozen=True)
class ServiceQueueStatus:
    service_id: str
    waiting_count: int
    called_count: int
    serving_count: int
    current_serving: str | None
    next_position: int | None
    average_wait_time: int | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class QueueProjections:
    def __init__(self, store: QueueStore) -> None:
        self.store = store

    def service_queue_status(self, service_id: str) -> ServiceQueueStatus:
        active = self.store.service_tickets(service_id, ACTIVE_STATUSES)
        waiting = [t for t in active if t.status == WAITING]
        called = [t for t in active if t.status == CALLED]
        serving = [t for t in active if t.status == SERVING]
        avg = None
        if waiting:
            avg = round(sum(t.estimated_wait_time for t in waiting) / len(waiting))
        return ServiceQueueStatus(
            service_id=service_id,
            waiting_count=len(waiting),
            called_count=len(called),
            serving_count=len(serving),
            current_serving=_current_serving(serving, called),
            next_position=min((t.queue_position for t in waiting), default=None),
            average_wait_time=avg,
        )

    def active_entries(self, service_id: str) -> list[Ticket]:
        """Non-terminal tickets: serving first, then called, then waiting."""
        active = self.store.service_tickets(service_id, ACTIVE_STATUSES)
        return sorted(active, key=lambda t: (_DISPLAY_ORDER[t.status], *waiting_order_key(t)))

    def current_rank(self, ticket_id: str) -> int | None:
        """Live 1-based rank among waiting tickets; None once called or closed."""
        ticket = self.store.get_ticket(ticket_id)
        if ticket.status != WAITING:
            return None
        ahead = self.store.waiting_tickets(ticket.service_id)
        for rank, other in enumerate(ahead, start=1):
            if other.ticket_id == ticket_id:
                return rank
        return None

    def user_history(self, user_id: str, *, limit: int = 20, offset: int = 0) -> dict[str, Any]:
        tickets = sorted(self.store.user_tickets(user_id), key=lambda t: t.requested_at, reverse=True)
        return {
            "tickets": tickets[offset : offset + limit],
            "total": len(tickets),
            "limit": limit,
            "offset": offset,
        }

    def counter_stats(self, counter_id: str, day: date | None = None) -> dict[str, Any]:
        tickets = self.store.counter_tickets(counter_id)
        if day is not None:
            tickets = [t for t in tickets if t.service_day == day]
        durations = [
            (t.completed_at - t.started_serving_at).total_seconds() / 60.0
            for t in tickets
            if t.status == COMPLETED and t.completed_at and t.started_serving_at
        ]
        return {
            "counter_id": counter_id,
            "completed": sum(1 for t in tickets if t.status == COMPLETED),
            "cancelled": sum(1 for t in tickets if t.status == CANCELLED),
            "avg_service_time": sum(durations) / len(durations) if durations else None,
            "min_service_time": min(durations) if durations else None,
            "max_service_time": max(durations) if durations else None,
        }


def _current_serving(serving: list[Ticket], called: list[Ticket]) -> str | None:
    # Most recently started ticket wins; fall back to the most recent call.
    if serving:
        return max(serving, key=lambda t: t.started_serving_at or t.requested_at).queue_number
    if called:
        return max(called, key=lambda t: t.called_at or t.requested_at).queue_number
    return None
