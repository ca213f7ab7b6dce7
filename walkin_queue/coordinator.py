"""Counter Coordinator.

Tracks counter availability and matches counters to the next eligible ticket.
It is the only component that fills or clears `Counter.current_serving_ticket`;
each of those changes is one guarded update in the store.
"""

from __future__ import annotations

import logging
from datetime import datetime

from .errors import InvalidCounterStatus, ValidationError
from .models import CLOSED, COUNTER_STATUSES, Counter, Ticket
from .store import QueueStore

logger = logging.getLogger(__name__)


class CounterCoordinator:
    def __init__(self, store: QueueStore) -> None:
        self.store = store

    def register_counter(
        self,
        counter_id: str,
        *,
        service_id: str,
        counter_number: int,
        name: str = "",
        status: str = CLOSED,
    ) -> Counter:
        """Create or update a counter bound to exactly one service."""
        if not counter_id:
            raise ValidationError("counter_id is required")
        if not service_id:
            raise ValidationError("service_id is required", counter_id=counter_id)
        counter = self.store.add_counter(
            Counter(
                counter_id=counter_id,
                service_id=service_id,
                counter_number=int(counter_number),
                name=name,
                status=status,
            )
        )
        logger.info("counter %s registered for service %s (%s)", counter_id, service_id, counter.status)
        return counter

    def get(self, counter_id: str) -> Counter:
        return self.store.get_counter(counter_id)

    def counters(self, service_id: str | None = None) -> list[Counter]:
        return self.store.counters(service_id)

    def find_next_waiting(self, service_id: str) -> Ticket | None:
        """Peek at the ticket the next call would claim. Claiming is `claim_next`."""
        return self.store.find_next_waiting(service_id)

    def claim_next(self, counter_id: str, *, at: datetime) -> tuple[Ticket, Counter]:
        return self.store.claim_next_waiting(counter_id, at=at)

    def claim(self, counter_id: str, ticket_id: str, *, at: datetime) -> tuple[Ticket, Counter]:
        return self.store.claim_ticket(counter_id, ticket_id, at=at)

    def assign(self, counter_id: str, ticket_id: str) -> Counter:
        """Point an empty counter at a ticket; fails with CounterBusy otherwise."""
        counter = self.store.assign_counter(counter_id, ticket_id)
        logger.info("counter %s assigned ticket %s", counter_id, ticket_id)
        return counter

    def release(self, counter_id: str) -> Counter:
        """Clear a slot filled by `assign`; fails with CounterBusy while a claimed ticket is in flight."""
        counter = self.store.release_counter(counter_id)
        logger.info("counter %s released", counter_id)
        return counter

    def set_status(self, counter_id: str, status: str) -> Counter:
        if status not in COUNTER_STATUSES:
            raise InvalidCounterStatus(
                f"Invalid counter status {status!r}; expected one of {', '.join(COUNTER_STATUSES)}",
                status=status,
            )
        counter = self.store.set_counter_status(counter_id, status)
        logger.info("counter %s status -> %s", counter_id, status)
        return counter

    def finish(
        self,
        ticket_id: str,
        *,
        counter_id: str | None,
        user_id: str | None = None,
        expected: frozenset[str],
        to: str,
        at: datetime,
        timestamp_field: str,
        action: str,
        release: str,
    ) -> tuple[Ticket, Counter | None]:
        """Move a ticket out of a counter's hands and free the counter slot."""
        return self.store.transition_ticket(
            ticket_id,
            expected=expected,
            to=to,
            at=at,
            timestamp_field=timestamp_field,
            action=action,
            counter_id=counter_id,
            user_id=user_id,
            release=release,
        )
