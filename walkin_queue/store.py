from __future__ import annotations

# Queue Store: the source of truth for tickets, counters and the action log.
#
# Every method runs as one critical section against the store. The operations
# that need cross-request mutual exclusion are *single* methods here, never a
# read followed by a separate write:
# - `admit_ticket`        duplicate check + numbering + position + insert
# - `claim_next_waiting`  find the next waiting ticket and claim it for a counter
# - `claim_ticket`        claim one specific waiting ticket
# - `transition_ticket`   conditional update on the expected status/counter/owner
# - `assign_counter`      fill a counter's slot only if it is empty
#
# The lock is acquired with a timeout. If the store cannot be reached in time
# the caller gets `StoreUnavailable` instead of hanging.

import contextlib
import dataclasses
import logging
import threading
import uuid
from datetime import date, datetime
from typing import Iterable, Iterator

from .errors import (
    CounterBusy,
    CounterMismatch,
    CounterNotFound,
    DuplicateActiveTicket,
    InvalidCounterStatus,
    InvalidTransition,
    NoWaitingTickets,
    QueueFull,
    StoreUnavailable,
    TicketNotFound,
    ValidationError,
)
from .models import (
    ACTION_CALLED,
    ACTION_CREATED,
    ACTIVE_STATUSES,
    BUSY,
    CALLED,
    CLOSED,
    COUNTER_STATUSES,
    OPEN,
    WAITING,
    Counter,
    MetadataValue,
    QueueAction,
    Service,
    Ticket,
)
from .sequencer import (
    estimated_wait_minutes,
    next_queue_number,
    position_for,
    queue_prefix,
    waiting_order_key,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0

_PRIMITIVES = (str, int, float, bool, type(None))


def _copy(record):
    return dataclasses.replace(record) if record is not None else None


class QueueStore:
    """In-memory queue store with atomic check-and-set operations."""

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout
        self._lock = threading.Lock()
        self._tickets: dict[str, Ticket] = {}
        self._service_tickets: dict[str, list[str]] = {}
        self._counters: dict[str, Counter] = {}
        self._actions: list[QueueAction] = []

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.timeout):
            logger.error("queue store lock not acquired within %.1fs", self.timeout)
            raise StoreUnavailable()
        try:
            yield
        finally:
            self._lock.release()

    # -------------------- tickets: atomic writes --------------------

    def admit_ticket(
        self,
        *,
        user_id: str,
        service: Service,
        requested_at: datetime,
        day: date,
    ) -> Ticket:
        """Insert a new waiting ticket with its number, position and estimate."""
        with self._locked():
            existing = self._find_active(user_id, service.service_id)
            if existing is not None:
                raise DuplicateActiveTicket(ticket_id=existing.ticket_id, queue_number=existing.queue_number)

            waiting = self._count(service.service_id, WAITING)
            if service.max_queue_size and waiting >= service.max_queue_size:
                raise QueueFull(service_id=service.service_id, max_queue_size=service.max_queue_size)

            number = self._next_number(service, day)
            position = position_for(waiting)
            ticket = Ticket(
                ticket_id=uuid.uuid4().hex,
                user_id=user_id,
                service_id=service.service_id,
                queue_number=number,
                queue_position=position,
                service_day=day,
                requested_at=requested_at,
                estimated_wait_time=estimated_wait_minutes(service.estimated_service_time, position),
            )
            self._tickets[ticket.ticket_id] = ticket
            self._service_tickets.setdefault(service.service_id, []).append(ticket.ticket_id)
            self._log(ticket, None, ACTION_CREATED, requested_at)
            return _copy(ticket)

    def claim_next_waiting(self, counter_id: str, *, at: datetime) -> tuple[Ticket, Counter]:
        """Claim the lowest (queue_position, requested_at) waiting ticket for a counter."""
        with self._locked():
            counter = self._callable_counter(counter_id)
            candidates = self._with_status(counter.service_id, WAITING)
            if not candidates:
                raise NoWaitingTickets(service_id=counter.service_id)
            ticket = min(candidates, key=waiting_order_key)
            self._claim(ticket, counter, at)
            return _copy(ticket), _copy(counter)

    def claim_ticket(self, counter_id: str, ticket_id: str, *, at: datetime) -> tuple[Ticket, Counter]:
        """Claim one specific waiting ticket for a counter of the same service."""
        with self._locked():
            self._counter(counter_id)
            ticket = self._ticket(ticket_id)
            self._guard_not_terminal(ticket, CALLED)
            counter = self._callable_counter(counter_id)
            if ticket.service_id != counter.service_id:
                raise CounterMismatch(
                    "Ticket belongs to a different service than this counter",
                    ticket_id=ticket_id,
                    counter_id=counter_id,
                )
            if ticket.status != WAITING:
                raise InvalidTransition(
                    f"Ticket {ticket.queue_number} is {ticket.status}, not waiting",
                    ticket_id=ticket_id,
                    status=ticket.status,
                )
            self._claim(ticket, counter, at)
            return _copy(ticket), _copy(counter)

    def transition_ticket(
        self,
        ticket_id: str,
        *,
        expected: Iterable[str],
        to: str,
        at: datetime,
        timestamp_field: str,
        action: str,
        counter_id: str | None = None,
        user_id: str | None = None,
        release: str | None = None,
    ) -> tuple[Ticket, Counter | None]:
        """Move a ticket to `to` only if every guard still holds.

        `counter_id` requires the ticket to be held by that counter and
        `user_id` requires ownership. `release` is "open" to clear the holding
        counter and reopen it, or "if_busy" to clear it and reopen only a busy
        counter. Returns the updated ticket and the holding counter, if any.
        """
        expected = frozenset(expected)
        with self._locked():
            ticket = self._ticket(ticket_id)
            self._guard_not_terminal(ticket, to)
            if user_id is not None and ticket.user_id != user_id:
                raise InvalidTransition("Ticket does not belong to this user", ticket_id=ticket_id)
            if counter_id is not None:
                self._counter(counter_id)
                if ticket.counter_id != counter_id:
                    raise CounterMismatch(ticket_id=ticket_id, counter_id=counter_id)
            if ticket.status not in expected:
                raise InvalidTransition(
                    f"Ticket {ticket.queue_number} cannot go from {ticket.status} to {to}",
                    ticket_id=ticket_id,
                    status=ticket.status,
                )

            ticket.status = to
            setattr(ticket, timestamp_field, at)

            counter = self._counters.get(ticket.counter_id) if ticket.counter_id else None
            if counter is not None and release and counter.current_serving_ticket == ticket.ticket_id:
                counter.current_serving_ticket = None
                if release == "open" or counter.status == BUSY:
                    counter.status = OPEN
            self._log(ticket, ticket.counter_id, action, at)
            return _copy(ticket), _copy(counter)

    # -------------------- tickets: reads --------------------

    def get_ticket(self, ticket_id: str) -> Ticket:
        with self._locked():
            return _copy(self._ticket(ticket_id))

    def find_active_ticket(self, user_id: str, service_id: str) -> Ticket | None:
        with self._locked():
            return _copy(self._find_active(user_id, service_id))

    def find_next_waiting(self, service_id: str) -> Ticket | None:
        with self._locked():
            candidates = self._with_status(service_id, WAITING)
            return _copy(min(candidates, key=waiting_order_key)) if candidates else None

    def waiting_tickets(self, service_id: str) -> list[Ticket]:
        """Waiting tickets in call order."""
        with self._locked():
            return [_copy(t) for t in sorted(self._with_status(service_id, WAITING), key=waiting_order_key)]

    def service_tickets(self, service_id: str, statuses: Iterable[str] | None = None) -> list[Ticket]:
        wanted = frozenset(statuses) if statuses is not None else None
        with self._locked():
            return [
                _copy(t)
                for t in self._iter_service(service_id)
                if wanted is None or t.status in wanted
            ]

    def user_tickets(self, user_id: str) -> list[Ticket]:
        with self._locked():
            return [_copy(t) for t in self._tickets.values() if t.user_id == user_id]

    def counter_tickets(self, counter_id: str) -> list[Ticket]:
        with self._locked():
            return [_copy(t) for t in self._tickets.values() if t.counter_id == counter_id]

    def waiting_count(self, service_id: str) -> int:
        with self._locked():
            return self._count(service_id, WAITING)

    def next_ticket_number(self, service: Service, day: date) -> str:
        """Number the next admission would get. Admission itself is atomic."""
        with self._locked():
            return self._next_number(service, day)

    # -------------------- counters --------------------

    def add_counter(self, counter: Counter) -> Counter:
        """Create or update a counter. An occupied slot is kept as is."""
        if counter.status not in COUNTER_STATUSES:
            raise InvalidCounterStatus(status=counter.status)
        with self._locked():
            current = self._counters.get(counter.counter_id)
            stored = _copy(counter)
            if current is not None and current.current_serving_ticket:
                if current.service_id != counter.service_id:
                    raise CounterBusy(
                        "Counter cannot change service while serving a ticket",
                        counter_id=counter.counter_id,
                    )
                stored.current_serving_ticket = current.current_serving_ticket
                stored.status = current.status
            elif stored.current_serving_ticket:
                raise ValidationError("New counters start with an empty slot", counter_id=counter.counter_id)
            self._counters[counter.counter_id] = stored
            return _copy(stored)

    def get_counter(self, counter_id: str) -> Counter:
        with self._locked():
            return _copy(self._counter(counter_id))

    def counters(self, service_id: str | None = None) -> list[Counter]:
        with self._locked():
            found = [
                _copy(c)
                for c in self._counters.values()
                if service_id is None or c.service_id == service_id
            ]
        return sorted(found, key=lambda c: (c.service_id, c.counter_number))

    def assign_counter(self, counter_id: str, ticket_id: str) -> Counter:
        """Point an empty counter slot at a ticket of its service."""
        with self._locked():
            counter = self._counter(counter_id)
            ticket = self._ticket(ticket_id)
            if ticket.service_id != counter.service_id:
                raise CounterMismatch(
                    "Ticket belongs to a different service than this counter",
                    ticket_id=ticket_id,
                    counter_id=counter_id,
                )
            self._guard_assignable(counter, ticket)
            counter.current_serving_ticket = ticket.ticket_id
            counter.status = BUSY
            return _copy(counter)

    def release_counter(self, counter_id: str) -> Counter:
        """Clear a counter slot. A ticket the counter called or serves must finish first."""
        with self._locked():
            counter = self._counter(counter_id)
            held = self._tickets.get(counter.current_serving_ticket or "")
            if held is not None and held.counter_id == counter_id and not held.is_terminal:
                raise CounterBusy(
                    f"Ticket {held.queue_number} is still {held.status} at this counter",
                    counter_id=counter_id,
                    ticket_id=held.ticket_id,
                )
            counter.current_serving_ticket = None
            counter.status = OPEN
            return _copy(counter)

    def set_counter_status(self, counter_id: str, status: str) -> Counter:
        if status not in COUNTER_STATUSES:
            raise InvalidCounterStatus(status=status)
        with self._locked():
            counter = self._counter(counter_id)
            counter.status = status
            return _copy(counter)

    # -------------------- action log --------------------

    def append_action(self, action: QueueAction) -> None:
        _check_metadata(action.metadata)
        with self._locked():
            self._actions.append(action)

    def actions(self, *, ticket_id: str | None = None, service_id: str | None = None) -> list[QueueAction]:
        with self._locked():
            return [
                a
                for a in self._actions
                if (ticket_id is None or a.ticket_id == ticket_id)
                and (service_id is None or a.service_id == service_id)
            ]

    # -------------------- internals (lock held) --------------------

    def _ticket(self, ticket_id: str) -> Ticket:
        ticket = self._tickets.get(ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id=ticket_id)
        return ticket

    def _counter(self, counter_id: str) -> Counter:
        counter = self._counters.get(counter_id)
        if counter is None:
            raise CounterNotFound(counter_id=counter_id)
        return counter

    def _iter_service(self, service_id: str) -> Iterator[Ticket]:
        for ticket_id in self._service_tickets.get(service_id, ()):
            yield self._tickets[ticket_id]

    def _with_status(self, service_id: str, status: str) -> list[Ticket]:
        return [t for t in self._iter_service(service_id) if t.status == status]

    def _count(self, service_id: str, status: str) -> int:
        return sum(1 for t in self._iter_service(service_id) if t.status == status)

    def _find_active(self, user_id: str, service_id: str) -> Ticket | None:
        for ticket in self._iter_service(service_id):
            if ticket.user_id == user_id and ticket.status in ACTIVE_STATUSES:
                return ticket
        return None

    def _next_number(self, service: Service, day: date) -> str:
        numbers = (t.queue_number for t in self._iter_service(service.service_id) if t.service_day == day)
        return next_queue_number(queue_prefix(service), numbers)

    def _guard_not_terminal(self, ticket: Ticket, to: str) -> None:
        if ticket.is_terminal:
            raise InvalidTransition(
                f"Ticket {ticket.queue_number} is {ticket.status}, it cannot go to {to}",
                ticket_id=ticket.ticket_id,
                status=ticket.status,
            )

    def _callable_counter(self, counter_id: str) -> Counter:
        counter = self._counter(counter_id)
        if counter.status == CLOSED:
            raise InvalidTransition("Counter is closed", counter_id=counter_id)
        if counter.current_serving_ticket:
            raise CounterBusy(counter_id=counter_id, ticket_id=counter.current_serving_ticket)
        return counter

    def _guard_assignable(self, counter: Counter, ticket: Ticket) -> None:
        if counter.current_serving_ticket:
            raise CounterBusy(counter_id=counter.counter_id, ticket_id=counter.current_serving_ticket)
        for other in self._counters.values():
            if other.current_serving_ticket == ticket.ticket_id:
                raise CounterBusy(
                    "Ticket is already assigned to another counter",
                    counter_id=other.counter_id,
                    ticket_id=ticket.ticket_id,
                )

    def _claim(self, ticket: Ticket, counter: Counter, at: datetime) -> None:
        self._guard_assignable(counter, ticket)
        ticket.status = CALLED
        ticket.counter_id = counter.counter_id
        ticket.called_at = at
        counter.current_serving_ticket = ticket.ticket_id
        counter.status = BUSY
        self._log(ticket, counter.counter_id, ACTION_CALLED, at)

    def _log(self, ticket: Ticket, counter_id: str | None, action: str, at: datetime) -> None:
        self._actions.append(
            QueueAction(
                ticket_id=ticket.ticket_id,
                service_id=ticket.service_id,
                counter_id=counter_id,
                action=action,
                at=at,
                metadata={"queue_number": ticket.queue_number},
            )
        )


def _check_metadata(metadata: dict[str, MetadataValue]) -> None:
    for key, value in metadata.items():
        if not isinstance(key, str) or not isinstance(value, _PRIMITIVES):
            raise ValidationError("Action metadata must map strings to primitive values", key=str(key))
