from __future__ import annotations

# Ticket numbering and admission-time position helpers.
#
# Ticket numbers look like `REG-001`:
# - the prefix comes from the service (explicit `queue_prefix`, else the first
#   three letters of the name)
# - the numeric part restarts every service day and is zero-padded to 3 digits
#   (it simply widens past 999: `REG-1000`)
#
# These functions are pure. The store calls them inside its critical section
# so that "scan the day's numbers" and "insert the new ticket" happen as one
# atomic step.

from datetime import date, datetime, tzinfo
from typing import Iterable

from .errors import ValidationError
from .models import Service, Ticket

NUMBER_WIDTH = 3


def queue_prefix(service: Service) -> str:
    """Return the ticket prefix for a service."""
    explicit = (service.queue_prefix or "").strip()
    if explicit:
        return explicit.upper()
    derived = service.name.strip()[:3].upper()
    if not derived:
        raise ValidationError("Service has neither a queue prefix nor a name", service_id=service.service_id)
    return derived


def format_queue_number(prefix: str, number: int) -> str:
    if number < 1:
        raise ValueError("number must be >= 1")
    return f"{prefix}-{number:0{NUMBER_WIDTH}d}"


def parse_suffix(queue_number: str, prefix: str) -> int | None:
    """Numeric part of `queue_number` when it carries `prefix`, else None."""
    head, sep, tail = queue_number.rpartition("-")
    if not sep or head != prefix or not tail.isdigit():
        return None
    return int(tail)


def next_queue_number(prefix: str, existing: Iterable[str]) -> str:
    """Next number after the highest suffix already issued with `prefix`."""
    highest = 0
    for number in existing:
        suffix = parse_suffix(number, prefix)
        if suffix is not None and suffix > highest:
            highest = suffix
    return format_queue_number(prefix, highest + 1)


def service_day(ts: datetime, tz: tzinfo) -> date:
    """Calendar day of `ts` in the operating timezone.

    Naive timestamps are taken to already be in operating time.
    """
    if ts.tzinfo is None:
        return ts.date()
    return ts.astimezone(tz).date()


def position_for(waiting_count: int) -> int:
    """Admission position: queue depth at the moment of admission, plus one."""
    return waiting_count + 1


def estimated_wait_minutes(base_minutes: int, position: int) -> int:
    """Linear estimate frozen at admission; not recomputed as the queue moves."""
    return max(0, int(base_minutes)) * position


def waiting_order_key(ticket: Ticket) -> tuple[int, datetime, str]:
    """Sort key for waiting tickets: admission position, then request time.

    The ticket id is a last-resort tie-break so ordering is total.
    """
    return (ticket.queue_position, ticket.requested_at, ticket.ticket_id)
