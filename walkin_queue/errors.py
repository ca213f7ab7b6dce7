"""Error taxonomy and the shared error envelope.

The core raises `QueueError` subclasses. The operations boundary and the MQTT
adapter turn them into `ErrorResponse` so every client sees the same
`{"type": "error", "code": ..., "message": ...}` shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str
    details: dict[str, Any] | None = None
    reason: str | None = None

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {"type": "error", "code": self.code, "message": self.message}
        if self.reason:
            msg["reason"] = self.reason
        if self.details:
            msg["details"] = dict(self.details)
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class QueueError(Exception):
    """Base class for every failure the queue core reports."""

    code = "queue_error"
    default_message = "Queue operation failed"
    # Finer-grained than `code`, for clients that react to one specific failure.
    reason: str | None = None

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(self.code, self.message, self.details or None, self.reason)


class ValidationError(QueueError):
    code = "validation_error"
    default_message = "Invalid input"


class InvalidCounterStatus(ValidationError):
    default_message = "Invalid counter status"


class NotFound(QueueError):
    code = "not_found"
    default_message = "Not found"


class ServiceNotFound(NotFound):
    default_message = "Service not found"


class TicketNotFound(NotFound):
    default_message = "Ticket not found"


class CounterNotFound(NotFound):
    default_message = "Counter not found"
    reason = "counter_not_found"


class NoWaitingTickets(NotFound):
    default_message = "No waiting tickets available"
    reason = "no_waiting_tickets"


class InvalidTransition(QueueError):
    code = "invalid_transition"
    default_message = "Transition not allowed from the ticket's current state"


class CounterMismatch(QueueError):
    code = "counter_mismatch"
    default_message = "Ticket is not assigned to this counter"


class CounterBusy(QueueError):
    code = "counter_busy"
    default_message = "Counter is already serving a ticket"


class DuplicateActiveTicket(QueueError):
    code = "duplicate_active_ticket"
    default_message = "You already have an active ticket for this service"


class QueueFull(QueueError):
    code = "queue_full"
    default_message = "The queue for this service is full"


class SystemUnavailable(QueueError):
    code = "system_unavailable"
    default_message = "System is currently unavailable. Please try again later."


class StoreUnavailable(SystemUnavailable):
    default_message = "Queue store did not respond in time"
