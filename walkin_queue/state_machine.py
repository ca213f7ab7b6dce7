from __future__ import annotations

# Queue State Machine.
#
#   (request) -> waiting -> called -> serving -> completed
#                   \         \
#                    +---------+--> cancelled   (owner only)
#
# `completed` and `cancelled` are terminal. Each transition is a single
# guarded write in the store (which also appends the action log entry), and
# the broadcast runs only after that write has succeeded.
#
# A failed guard raises a `QueueError` and leaves the ticket and counter
# exactly as they were.

import logging
from datetime import date, datetime, timezone, tzinfo
from typing import Callable

from .broadcaster import EventBroadcaster
from .coordinator import CounterCoordinator
from .directory import ServiceLookup
from .errors import ServiceNotFound, SystemUnavailable, ValidationError
from .models import (
    ACTION_CANCELLED,
    ACTION_COMPLETED,
    ACTION_STARTED,
    CALLED,
    CANCELLED,
    COMPLETED,
    SERVING,
    WAITING,
    Counter,
    MaintenanceMode,
    Ticket,
)
from .sequencer import service_day
from .store import QueueStore

logger = logging.getLogger(__name__)

NO_MAINTENANCE = MaintenanceMode()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QueueStateMachine:
    """Legal ticket transitions and their side effects."""

    def __init__(
        self,
        *,
        store: QueueStore,
        services: ServiceLookup,
        coordinator: CounterCoordinator | None = None,
        broadcaster: EventBroadcaster | None = None,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.services = services
        self.coordinator = coordinator or CounterCoordinator(store)
        self.broadcaster = broadcaster
        self.tz = tz
        self.clock = clock

    # -------------------- admission --------------------

    def request(self, user_id: str, service_id: str, maintenance: MaintenanceMode = NO_MAINTENANCE) -> Ticket:
        """Admit a user to a service queue as a new waiting ticket."""
        if not user_id:
            raise ValidationError("user_id is required")
        if not service_id:
            raise ValidationError("service_id is required")
        if maintenance.enabled:
            raise SystemUnavailable(
                maintenance.message or "System is currently under maintenance. Please try again later.",
                maintenance_mode=True,
            )

        service = self.services.get_service(service_id)
        if not service.is_active:
            raise ServiceNotFound("Service not found or inactive", service_id=service_id)

        now = self.clock()
        ticket = self.store.admit_ticket(
            user_id=user_id,
            service=service,
            requested_at=now,
            day=service_day(now, self.tz),
        )
        logger.info(
            "ticket %s admitted to %s for user %s (position %d)",
            ticket.queue_number,
            service_id,
            user_id,
            ticket.queue_position,
        )
        if self.broadcaster is not None:
            self.broadcaster.ticket_created(ticket)
        return ticket

    def next_ticket_number(self, service_id: str, day: date | None = None) -> str:
        """Number the next admission to `service_id` would receive on `day`."""
        service = self.services.get_service(service_id)
        return self.store.next_ticket_number(service, day or service_day(self.clock(), self.tz))

    # -------------------- counter actions --------------------

    def call_next(self, counter_id: str) -> tuple[Ticket, Counter]:
        """waiting -> called for the counter's next ticket in admission order."""
        ticket, counter = self.coordinator.claim_next(counter_id, at=self.clock())
        return self._called(ticket, counter)

    def call(self, counter_id: str, ticket_id: str) -> tuple[Ticket, Counter]:
        """waiting -> called for one specific ticket."""
        ticket, counter = self.coordinator.claim(counter_id, ticket_id, at=self.clock())
        return self._called(ticket, counter)

    def start(self, counter_id: str, ticket_id: str) -> tuple[Ticket, Counter]:
        """called -> serving."""
        ticket, counter = self.store.transition_ticket(
            ticket_id,
            expected={CALLED},
            to=SERVING,
            at=self.clock(),
            timestamp_field="started_serving_at",
            action=ACTION_STARTED,
            counter_id=counter_id,
        )
        logger.info("ticket %s serving at counter %s", ticket.queue_number, counter_id)
        if self.broadcaster is not None and counter is not None:
            self.broadcaster.serving_started(ticket, counter)
        return ticket, counter

    def complete(self, counter_id: str, ticket_id: str) -> tuple[Ticket, Counter | None]:
        """serving -> completed; the counter is cleared and reopened."""
        ticket, counter = self.coordinator.finish(
            ticket_id,
            counter_id=counter_id,
            expected=frozenset({SERVING}),
            to=COMPLETED,
            at=self.clock(),
            timestamp_field="completed_at",
            action=ACTION_COMPLETED,
            release="open",
        )
        logger.info("ticket %s completed at counter %s", ticket.queue_number, counter_id)
        if self.broadcaster is not None:
            self.broadcaster.ticket_completed(ticket, counter)
        return ticket, counter

    # -------------------- user actions --------------------

    def cancel(self, user_id: str, ticket_id: str) -> tuple[Ticket, Counter | None]:
        """waiting|called -> cancelled, by the ticket's owner.

        A called ticket's counter gets its slot back.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        ticket, counter = self.coordinator.finish(
            ticket_id,
            counter_id=None,
            user_id=user_id,
            expected=frozenset({WAITING, CALLED}),
            to=CANCELLED,
            at=self.clock(),
            timestamp_field="cancelled_at",
            action=ACTION_CANCELLED,
            release="if_busy",
        )
        logger.info("ticket %s cancelled by user %s", ticket.queue_number, user_id)
        if self.broadcaster is not None:
            self.broadcaster.ticket_cancelled(ticket, counter)
        return ticket, counter

    def _called(self, ticket: Ticket, counter: Counter) -> tuple[Ticket, Counter]:
        logger.info("ticket %s called to counter %s", ticket.queue_number, counter.counter_id)
        if self.broadcaster is not None:
            self.broadcaster.ticket_called(ticket, counter)
        return ticket, counter
