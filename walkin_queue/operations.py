from __future__ import annotations

# Operations boundary.
#
# One explicit method per use case. Adapters (the MQTT service, a web layer,
# tests) call these instead of routing on verbs and paths inside the core.
#
# Every method returns an `OperationResult`. Domain failures come back as
# their error kind + message, and anything unexpected from the store is
# reported as `system_unavailable`. Nothing is retried here; retry policy
# belongs to the caller.

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Callable

from .broadcaster import EventBroadcaster, EventSink
from .coordinator import CounterCoordinator
from .directory import ServiceLookup
from .errors import ErrorResponse, QueueError, SystemUnavailable, ValidationError
from .models import CLOSED, Counter, MaintenanceMode, Ticket
from .projections import QueueProjections
from .state_machine import NO_MAINTENANCE, QueueStateMachine, utc_now
from .store import DEFAULT_TIMEOUT, QueueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationResult:
    ok: bool
    kind: str
    data: dict[str, Any] | None = None
    error: ErrorResponse | None = None

    @classmethod
    def success(cls, kind: str, data: dict[str, Any]) -> OperationResult:
        return cls(ok=True, kind=kind, data=data)

    @classmethod
    def failure(cls, kind: str, error: ErrorResponse) -> OperationResult:
        return cls(ok=False, kind=kind, error=error)

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        if self.error is not None:
            return self.error.to_message(corr_id=corr_id)
        msg: dict[str, Any] = {"type": self.kind, **(self.data or {})}
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class QueueService:
    """The queue engine as a set of typed operations."""

    def __init__(
        self,
        *,
        store: QueueStore,
        services: ServiceLookup,
        sink: EventSink | None = None,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.services = services
        self.projections = QueueProjections(store)
        self.coordinator = CounterCoordinator(store)
        self.broadcaster = EventBroadcaster(sink, self.projections, clock=clock) if sink is not None else None
        self.machine = QueueStateMachine(
            store=store,
            services=services,
            coordinator=self.coordinator,
            broadcaster=self.broadcaster,
            tz=tz,
            clock=clock,
        )

    @classmethod
    def in_memory(
        cls,
        services: ServiceLookup,
        *,
        sink: EventSink | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = utc_now,
    ) -> QueueService:
        return cls(store=QueueStore(timeout=timeout), services=services, sink=sink, tz=tz, clock=clock)

    # -------------------- users --------------------

    def request_ticket(
        self,
        user_id: str,
        service_id: str,
        maintenance: MaintenanceMode = NO_MAINTENANCE,
    ) -> OperationResult:
        def run() -> dict[str, Any]:
            ticket = self.machine.request(user_id, service_id, maintenance)
            service = self.services.get_service(service_id)
            return {"ticket": ticket.to_dict(), "service_name": service.name}

        return self._run("ticket_created", run)

    def cancel_ticket(self, user_id: str, ticket_id: str) -> OperationResult:
        return self._run("ticket_cancelled", lambda: self._ticket_payload(*self.machine.cancel(user_id, ticket_id)))

    def ticket_status(self, ticket_id: str) -> OperationResult:
        def run() -> dict[str, Any]:
            ticket = self.store.get_ticket(ticket_id)
            return {"ticket": ticket.to_dict(), "current_rank": self.projections.current_rank(ticket_id)}

        return self._run("ticket_status", run)

    def queue_history(self, user_id: str, *, limit: int = 20, offset: int = 0) -> OperationResult:
        def run() -> dict[str, Any]:
            if limit < 1 or offset < 0:
                raise ValidationError("limit must be >= 1 and offset >= 0")
            history = self.projections.user_history(user_id, limit=limit, offset=offset)
            history["tickets"] = [t.to_dict() for t in history["tickets"]]
            return history

        return self._run("queue_history", run)

    # -------------------- services --------------------

    def service_status(self, service_id: str) -> OperationResult:
        def run() -> dict[str, Any]:
            service = self.services.get_service(service_id)
            status = self.projections.service_queue_status(service_id).to_dict()
            status["service_name"] = service.name
            return status

        return self._run("service_status", run)

    def next_ticket_number(self, service_id: str, day: date | None = None) -> OperationResult:
        return self._run(
            "next_ticket_number",
            lambda: {"service_id": service_id, "queue_number": self.machine.next_ticket_number(service_id, day)},
        )

    # -------------------- counters --------------------

    def register_counter(
        self,
        counter_id: str,
        *,
        service_id: str,
        counter_number: int,
        name: str = "",
        status: str = CLOSED,
    ) -> OperationResult:
        def run() -> dict[str, Any]:
            self.services.get_service(service_id)
            counter = self.coordinator.register_counter(
                counter_id, service_id=service_id, counter_number=counter_number, name=name, status=status
            )
            return {"counter": counter.to_dict()}

        return self._run("counter_registered", run)

    def set_counter_status(self, counter_id: str, status: str) -> OperationResult:
        def run() -> dict[str, Any]:
            counter = self.coordinator.set_status(counter_id, status)
            if self.broadcaster is not None:
                self.broadcaster.counter_changed(counter)
            return {"counter": counter.to_dict()}

        return self._run("counter_status", run)

    def call_next(self, counter_id: str) -> OperationResult:
        return self._run("ticket_called", lambda: self._ticket_payload(*self.machine.call_next(counter_id)))

    def call_ticket(self, counter_id: str, ticket_id: str) -> OperationResult:
        return self._run("ticket_called", lambda: self._ticket_payload(*self.machine.call(counter_id, ticket_id)))

    def start_serving(self, counter_id: str, ticket_id: str) -> OperationResult:
        return self._run("serving_started", lambda: self._ticket_payload(*self.machine.start(counter_id, ticket_id)))

    def complete_service(self, counter_id: str, ticket_id: str) -> OperationResult:
        return self._run(
            "service_completed", lambda: self._ticket_payload(*self.machine.complete(counter_id, ticket_id))
        )

    def counter_stats(self, counter_id: str, day: date | None = None) -> OperationResult:
        def run() -> dict[str, Any]:
            counter = self.coordinator.get(counter_id)
            stats = self.projections.counter_stats(counter_id, day)
            stats["counter_number"] = counter.counter_number
            stats["service_id"] = counter.service_id
            return stats

        return self._run("counter_stats", run)

    # -------------------- internals --------------------

    @staticmethod
    def _ticket_payload(ticket: Ticket, counter: Counter | None) -> dict[str, Any]:
        return {"ticket": ticket.to_dict(), "counter": counter.to_dict() if counter is not None else None}

    def _run(self, kind: str, fn: Callable[[], dict[str, Any]]) -> OperationResult:
        try:
            return OperationResult.success(kind, fn())
        except QueueError as e:
            logger.warning("%s failed: %s (%s)", kind, e.message, e.code)
            return OperationResult.failure(kind, e.to_response())
        except Exception:
            logger.exception("%s failed unexpectedly", kind)
            return OperationResult.failure(kind, SystemUnavailable().to_response())
