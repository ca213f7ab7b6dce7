from __future__ import annotations

# Event Broadcaster.
#
# Publishes ticket and counter changes to three kinds of rooms:
# - `service:<id>`  queue_update events (depth + currently serving) and
#                   mirrored counter_update events, for display boards
# - `counter:<id>`  counter_update events, for the staff console
# - `user:<id>`     personal notifications (created / called / completed)
#
# Broadcasting happens after the store has committed the transition. It is
# best effort: any failure is logged here and never reaches the caller, and
# nothing is retried. Clients treat events as at-least-once and idempotent.

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from .models import Counter, Ticket
from .projections import QueueProjections
from .topics import counter_topic, mqtt_topic, service_topic, user_topic

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def publish(self, topic: str, payload: dict[str, Any]) -> None: ...


class MqttSink:
    """Sink that maps logical topics onto MQTT topics under a namespace."""

    def __init__(self, mqtt: Any, namespace: str) -> None:
        self.mqtt = mqtt
        self.namespace = namespace

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        self.mqtt.publish(mqtt_topic(topic, self.namespace), payload)


class EventBroadcaster:
    def __init__(
        self,
        sink: EventSink,
        projections: QueueProjections,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.sink = sink
        self.projections = projections
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -------------------- ticket events --------------------

    def ticket_created(self, ticket: Ticket) -> None:
        self._guarded("queue_created", self._ticket_created, ticket)

    def ticket_called(self, ticket: Ticket, counter: Counter) -> None:
        self._guarded("queue_called", self._ticket_called, ticket, counter)

    def serving_started(self, ticket: Ticket, counter: Counter) -> None:
        self._guarded("queue_serving", self._serving_started, ticket, counter)

    def ticket_completed(self, ticket: Ticket, counter: Counter | None) -> None:
        self._guarded("queue_completed", self._ticket_completed, ticket, counter)

    def ticket_cancelled(self, ticket: Ticket, counter: Counter | None) -> None:
        self._guarded("queue_cancelled", self._ticket_cancelled, ticket, counter)

    def counter_changed(self, counter: Counter, event_type: str = "status_changed") -> None:
        self._guarded(event_type, self._counter_update, counter, event_type, None)

    # -------------------- payload builders --------------------

    def _ticket_created(self, ticket: Ticket) -> None:
        self._queue_update(ticket, "queue_created", queue_position=ticket.queue_position)
        self._publish(
            user_topic(ticket.user_id),
            {
                "type": "queue_created",
                "ticket_id": ticket.ticket_id,
                "queue_number": ticket.queue_number,
                "queue_position": ticket.queue_position,
                "service_id": ticket.service_id,
                "estimated_wait_time": ticket.estimated_wait_time,
            },
        )

    def _ticket_called(self, ticket: Ticket, counter: Counter) -> None:
        self._queue_update(
            ticket,
            "queue_called",
            queue_position=ticket.queue_position,
            counter_number=counter.counter_number,
            counter_name=counter.display_name,
            current_serving=ticket.queue_number,
        )
        self._counter_update(counter, "queue_called", ticket)
        self._publish(
            user_topic(ticket.user_id),
            {
                "type": "queue_called",
                "ticket_id": ticket.ticket_id,
                "queue_number": ticket.queue_number,
                "counter_number": counter.counter_number,
                "counter_name": counter.display_name,
                "message": f"Ticket {ticket.queue_number} called to {counter.display_name}",
            },
        )

    def _serving_started(self, ticket: Ticket, counter: Counter) -> None:
        self._queue_update(
            ticket,
            "queue_serving",
            counter_number=counter.counter_number,
            current_serving=ticket.queue_number,
        )
        self._counter_update(counter, "serving_started", ticket)

    def _ticket_completed(self, ticket: Ticket, counter: Counter | None) -> None:
        self._queue_update(ticket, "queue_completed")
        if counter is not None:
            self._counter_update(counter, "queue_completed", ticket)
        self._publish(
            user_topic(ticket.user_id),
            {
                "type": "queue_completed",
                "ticket_id": ticket.ticket_id,
                "queue_number": ticket.queue_number,
                "message": f"Thank you! Your service for ticket {ticket.queue_number} has been completed.",
            },
        )

    def _ticket_cancelled(self, ticket: Ticket, counter: Counter | None) -> None:
        self._queue_update(ticket, "queue_cancelled")
        if counter is not None:
            self._counter_update(counter, "queue_cancelled", ticket)

    def _queue_update(self, ticket: Ticket, event_type: str, **extra: Any) -> None:
        status = self.projections.service_queue_status(ticket.service_id)
        payload: dict[str, Any] = {
            "type": event_type,
            "service_id": ticket.service_id,
            "ticket_id": ticket.ticket_id,
            "queue_number": ticket.queue_number,
            "waiting_count": status.waiting_count,
            "current_serving": status.current_serving,
            "timestamp": self._now(),
        }
        payload.update(extra)
        self._publish(service_topic(ticket.service_id), {"event": "queue_update", **payload})

    def _counter_update(self, counter: Counter, event_type: str, ticket: Ticket | None) -> None:
        payload: dict[str, Any] = {
            "event": "counter_update",
            "type": event_type,
            "counter_id": counter.counter_id,
            "service_id": counter.service_id,
            "counter_number": counter.counter_number,
            "status": counter.status,
            "current_serving_ticket": counter.current_serving_ticket,
            "timestamp": self._now(),
        }
        if ticket is not None:
            payload["ticket_id"] = ticket.ticket_id
            payload["queue_number"] = ticket.queue_number
        self._publish(counter_topic(counter.counter_id), payload)
        self._publish(service_topic(counter.service_id), payload)

    # -------------------- delivery --------------------

    def _publish(self, topic: str, payload: dict[str, Any]) -> None:
        try:
            self.sink.publish(topic, payload)
        except Exception:
            logger.exception("failed to publish %s to %s", payload.get("type"), topic)

    def _guarded(self, event_type: str, build: Callable[..., None], *args: Any) -> None:
        try:
            build(*args)
        except Exception:
            logger.exception("failed to broadcast %s", event_type)

    def _now(self) -> str:
        return self._clock().isoformat()
