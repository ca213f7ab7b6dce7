from __future__ import annotations

# The Queue Manager process: the queue engine exposed over MQTT.
#
# This file is only the adapter layer:
# - `MqttQueueService` maps request messages onto `QueueService` operations and
#   replies on the caller's `reply_to` topic
# - `main()` wires settings, the service catalog and the MQTT client together
#
# All queue rules live in the core modules (`state_machine`, `store`, ...).

import argparse
import logging
import threading
import time
from datetime import date
from typing import TYPE_CHECKING, Any, Callable

from .broadcaster import MqttSink
from .config import QueueSettings, add_mqtt_args, configure_logging
from .directory import ServiceDirectory
from .errors import QueueError, ValidationError
from .models import CLOSED, MaintenanceMode
from .operations import OperationResult, QueueService
from .topics import counter_requests, queue_requests, status_updates

if TYPE_CHECKING:
    from .mqtt_client import MqttClient

logger = logging.getLogger(__name__)


class MqttQueueService:
    """MQTT adapter around the QueueService operations."""

    def __init__(
        self,
        *,
        mqtt: MqttClient,
        directory: ServiceDirectory,
        settings: QueueSettings,
        maintenance: MaintenanceMode | None = None,
    ) -> None:
        self.mqtt = mqtt
        self.directory = directory
        self.settings = settings
        self.queue = QueueService.in_memory(
            directory,
            sink=MqttSink(mqtt, settings.namespace),
            timeout=settings.store_timeout,
            tz=settings.tz(),
        )
        # Replaced as a whole, never mutated; admissions read one snapshot.
        self.maintenance = maintenance or MaintenanceMode()

        self._handlers: dict[str, Callable[[dict[str, Any]], OperationResult | dict[str, Any]]] = {
            "request_ticket": self._request_ticket,
            "cancel_ticket": self._cancel_ticket,
            "ticket_status": self._ticket_status,
            "service_status": self._service_status,
            "queue_history": self._queue_history,
            "set_maintenance": self._set_maintenance,
            "register_counter": self._register_counter,
            "set_counter_status": self._set_counter_status,
            "call_next": self._call_next,
            "call_ticket": self._call_ticket,
            "start_serving": self._start_serving,
            "complete_service": self._complete_service,
            "counter_stats": self._counter_stats,
        }

        self._stop_event = threading.Event()
        self._status_thread: threading.Thread | None = None

    def start(self) -> None:
        ns = self.settings.namespace
        self.mqtt.subscribe(queue_requests(ns))
        self.mqtt.subscribe(counter_requests(ns))
        self.mqtt.add_handler(self.handle_message)

        self._status_thread = threading.Thread(
            target=self._status_publisher_loop,
            args=(self.settings.publish_status_every,),
            daemon=True,
        )
        self._status_thread.start()

    def stop(self) -> None:
        """Stop background threads. Call before disconnecting MQTT."""
        self._stop_event.set()
        t = self._status_thread
        if t and t.is_alive():
            t.join(timeout=1.0)

    def status_snapshot(self) -> dict[str, Any]:
        services: dict[str, Any] = {}
        for service in self.directory.services():
            result = self.queue.service_status(service.service_id)
            if result.ok:
                services[service.service_id] = result.data
        return {
            "type": "status_update",
            "maintenance": self.maintenance.enabled,
            "services": services,
        }

    def _status_publisher_loop(self, interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                self.mqtt.publish(status_updates(self.settings.namespace), self.status_snapshot())
            except Exception:
                logger.exception("status snapshot publish failed")
            self._stop_event.wait(interval)

    # -------------------- dispatch --------------------

    def handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        mtype = msg.get("type")
        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None
        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None

        handler = self._handlers.get(str(mtype))
        if handler is None or not reply_to:
            # Responses, broadcasts and unknown types share the bus; ignore them.
            return

        try:
            result = handler(msg)
        except QueueError as e:
            reply = e.to_response().to_message(corr_id=corr_id)
        else:
            if isinstance(result, OperationResult):
                reply = result.to_message(corr_id=corr_id)
            else:
                reply = dict(result)
                if corr_id is not None:
                    reply["corr_id"] = corr_id
        self.mqtt.publish(reply_to, reply)

    # -------------------- queue requests --------------------

    def _request_ticket(self, msg: dict[str, Any]) -> OperationResult:
        user_id, service_id = _require(msg, "user_id", "service_id")
        return self.queue.request_ticket(user_id, service_id, self.maintenance)

    def _cancel_ticket(self, msg: dict[str, Any]) -> OperationResult:
        user_id, ticket_id = _require(msg, "user_id", "ticket_id")
        return self.queue.cancel_ticket(user_id, ticket_id)

    def _ticket_status(self, msg: dict[str, Any]) -> OperationResult:
        (ticket_id,) = _require(msg, "ticket_id")
        return self.queue.ticket_status(ticket_id)

    def _service_status(self, msg: dict[str, Any]) -> OperationResult:
        (service_id,) = _require(msg, "service_id")
        return self.queue.service_status(service_id)

    def _queue_history(self, msg: dict[str, Any]) -> OperationResult:
        (user_id,) = _require(msg, "user_id")
        return self.queue.queue_history(
            user_id,
            limit=_int(msg, "limit", 20),
            offset=_int(msg, "offset", 0),
        )

    def _set_maintenance(self, msg: dict[str, Any]) -> dict[str, Any]:
        self.maintenance = MaintenanceMode(
            enabled=bool(msg.get("enabled", False)),
            message=str(msg.get("message", "") or ""),
        )
        logger.warning("maintenance mode %s", "enabled" if self.maintenance.enabled else "disabled")
        return {
            "type": "maintenance_updated",
            "enabled": self.maintenance.enabled,
            "message": self.maintenance.message,
        }

    # -------------------- counter requests --------------------

    def _register_counter(self, msg: dict[str, Any]) -> OperationResult:
        counter_id, service_id = _require(msg, "counter_id", "service_id")
        return self.queue.register_counter(
            counter_id,
            service_id=service_id,
            counter_number=_int(msg, "counter_number", 0),
            name=str(msg.get("name", "") or ""),
            status=str(msg.get("status", CLOSED)),
        )

    def _set_counter_status(self, msg: dict[str, Any]) -> OperationResult:
        counter_id, status = _require(msg, "counter_id", "status")
        return self.queue.set_counter_status(counter_id, status)

    def _call_next(self, msg: dict[str, Any]) -> OperationResult:
        (counter_id,) = _require(msg, "counter_id")
        return self.queue.call_next(counter_id)

    def _call_ticket(self, msg: dict[str, Any]) -> OperationResult:
        counter_id, ticket_id = _require(msg, "counter_id", "ticket_id")
        return self.queue.call_ticket(counter_id, ticket_id)

    def _start_serving(self, msg: dict[str, Any]) -> OperationResult:
        counter_id, ticket_id = _require(msg, "counter_id", "ticket_id")
        return self.queue.start_serving(counter_id, ticket_id)

    def _complete_service(self, msg: dict[str, Any]) -> OperationResult:
        counter_id, ticket_id = _require(msg, "counter_id", "ticket_id")
        return self.queue.complete_service(counter_id, ticket_id)

    def _counter_stats(self, msg: dict[str, Any]) -> OperationResult:
        (counter_id,) = _require(msg, "counter_id")
        day = msg.get("day")
        try:
            parsed = date.fromisoformat(day) if day else None
        except (TypeError, ValueError) as e:
            raise ValidationError("day must be an ISO date (YYYY-MM-DD)") from e
        return self.queue.counter_stats(counter_id, parsed)


def _require(msg: dict[str, Any], *fields: str) -> tuple[str, ...]:
    values = []
    for name in fields:
        value = msg.get(name)
        if value is None or str(value).strip() == "":
            raise ValidationError(f"{name} required")
        values.append(str(value))
    return tuple(values)


def _int(msg: dict[str, Any], name: str, default: int) -> int:
    value = msg.get(name, default)
    try:
        return int(value if value is not None else default)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be an integer") from e


def main() -> None:
    # Import MQTT dependencies only when running the real service.
    from .mqtt_client import MqttClient

    parser = argparse.ArgumentParser(description="Queue Manager (MQTT)")
    add_mqtt_args(parser)
    parser.add_argument("--services", required=True, help="JSON service catalog")
    parser.add_argument("--timezone", default="UTC", help="operating timezone for ticket days")
    parser.add_argument("--store-timeout", type=float, default=5.0)
    parser.add_argument(
        "--default-service-minutes",
        type=int,
        default=5,
        help="estimated minutes per ticket for services that do not set one",
    )
    parser.add_argument(
        "--publish-status-every",
        type=float,
        default=2.0,
        help="seconds between broadcast status snapshots (display boards)",
    )
    parser.add_argument("--maintenance", default=None, metavar="MESSAGE", help="start in maintenance mode")
    args = parser.parse_args()

    configure_logging(args.log_level)
    settings = QueueSettings.from_args(args)
    directory = ServiceDirectory.from_file(
        args.services, default_service_minutes=settings.default_service_minutes
    )

    mqtt_client = MqttClient(
        client_id="queue-manager",
        host=settings.mqtt_host,
        port=settings.mqtt_port,
        keepalive=settings.mqtt_keepalive,
    )
    mqtt_client.start()

    maintenance = MaintenanceMode(enabled=True, message=args.maintenance) if args.maintenance is not None else None
    service = MqttQueueService(mqtt=mqtt_client, directory=directory, settings=settings, maintenance=maintenance)
    service.start()

    print(
        f"[manager] connected to MQTT {settings.mqtt_host}:{settings.mqtt_port}, "
        f"namespace={settings.namespace}, services={len(directory.services())}"
    )

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        mqtt_client.stop()


if __name__ == "__main__":
    main()
