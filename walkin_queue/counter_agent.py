from __future__ import annotations

# Counter agent.
#
# A staffed counter as a small autonomous process:
# - it registers itself (counter id, service, number) and opens
# - it repeatedly calls the next waiting ticket of its service
# - it starts serving, "serves" for --serve-seconds, then completes
# - on Ctrl-C it finishes the ticket in hand before closing
#
# Every step is a request/response round trip to the queue manager; the
# manager's answer (or error envelope) decides what happens next.

import argparse
import time
from typing import Any, Callable

from .config import add_mqtt_args, configure_logging
from .mqtt_client import MqttClient
from .topics import counter_requests, counter_responses


class CounterConsole:
    """Request/response helper for one counter."""

    def __init__(self, mqtt: MqttClient, *, counter_id: str, namespace: str, timeout: float = 5.0) -> None:
        self.mqtt = mqtt
        self.counter_id = counter_id
        self.namespace = namespace
        self.timeout = timeout
        self.reply_topic = counter_responses(counter_id, namespace)

    def subscribe(self) -> None:
        self.mqtt.subscribe(self.reply_topic)

    def send(self, mtype: str, **fields: Any) -> dict[str, Any]:
        return self.mqtt.request(
            request_topic=counter_requests(self.namespace),
            response_topic=self.reply_topic,
            message={"type": mtype, "counter_id": self.counter_id, **fields},
            timeout=self.timeout,
        )


class CounterWorker:
    """The register / call / start / complete loop of one counter."""

    def __init__(
        self,
        console: CounterConsole,
        *,
        service_id: str,
        counter_number: int,
        name: str = "",
        serve_seconds: float = 2.0,
        idle_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.console = console
        self.service_id = service_id
        self.counter_number = counter_number
        self.name = name
        self.serve_seconds = serve_seconds
        self.idle_seconds = idle_seconds
        self.sleep = sleep
        self.served = 0
        # (ticket, "called" | "serving") while a ticket is in this counter's hands
        self.in_flight: tuple[dict[str, Any], str] | None = None

    @property
    def counter_id(self) -> str:
        return self.console.counter_id

    def register(self) -> None:
        resp = self.console.send(
            "register_counter",
            service_id=self.service_id,
            counter_number=self.counter_number,
            name=self.name,
            status="open",
        )
        if resp.get("type") != "counter_registered":
            raise RuntimeError(f"Registration failed: {resp}")
        print(f"[counter {self.counter_id}] registered for service {self.service_id}")

    def step(self) -> None:
        called = self.console.send("call_next")
        if called.get("type") != "ticket_called":
            reason = called.get("reason")
            if reason == "counter_not_found":
                # The manager lost its state (restart); announce ourselves again.
                print(f"[counter {self.counter_id}] unknown to the manager, registering again")
                self.register()
                return
            if reason != "no_waiting_tickets":
                print(f"[counter {self.counter_id}] call failed: {called.get('message')}")
            self.sleep(self.idle_seconds)
            return

        ticket = called["ticket"]
        number = ticket["queue_number"]
        self.in_flight = (ticket, "called")
        print(f"[counter {self.counter_id}] calling {number}")

        started = self.console.send("start_serving", ticket_id=ticket["ticket_id"])
        if started.get("type") != "serving_started":
            # Typically the user cancelled between call and start.
            print(f"[counter {self.counter_id}] {number} not served: {started.get('message')}")
            self.in_flight = None
            return
        self.in_flight = (ticket, "serving")

        self.sleep(self.serve_seconds)
        self._complete(ticket)

    def shutdown(self) -> None:
        """Finish the ticket in hand, then close the counter."""
        try:
            if self.in_flight is not None:
                ticket, state = self.in_flight
                if state == "called":
                    # The reply may have been lost; a failed start is fine here.
                    self.console.send("start_serving", ticket_id=ticket["ticket_id"])
                self._complete(ticket)
            self.console.send("set_counter_status", status="closed")
        except TimeoutError:
            print(f"[counter {self.counter_id}] manager did not answer while closing")

    def _complete(self, ticket: dict[str, Any]) -> None:
        number = ticket["queue_number"]
        done = self.console.send("complete_service", ticket_id=ticket["ticket_id"])
        self.in_flight = None
        if done.get("type") == "service_completed":
            self.served += 1
            print(f"[counter {self.counter_id}] done {number} (served {self.served})")
        else:
            print(f"[counter {self.counter_id}] complete failed for {number}: {done.get('message')}")


def run_counter(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    counter_id: str,
    service_id: str,
    counter_number: int,
    name: str = "",
    serve_seconds: float = 2.0,
    idle_seconds: float = 1.0,
) -> None:
    mqtt = MqttClient(client_id=f"counter-{counter_id}", host=mqtt_host, port=mqtt_port)
    mqtt.start()

    console = CounterConsole(mqtt, counter_id=counter_id, namespace=namespace)
    console.subscribe()
    worker = CounterWorker(
        console,
        service_id=service_id,
        counter_number=counter_number,
        name=name,
        serve_seconds=serve_seconds,
        idle_seconds=idle_seconds,
    )

    try:
        worker.register()
        while True:
            worker.step()
    except KeyboardInterrupt:
        worker.shutdown()
    finally:
        mqtt.stop()

def main() -> None:
    parser = argparse.ArgumentParser(description="Counter agent (MQTT)")
    add_mqtt_args(parser)
    parser.add_argument("--counter-id", required=True)
    parser.add_argument("--service-id", required=True)
    parser.add_argument("--counter-number", type=int, default=1)
    parser.add_argument("--name", default="")
    parser.add_argument("--serve-seconds", type=float, default=2.0, help="simulated time at the counter")
    args = parser.parse_args()

    configure_logging(args.log_level)
    run_counter(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        counter_id=args.counter_id,
        service_id=args.service_id,
        counter_number=args.counter_number,
        name=args.name,
        serve_seconds=args.serve_seconds,
    )


if __name__ == "__main__":
    main()
