from __future__ import annotations

# Walk-in user client.
#
# A short-lived process:
# - connect to the broker
# - send a request (take a ticket, or cancel one)
# - wait for the correlated response, print it and exit

import argparse
import time

from .config import add_mqtt_args, configure_logging
from .mqtt_client import MqttClient
from .topics import queue_requests, queue_responses


def send_request(*, mqtt_host: str, mqtt_port: int, namespace: str, user_id: str, message: dict) -> dict:
    # Unique client id so many users can run concurrently.
    client_id = f"user-{user_id}-{int(time.time() * 1000)}"
    mqtt = MqttClient(client_id=client_id, host=mqtt_host, port=mqtt_port)
    mqtt.start()

    reply_topic = queue_responses(client_id, namespace)
    mqtt.subscribe(reply_topic)

    try:
        return mqtt.request(
            request_topic=queue_requests(namespace),
            response_topic=reply_topic,
            message={"user_id": user_id, **message},
            timeout=5.0,
        )
    finally:
        mqtt.stop()


def take_ticket(*, mqtt_host: str, mqtt_port: int, namespace: str, user_id: str, service_id: str) -> dict:
    return send_request(
        mqtt_host=mqtt_host,
        mqtt_port=mqtt_port,
        namespace=namespace,
        user_id=user_id,
        message={"type": "request_ticket", "service_id": service_id},
    )


def cancel_ticket(*, mqtt_host: str, mqtt_port: int, namespace: str, user_id: str, ticket_id: str) -> dict:
    return send_request(
        mqtt_host=mqtt_host,
        mqtt_port=mqtt_port,
        namespace=namespace,
        user_id=user_id,
        message={"type": "cancel_ticket", "ticket_id": ticket_id},
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Walk-in ticket client (MQTT)")
    add_mqtt_args(parser)
    parser.add_argument("--user-id", required=True)
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument("--service-id", help="take a ticket for this service")
    action.add_argument("--cancel", metavar="TICKET_ID", help="cancel one of your tickets")
    args = parser.parse_args()

    configure_logging(args.log_level)
    common = dict(mqtt_host=args.mqtt_host, mqtt_port=args.mqtt_port, namespace=args.namespace, user_id=args.user_id)
    if args.cancel:
        resp = cancel_ticket(ticket_id=args.cancel, **common)
    else:
        resp = take_ticket(service_id=args.service_id, **common)

    if resp.get("type") == "error":
        print(f"[user {args.user_id}] error ({resp.get('code')}): {resp.get('message')}")
        return

    ticket = resp["ticket"]
    if resp.get("type") == "ticket_created":
        print(
            f"[user {args.user_id}] ticket {ticket['queue_number']} for {resp.get('service_name')} "
            f"(position {ticket['queue_position']}, ~{ticket['estimated_wait_time']} min)"
        )
    else:
        print(f"[user {args.user_id}] ticket {ticket['queue_number']} is now {ticket['status']}")


if __name__ == "__main__":
    main()
