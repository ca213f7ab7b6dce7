"""Topic helpers.

We keep topic construction in one place so all components agree on naming.

Broadcast topics are logical names used by the core:
- `service:<service_id>`  queue-depth updates and counter updates for a service
- `counter:<counter_id>`  assignment/release updates for one counter
- `user:<user_id>`        personal notifications

On MQTT they map under a configurable namespace (default `walkin/v1`):
- `<ns>/service/<service_id>`
- `<ns>/counter/<counter_id>`
- `<ns>/user/<user_id>`

Request/response:
- `<ns>/queue/requests`, `<ns>/queue/responses/<client_id>`
- `<ns>/counters/requests`, `<ns>/counters/responses/<counter_id>`

Streaming:
- `<ns>/status/updates`  periodic per-service status snapshots
"""

from __future__ import annotations

DEFAULT_NAMESPACE = "walkin/v1"

SCOPES = ("service", "counter", "user")


def service_topic(service_id: str) -> str:
    return f"service:{service_id}"


def counter_topic(counter_id: str) -> str:
    return f"counter:{counter_id}"


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


def mqtt_topic(topic: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    """Map a logical `scope:id` topic onto the MQTT namespace."""
    scope, sep, ident = topic.partition(":")
    if not sep or scope not in SCOPES or not ident:
        raise ValueError(f"not a broadcast topic: {topic!r}")
    return f"{namespace}/{scope}/{ident}"


def queue_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/queue/requests"


def queue_responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/queue/responses/{client_id}"


def counter_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/counters/requests"


def counter_responses(counter_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/counters/responses/{counter_id}"


def status_updates(namespace: str = DEFAULT_NAMESPACE) -> str:
    """Periodic status snapshots for display boards."""
    return f"{namespace}/status/updates"
