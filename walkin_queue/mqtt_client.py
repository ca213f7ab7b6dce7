"""Small MQTT helper built on top of paho-mqtt.

- `MqttClient` manages the connection and a background network loop.
- `publish()` / `subscribe()` speak JSON.
- `request()` publishes a message carrying `corr_id` + `reply_to` and blocks
  until the correlated response arrives (or the timeout expires).

Broadcasts use QoS 1 by default: events are delivered at least once and
clients are expected to apply them idempotently.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, dict[str, Any]], None]


@dataclass(frozen=True)
class PendingResponse:
    corr_id: str
    q: "queue.Queue[dict[str, Any]]"


class MqttClient:
    """Thin wrapper around paho-mqtt with JSON convenience APIs."""

    def __init__(
        self,
        *,
        client_id: str,
        host: str,
        port: int,
        keepalive: int = 30,
        qos: int = 1,
    ) -> None:
        self.client_id = client_id
        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.qos = qos

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            clean_session=True,
        )
        self._client.on_message = self._on_message

        self._handlers: list[MessageHandler] = []
        self._pending: dict[str, PendingResponse] = {}
        self._lock = threading.Lock()
        self._started = False

    def start(self) -> None:
        """Connect and start the background network loop."""
        if self._started:
            return
        self._client.connect(self.host, self.port, keepalive=self.keepalive)
        self._client.loop_start()
        self._started = True
        logger.debug("mqtt client %s connected to %s:%d", self.client_id, self.host, self.port)

    def stop(self) -> None:
        if not self._started:
            return
        self._client.loop_stop()
        self._client.disconnect()
        self._started = False

    def add_handler(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def subscribe(self, topic: str) -> None:
        self._client.subscribe(topic, qos=self.qos)

    def publish(self, topic: str, message: dict[str, Any]) -> None:
        payload = json.dumps(message, separators=(",", ":"), default=str).encode("utf-8")
        info = self._client.publish(topic, payload=payload, qos=self.qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise ConnectionError(f"publish to {topic} failed: {mqtt.error_string(info.rc)}")

    def request(
        self,
        *,
        request_topic: str,
        response_topic: str,
        message: dict[str, Any],
        timeout: float = 5.0,
    ) -> dict[str, Any]:
        """Publish a message and wait for the correlated response.

        The caller must already be subscribed to `response_topic`.
        """
        corr_id = str(uuid.uuid4())
        msg = dict(message)
        msg["corr_id"] = corr_id
        msg["reply_to"] = response_topic

        q: "queue.Queue[dict[str, Any]]" = queue.Queue(maxsize=1)
        with self._lock:
            self._pending[corr_id] = PendingResponse(corr_id=corr_id, q=q)

        try:
            self.publish(request_topic, msg)
            return q.get(timeout=timeout)
        except queue.Empty as e:
            raise TimeoutError(f"No response for {msg.get('type')} (corr_id={corr_id})") from e
        finally:
            with self._lock:
                self._pending.pop(corr_id, None)

    # -------------------- internal callbacks --------------------

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        try:
            raw = msg.payload
            payload = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
            data = json.loads(payload)
        except (UnicodeDecodeError, ValueError):
            logger.warning("dropping malformed message on %s", msg.topic)
            return
        if not isinstance(data, dict):
            return

        # A response to one of our pending requests?
        corr_id = data.get("corr_id")
        if isinstance(corr_id, str):
            with self._lock:
                pending = self._pending.get(corr_id)
            if pending is not None:
                try:
                    pending.q.put_nowait(data)
                except queue.Full:
                    logger.debug("duplicate response for corr_id=%s ignored", corr_id)
                return

        for handler in list(self._handlers):
            try:
                handler(msg.topic, data)
            except Exception:
                # Keep the network loop alive; one bad message must not stop the client.
                logger.exception("handler failed for message on %s", msg.topic)
