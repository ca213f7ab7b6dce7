"""Runtime settings shared by the CLI entry points.

Settings are built once from command-line options and passed explicitly to
the components that need them. There is no global settings object.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from datetime import tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ValidationError
from .topics import DEFAULT_NAMESPACE


@dataclass(frozen=True)
class QueueSettings:
    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = 1883
    mqtt_keepalive: int = 30
    namespace: str = DEFAULT_NAMESPACE
    store_timeout: float = 5.0
    timezone: str = "UTC"
    default_service_minutes: int = 5
    publish_status_every: float = 2.0

    def __post_init__(self) -> None:
        if self.store_timeout <= 0:
            raise ValidationError("store_timeout must be > 0")
        if self.default_service_minutes < 0:
            raise ValidationError("default_service_minutes must be >= 0")
        self.tz()  # fail early on an unknown zone

    def tz(self) -> tzinfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValidationError(f"Unknown timezone {self.timezone!r}") from e

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> QueueSettings:
        return cls(
            mqtt_host=args.mqtt_host,
            mqtt_port=args.mqtt_port,
            namespace=args.namespace,
            store_timeout=getattr(args, "store_timeout", cls.store_timeout),
            timezone=getattr(args, "timezone", cls.timezone),
            default_service_minutes=getattr(args, "default_service_minutes", cls.default_service_minutes),
            publish_status_every=getattr(args, "publish_status_every", cls.publish_status_every),
        )


def add_mqtt_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    parser.add_argument("--log-level", default="INFO", help="DEBUG, INFO, WARNING or ERROR")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
