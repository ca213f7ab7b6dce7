"""Service directory: the read-only view of services the core needs.

Services are administered elsewhere. The core only looks them up for ticket
numbering, wait estimates and admission checks. `ServiceDirectory` is the
in-memory implementation used by the queue service and the tests; it can be
loaded from a JSON catalog such as:

    {"services": [{"id": "1", "name": "Registrar", "queue_prefix": "REG",
                   "estimated_service_time": 5, "max_queue_size": 100}]}
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Iterable, Protocol

from .errors import ServiceNotFound, ValidationError
from .models import Service


class ServiceLookup(Protocol):
    def get_service(self, service_id: str) -> Service: ...

    def is_service_active(self, service_id: str) -> bool: ...


class ServiceDirectory:
    def __init__(self, services: Iterable[Service] = ()) -> None:
        self._lock = threading.Lock()
        self._services: dict[str, Service] = {}
        for service in services:
            self.put(service)

    @classmethod
    def from_file(cls, path: str | Path, *, default_service_minutes: int = 5) -> ServiceDirectory:
        """Load a JSON catalog; entries without `estimated_service_time` get the default."""
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        entries = data.get("services", []) if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise ValidationError("Service catalog must be a list of services", path=str(path))
        try:
            return cls(Service.from_dict(entry, default_service_minutes=default_service_minutes) for entry in entries)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed service catalog: {e}", path=str(path)) from e

    def put(self, service: Service) -> None:
        """Create or replace a service."""
        if not service.service_id:
            raise ValidationError("Service id is required")
        with self._lock:
            self._services[service.service_id] = service

    def get_service(self, service_id: str) -> Service:
        with self._lock:
            service = self._services.get(service_id)
        if service is None:
            raise ServiceNotFound(service_id=service_id)
        return service

    def is_service_active(self, service_id: str) -> bool:
        with self._lock:
            service = self._services.get(service_id)
        return service is not None and service.is_active

    def services(self) -> list[Service]:
        with self._lock:
            return sorted(self._services.values(), key=lambda s: s.name)
