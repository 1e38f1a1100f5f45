"""Clusters known to the hub and the service keys each of them reported."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Optional

from .models import ObjectKey


def _now_like(moment: datetime) -> datetime:
    return datetime.now(timezone.utc) if moment.tzinfo else datetime.now()


class Cluster:
    """Keys of global services reported by one cluster; create via ClusterStore.new."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._service_keys: set[ObjectKey] = set()
        self._expire_time: Optional[datetime] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Cluster({self._name!r})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def expire_time(self) -> Optional[datetime]:
        with self._lock:
            return self._expire_time

    @expire_time.setter
    def expire_time(self, value: Optional[datetime]) -> None:
        with self._lock:
            self._expire_time = value

    def is_expired(self) -> bool:
        with self._lock:
            expire = self._expire_time
        return expire is not None and expire < _now_like(expire)

    def service_keys(self) -> list[ObjectKey]:
        with self._lock:
            return list(self._service_keys)

    def add_service_key(self, key: ObjectKey) -> None:
        with self._lock:
            self._service_keys.add(key)

    def remove_service_key(self, key: ObjectKey) -> None:
        with self._lock:
            self._service_keys.discard(key)


class ClusterStore:
    """Thread-safe registry of clusters by name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clusters: dict[str, Cluster] = {}

    def new(self, name: str) -> Cluster:
        """Return the cluster with this name, creating it if needed."""
        with self._lock:
            return self._clusters.setdefault(name, Cluster(name))

    def get(self, name: str) -> Optional[Cluster]:
        with self._lock:
            return self._clusters.get(name)

    def remove(self, name: str) -> None:
        with self._lock:
            self._clusters.pop(name, None)

    def remove_clusters(self, *args: str) -> None:
        with self._lock:
            for name in args:
                self._clusters.pop(name, None)

    def expired_clusters(self) -> list[Cluster]:
        with self._lock:
            clusters = list(self._clusters.values())
        return [c for c in clusters if c.is_expired()]