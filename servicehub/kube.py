"""A thread-safe in-memory object store with the semantics of a cluster API client."""

from __future__ import annotations

import copy
import itertools
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from .models import ObjectKey


class NotFoundError(LookupError):
    """Raised when the requested object does not exist."""

    def __init__(self, kind: type, key: ObjectKey) -> None:
        super().__init__(f"{kind.__name__} {key} not found")
        self.kind = kind
        self.key = key


class AlreadyExistsError(Exception):
    """Raised when creating an object that already exists."""

    def __init__(self, kind: type, key: ObjectKey) -> None:
        super().__init__(f"{kind.__name__} {key} already exists")
        self.kind = kind
        self.key = key


@dataclass
class Namespace:
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    resource_version: str = ""

    @property
    def namespace(self) -> str:
        return ""


def _key(obj: Any) -> ObjectKey:
    return ObjectKey(name=obj.name, namespace=obj.namespace)


class InMemoryClient:
    """Stores objects by kind and key; every read and write copies the object."""

    def __init__(self, namespaces: Iterable[str] = ("default",)) -> None:
        self._lock = threading.RLock()
        self._objects: dict[type, dict[ObjectKey, Any]] = {}
        self._versions = itertools.count(1)
        for name in namespaces:
            self.create(Namespace(name))

    def _bucket(self, kind: type) -> dict[ObjectKey, Any]:
        return self._objects.setdefault(kind, {})

    def get(self, kind: type, key: ObjectKey) -> Any:
        with self._lock:
            try:
                return copy.deepcopy(self._bucket(kind)[key])
            except KeyError:
                raise NotFoundError(kind, key) from None

    def list(
        self,
        kind: type,
        namespace: Optional[str] = None,
        labels: Optional[dict[str, str]] = None,
    ) -> list[Any]:
        with self._lock:
            items = sorted(self._bucket(kind).items(), key=lambda item: (item[0].namespace, item[0].name))
            return [
                copy.deepcopy(obj)
                for key, obj in items
                if (namespace is None or key.namespace == namespace)
                and all(obj.labels.get(k) == v for k, v in (labels or {}).items())
            ]

    def create(self, obj: Any) -> Any:
        if not obj.name:
            raise ValueError("object name is required")
        key = _key(obj)
        with self._lock:
            if key.namespace and ObjectKey(key.namespace) not in self._bucket(Namespace):
                raise NotFoundError(Namespace, ObjectKey(key.namespace))
            bucket = self._bucket(type(obj))
            if key in bucket:
                raise AlreadyExistsError(type(obj), key)
            obj.resource_version = str(next(self._versions))
            bucket[key] = copy.deepcopy(obj)
            return copy.deepcopy(obj)

    def update(self, obj: Any) -> Any:
        key = _key(obj)
        with self._lock:
            bucket = self._bucket(type(obj))
            if key not in bucket:
                raise NotFoundError(type(obj), key)
            obj.resource_version = str(next(self._versions))
            bucket[key] = copy.deepcopy(obj)
            return copy.deepcopy(obj)

    def delete(self, obj: Any) -> None:
        key = _key(obj)
        with self._lock:
            bucket = self._bucket(type(obj))
            if key not in bucket:
                raise NotFoundError(type(obj), key)
            del bucket[key]
            if isinstance(obj, Namespace):
                for other in self._objects.values():
                    for stale in [k for k in other if k.namespace == obj.name]:
                        del other[stale]

    def create_or_update(self, obj: Any, mutate: Callable[[Any], None]) -> str:
        """Create obj or update its stored counterpart after mutate has run on it.

        Returns "created", "updated" or "unchanged".
        """
        key = _key(obj)
        with self._lock:
            try:
                current = self.get(type(obj), key)
            except NotFoundError:
                mutate(obj)
                if _key(obj) != key:
                    raise ValueError("mutate must not change the object key") from None
                self.create(obj)
                return "created"

            before = copy.deepcopy(current)
            mutate(current)
            if _key(current) != key:
                raise ValueError("mutate must not change the object key")
            if current == before:
                return "unchanged"
            self.update(current)
            return "updated"