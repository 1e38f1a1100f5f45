"""Creates, merges and revokes global services on behalf of member clusters."""

from __future__ import annotations

import copy
import threading

from .kube import InMemoryClient, NotFoundError
from .models import (
    APP_SERVICE_HUB,
    KEY_CREATED_BY,
    Endpoint,
    GlobalService,
    GlobalServiceSpec,
    ObjectKey,
)
from .namespace import ensure


def remove_endpoints(endpoints: list[Endpoint], cluster: str) -> list[Endpoint]:
    """Return the endpoints that do not belong to the given cluster."""
    return [e for e in endpoints if e.cluster != cluster]


class GlobalServiceManager:
    """Keeps one global service per name, holding endpoints from many clusters."""

    def __init__(self, client: InMemoryClient, allow_create_namespace: bool = True) -> None:
        self._client = client
        self._allow_create_namespace = allow_create_namespace
        self._lock = threading.Lock()

    def create_or_merge(self, service: GlobalService) -> None:
        """Create the global service or replace the sender's endpoints and the ports in it."""
        with self._lock:
            if self._allow_create_namespace:
                ensure(self._client, service.namespace)

            local = GlobalService(
                name=service.name,
                namespace=service.namespace,
                labels={KEY_CREATED_BY: APP_SERVICE_HUB},
            )
            incoming = copy.deepcopy(service.spec)

            def merge(current: GlobalService) -> None:
                endpoints = remove_endpoints(current.spec.endpoints, service.cluster_name)
                endpoints.extend(incoming.endpoints)
                current.spec = GlobalServiceSpec(
                    type=incoming.type,
                    ports=incoming.ports,
                    endpoints=endpoints,
                )

            self._client.create_or_update(local, merge)

    def revoke(self, cluster_name: str, namespace: str, service_name: str) -> None:
        """Remove a cluster's endpoints; delete the global service when none remain."""
        with self._lock:
            try:
                svc = self._client.get(GlobalService, ObjectKey(name=service_name, namespace=namespace))
            except NotFoundError:
                return

            svc.spec.endpoints = remove_endpoints(svc.spec.endpoints, cluster_name)
            if svc.spec.endpoints:
                self._client.update(svc)
            else:
                self._client.delete(svc)