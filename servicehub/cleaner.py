"""Periodically revokes the global services of clusters whose heartbeat expired."""

from __future__ import annotations

import logging
import threading
from datetime import timedelta

from .cluster import ClusterStore
from .models import ObjectKey, RevokeGlobalServiceFunc

log = logging.getLogger(__name__)


class ClusterCleaner:
    """Removes endpoints of expired clusters from the global services they reported."""

    def __init__(
        self,
        store: ClusterStore,
        revoke_global_service: RevokeGlobalServiceFunc,
        interval: timedelta = timedelta(minutes=5),
    ) -> None:
        if interval.total_seconds() <= 0:
            raise ValueError("interval must be positive")
        self._store = store
        self._revoke = revoke_global_service
        self._interval = interval

    def clean_expired_cluster_endpoints(self) -> None:
        for cluster in self._store.expired_clusters():
            for key in cluster.service_keys():
                # a heartbeat may arrive while cleaning; stop as soon as it does
                if not cluster.is_expired():
                    break
                self._revoke_service(cluster.name, key)

    def _revoke_service(self, cluster_name: str, key: ObjectKey) -> None:
        try:
            self._revoke(cluster_name, key.namespace, key.name)
        except Exception:
            log.exception("failed to revoke global service %s of cluster %s", key, cluster_name)

    def run(self, stop_event: threading.Event) -> None:
        """Clean once per interval until stop_event is set."""
        while not stop_event.wait(self._interval.total_seconds()):
            self.clean_expired_cluster_endpoints()