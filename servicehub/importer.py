"""Keeps local global services in step with those downloaded from the API server."""

from __future__ import annotations

import copy
import logging
import threading
from datetime import timedelta
from typing import Callable, Optional

from .kube import InMemoryClient
from .models import APP_SERVICE_HUB, KEY_CREATED_BY, GlobalService, ObjectKey
from .namespace import ensure

KEY_ORIGIN_RESOURCE_VERSION = "fabedge.io/origin-resource-version"

GetGlobalServicesFunc = Callable[[], list[GlobalService]]

log = logging.getLogger(__name__)


class GlobalServiceImporter:
    """Periodically imports global services and deletes local ones no longer offered."""

    def __init__(
        self,
        client: InMemoryClient,
        get_global_services: Optional[GetGlobalServicesFunc],
        interval: timedelta = timedelta(minutes=1),
        allow_create_namespace: bool = True,
    ) -> None:
        if interval.total_seconds() <= 0:
            raise ValueError("interval is too small")
        if get_global_services is None:
            raise ValueError("get_global_services is required")
        self._client = client
        self._get_global_services = get_global_services
        self._interval = interval
        self._allow_create_namespace = allow_create_namespace

    def import_services(self) -> None:
        """Save every downloaded global service and delete the local ones not among them."""
        try:
            services = self._get_global_services()
        except Exception:
            log.exception("failed to get global services")
            return

        imported: set[ObjectKey] = set()
        for service in services:
            imported.add(service.key())
            self.create_or_update_global_service(service)

        try:
            local_services = self._client.list(GlobalService)
        except Exception:
            log.exception("failed to list local global services")
            return

        for service in local_services:
            if service.key() not in imported:
                self.delete_service(service)

    def create_or_update_global_service(self, source: GlobalService) -> None:
        """Save source locally unless the stored copy came from the same resource version."""
        if self._allow_create_namespace:
            try:
                ensure(self._client, source.namespace)
            except Exception:
                log.exception("failed to create namespace %s", source.namespace)
                return

        local = GlobalService(name=source.name, namespace=source.namespace)

        def mutate(service: GlobalService) -> None:
            if not service.labels:
                service.labels = {KEY_CREATED_BY: APP_SERVICE_HUB}

            origin = service.labels.get(KEY_ORIGIN_RESOURCE_VERSION, "")
            if origin and origin == source.resource_version:
                return

            service.labels[KEY_ORIGIN_RESOURCE_VERSION] = source.resource_version
            service.spec = copy.deepcopy(source.spec)

        try:
            self._client.create_or_update(local, mutate)
        except Exception:
            log.exception("failed to create or update global service %s", source.key())

    def delete_service(self, service: GlobalService) -> None:
        try:
            self._client.delete(service)
        except Exception:
            log.exception("failed to delete global service %s", service.key())

    def run(self, stop_event: threading.Event) -> None:
        """Import once, then once per interval until stop_event is set."""
        self.import_services()
        while not stop_event.wait(self._interval.total_seconds()):
            self.import_services()