"""Exports labelled local services as global services and revokes the ones that went away."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from typing import Mapping, Optional

from .kube import InMemoryClient, NotFoundError
from .models import (
    AddressType,
    Endpoint,
    EndpointSlice,
    ExportGlobalServiceFunc,
    GlobalService,
    GlobalServiceSpec,
    ObjectKey,
    RevokeGlobalServiceFunc,
    Service,
    ServicePort,
    ServiceType,
)

LABEL_GLOBAL_SERVICE = "fabedge.io/global-service"
LABEL_SERVICE_NAME = "kubernetes.io/service-name"
CLUSTER_IP_NONE = "None"
SERVICE_TYPE_CLUSTER_IP = "ClusterIP"

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterInfo:
    """Name and location of the cluster this exporter runs in."""

    name: str
    zone: str = "default"
    region: str = "default"


def is_global_service(labels: Optional[Mapping[str, str]]) -> bool:
    """Return True if the labels mark a service as a global service."""
    return bool(labels) and labels.get(LABEL_GLOBAL_SERVICE) == "true"


def _target_name(endpoint: object) -> str:
    ref = getattr(endpoint, "target_ref", None)
    return ref.name if ref is not None else ""


def get_endpoints_of_headless_service(
    client: InMemoryClient,
    namespace: str,
    service_name: str,
    cluster: ClusterInfo,
) -> list[Endpoint]:
    """Collect the endpoints of a headless service, merging addresses per target."""
    slices = client.list(
        EndpointSlice,
        namespace=namespace,
        labels={LABEL_SERVICE_NAME: service_name},
    )

    by_name: dict[str, Endpoint] = {}
    for endpoint_slice in sorted(slices, key=lambda s: AddressType(s.address_type).value):
        if endpoint_slice.address_type == AddressType.FQDN:
            continue

        for slice_endpoint in endpoint_slice.endpoints:
            name = _target_name(slice_endpoint)
            existing = by_name.get(name)
            if existing is not None:
                existing.addresses.extend(slice_endpoint.addresses)
            else:
                by_name[name] = Endpoint(
                    addresses=list(slice_endpoint.addresses),
                    hostname=slice_endpoint.hostname,
                    target_ref=copy.deepcopy(slice_endpoint.target_ref),
                    cluster=cluster.name,
                    zone=cluster.zone,
                    region=cluster.region,
                )

    return sorted(by_name.values(), key=_target_name)


class ServiceExporter:
    """Exports services labelled as global and revokes them when they stop being so."""

    def __init__(
        self,
        client: InMemoryClient,
        cluster: ClusterInfo,
        export_global_service: ExportGlobalServiceFunc,
        revoke_global_service: RevokeGlobalServiceFunc,
    ) -> None:
        self._client = client
        self._cluster = cluster
        self._export = export_global_service
        self._revoke = revoke_global_service
        self._exported: set[ObjectKey] = set()
        self._lock = threading.Lock()

    @property
    def exported_keys(self) -> frozenset[ObjectKey]:
        """Keys of the services this exporter has exported and not yet revoked."""
        with self._lock:
            return frozenset(self._exported)

    def reconcile(self, key: ObjectKey) -> None:
        """Bring the exported state of the service with this key up to date."""
        try:
            svc = self._client.get(Service, key)
        except NotFoundError:
            log.debug("service %s is not found", key)
            self._revoke_global_service(key)
            return

        if self._should_skip(svc):
            log.debug("service %s is not a global service", key)
            self._revoke_global_service(key)
            return

        ports = [
            ServicePort(
                port=p.port,
                name=p.name,
                protocol=p.protocol,
                app_protocol=p.app_protocol,
            )
            for p in svc.ports
        ]

        if svc.cluster_ip == CLUSTER_IP_NONE:
            service_type = ServiceType.HEADLESS
            endpoints = get_endpoints_of_headless_service(
                self._client, svc.namespace, svc.name, self._cluster
            )
        else:
            service_type = ServiceType.CLUSTER_IP
            endpoints = [
                Endpoint(
                    addresses=list(svc.cluster_ips),
                    cluster=self._cluster.name,
                    zone=self._cluster.zone,
                    region=self._cluster.region,
                )
            ]

        global_service = GlobalService(
            name=svc.name,
            namespace=svc.namespace,
            cluster_name=self._cluster.name,
            spec=GlobalServiceSpec(type=service_type, ports=ports, endpoints=endpoints),
        )

        try:
            self._export(global_service)
        except Exception:
            log.exception("failed to export service %s", key)
            raise

        with self._lock:
            self._exported.add(key)

    @staticmethod
    def _should_skip(svc: Service) -> bool:
        return not is_global_service(svc.labels) or svc.type != SERVICE_TYPE_CLUSTER_IP

    def _revoke_global_service(self, key: ObjectKey) -> None:
        with self._lock:
            if key not in self._exported:
                log.debug("service %s was not exported before, skip revoking", key)
                return

        try:
            self._revoke(self._cluster.name, key.namespace, key.name)
        except Exception:
            log.exception("failed to revoke global service %s", key)
            raise

        with self._lock:
            self._exported.discard(key)


class LostServiceRevoker:
    """Revokes this cluster's endpoints from global services whose local service is gone."""

    def __init__(
        self,
        client: InMemoryClient,
        cluster_name: str,
        revoke_global_service: RevokeGlobalServiceFunc,
    ) -> None:
        self._client = client
        self._cluster_name = cluster_name
        self._revoke = revoke_global_service

    def reconcile(self, key: ObjectKey) -> None:
        """Check the global service with this key and revoke it if it was lost."""
        try:
            global_service = self._client.get(GlobalService, key)
        except NotFoundError:
            log.debug("global service %s is not found, skip it", key)
            return

        try:
            service = self._client.get(Service, key)
        except NotFoundError:
            self._revoke_if_necessary(global_service)
            return

        if not is_global_service(service.labels):
            log.debug("service %s is not exported, revoke expired endpoints", key)
            self._revoke_if_necessary(global_service)

    def _revoke_if_necessary(self, global_service: GlobalService) -> None:
        if not any(e.cluster == self._cluster_name for e in global_service.spec.endpoints):
            return

        log.debug("global service %s has expired endpoints, revoke them", global_service.key())
        try:
            self._revoke(self._cluster_name, global_service.namespace, global_service.name)
        except Exception:
            log.exception("failed to revoke expired service %s", global_service.key())