"""Data types shared by the service hub: global services, services and endpoint slices."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

KEY_CREATED_BY = "fabedge.io/created-by"
APP_SERVICE_HUB = "service-hub"


@dataclass(frozen=True, order=True)
class ObjectKey:
    """Identifies an object by name and namespace (empty for cluster-scoped objects)."""

    name: str
    namespace: str = ""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


class ServiceType(str, Enum):
    CLUSTER_IP = "ClusterIP"
    HEADLESS = "Headless"


class AddressType(str, Enum):
    IPV4 = "IPv4"
    IPV6 = "IPv6"
    FQDN = "FQDN"


@dataclass
class ServicePort:
    port: int
    name: str = ""
    protocol: str = "TCP"
    app_protocol: Optional[str] = None


@dataclass
class ObjectReference:
    kind: str = ""
    name: str = ""
    namespace: str = ""


@dataclass
class Endpoint:
    addresses: list[str] = field(default_factory=list)
    hostname: Optional[str] = None
    target_ref: Optional[ObjectReference] = None
    cluster: str = ""
    zone: str = ""
    region: str = ""


@dataclass
class GlobalServiceSpec:
    type: Optional[ServiceType] = None
    ports: list[ServicePort] = field(default_factory=list)
    endpoints: list[Endpoint] = field(default_factory=list)


@dataclass
class GlobalService:
    name: str
    namespace: str
    cluster_name: str = ""
    resource_version: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    spec: GlobalServiceSpec = field(default_factory=GlobalServiceSpec)

    def key(self) -> ObjectKey:
        return ObjectKey(name=self.name, namespace=self.namespace)


@dataclass
class Service:
    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    type: str = "ClusterIP"
    cluster_ip: str = ""
    cluster_ips: list[str] = field(default_factory=list)
    ports: list[ServicePort] = field(default_factory=list)
    resource_version: str = ""


@dataclass
class SliceEndpoint:
    addresses: list[str] = field(default_factory=list)
    hostname: Optional[str] = None
    target_ref: Optional[ObjectReference] = None


@dataclass
class EndpointSlice:
    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    address_type: AddressType = AddressType.IPV4
    endpoints: list[SliceEndpoint] = field(default_factory=list)
    resource_version: str = ""


ExportGlobalServiceFunc = Callable[[GlobalService], None]
RevokeGlobalServiceFunc = Callable[[str, str, str], None]


def _prune(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v not in (None, "", {}, [])}


def _port_to_dict(port: ServicePort) -> dict[str, Any]:
    return _prune(
        {
            "name": port.name,
            "port": port.port,
            "protocol": port.protocol,
            "appProtocol": port.app_protocol,
        }
    )


def _port_from_dict(data: dict[str, Any]) -> ServicePort:
    return ServicePort(
        port=int(data.get("port", 0)),
        name=data.get("name", ""),
        protocol=data.get("protocol", "TCP"),
        app_protocol=data.get("appProtocol"),
    )


def _reference_to_dict(ref: ObjectReference) -> dict[str, Any]:
    return _prune({"kind": ref.kind, "namespace": ref.namespace, "name": ref.name})


def _reference_from_dict(data: dict[str, Any]) -> ObjectReference:
    return ObjectReference(
        kind=data.get("kind", ""),
        name=data.get("name", ""),
        namespace=data.get("namespace", ""),
    )


def _endpoint_to_dict(endpoint: Endpoint) -> dict[str, Any]:
    data = _prune(
        {
            "hostname": endpoint.hostname,
            "targetRef": _reference_to_dict(endpoint.target_ref) if endpoint.target_ref else None,
            "cluster": endpoint.cluster,
            "zone": endpoint.zone,
            "region": endpoint.region,
        }
    )
    return {"addresses": list(endpoint.addresses), **data}


def _endpoint_from_dict(data: dict[str, Any]) -> Endpoint:
    ref = data.get("targetRef")
    return Endpoint(
        addresses=list(data.get("addresses") or []),
        hostname=data.get("hostname"),
        target_ref=_reference_from_dict(ref) if ref else None,
        cluster=data.get("cluster", ""),
        zone=data.get("zone", ""),
        region=data.get("region", ""),
    )


def global_service_to_dict(service: GlobalService) -> dict[str, Any]:
    """Serialise a global service into its JSON wire form."""
    metadata = _prune(
        {
            "name": service.name,
            "namespace": service.namespace,
            "clusterName": service.cluster_name,
            "resourceVersion": service.resource_version,
            "labels": dict(service.labels),
        }
    )
    spec = _prune(
        {
            "type": service.spec.type.value if service.spec.type else None,
            "ports": [_port_to_dict(p) for p in service.spec.ports],
            "endpoints": [_endpoint_to_dict(e) for e in service.spec.endpoints],
        }
    )
    return {"metadata": metadata, "spec": spec}


def global_service_from_dict(data: dict[str, Any]) -> GlobalService:
    """Build a global service from its JSON wire form."""
    metadata = data.get("metadata") or {}
    spec = data.get("spec") or {}
    service_type = spec.get("type")
    return GlobalService(
        name=metadata.get("name", ""),
        namespace=metadata.get("namespace", ""),
        cluster_name=metadata.get("clusterName", ""),
        resource_version=metadata.get("resourceVersion", ""),
        labels=dict(metadata.get("labels") or {}),
        spec=GlobalServiceSpec(
            type=ServiceType(service_type) if service_type else None,
            ports=[_port_from_dict(p) for p in spec.get("ports") or []],
            endpoints=[_endpoint_from_dict(e) for e in spec.get("endpoints") or []],
        ),
    )