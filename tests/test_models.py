import json

from servicehub.models import (
    Endpoint,
    GlobalService,
    GlobalServiceSpec,
    ObjectKey,
    ObjectReference,
    ServicePort,
    ServiceType,
    global_service_from_dict,
    global_service_to_dict,
)


def make_service():
    return GlobalService(
        name="nginx",
        namespace="default",
        cluster_name="beijing",
        resource_version="123456",
        labels={"app": "nginx"},
        spec=GlobalServiceSpec(
            type=ServiceType.CLUSTER_IP,
            ports=[ServicePort(port=80, name="web", protocol="TCP")],
            endpoints=[
                Endpoint(
                    addresses=["192.168.1.1"],
                    hostname="nginx-1",
                    target_ref=ObjectReference(kind="Service", name="nginx", namespace="default"),
                    cluster="beijing",
                    zone="beijing",
                    region="north",
                )
            ],
        ),
    )


def test_round_trip_full_service():
    service = make_service()
    data = json.loads(json.dumps(global_service_to_dict(service)))
    assert global_service_from_dict(data) == service


def test_round_trip_minimal_endpoint_omits_empty_fields():
    service = GlobalService(
        name="test",
        namespace="default",
        spec=GlobalServiceSpec(
            ports=[ServicePort(port=80, name="web", protocol="TCP")],
            endpoints=[Endpoint(addresses=["192.168.1.1"])],
        ),
    )
    data = global_service_to_dict(service)
    assert "hostname" not in data["spec"]["endpoints"][0]
    assert global_service_from_dict(data) == service


def test_wire_shape():
    data = global_service_to_dict(make_service())
    assert data["metadata"]["name"] == "nginx"
    assert data["metadata"]["clusterName"] == "beijing"
    assert data["spec"]["type"] == "ClusterIP"
    assert data["spec"]["ports"][0]["port"] == 80
    assert data["spec"]["endpoints"][0]["targetRef"]["kind"] == "Service"


def test_from_dict_defaults():
    service = global_service_from_dict({"metadata": {"name": "a", "namespace": "b"}})
    assert service.spec.type is None
    assert service.spec.endpoints == []
    assert service.key() == ObjectKey(name="a", namespace="b")


def test_key_of_service():
    assert make_service().key() == ObjectKey(name="nginx", namespace="default")


def test_object_keys_behave_as_set_members():
    keys = {ObjectKey("nginx", "default"), ObjectKey("nginx", "default"), ObjectKey("nginx", "test")}
    assert len(keys) == 2
    assert ObjectKey("nginx", "test") in keys