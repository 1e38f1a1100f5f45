import json

import pytest
import responses

from servicehub.apiserver import HEADER_CLUSTER_NAME, PATH_GLOBAL_SERVICES, PATH_HEARTBEAT
from servicehub.client import HttpError, ServiceHubClient
from servicehub.models import (
    Endpoint,
    GlobalService,
    GlobalServiceSpec,
    ServicePort,
    global_service_to_dict,
)

BASE = "http://hub.example.com"
CLUSTER = "fabedge"


def _service(name, namespace, address):
    return GlobalService(
        name=name,
        namespace=namespace,
        spec=GlobalServiceSpec(
            ports=[ServicePort(name="web", port=80, protocol="TCP")],
            endpoints=[Endpoint(addresses=[address])],
        ),
    )


@pytest.fixture
def mock():
    with responses.RequestsMock() as rsps:
        yield rsps


@pytest.fixture
def cli():
    with ServiceHubClient(BASE, CLUSTER) as client:
        yield client


def test_heartbeat(mock, cli):
    mock.add(responses.GET, BASE + PATH_HEARTBEAT, status=204)
    assert cli.heartbeat() is None
    assert len(mock.calls) == 1
    request = mock.calls[0].request
    assert request.headers[HEADER_CLUSTER_NAME] == CLUSTER
    assert request.method == "GET"


def test_upload_global_service(mock, cli):
    mock.add(responses.POST, BASE + PATH_GLOBAL_SERVICES, status=204)
    service = _service("test", "default", "192.168.1.1")
    expected = json.dumps(global_service_to_dict(service)).encode("utf-8")

    cli.upload_global_service(service)
    request = mock.calls[0].request
    assert request.headers[HEADER_CLUSTER_NAME] == CLUSTER
    assert request.headers["Content-Type"] == "application/json"
    assert request.method == "POST"
    assert request.body == expected


def test_download_all_global_services(mock, cli):
    expected = [
        _service("test", "default", "192.168.1.1"),
        _service("nginx", "test", "192.168.1.2"),
    ]
    mock.add(
        responses.GET,
        BASE + PATH_GLOBAL_SERVICES,
        json=[global_service_to_dict(s) for s in expected],
    )

    services = cli.download_all_global_services()
    request = mock.calls[0].request
    assert request.headers[HEADER_CLUSTER_NAME] == CLUSTER
    assert request.method == "GET"
    assert services == expected


def test_download_null_is_empty(mock, cli):
    mock.add(responses.GET, BASE + PATH_GLOBAL_SERVICES, body="null")
    assert cli.download_all_global_services() == []


def test_delete_global_service(mock, cli):
    path = f"{PATH_GLOBAL_SERVICES}/default/nginx"
    mock.add(responses.DELETE, BASE + path, status=204)

    assert cli.delete_global_service("default", "nginx") is None
    assert len(mock.calls) == 1
    request = mock.calls[0].request
    assert request.path_url == path
    assert request.headers[HEADER_CLUSTER_NAME] == CLUSTER
    assert request.method == "DELETE"


def test_error_status_raises_http_error(mock, cli):
    mock.add(responses.GET, BASE + PATH_HEARTBEAT, status=500, body="broken")
    with pytest.raises(HttpError) as info:
        cli.heartbeat()
    assert info.value.status_code == 500
    assert info.value.message == "broken"
    assert str(info.value) == "Status Code: 500. Message: broken"


def test_download_error_raises_http_error(mock, cli):
    mock.add(responses.GET, BASE + PATH_GLOBAL_SERVICES, status=400, body="bad")
    with pytest.raises(HttpError) as info:
        cli.download_all_global_services()
    assert info.value.status_code == 400


def test_invalid_address_is_rejected():
    with pytest.raises(ValueError):
        ServiceHubClient("not a url", CLUSTER)