import json
import threading
from datetime import datetime, timedelta, timezone

import pytest
import responses

from servicehub.client import HttpError
from servicehub.kube import InMemoryClient
from servicehub.models import (
    Endpoint,
    GlobalService,
    GlobalServiceSpec,
    ObjectKey,
    Service,
    ServicePort,
    ServiceType,
    global_service_to_dict,
)
from servicehub.options import (
    Mode,
    Options,
    ServiceHub,
    build_parser,
    file_exists,
    main,
    parse_duration,
)

HUB_URL = "https://hub.example.com"


@pytest.fixture
def tls_files(tmp_path):
    paths = {}
    for name in ("key", "cert", "ca"):
        path = tmp_path / f"{name}.pem"
        path.write_text("placeholder")
        paths[name] = str(path)
    return paths


def make_options(tls_files, **overrides):
    values = dict(
        cluster="beijing",
        tls_key_file=tls_files["key"],
        tls_cert_file=tls_files["cert"],
        tls_ca_cert_file=tls_files["ca"],
    )
    values.update(overrides)
    return Options(**values)


def make_global_service(name, clusters):
    return GlobalService(
        name=name,
        namespace="default",
        spec=GlobalServiceSpec(
            type=ServiceType.CLUSTER_IP,
            ports=[ServicePort(port=80, name="web")],
            endpoints=[Endpoint(addresses=["192.168.1.1"], cluster=c) for c in clusters],
        ),
    )


@pytest.mark.parametrize(
    "text, expected",
    [
        ("5m", timedelta(minutes=5)),
        ("1m", timedelta(minutes=1)),
        ("5s", timedelta(seconds=5)),
        ("300ms", timedelta(milliseconds=300)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5s", timedelta(seconds=1.5)),
        ("-2s", timedelta(seconds=-2)),
        ("0", timedelta(0)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "5", "5x", "m", "1m 2s", "-"])
def test_parse_duration_rejects_malformed_text(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_file_exists(tmp_path):
    path = tmp_path / "file.pem"
    path.write_text("placeholder")
    assert file_exists(str(path)) is True
    assert file_exists(str(tmp_path)) is False
    assert file_exists(str(tmp_path / "missing.pem")) is False
    assert file_exists("") is False


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"cluster": ""}, "invalid cluster name: "),
        ({"cluster": "Beijing"}, "invalid cluster name: Beijing"),
        ({"cluster": "bei-"}, "invalid cluster name: bei-"),
        ({"zone": "---"}, "invalid zone name: ---"),
        ({"mode": "proxy"}, "unsupported mode, only server or client is allowed"),
        ({"region": ""}, "invalid region name: "),
        ({"tls_key_file": "missing"}, "TLS key file does not exist"),
        ({"tls_cert_file": "missing"}, "TLS cert file does not exist"),
        ({"tls_ca_cert_file": "missing"}, "TLS CA cert file does not exist"),
    ],
)
def test_validate_reports_invalid_settings(tls_files, overrides, message):
    options = make_options(tls_files, **overrides)
    with pytest.raises(ValueError) as excinfo:
        options.validate()
    assert str(excinfo.value) == message


def test_validate_checks_cluster_before_files():
    options = Options(cluster="Bad_Name")
    with pytest.raises(ValueError, match="invalid cluster name: Bad_Name"):
        options.validate()


def test_build_parser_defaults():
    args = build_parser().parse_args([])
    assert args.mode == Mode.SERVER.value
    assert args.zone == "default"
    assert args.region == "default"
    assert args.health_probe_listen_address == "0.0.0.0:3001"
    assert args.api_server_listen_address == "0.0.0.0:3000"
    assert args.cluster_expire_duration == timedelta(minutes=5)
    assert args.service_import_interval == timedelta(minutes=1)
    assert args.request_timeout == timedelta(seconds=5)
    assert args.allow_create_namespace is True


def test_build_parser_reads_values():
    args = build_parser().parse_args(
        [
            "--mode",
            "client",
            "--cluster",
            "shanghai",
            "--request-timeout",
            "10s",
            "--allow-create-namespace=false",
        ]
    )
    assert args.mode == "client"
    assert args.cluster == "shanghai"
    assert args.request_timeout == timedelta(seconds=10)
    assert args.allow_create_namespace is False


def test_build_parser_rejects_bad_duration():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--request-timeout", "soon"])


def test_main_returns_error_for_invalid_arguments():
    assert main(["--cluster", "Bad_Name"]) == 1


def test_record_global_services_by_cluster(tls_files):
    client = InMemoryClient()
    client.create(make_global_service("nginx", ["hub", "beijing"]))
    hub = ServiceHub(make_options(tls_files, cluster="hub"), client=client)

    before = datetime.now(timezone.utc)
    hub.record_global_services_by_cluster()

    assert hub.cluster_store.get("hub") is None
    beijing = hub.cluster_store.get("beijing")
    assert beijing.service_keys() == [ObjectKey(name="nginx", namespace="default")]
    assert beijing.expire_time > before
    assert beijing.is_expired() is False


def test_record_skips_clusters_already_known(tls_files):
    client = InMemoryClient()
    client.create(make_global_service("nginx", ["beijing"]))
    hub = ServiceHub(make_options(tls_files, cluster="hub"), client=client)
    hub.cluster_store.new("beijing")

    hub.record_global_services_by_cluster()

    assert hub.cluster_store.get("beijing").service_keys() == []


def test_server_mode_run_fails_without_certificates(tls_files):
    hub = ServiceHub(make_options(tls_files, cluster="hub", health_probe_listen_address="0"))
    stop_event = threading.Event()
    stop_event.set()
    with pytest.raises((OSError, ValueError)):
        hub.run(stop_event)


def test_client_mode_reports_failed_initial_heartbeat(tls_files):
    options = make_options(tls_files, mode="client", api_server_address=HUB_URL)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, f"{HUB_URL}/api/heartbeat", status=500, body="boom")
        with pytest.raises(HttpError) as excinfo:
            ServiceHub(options)
        assert excinfo.value.status_code == 500
        assert rsps.calls[0].request.headers["X-FabEdge-Cluster"] == "beijing"


def test_client_mode_run_imports_and_exports(tls_files):
    client = InMemoryClient()
    client.create(
        Service(
            name="nginx",
            namespace="default",
            labels={"fabedge.io/global-service": "true"},
            cluster_ip="10.0.0.1",
            cluster_ips=["10.0.0.1"],
            ports=[ServicePort(port=80, name="web")],
        )
    )
    remote = make_global_service("mysql", ["shanghai"])
    options = make_options(
        tls_files,
        mode="client",
        api_server_address=HUB_URL,
        health_probe_listen_address="0",
    )

    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add(responses.GET, f"{HUB_URL}/api/heartbeat", status=204)
        rsps.add(
            responses.GET,
            f"{HUB_URL}/api/global-services",
            json=[global_service_to_dict(remote)],
        )
        rsps.add(responses.POST, f"{HUB_URL}/api/global-services", status=204)

        hub = ServiceHub(options, client=client)
        stop_event = threading.Event()
        stop_event.set()
        hub.run(stop_event)

        uploads = [call for call in rsps.calls if call.request.method == "POST"]
        deletes = [call for call in rsps.calls if call.request.method == "DELETE"]

    imported = client.get(GlobalService, ObjectKey(name="mysql", namespace="default"))
    assert imported.spec.endpoints[0].cluster == "shanghai"

    assert len(uploads) == 1
    body = json.loads(uploads[0].request.body)
    assert body["metadata"]["name"] == "nginx"
    assert body["metadata"]["clusterName"] == "beijing"
    assert body["spec"]["endpoints"][0]["addresses"] == ["10.0.0.1"]
    assert deletes == []
    assert hub.exporter.exported_keys == frozenset({ObjectKey(name="nginx", namespace="default")})