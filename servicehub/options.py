"""Command-line options and the wiring that runs the service hub in server or client mode."""

from __future__ import annotations

import argparse
import logging
import os
import re
import signal
import ssl
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from werkzeug.serving import BaseWSGIServer, make_server
from werkzeug.wrappers import Request, Response

from .apiserver import ApiServer
from .cleaner import ClusterCleaner
from .client import ServiceHubClient
from .cluster import ClusterStore
from .exporter import ClusterInfo, LostServiceRevoker, ServiceExporter
from .importer import GlobalServiceImporter
from .kube import InMemoryClient
from .manager import GlobalServiceManager
from .models import GlobalService, ObjectKey, Service

log = logging.getLogger(__name__)

_DNS1123 = re.compile(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*")
_ZONE_NAME = re.compile(r"[a-zA-Z0-9]+")
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_UNIT_MICROSECONDS = {
    "ns": 0.001,
    "us": 1.0,
    "µs": 1.0,
    "μs": 1.0,
    "ms": 1_000.0,
    "s": 1_000_000.0,
    "m": 60_000_000.0,
    "h": 3_600_000_000.0,
}
_RESYNC_PERIOD = timedelta(seconds=30)


class Mode(str, Enum):
    SERVER = "server"
    CLIENT = "client"


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "5m", "1h30m", "300ms" or "-1.5s"."""
    body = text
    sign = 1
    if body[:1] in ("+", "-"):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if body == "0":
        return timedelta(0)
    if not body:
        raise ValueError(f"invalid duration {text!r}")

    total = 0.0
    pos = 0
    while pos < len(body):
        match = _DURATION_PART.match(body, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _UNIT_MICROSECONDS[match.group(2)]
        pos = match.end()
    return timedelta(microseconds=sign * total)


def file_exists(filename: str) -> bool:
    """Return True if filename names an existing file that is not a directory."""
    return bool(filename) and os.path.isfile(filename)


@dataclass
class Options:
    """Settings of one service hub instance."""

    cluster: str = ""
    zone: str = "default"
    region: str = "default"
    mode: str = Mode.SERVER.value

    health_probe_listen_address: str = "0.0.0.0:3001"
    api_server_listen_address: str = "0.0.0.0:3000"
    api_server_address: str = ""
    tls_key_file: str = ""
    tls_cert_file: str = ""
    tls_ca_cert_file: str = ""

    cluster_expire_time: timedelta = timedelta(minutes=5)
    service_import_interval: timedelta = timedelta(minutes=1)
    request_timeout: timedelta = timedelta(seconds=5)
    allow_create_namespace: bool = True

    def validate(self) -> None:
        """Raise ValueError describing the first invalid setting."""
        if not _DNS1123.fullmatch(self.cluster):
            raise ValueError(f"invalid cluster name: {self.cluster}")
        if not _ZONE_NAME.search(self.zone):
            raise ValueError(f"invalid zone name: {self.zone}")
        if self.mode not in (Mode.SERVER.value, Mode.CLIENT.value):
            raise ValueError("unsupported mode, only server or client is allowed")
        if not _ZONE_NAME.search(self.region):
            raise ValueError(f"invalid region name: {self.region}")
        if not file_exists(self.tls_key_file):
            raise ValueError("TLS key file does not exist")
        if not file_exists(self.tls_cert_file):
            raise ValueError("TLS cert file does not exist")
        if not file_exists(self.tls_ca_cert_file):
            raise ValueError("TLS CA cert file does not exist")


def _health_app(environ: dict[str, Any], start_response: Callable) -> Any:
    request = Request(environ)
    if request.path in ("/healthz", "/readyz"):
        response = Response("ok", status=200, mimetype="text/plain")
    else:
        response = Response("not found", status=404, mimetype="text/plain")
    return response(environ, start_response)


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address: {address}")
    return host.strip("[]") or "0.0.0.0", int(port)


class ServiceHub:
    """Runs the API server and cleaner (server mode) or the importer (client mode), plus the exporter."""

    def __init__(self, options: Options, client: Optional[InMemoryClient] = None) -> None:
        self.options = options
        self.mode = Mode(options.mode)
        self.client = client if client is not None else InMemoryClient()
        self.cluster_store = ClusterStore()
        self.api_server: Optional[ApiServer] = None
        self.hub_client: Optional[ServiceHubClient] = None
        self.cleaner: Optional[ClusterCleaner] = None
        self.importer: Optional[GlobalServiceImporter] = None

        if self.mode is Mode.SERVER:
            manager = GlobalServiceManager(self.client, options.allow_create_namespace)
            self.export_global_service = manager.create_or_merge
            self.revoke_global_service = manager.revoke
            self.api_server = ApiServer(
                self.client,
                self.cluster_store,
                manager,
                cluster_expire_duration=options.cluster_expire_time,
            )
            self.cleaner = ClusterCleaner(
                self.cluster_store,
                self.revoke_global_service,
                interval=options.cluster_expire_time,
            )
        else:
            hub_client = ServiceHubClient(
                options.api_server_address,
                options.cluster,
                cert=(options.tls_cert_file, options.tls_key_file),
                verify=options.tls_ca_cert_file or True,
                timeout=options.request_timeout.total_seconds(),
            )
            self.hub_client = hub_client
            self.export_global_service = hub_client.upload_global_service

            def revoke(cluster_name: str, namespace: str, service_name: str) -> None:
                hub_client.delete_global_service(namespace, service_name)

            self.revoke_global_service = revoke
            try:
                hub_client.heartbeat()
            except Exception:
                log.exception("failed to send initial heartbeat")
                raise
            self.importer = GlobalServiceImporter(
                self.client,
                hub_client.download_all_global_services,
                interval=options.service_import_interval,
                allow_create_namespace=options.allow_create_namespace,
            )

        self.exporter = ServiceExporter(
            self.client,
            ClusterInfo(name=options.cluster, zone=options.zone, region=options.region),
            self.export_global_service,
            self.revoke_global_service,
        )
        self.revoker = LostServiceRevoker(self.client, options.cluster, self.revoke_global_service)

    def _server_ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context(
            ssl.Purpose.CLIENT_AUTH, cafile=self.options.tls_ca_cert_file
        )
        context.load_cert_chain(self.options.tls_cert_file, self.options.tls_key_file)
        context.verify_mode = ssl.CERT_REQUIRED
        return context

    def record_global_services_by_cluster(self) -> None:
        """Register clusters found in stored global services so that expired ones get cleaned."""
        try:
            services = self.client.list(GlobalService)
        except Exception:
            log.exception("failed to list all global services")
            return

        for service in services:
            for endpoint in service.spec.endpoints:
                # this cluster runs the server itself, nothing to record for it
                if endpoint.cluster == self.options.cluster:
                    continue
                if self.cluster_store.get(endpoint.cluster) is None:
                    cluster = self.cluster_store.new(endpoint.cluster)
                    cluster.expire_time = datetime.now(timezone.utc) + self.options.cluster_expire_time
                    cluster.add_service_key(service.key())

    def _sync_once(self) -> None:
        keys = {ObjectKey(name=s.name, namespace=s.namespace) for s in self.client.list(Service)}
        keys |= self.exporter.exported_keys
        for key in sorted(keys):
            try:
                self.exporter.reconcile(key)
            except Exception:
                log.exception("failed to reconcile service %s", key)

        for service in self.client.list(GlobalService):
            try:
                self.revoker.reconcile(service.key())
            except Exception:
                log.exception("failed to reconcile global service %s", service.key())

    def _sync_loop(self, stop_event: threading.Event) -> None:
        self._sync_once()
        while not stop_event.wait(_RESYNC_PERIOD.total_seconds()):
            self._sync_once()

    def run(self, stop_event: threading.Event) -> None:
        """Run every component until stop_event is set; re-raise a server failure."""
        errors: list[BaseException] = []
        threads: list[threading.Thread] = []

        def spawn(target: Callable[..., None], *args: Any) -> None:
            thread = threading.Thread(target=target, args=args, daemon=True)
            thread.start()
            threads.append(thread)

        ssl_context = self._server_ssl_context() if self.mode is Mode.SERVER else None

        health_server: Optional[BaseWSGIServer] = None
        if self.options.health_probe_listen_address not in ("", "0"):
            host, port = _split_address(self.options.health_probe_listen_address)
            health_server = make_server(host, port, _health_app, threaded=True)
            spawn(health_server.serve_forever)

        if self.mode is Mode.SERVER:
            api_server = self.api_server
            assert api_server is not None and self.cleaner is not None

            def serve_api() -> None:
                try:
                    api_server.serve(self.options.api_server_listen_address, ssl_context)
                except BaseException as exc:
                    log.exception("API server stopped")
                    errors.append(exc)
                    stop_event.set()

            spawn(self.record_global_services_by_cluster)
            spawn(serve_api)
            spawn(self.cleaner.run, stop_event)
        else:
            assert self.importer is not None
            spawn(self.importer.run, stop_event)

        spawn(self._sync_loop, stop_event)

        stop_event.wait()
        if self.api_server is not None:
            self.api_server.shutdown()
        if health_server is not None:
            health_server.shutdown()
        for thread in threads:
            thread.join()
        if self.hub_client is not None:
            self.hub_client.close()
        if errors:
            raise errors[0]


def _parse_bool(text: str) -> bool:
    lowered = text.lower()
    if lowered in ("1", "t", "true"):
        return True
    if lowered in ("0", "f", "false"):
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value: {text!r}")


def _duration_arg(text: str) -> timedelta:
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="service-hub")
    parser.add_argument(
        "--mode",
        default="server",
        help="Mode determines whether to start API server or to use client to "
        "import/export global services. Two options: server/client",
    )
    parser.add_argument(
        "--cluster",
        default="",
        help="The name of cluster must be unique among all clusters and be a valid dns name(RFC 1123)",
    )
    parser.add_argument(
        "--zone",
        default="default",
        help="The zone where the cluster is located, a zone name may contain the letters a-z or A-Z or digits 0-9",
    )
    parser.add_argument(
        "--region",
        default="default",
        help="The region where the cluster is located, a region name may contain the letters a-z or A-Z or digits 0-9",
    )
    parser.add_argument(
        "--health-probe-listen-address",
        default="0.0.0.0:3001",
        help="The address on which health probe listen",
    )
    parser.add_argument(
        "--api-server-listen-address",
        default="0.0.0.0:3000",
        help="The address on which API server listen",
    )
    parser.add_argument(
        "--api-server-address",
        default="",
        help="The address with which client uses to visit API server",
    )
    parser.add_argument("--tls-key-file", default="", help="The key file for API server/client")
    parser.add_argument("--tls-cert-file", default="", help="The cert file for API server/client")
    parser.add_argument("--tls-ca-cert-file", default="", help="The CA cert file for API server/client")
    parser.add_argument(
        "--cluster-expire-duration",
        type=_duration_arg,
        default=timedelta(minutes=5),
        help="Expiration time after cluster stops heartbeat",
    )
    parser.add_argument(
        "--service-import-interval",
        type=_duration_arg,
        default=timedelta(minutes=1),
        help="The interval between each services importing routine",
    )
    parser.add_argument(
        "--request-timeout",
        type=_duration_arg,
        default=timedelta(seconds=5),
        help="Timeout for kubernetes API request",
    )
    parser.add_argument(
        "--allow-create-namespace",
        type=_parse_bool,
        nargs="?",
        const=True,
        default=True,
        help="Determine if service-hub are allowed to create namespace if needed",
    )
    parser.add_argument("--v", type=int, default=0, help="number for the log level verbosity")
    return parser


def _options_from_args(args: argparse.Namespace) -> Options:
    return Options(
        cluster=args.cluster,
        zone=args.zone,
        region=args.region,
        mode=args.mode,
        health_probe_listen_address=args.health_probe_listen_address,
        api_server_listen_address=args.api_server_listen_address,
        api_server_address=args.api_server_address,
        tls_key_file=args.tls_key_file,
        tls_cert_file=args.tls_cert_file,
        tls_ca_cert_file=args.tls_ca_cert_file,
        cluster_expire_time=args.cluster_expire_duration,
        service_import_interval=args.service_import_interval,
        request_timeout=args.request_timeout,
        allow_create_namespace=args.allow_create_namespace,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.v >= 5 else logging.INFO)

    options = _options_from_args(args)
    try:
        options.validate()
    except ValueError:
        log.exception("invalid arguments found")
        return 1

    try:
        hub = ServiceHub(options)
    except Exception:
        log.exception("failed to set up service hub")
        return 1

    stop_event = threading.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, lambda *_: stop_event.set())

    try:
        hub.run(stop_event)
    except Exception:
        log.exception("service hub stopped with an error")
        return 1
    return 0