"""HTTP API through which member clusters report heartbeats and global services."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from werkzeug.exceptions import HTTPException
from werkzeug.routing import Map, Rule
from werkzeug.serving import BaseWSGIServer, make_server
from werkzeug.wrappers import Request, Response

from .cluster import ClusterStore
from .kube import InMemoryClient
from .manager import GlobalServiceManager
from .models import GlobalService, global_service_from_dict, global_service_to_dict

HEADER_CLUSTER_NAME = "X-FabEdge-Cluster"
PATH_HEARTBEAT = "/api/heartbeat"
PATH_GLOBAL_SERVICES = "/api/global-services"

log = logging.getLogger(__name__)


def _text(status: int, message: str) -> Response:
    return Response(message, status=status, mimetype="text/plain")


def _no_content() -> Response:
    return Response(status=204)


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address: {address}")
    return host.strip("[]") or "0.0.0.0", int(port)


class ApiServer:
    """WSGI application serving the service hub API."""

    def __init__(
        self,
        client: InMemoryClient,
        cluster_store: ClusterStore,
        global_service_manager: GlobalServiceManager,
        cluster_expire_duration: timedelta = timedelta(minutes=5),
    ) -> None:
        self._client = client
        self._cluster_store = cluster_store
        self._manager = global_service_manager
        self._cluster_expire_duration = cluster_expire_duration
        self._server: Optional[BaseWSGIServer] = None
        self._url_map = Map(
            [
                Rule(PATH_HEARTBEAT, methods=["GET"], endpoint="heartbeat"),
                Rule(PATH_GLOBAL_SERVICES, methods=["GET"], endpoint="list"),
                Rule(PATH_GLOBAL_SERVICES, methods=["POST"], endpoint="upload"),
                Rule(
                    PATH_GLOBAL_SERVICES + "/<namespace>/<name>",
                    methods=["DELETE"],
                    endpoint="delete",
                ),
            ]
        )
        self._handlers: dict[str, Callable[..., Response]] = {
            "heartbeat": self._heartbeat,
            "list": self._get_all_global_services,
            "upload": self._upload_global_service,
            "delete": self._delete_endpoints,
        }

    def __call__(self, environ: dict[str, Any], start_response: Callable) -> Any:
        response = self._dispatch(Request(environ))
        return response(environ, start_response)

    def serve(self, address: str, ssl_context: Any = None) -> None:
        """Listen on address ("host:port") and serve requests until shut down."""
        host, port = _split_address(address)
        self._server = make_server(host, port, self, threaded=True, ssl_context=ssl_context)
        self._server.serve_forever()

    def shutdown(self) -> None:
        """Stop a server started by serve."""
        if self._server is not None:
            self._server.shutdown()

    def _dispatch(self, request: Request) -> Response:
        cluster_name = self._cluster_name(request)
        if cluster_name:
            cluster = self._cluster_store.new(cluster_name)
            cluster.expire_time = datetime.now(timezone.utc) + self._cluster_expire_duration

        adapter = self._url_map.bind_to_environ(request.environ)
        try:
            endpoint, values = adapter.match()
            return self._handlers[endpoint](request, **values)
        except HTTPException as exc:
            return exc.get_response(request.environ)
        except Exception:
            log.exception("unexpected error while handling %s %s", request.method, request.path)
            return Response(status=500)

    @staticmethod
    def _cluster_name(request: Request) -> str:
        return request.headers.get(HEADER_CLUSTER_NAME, "")

    def _heartbeat(self, request: Request) -> Response:
        return _no_content()

    def _get_all_global_services(self, request: Request) -> Response:
        try:
            services = self._client.list(GlobalService)
        except Exception as exc:
            return _text(500, str(exc))

        items = [
            global_service_to_dict(
                GlobalService(
                    name=svc.name,
                    namespace=svc.namespace,
                    resource_version=svc.resource_version,
                    spec=svc.spec,
                )
            )
            for svc in services
        ]
        return Response(json.dumps(items), status=200, mimetype="application/json")

    def _upload_global_service(self, request: Request) -> Response:
        try:
            payload = json.loads(request.get_data())
            if not isinstance(payload, dict):
                raise ValueError("expected a JSON object")
            service = global_service_from_dict(payload)
        except (ValueError, TypeError, AttributeError, KeyError) as exc:
            return _text(400, f"unable to unmarshal request body: {exc}")

        if not (service.name and service.namespace and service.spec.ports and service.spec.endpoints):
            return _text(400, "data is not valid")

        try:
            self._manager.create_or_merge(service)
        except Exception as exc:
            return _text(500, str(exc))
        else:
            return _no_content()
        finally:
            cluster = self._cluster_store.new(self._cluster_name(request))
            cluster.add_service_key(service.key())

    def _delete_endpoints(self, request: Request, namespace: str, name: str) -> Response:
        cluster_name = self._cluster_name(request)
        try:
            self._manager.revoke(cluster_name, namespace, name)
        except Exception as exc:
            return _text(500, f"failed to find global service: {exc}")

        cluster = self._cluster_store.get(cluster_name)
        if cluster is not None:
            cluster.remove_service_key(GlobalService(name=name, namespace=namespace).key())
        return _no_content()