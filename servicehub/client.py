"""HTTP client used by member clusters to talk to the service hub API server."""

from __future__ import annotations

import json
from typing import Any, Optional, Union
from urllib.parse import urljoin, urlsplit

import requests

from .apiserver import HEADER_CLUSTER_NAME, PATH_GLOBAL_SERVICES, PATH_HEARTBEAT
from .models import GlobalService, global_service_from_dict, global_service_to_dict

DEFAULT_TIMEOUT = 5.0


class HttpError(Exception):
    """Raised when the API server answers with a status code of 400 or above."""

    def __init__(self, response: requests.Response, message: str) -> None:
        super().__init__(f"Status Code: {response.status_code}. Message: {message}")
        self.response = response
        self.message = message

    @property
    def status_code(self) -> int:
        return self.response.status_code


def _handle_response(response: requests.Response) -> Optional[bytes]:
    with response:
        if response.status_code >= 400:
            raise HttpError(response, response.text)
        if response.status_code == 204:
            return None
        return response.content


class ServiceHubClient:
    """Sends heartbeats and global services of one cluster to the API server."""

    def __init__(
        self,
        api_server_address: str,
        cluster_name: str,
        *,
        cert: Optional[tuple[str, str]] = None,
        verify: Union[bool, str] = True,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        parts = urlsplit(api_server_address)
        if not parts.scheme or not parts.netloc:
            raise ValueError(f"invalid API server address: {api_server_address}")
        self._base_url = api_server_address
        self.cluster_name = cluster_name
        self._timeout = timeout
        self._session = requests.Session()
        self._session.verify = verify
        if cert is not None:
            self._session.cert = cert

    def __enter__(self) -> "ServiceHubClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._session.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Optional[bytes]:
        headers = {HEADER_CLUSTER_NAME: self.cluster_name, **kwargs.pop("headers", {})}
        response = self._session.request(
            method,
            urljoin(self._base_url, path),
            headers=headers,
            timeout=self._timeout,
            **kwargs,
        )
        return _handle_response(response)

    def heartbeat(self) -> None:
        self._request("GET", PATH_HEARTBEAT)

    def upload_global_service(self, service: GlobalService) -> None:
        body = json.dumps(global_service_to_dict(service)).encode("utf-8")
        self._request(
            "POST",
            PATH_GLOBAL_SERVICES,
            data=body,
            headers={"Content-Type": "application/json"},
        )

    def download_all_global_services(self) -> list[GlobalService]:
        content = self._request("GET", PATH_GLOBAL_SERVICES)
        items = json.loads(content or b"")
        return [global_service_from_dict(item) for item in items or []]

    def delete_global_service(self, namespace: str, name: str) -> None:
        self._request("DELETE", f"{PATH_GLOBAL_SERVICES}/{namespace}/{name}")