"""Helpers for checking and creating namespaces."""

from __future__ import annotations

from .kube import AlreadyExistsError, InMemoryClient, Namespace, NotFoundError
from .models import APP_SERVICE_HUB, KEY_CREATED_BY, ObjectKey


def exists(client: InMemoryClient, name: str) -> bool:
    """Return True if the namespace exists."""
    try:
        client.get(Namespace, ObjectKey(name=name))
    except NotFoundError:
        return False
    return True


def ensure(client: InMemoryClient, name: str) -> None:
    """Create the namespace unless it already exists."""
    if exists(client, name):
        return
    try:
        client.create(Namespace(name=name, labels={KEY_CREATED_BY: APP_SERVICE_HUB}))
    except AlreadyExistsError:
        pass