"""Helpers shared by the resource ensurers.

Every ensurer follows the same check-then-create shape: look the object
up in the local cache, build and create it only when it is absent, and
treat losing a creation race as success.
"""

import base64
from collections.abc import Callable
from typing import Any, Protocol

from icecream import ic
from kubernetes.client.exceptions import ApiException

from kubeception import console
from kubeception.exceptions import ControllerError, NotFoundError, is_already_exists
from kubeception.models import Cluster

# Label attached to every dependent resource
CLUSTER_LABEL = "kubeception.k8s.io/cluster"


class Lister(Protocol):
    """Read access to a local cache."""

    def get(self, name: str, namespace: str = "") -> Any: ...


def cluster_labels(cluster: Cluster) -> dict[str, str]:
    """Return the labels identifying resources owned by *cluster*."""
    return {CLUSTER_LABEL: cluster.name}


def object_exists(lister: Lister, kind: str, name: str, namespace: str = "") -> bool:
    """Return whether the object is in the cache.

    Raises:
        ControllerError: If the cache read fails for any reason other than
            the object being absent.

    """
    try:
        lister.get(name, namespace)
    except NotFoundError:
        return False
    except Exception as err:
        raise ControllerError(f"failed to get {kind} {name!r} from lister: {err}") from err
    return True


def create_if_absent(create: Callable[[], Any], kind: str, name: str, namespace: str = "") -> bool:
    """Issue a create, tolerating an "already exists" answer.

    Args:
        create: Zero-argument callable performing the API create.
        kind: Resource kind, for log output.
        name: Resource name, for log output.
        namespace: Resource namespace, for log output.

    Returns:
        True if the object was created, False if another writer was first.

    Raises:
        ApiException: For any API failure other than "already exists".

    """
    target = f"{namespace}/{name}" if namespace else name
    try:
        create()
    except ApiException as err:
        if is_already_exists(err):
            ic(kind, target, err.status)
            console.step(f"{kind} {console.highlight(target)} already exists")
            return False
        raise
    console.success(f"Created {kind} {console.highlight(target)}")
    return True


def encode_secret_data(data: dict[str, bytes]) -> dict[str, str]:
    """Base64 encode secret values as the Kubernetes API expects."""
    return {key: base64.b64encode(value).decode("ascii") for key, value in data.items()}


def decode_secret_value(secret: Any, key: str) -> bytes:
    """Return one decoded value of a cached secret.

    Raises:
        ControllerError: If the key is missing or not valid base64.

    """
    data = secret.get("data") if isinstance(secret, dict) else getattr(secret, "data", None)
    value = (data or {}).get(key)
    if not value:
        raise ControllerError(f"secret has no {key!r} entry")
    try:
        return base64.b64decode(value, validate=True)
    except ValueError as err:
        raise ControllerError(f"secret entry {key!r} is not valid base64: {err}") from err
