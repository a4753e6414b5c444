"""Data models for kubeception.

This module provides type-safe data structures for the cluster record
and the resources derived from it.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple

# Cluster custom resource coordinates
CLUSTER_GROUP = "cluster.k8s.io"
CLUSTER_VERSION = "v1alpha1"
CLUSTER_PLURAL = "clusters"

DEFAULT_DNS_DOMAIN = "cluster.local"


class ResourceKind(str, Enum):
    """Dependent resources managed for every cluster.

    Inherits from str so members can be used directly in log output.
    The value is the step description used in error messages.
    """

    NAMESPACE = "cluster namespace"
    EXTERNAL_SERVICE = "external apiserver service"
    ROOT_CA = "cluster root ca secret"
    APISERVER_TLS = "apiserver tls cert secret"
    KUBELET_CLIENT = "apiserver kubelet client cert secret"
    SERVICE_ACCOUNT_KEY = "service account key secret"
    TOKEN_USERS = "token users csv secret"


class KeyPair(NamedTuple):
    """A PEM encoded certificate and its private key.

    Attributes:
        cert: PEM encoded X.509 certificate.
        key: PEM encoded private key.

    """

    cert: bytes
    key: bytes


class ApiEndpoint(NamedTuple):
    """Externally reachable address of a cluster API server."""

    host: str
    port: int


@dataclass(frozen=True, slots=True)
class Cluster:
    """Desired-state record of a control-plane cluster.

    Attributes:
        name: Unique cluster name.
        namespace: Namespace of the record, empty for cluster-scoped records.
        service_cidr_blocks: Service network CIDR blocks.
        dns_domain: Cluster DNS domain.
        raw: The full object as stored, used as the opaque spec/status payload.

    """

    name: str
    namespace: str = ""
    service_cidr_blocks: tuple[str, ...] = ()
    dns_domain: str = DEFAULT_DNS_DOMAIN
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "Cluster":
        """Build a Cluster from a raw custom object.

        The object is deep copied so the cached original is never mutated.

        Args:
            obj: The Cluster custom object as returned by the API.

        Returns:
            The parsed Cluster.

        """
        raw = copy.deepcopy(obj)
        metadata = raw.get("metadata") or {}
        network = (raw.get("spec") or {}).get("clusterNetwork") or {}
        services = network.get("services") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace") or "",
            service_cidr_blocks=tuple(services.get("cidrBlocks") or ()),
            dns_domain=network.get("dnsDomain") or DEFAULT_DNS_DOMAIN,
            raw=raw,
        )

    @property
    def key(self) -> str:
        """The work queue key of this cluster."""
        return f"{self.namespace}/{self.name}" if self.namespace else self.name

    def with_api_endpoint(self, endpoint: ApiEndpoint) -> "Cluster":
        """Return a copy whose status advertises *endpoint* as its API endpoint."""
        raw = copy.deepcopy(self.raw)
        status = raw.setdefault("status", {})
        status["apiEndpoints"] = [{"host": endpoint.host, "port": endpoint.port}]
        return Cluster.from_object(raw)


def _metadata_field(obj: Any, name: str) -> str:
    if isinstance(obj, dict):
        return (obj.get("metadata") or {}).get(name) or ""
    metadata = getattr(obj, "metadata", None)
    return getattr(metadata, name, None) or ""


def meta_namespace_key(obj: Any) -> str:
    """Return the ``namespace/name`` key of an object, or ``name`` if unscoped.

    Accepts both kubernetes model objects and plain dicts.

    Raises:
        ValueError: If the object has no name.

    """
    name = _metadata_field(obj, "name")
    if not name:
        raise ValueError("object has no metadata.name")
    namespace = _metadata_field(obj, "namespace")
    return f"{namespace}/{name}" if namespace else name


def split_meta_namespace_key(key: str) -> tuple[str, str]:
    """Split a key into ``(namespace, name)``.

    Raises:
        ValueError: If the key has more than one separator.

    """
    parts = key.split("/")
    match len(parts):
        case 1:
            return "", parts[0]
        case 2:
            return parts[0], parts[1]
        case _:
            raise ValueError(f"unexpected key format: {key!r}")
