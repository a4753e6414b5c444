"""Secret ensurers for cluster credentials.

Each secret kind has a fixed name inside the cluster namespace and is
created at most once: an existing secret is never regenerated. The two
TLS secrets are derived from the root CA secret and the external
address of the cluster.
"""

import csv
import io
import secrets
from collections.abc import Callable
from typing import Any

from icecream import ic
from kubernetes import client

from kubeception import pki
from kubeception.exceptions import ControllerError, DependencyMissingError, NotFoundError
from kubeception.models import Cluster, KeyPair
from kubeception.resources.common import (
    Lister,
    cluster_labels,
    create_if_absent,
    decode_secret_value,
    encode_secret_data,
    object_exists,
)
from kubeception.resources.namespace import cluster_namespace_name

ROOT_CA_SECRET_NAME = "root-ca"
ROOT_CA_CERT_KEY = "ca.crt"
ROOT_CA_KEY_KEY = "ca.key"

APISERVER_TLS_SECRET_NAME = "apiserver-tls"
APISERVER_CERT_KEY = "apiserver.crt"
APISERVER_KEY_KEY = "apiserver.key"

KUBELET_CLIENT_SECRET_NAME = "apiserver-kubelet-client-certs"
KUBELET_CERT_KEY = "kubelet.crt"
KUBELET_KEY_KEY = "kubelet.key"

SERVICE_ACCOUNT_KEY_SECRET_NAME = "service-account-key"
SERVICE_ACCOUNT_KEY_KEY = "serviceaccount.key"

TOKEN_USERS_SECRET_NAME = "token-users"
TOKEN_USERS_KEY = "token-users.csv"

# In-cluster service the API server certificate must be valid for
APISERVER_SERVICE_NAME = "kubernetes"
APISERVER_SERVICE_NAMESPACE = "default"

# Offset of the API server address inside the service network
CLUSTER_IP_OFFSET = 1

# Vowels and easily confused characters are left out
_TOKEN_ALPHABET = "bcdfghjklmnpqrstvwxz2456789"
_TOKEN_ID_LENGTH = 6
_TOKEN_SECRET_LENGTH = 16

ExternalIPResolver = Callable[[Cluster], pki.IPAddress]


def _create_secret(cluster: Cluster, core_api: Any, name: str, data: dict[str, bytes]) -> None:
    namespace = cluster_namespace_name(cluster)
    body = client.V1Secret(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=cluster_labels(cluster)),
        data=encode_secret_data(data),
        type="Opaque",
    )
    create_if_absent(
        lambda: core_api.create_namespaced_secret(namespace=namespace, body=body),
        "secret",
        name,
        namespace,
    )


def _secret_exists(cluster: Cluster, lister: Lister, name: str) -> bool:
    return object_exists(lister, "secret", name, cluster_namespace_name(cluster))


def _load_root_ca(cluster: Cluster, lister: Lister) -> KeyPair:
    """Read the root CA of *cluster* from the cache.

    Raises:
        DependencyMissingError: If the root CA secret is not cached yet.

    """
    try:
        ca_secret = lister.get(ROOT_CA_SECRET_NAME, cluster_namespace_name(cluster))
    except NotFoundError as err:
        raise DependencyMissingError("no root ca exists so far to derive certificates from") from err

    return KeyPair(
        cert=decode_secret_value(ca_secret, ROOT_CA_CERT_KEY),
        key=decode_secret_value(ca_secret, ROOT_CA_KEY_KEY),
    )


def ensure_cluster_ca_secret_exists(cluster: Cluster, lister: Lister, core_api: Any) -> None:
    """Create the root CA secret of *cluster* unless it is already cached."""
    if _secret_exists(cluster, lister, ROOT_CA_SECRET_NAME):
        return

    ca = pki.new_ca(f"root-ca.{cluster.name}")
    _create_secret(cluster, core_api, ROOT_CA_SECRET_NAME, {ROOT_CA_CERT_KEY: ca.cert, ROOT_CA_KEY_KEY: ca.key})


def ensure_apiserver_tls_secret_exists(
    cluster: Cluster,
    lister: Lister,
    core_api: Any,
    resolve_ip: ExternalIPResolver,
) -> None:
    """Create the API server serving certificate secret.

    The certificate is valid for the first address of the service network
    and for the external load balancer address.

    Args:
        cluster: The cluster being reconciled.
        lister: Secret lister.
        core_api: CoreV1Api-compatible client.
        resolve_ip: Returns the external address of the cluster.

    Raises:
        AddressNotYetAvailableError: If the external address is not assigned yet.
        DependencyMissingError: If the root CA secret does not exist yet.

    """
    if _secret_exists(cluster, lister, APISERVER_TLS_SECRET_NAME):
        return

    external_ip = resolve_ip(cluster)
    ca = _load_root_ca(cluster, lister)

    if not cluster.service_cidr_blocks:
        raise ControllerError(f"cluster {cluster.name} has no service CIDR block")
    cluster_ip = pki.compute_cluster_ip(cluster.service_cidr_blocks[0], CLUSTER_IP_OFFSET)
    ic(cluster.key, str(cluster_ip), str(external_ip))

    key_pair = pki.new_server_key_pair(
        ca,
        str(external_ip),
        APISERVER_SERVICE_NAME,
        APISERVER_SERVICE_NAMESPACE,
        cluster.dns_domain,
        [cluster_ip, external_ip],
    )
    _create_secret(
        cluster,
        core_api,
        APISERVER_TLS_SECRET_NAME,
        {APISERVER_CERT_KEY: key_pair.cert, APISERVER_KEY_KEY: key_pair.key},
    )


def ensure_kubelet_client_secret_exists(
    cluster: Cluster,
    lister: Lister,
    core_api: Any,
    resolve_ip: ExternalIPResolver,
) -> None:
    """Create the client certificate the API server presents to kubelets.

    Raises:
        AddressNotYetAvailableError: If the external address is not assigned yet.
        DependencyMissingError: If the root CA secret does not exist yet.

    """
    if _secret_exists(cluster, lister, KUBELET_CLIENT_SECRET_NAME):
        return

    external_ip = resolve_ip(cluster)
    ca = _load_root_ca(cluster, lister)

    key_pair = pki.new_client_key_pair(ca, str(external_ip), [external_ip])
    _create_secret(
        cluster,
        core_api,
        KUBELET_CLIENT_SECRET_NAME,
        {KUBELET_CERT_KEY: key_pair.cert, KUBELET_KEY_KEY: key_pair.key},
    )


def ensure_service_account_key_secret_exists(cluster: Cluster, lister: Lister, core_api: Any) -> None:
    """Create the service account token signing key secret."""
    if _secret_exists(cluster, lister, SERVICE_ACCOUNT_KEY_SECRET_NAME):
        return

    key = pki.new_service_account_signing_key()
    _create_secret(cluster, core_api, SERVICE_ACCOUNT_KEY_SECRET_NAME, {SERVICE_ACCOUNT_KEY_KEY: key})


def generate_token() -> str:
    """Return a random ``<id>.<secret>`` bearer token."""
    token_id = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(_TOKEN_ID_LENGTH))
    token_secret = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(_TOKEN_SECRET_LENGTH))
    return f"{token_id}.{token_secret}"


def token_users_csv(token: str) -> bytes:
    """Render the static token file granting *token* cluster admin rights."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([token, "admin", "10000", "system:masters"])
    return buffer.getvalue().encode()


def ensure_token_users_secret_exists(cluster: Cluster, lister: Lister, core_api: Any) -> None:
    """Create the static token users secret holding the admin bearer token."""
    if _secret_exists(cluster, lister, TOKEN_USERS_SECRET_NAME):
        return

    _create_secret(cluster, core_api, TOKEN_USERS_SECRET_NAME, {TOKEN_USERS_KEY: token_users_csv(generate_token())})
