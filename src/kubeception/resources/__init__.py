"""Dependent resource ensurers subpackage.

This package contains one check-then-create ensurer per resource a
cluster needs, plus the resolver for the external API server address.
"""

from kubeception.resources.namespace import cluster_namespace_name, ensure_cluster_namespace_exists
from kubeception.resources.secrets import (
    ensure_apiserver_tls_secret_exists,
    ensure_cluster_ca_secret_exists,
    ensure_kubelet_client_secret_exists,
    ensure_service_account_key_secret_exists,
    ensure_token_users_secret_exists,
)
from kubeception.resources.service import (
    LoadBalancerAddressResolver,
    ensure_external_apiserver_service_exists,
)

__all__ = [
    # namespace
    "cluster_namespace_name",
    "ensure_cluster_namespace_exists",
    # service
    "ensure_external_apiserver_service_exists",
    "LoadBalancerAddressResolver",
    # secrets
    "ensure_cluster_ca_secret_exists",
    "ensure_apiserver_tls_secret_exists",
    "ensure_kubelet_client_secret_exists",
    "ensure_service_account_key_secret_exists",
    "ensure_token_users_secret_exists",
]
