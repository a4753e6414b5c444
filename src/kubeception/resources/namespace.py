"""Cluster namespace ensurer."""

from typing import Any

from kubernetes import client

from kubeception.models import Cluster
from kubeception.resources.common import Lister, cluster_labels, create_if_absent, object_exists

CLUSTER_NAMESPACE_PREFIX = "cluster-"


def cluster_namespace_name(cluster: Cluster) -> str:
    """Return the namespace holding every resource of *cluster*."""
    return CLUSTER_NAMESPACE_PREFIX + cluster.name


def ensure_cluster_namespace_exists(cluster: Cluster, lister: Lister, core_api: Any) -> None:
    """Create the cluster namespace unless it is already cached.

    Args:
        cluster: The cluster being reconciled.
        lister: Namespace lister.
        core_api: CoreV1Api-compatible client.

    """
    name = cluster_namespace_name(cluster)
    if object_exists(lister, "namespace", name):
        return

    body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name, labels=cluster_labels(cluster)))
    create_if_absent(lambda: core_api.create_namespace(body=body), "namespace", name)
