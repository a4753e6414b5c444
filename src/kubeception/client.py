"""Kubernetes API access for the controller.

This module loads the client configuration, wraps the Cluster custom
resource API and builds the informers the controller reads from.
"""

import json
from dataclasses import dataclass
from typing import Any

from icecream import ic
from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import MaxRetryError

from kubeception import console
from kubeception.exceptions import ClusterConnectionError
from kubeception.informer import Informer, InformerSet
from kubeception.models import CLUSTER_GROUP, CLUSTER_PLURAL, CLUSTER_VERSION

_MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


def load_client_configuration(
    kubeconfig: str | None = None,
    master: str | None = None,
    context: str | None = None,
) -> client.ApiClient:
    """Build an API client from a kubeconfig or the in-cluster environment.

    Without an explicit kubeconfig the in-cluster service account is tried
    first, then the default kubeconfig location.

    Args:
        kubeconfig: Path to a kubeconfig file.
        master: API server address overriding the one in the kubeconfig.
        context: Kubeconfig context to use.

    Returns:
        A configured ApiClient.

    Raises:
        ClusterConnectionError: If no usable configuration is found.

    """
    configuration = client.Configuration()
    try:
        if kubeconfig is None and context is None:
            try:
                config.load_incluster_config(client_configuration=configuration)
                console.info("Using in-cluster configuration")
            except ConfigException:
                config.load_kube_config(client_configuration=configuration)
        else:
            config.load_kube_config(config_file=kubeconfig, context=context, client_configuration=configuration)
    except ConfigException as e:
        raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e

    if master:
        configuration.host = master
    ic(configuration.host)
    console.action(f"Working with API server {console.highlight(configuration.host)}")
    return client.ApiClient(configuration)


class ClusterClient:
    """Access to the Cluster custom resources in the store.

    Attributes:
        api: CustomObjectsApi-compatible client.

    """

    def __init__(self, api: client.CustomObjectsApi) -> None:
        self.api = api

    def get(self, name: str, namespace: str = "") -> dict[str, Any]:
        """Fetch the latest version of a cluster directly from the API server."""
        if namespace:
            return self.api.get_namespaced_custom_object(CLUSTER_GROUP, CLUSTER_VERSION, namespace, CLUSTER_PLURAL, name)
        return self.api.get_cluster_custom_object(CLUSTER_GROUP, CLUSTER_VERSION, CLUSTER_PLURAL, name)

    def patch(self, name: str, patch: bytes, namespace: str = "") -> dict[str, Any]:
        """Send a JSON merge patch for a cluster."""
        body = json.loads(patch)
        if namespace:
            return self.api.patch_namespaced_custom_object(
                CLUSTER_GROUP,
                CLUSTER_VERSION,
                namespace,
                CLUSTER_PLURAL,
                name,
                body,
                _content_type=_MERGE_PATCH_CONTENT_TYPE,
            )
        return self.api.patch_cluster_custom_object(
            CLUSTER_GROUP,
            CLUSTER_VERSION,
            CLUSTER_PLURAL,
            name,
            body,
            _content_type=_MERGE_PATCH_CONTENT_TYPE,
        )

    def list(self, **kwargs: Any) -> dict[str, Any]:
        """List clusters across all namespaces; also used as the watch function."""
        return self.api.list_cluster_custom_object(CLUSTER_GROUP, CLUSTER_VERSION, CLUSTER_PLURAL, **kwargs)


@dataclass(frozen=True, slots=True)
class KubeClients:
    """API clients shared by the controller components."""

    core: client.CoreV1Api
    clusters: ClusterClient


def new_clients(api_client: client.ApiClient) -> KubeClients:
    """Create the API clients and check that the API server answers.

    Raises:
        ClusterConnectionError: If the API server is unreachable.

    """
    core = client.CoreV1Api(api_client)
    clusters = ClusterClient(client.CustomObjectsApi(api_client))
    with console.spinner("Connecting to the API server..."):
        try:
            client.VersionApi(api_client).get_code()
        except MaxRetryError as e:
            raise ClusterConnectionError(f"Failed to connect to the Kubernetes cluster: {e.reason}") from e
    return KubeClients(core=core, clusters=clusters)


def new_informers(clients: KubeClients, resync_period: float) -> InformerSet:
    """Build the informers for clusters and their dependent resources.

    Only the cluster informer resyncs its handlers; the dependent resource
    caches exist for reads.
    """
    return InformerSet(
        clusters=Informer(clients.clusters.list, "cluster", resync_period),
        namespaces=Informer(clients.core.list_namespace, "namespace"),
        services=Informer(clients.core.list_service_for_all_namespaces, "service"),
        secrets=Informer(clients.core.list_secret_for_all_namespaces, "secret"),
    )
