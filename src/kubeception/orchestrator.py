"""Ordered composition of the resource ensurers.

The orchestrator runs every ensurer of a cluster in dependency order and
stops at the first failure. It keeps no state of its own: a step that
cannot finish yet is simply retried on the next reconciliation pass.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from icecream import ic

from kubeception.exceptions import ReconcileStepError
from kubeception.models import Cluster, ResourceKind
from kubeception.resources import (
    LoadBalancerAddressResolver,
    ensure_apiserver_tls_secret_exists,
    ensure_cluster_ca_secret_exists,
    ensure_cluster_namespace_exists,
    ensure_external_apiserver_service_exists,
    ensure_kubelet_client_secret_exists,
    ensure_service_account_key_secret_exists,
    ensure_token_users_secret_exists,
)
from kubeception.resources.common import Lister


@dataclass(frozen=True, slots=True)
class Listers:
    """Cache readers used by the ensurers.

    Attributes:
        namespaces: Namespace lister.
        services: Service lister.
        secrets: Secret lister.

    """

    namespaces: Lister
    services: Lister
    secrets: Lister


class ClusterResourceOrchestrator:
    """Ensure every dependent resource of a cluster exists.

    Attributes:
        listers: Cache readers.
        core_api: CoreV1Api-compatible client used for creates.
        resolver: External address resolver.

    """

    def __init__(
        self,
        listers: Listers,
        core_api: Any,
        resolver: LoadBalancerAddressResolver | None = None,
    ) -> None:
        self.listers = listers
        self.core_api = core_api
        self.resolver = resolver if resolver is not None else LoadBalancerAddressResolver(listers.services)

    @property
    def steps(self) -> list[tuple[ResourceKind, Callable[[Cluster], None]]]:
        """The ensure steps in the order they run."""
        listers, api, resolve = self.listers, self.core_api, self.resolver
        return [
            (ResourceKind.NAMESPACE, lambda c: ensure_cluster_namespace_exists(c, listers.namespaces, api)),
            (ResourceKind.EXTERNAL_SERVICE, lambda c: ensure_external_apiserver_service_exists(c, listers.services, api)),
            (ResourceKind.ROOT_CA, lambda c: ensure_cluster_ca_secret_exists(c, listers.secrets, api)),
            (ResourceKind.APISERVER_TLS, lambda c: ensure_apiserver_tls_secret_exists(c, listers.secrets, api, resolve)),
            (ResourceKind.KUBELET_CLIENT, lambda c: ensure_kubelet_client_secret_exists(c, listers.secrets, api, resolve)),
            (ResourceKind.SERVICE_ACCOUNT_KEY, lambda c: ensure_service_account_key_secret_exists(c, listers.secrets, api)),
            (ResourceKind.TOKEN_USERS, lambda c: ensure_token_users_secret_exists(c, listers.secrets, api)),
        ]

    def ensure_cluster_resources_exist(self, cluster: Cluster) -> None:
        """Run all ensure steps for *cluster* in dependency order.

        Raises:
            ReconcileStepError: Wrapping the first failure, named after its step.

        """
        for kind, ensure in self.steps:
            ic(cluster.key, kind.value)
            try:
                ensure(cluster)
            except Exception as err:
                raise ReconcileStepError(kind.value, err) from err
