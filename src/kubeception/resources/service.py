"""External API server service and its load balancer address.

The service is created once per cluster; its external address is
assigned later by the infrastructure, so every certificate that needs
it has to wait until :class:`LoadBalancerAddressResolver` can find it.
"""

import ipaddress
from typing import Any

from icecream import ic
from kubernetes import client

from kubeception.exceptions import AddressNotYetAvailableError, ControllerError
from kubeception.models import Cluster
from kubeception.pki import IPAddress
from kubeception.resources.common import Lister, cluster_labels, create_if_absent, object_exists
from kubeception.resources.namespace import cluster_namespace_name

EXTERNAL_APISERVER_SERVICE_NAME = "apiserver-external"
APISERVER_PORT = 6443
APISERVER_PORT_NAME = "apiserver-tls"
APISERVER_SELECTOR = {"app": "apiserver"}


def ensure_external_apiserver_service_exists(cluster: Cluster, lister: Lister, core_api: Any) -> None:
    """Create the load balanced API server service unless it is already cached.

    Args:
        cluster: The cluster being reconciled.
        lister: Service lister.
        core_api: CoreV1Api-compatible client.

    """
    namespace = cluster_namespace_name(cluster)
    name = EXTERNAL_APISERVER_SERVICE_NAME
    if object_exists(lister, "service", name, namespace):
        return

    body = client.V1Service(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=cluster_labels(cluster)),
        spec=client.V1ServiceSpec(
            type="LoadBalancer",
            ports=[
                client.V1ServicePort(
                    name=APISERVER_PORT_NAME,
                    port=APISERVER_PORT,
                    target_port=APISERVER_PORT,
                    protocol="TCP",
                )
            ],
            selector=dict(APISERVER_SELECTOR),
        ),
    )
    create_if_absent(
        lambda: core_api.create_namespaced_service(namespace=namespace, body=body),
        "service",
        name,
        namespace,
    )


def _ingress_ips(service: Any) -> list[str]:
    if isinstance(service, dict):
        ingress = ((service.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []
        return [entry.get("ip") or "" for entry in ingress]
    status = getattr(service, "status", None)
    load_balancer = getattr(status, "load_balancer", None)
    ingress = getattr(load_balancer, "ingress", None) or []
    return [getattr(entry, "ip", None) or "" for entry in ingress]


class LoadBalancerAddressResolver:
    """Look up the external address of a cluster's load balanced service.

    Attributes:
        lister: Service lister.
        service_name: Name of the service inside the cluster namespace.

    """

    def __init__(self, lister: Lister, service_name: str = EXTERNAL_APISERVER_SERVICE_NAME) -> None:
        self.lister = lister
        self.service_name = service_name

    def resolve(self, cluster: Cluster) -> IPAddress:
        """Return the first load balancer ingress IP of the service.

        Raises:
            AddressNotYetAvailableError: If the service has no address yet.
            ControllerError: If the service cannot be read or the address
                cannot be parsed.

        """
        namespace = cluster_namespace_name(cluster)
        try:
            service = self.lister.get(self.service_name, namespace)
        except Exception as err:
            raise ControllerError(
                f"failed to get service {namespace}/{self.service_name} from lister: {err}"
            ) from err

        for ip in _ingress_ips(service):
            if not ip:
                continue
            try:
                address = ipaddress.ip_address(ip)
            except ValueError as err:
                raise ControllerError(f"failed to parse lb ip {ip}") from err
            ic(cluster.key, str(address))
            return address

        raise AddressNotYetAvailableError(
            f"service {namespace}/{self.service_name} has no load balancer address yet"
        )

    def __call__(self, cluster: Cluster) -> IPAddress:
        return self.resolve(cluster)
