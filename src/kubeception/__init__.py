"""kubeception: reconciliation controller for control-plane clusters.

This package watches Cluster records and makes sure every cluster has a
namespace, an externally reachable API server endpoint and the
certificates and credentials its control plane needs.

Example usage:
    from kubeception import ClusterResourceOrchestrator, Listers

    orchestrator = ClusterResourceOrchestrator(listers, core_api)
    orchestrator.ensure_cluster_resources_exist(cluster)
"""

__version__ = "0.1.0"

from kubeception.cli import cli
from kubeception.controller import ClusterController
from kubeception.exceptions import (
    AddressNotYetAvailableError,
    CertificateError,
    ClusterConnectionError,
    ConfigurationError,
    ControllerError,
    DependencyMissingError,
    NotFoundError,
    PatchConflictError,
    ReconcileStepError,
)
from kubeception.models import Cluster
from kubeception.orchestrator import ClusterResourceOrchestrator, Listers
from kubeception.patch import ClusterPatcher, create_three_way_merge_patch
from kubeception.workqueue import RateLimitingQueue

__all__ = [
    # Version
    "__version__",
    # Main CLI
    "cli",
    # Classes
    "Cluster",
    "ClusterController",
    "ClusterPatcher",
    "ClusterResourceOrchestrator",
    "Listers",
    "RateLimitingQueue",
    # Functions
    "create_three_way_merge_patch",
    # Exceptions
    "ControllerError",
    "AddressNotYetAvailableError",
    "CertificateError",
    "ClusterConnectionError",
    "ConfigurationError",
    "DependencyMissingError",
    "NotFoundError",
    "PatchConflictError",
    "ReconcileStepError",
]
