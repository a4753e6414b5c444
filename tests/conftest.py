"""Shared test fixtures for kubeception tests."""

import functools

import pytest
from icecream import ic

from kubeception import pki
from kubeception.controller import ClusterController
from kubeception.informer import Indexer, Lister
from kubeception.models import Cluster
from kubeception.orchestrator import ClusterResourceOrchestrator, Listers
from kubeception.patch import ClusterPatcher
from kubeception.ratelimit import ItemExponentialFailureRateLimiter
from kubeception.workqueue import RateLimitingQueue

from tests.fakes import FakeClusterStore, FakeCoreV1Api, cluster_object

ic.disable()


@pytest.fixture
def indexers():
    """Empty caches for every dependent resource kind."""
    return {"namespaces": Indexer(), "services": Indexer(), "secrets": Indexer()}


@pytest.fixture
def listers(indexers):
    """Listers over the dependent resource caches."""
    return Listers(
        namespaces=Lister(indexers["namespaces"], "namespace"),
        services=Lister(indexers["services"], "service"),
        secrets=Lister(indexers["secrets"], "secret"),
    )


@pytest.fixture
def core_api(indexers):
    """Fake CoreV1Api whose creates show up in the caches immediately."""
    return FakeCoreV1Api(indexers)


@pytest.fixture
def demo_object():
    """Raw Cluster object named demo."""
    return cluster_object()


@pytest.fixture
def demo_cluster(demo_object):
    """Parsed Cluster named demo with service CIDR 10.0.0.0/16."""
    return Cluster.from_object(demo_object)


@pytest.fixture
def orchestrator(listers, core_api):
    """Orchestrator wired to the fake caches and API."""
    return ClusterResourceOrchestrator(listers, core_api)


@pytest.fixture
def cluster_indexer(demo_object):
    """Cluster cache holding the demo cluster."""
    indexer = Indexer()
    indexer.add(demo_object)
    return indexer


@pytest.fixture
def cluster_store(demo_object):
    """Fake cluster store holding the demo cluster."""
    return FakeClusterStore(demo_object)


@pytest.fixture
def queue():
    """Rate limiting queue with short delays."""
    q = RateLimitingQueue(ItemExponentialFailureRateLimiter(0.01, 0.08), name="test")
    yield q
    q.shut_down()


@pytest.fixture
def controller(queue, cluster_indexer, orchestrator, cluster_store):
    """Cluster controller over the fakes."""
    return ClusterController(
        queue=queue,
        cluster_lister=Lister(cluster_indexer, "cluster"),
        orchestrator=orchestrator,
        patcher=ClusterPatcher(cluster_store),
    )


@pytest.fixture(autouse=True)
def fast_service_account_key(monkeypatch):
    """Generate smaller service account keys to keep the tests fast."""
    monkeypatch.setattr(
        pki,
        "new_service_account_signing_key",
        functools.partial(pki.new_service_account_signing_key, key_size=2048),
    )
