"""Cluster reconciliation controller.

Watch events put cluster keys on a rate limited queue; a fixed pool of
worker threads takes keys off the queue, reconciles them and reports the
outcome back so that failing keys are retried with increasing delays.
"""

import threading
from typing import Any

from icecream import ic
from kubernetes.client.exceptions import ApiException
from rich.markup import escape

from kubeception import console
from kubeception.exceptions import (
    AddressNotYetAvailableError,
    ControllerError,
    NotFoundError,
    ReconcileStepError,
)
from kubeception.models import ApiEndpoint, Cluster, meta_namespace_key, split_meta_namespace_key
from kubeception.orchestrator import ClusterResourceOrchestrator
from kubeception.patch import ClusterPatcher
from kubeception.resources.common import Lister
from kubeception.resources.service import APISERVER_PORT
from kubeception.workqueue import RateLimitingQueue

# Delay before a worker that stopped unexpectedly is restarted
_WORKER_PERIOD = 0.5


class ClusterController:
    """Drive every cluster record towards its desired state.

    Attributes:
        queue: Rate limited queue of cluster keys.
        cluster_lister: Cache of cluster records.
        orchestrator: Ensures the dependent resources of one cluster.
        patcher: Persists changes to the cluster record itself.

    """

    def __init__(
        self,
        queue: RateLimitingQueue,
        cluster_lister: Lister,
        orchestrator: ClusterResourceOrchestrator,
        patcher: ClusterPatcher,
    ) -> None:
        self.queue = queue
        self.cluster_lister = cluster_lister
        self.orchestrator = orchestrator
        self.patcher = patcher
        self._workers: list[threading.Thread] = []

    def __repr__(self) -> str:
        return f"ClusterController(queue={self.queue!r}, workers={len(self._workers)})"

    def enqueue(self, obj: Any) -> None:
        """Queue the key of *obj* for reconciliation."""
        try:
            key = meta_namespace_key(obj)
        except ValueError as err:
            console.warning(f"Ignoring event for object without a key: {escape(str(err))}")
            return
        ic(key)
        self.queue.add(key)

    def on_add(self, obj: Any) -> None:
        self.enqueue(obj)

    def on_update(self, old: Any, new: Any) -> None:
        self.enqueue(new)

    def on_delete(self, obj: Any) -> None:
        self.enqueue(obj)

    def sync_handler(self, key: str) -> None:
        """Reconcile the cluster stored under *key*.

        A key whose cluster is no longer cached is a tombstone: nothing is
        done, cleaning up after deleted clusters is left to the store.

        Raises:
            ReconcileStepError: If a dependent resource could not be ensured.
            ControllerError: If the cluster status could not be recorded.

        """
        namespace, name = split_meta_namespace_key(key)
        try:
            obj = self.cluster_lister.get(name, namespace)
        except NotFoundError:
            ic(f"cluster {key!r} in work queue no longer exists")
            return

        cluster = Cluster.from_object(obj)
        self.orchestrator.ensure_cluster_resources_exist(cluster)
        self.record_api_endpoint(cluster)

    def record_api_endpoint(self, cluster: Cluster) -> bool:
        """Publish the external API server address in the cluster status.

        Returns:
            True if the cluster record was patched.

        """
        address = self.orchestrator.resolver.resolve(cluster)
        updated = cluster.with_api_endpoint(ApiEndpoint(host=str(address), port=APISERVER_PORT))
        try:
            patched = self.patcher.patch_cluster(updated, cluster)
        except ControllerError:
            raise
        except Exception as err:
            raise ControllerError(f"failed to patch cluster {cluster.key}: {err}") from err
        if patched:
            console.success(f"Cluster {console.highlight(cluster.key)} is served at {address}:{APISERVER_PORT}")
        return patched

    def _handle_error(self, key: str, err: Exception) -> None:
        requeues = self.queue.num_requeues(key)
        # Classify step failures by what went wrong inside the step
        cause = err.cause if isinstance(err, ReconcileStepError) else err
        message = escape(str(err))
        if isinstance(cause, AddressNotYetAvailableError):
            console.warning(f"{key}: {message} (retry #{requeues + 1})")
        elif isinstance(cause, (ControllerError, ApiException)):
            console.error(f"{key} failed with: {message}")
        else:
            console.error(f"{key} failed with unexpected {type(cause).__name__}: {message}")
            console.traceback()

    def process_next_work_item(self) -> bool:
        """Reconcile one key from the queue.

        Returns:
            False once the queue has been shut down.

        """
        key, shutdown = self.queue.get()
        if shutdown:
            return False

        try:
            ic(f"Processing cluster: {key}")
            self.sync_handler(key)
        except Exception as err:
            self._handle_error(key, err)
            self.queue.add_with_backoff(key)
        else:
            self.queue.forget(key)
        finally:
            self.queue.done(key)
        return True

    def _run_worker(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                while self.process_next_work_item():
                    pass
                return
            except Exception:
                console.error("Worker crashed, restarting")
                console.traceback()
                stop_event.wait(_WORKER_PERIOD)

    def start(self, workers: int, stop_event: threading.Event) -> None:
        """Start *workers* worker threads."""
        for index in range(workers):
            thread = threading.Thread(
                target=self._run_worker,
                args=(stop_event,),
                name=f"cluster-worker-{index}",
                daemon=True,
            )
            thread.start()
            self._workers.append(thread)

    def run(self, workers: int, stop_event: threading.Event, drain_timeout: float | None = None) -> None:
        """Run *workers* workers until *stop_event* is set, then drain the queue.

        In-flight reconciliations are allowed to finish; pending keys are
        dropped.
        """
        self.start(workers, stop_event)
        console.success(f"Started {workers} cluster workers")

        stop_event.wait()
        console.action("Shutting down, waiting for in-flight reconciliations")
        self.queue.shut_down_with_drain(drain_timeout)
        for thread in self._workers:
            thread.join(drain_timeout)
        self._workers.clear()
        console.success("Cluster controller stopped")
