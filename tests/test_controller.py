"""Tests for controller.py module."""

import io
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException
from rich.console import Console

from kubeception import console
from kubeception.exceptions import AddressNotYetAvailableError, ControllerError, ReconcileStepError
from kubeception.orchestrator import ClusterResourceOrchestrator

from tests.fakes import cluster_object


def _first_pass(controller, core_api):
    """Run the pass that stops for the missing address, then assign one."""
    with pytest.raises(ReconcileStepError):
        controller.sync_handler("demo")
    core_api.assign_load_balancer_ip("cluster-demo", "apiserver-external", "203.0.113.10")


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestEventHandlers:
    """Tests for turning watch events into queue keys."""

    def test_add_update_delete_enqueue(self, controller, queue):
        """Test every event kind queues the cluster key once."""
        obj = cluster_object()

        controller.on_add(obj)
        controller.on_update(obj, obj)
        controller.on_delete(obj)

        assert len(queue) == 1
        assert queue.get()[0] == "demo"

    def test_namespaced_key(self, controller, queue):
        """Test namespaced records are keyed by namespace and name."""
        obj = cluster_object()
        obj["metadata"]["namespace"] = "team-a"

        controller.on_add(obj)

        assert queue.get()[0] == "team-a/demo"

    @patch("kubeception.controller.console")
    def test_object_without_name(self, mock_console, controller, queue):
        """Test objects without a key are skipped with a warning."""
        controller.on_add({"metadata": {}})

        assert len(queue) == 0
        mock_console.warning.assert_called_once()


class TestSyncHandler:
    """Tests for reconciling a single key."""

    def test_tombstone(self, controller, core_api):
        """Test a key whose cluster is gone is a no-op."""
        controller.sync_handler("gone")

        assert core_api.writes == []

    def test_waits_for_address(self, controller, core_api, cluster_store):
        """Test the first pass fails transiently without touching the record."""
        with pytest.raises(ReconcileStepError) as exc_info:
            controller.sync_handler("demo")

        assert exc_info.value.transient
        assert core_api.written_names() == ["cluster-demo", "apiserver-external", "root-ca"]
        assert cluster_store.patches == []

    def test_converges_and_records_endpoint(self, controller, core_api, cluster_store):
        """Test a second pass creates the rest and publishes the endpoint."""
        _first_pass(controller, core_api)

        controller.sync_handler("demo")

        assert len(core_api.writes) == 7
        assert cluster_store.objects["demo"]["status"]["apiEndpoints"] == [{"host": "203.0.113.10", "port": 6443}]


class TestRecordApiEndpoint:
    """Tests for publishing the external endpoint."""

    def test_recorded_once(self, controller, core_api, cluster_store, demo_cluster):
        """Test the endpoint patch is not repeated once stored."""
        _first_pass(controller, core_api)

        assert controller.record_api_endpoint(demo_cluster) is True
        assert controller.record_api_endpoint(demo_cluster) is False
        assert len(cluster_store.patches) == 1

    def test_no_address(self, controller, core_api, demo_cluster):
        """Test nothing is recorded before the address exists."""
        with pytest.raises(ReconcileStepError):
            controller.sync_handler("demo")

        with pytest.raises(AddressNotYetAvailableError):
            controller.record_api_endpoint(demo_cluster)

    def test_patch_failure_wrapped(self, controller, core_api, demo_cluster):
        """Test unexpected store errors become controller errors."""
        _first_pass(controller, core_api)
        controller.patcher = MagicMock()
        controller.patcher.patch_cluster.side_effect = RuntimeError("store down")

        with pytest.raises(ControllerError) as exc_info:
            controller.record_api_endpoint(demo_cluster)

        assert "store down" in str(exc_info.value)


class TestProcessNextWorkItem:
    """Tests for the queue contract of one worker iteration."""

    def test_success_forgets(self, controller, queue):
        """Test a successful reconcile clears the failure history."""
        controller.sync_handler = MagicMock()
        queue.add_with_backoff("demo")
        queue.add("demo")

        assert controller.process_next_work_item() is True

        controller.sync_handler.assert_called_once_with("demo")
        assert queue.num_requeues("demo") == 0

    def test_failure_requeues_with_growing_delay(self, controller, queue):
        """Test each failure of a key increases its backoff."""
        controller.sync_handler = MagicMock(side_effect=AddressNotYetAvailableError("pending"))
        queue.add("demo")

        with patch.object(queue, "add_with_backoff", wraps=queue.add_with_backoff) as backoff:
            assert controller.process_next_work_item() is True
            assert _wait_until(lambda: len(queue) == 1)
            assert controller.process_next_work_item() is True

        assert backoff.call_count == 2
        assert queue.num_requeues("demo") == 2
        assert queue.rate_limiter.when("other") < queue.rate_limiter.when("demo")

    @patch("kubeception.controller.console")
    def test_unexpected_error_logged_with_traceback(self, mock_console, controller, queue):
        """Test programming errors are logged loudly and still retried."""
        controller.sync_handler = MagicMock(side_effect=KeyError("spec"))
        queue.add("demo")

        controller.process_next_work_item()

        mock_console.error.assert_called_once()
        mock_console.traceback.assert_called_once()
        assert queue.num_requeues("demo") == 1

    @patch("kubeception.controller.console")
    def test_transient_error_is_warning(self, mock_console, controller, queue):
        """Test waiting for an address is not reported as an error."""
        queue.add("demo")

        controller.process_next_work_item()

        mock_console.warning.assert_called_once()
        mock_console.error.assert_not_called()

    @patch("kubeception.controller.console")
    def test_unexpected_error_inside_step_logged_with_traceback(self, mock_console, controller, listers, queue):
        """Test a programming error raised by an ensure step is not mistaken for a known failure."""
        core_api = MagicMock()
        core_api.create_namespace.side_effect = KeyError("boom")
        controller.orchestrator = ClusterResourceOrchestrator(listers, core_api)
        queue.add("demo")

        controller.process_next_work_item()

        mock_console.error.assert_called_once()
        assert "KeyError" in mock_console.error.call_args[0][0]
        mock_console.traceback.assert_called_once()
        assert queue.num_requeues("demo") == 1

    @patch("kubeception.controller.console")
    def test_api_error_inside_step_has_no_traceback(self, mock_console, controller, listers, queue):
        """Test API failures of an ensure step are reported as plain errors."""
        core_api = MagicMock()
        core_api.create_namespace.side_effect = ApiException(status=403, reason="Forbidden")
        controller.orchestrator = ClusterResourceOrchestrator(listers, core_api)
        queue.add("demo")

        controller.process_next_work_item()

        mock_console.error.assert_called_once()
        mock_console.traceback.assert_not_called()

    def test_error_text_with_markup_is_printed_verbatim(self, controller):
        """Test brackets in error messages are not parsed as console markup."""
        output = io.StringIO()
        recorder = Console(file=output, theme=console._THEME, log_path=False, width=200)

        with patch.object(console, "console", recorder):
            controller._handle_error("demo", ControllerError("bad [/x] tag"))

        assert "bad [/x] tag" in output.getvalue()

    def test_shutdown_stops(self, controller, queue):
        """Test the worker loop ends once the queue is shut down."""
        queue.shut_down()

        assert controller.process_next_work_item() is False


class TestRun:
    """Tests for the worker pool lifecycle."""

    def test_reconciles_until_stopped(self, controller, core_api, cluster_store, queue):
        """Test workers converge the cluster and exit on stop."""
        stop_event = threading.Event()
        runner = threading.Thread(target=controller.run, args=(2, stop_event, 5.0))
        runner.start()

        queue.add("demo")
        assert _wait_until(lambda: len(core_api.writes) == 3)
        core_api.assign_load_balancer_ip("cluster-demo", "apiserver-external", "203.0.113.10")
        assert _wait_until(lambda: "status" in cluster_store.objects["demo"])

        stop_event.set()
        runner.join(timeout=5)

        assert not runner.is_alive()
        assert len(core_api.writes) == 7
        assert queue.shutting_down
