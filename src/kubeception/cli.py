#!/usr/bin/env python
"""Command-line interface for kubeception.

This module provides the entry point of the cluster controller: it
parses flags, connects to the API server, starts the informers and runs
the reconcile workers until the process is asked to stop.
"""

import signal
import sys
import threading

import click
from icecream import ic
from rich.markup import escape

from kubeception import __version__, console
from kubeception.client import load_client_configuration, new_clients, new_informers
from kubeception.config import ControllerConfig, load_config
from kubeception.controller import ClusterController
from kubeception.exceptions import ClusterConnectionError, ConfigurationError
from kubeception.informer import EventHandler
from kubeception.orchestrator import ClusterResourceOrchestrator, Listers
from kubeception.patch import ClusterPatcher
from kubeception.ratelimit import default_controller_rate_limiter
from kubeception.workqueue import RateLimitingQueue

# Maximum wait for the informer caches to fill
_CACHE_SYNC_TIMEOUT = 120.0


def _install_signal_handlers(stop_event: threading.Event) -> None:
    """Set *stop_event* on SIGINT or SIGTERM."""

    def handler(signum: int, frame: object) -> None:
        console.warning(f"Received {signal.Signals(signum).name}")
        stop_event.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def run_controller(cfg: ControllerConfig, stop_event: threading.Event) -> None:
    """Wire the controller together and run it until *stop_event* is set.

    Args:
        cfg: Controller settings.
        stop_event: Process-wide shutdown signal.

    Raises:
        ClusterConnectionError: If the API server cannot be reached or the
            caches do not fill in time.

    """
    clients = new_clients(load_client_configuration(cfg.kubeconfig, cfg.master, cfg.context))
    informers = new_informers(clients, cfg.resync_period)

    queue = RateLimitingQueue(
        default_controller_rate_limiter(cfg.base_delay, cfg.max_delay, cfg.qps, cfg.burst),
        name="Cluster",
    )
    listers = Listers(
        namespaces=informers["namespaces"].lister(),
        services=informers["services"].lister(),
        secrets=informers["secrets"].lister(),
    )
    controller = ClusterController(
        queue=queue,
        cluster_lister=informers["clusters"].lister(),
        orchestrator=ClusterResourceOrchestrator(listers, clients.core),
        patcher=ClusterPatcher(clients.clusters),
    )
    informers["clusters"].add_event_handler(
        EventHandler(on_add=controller.on_add, on_update=controller.on_update, on_delete=controller.on_delete)
    )

    informers.start(stop_event)
    with console.spinner("Waiting for caches to sync..."):
        synced = informers.wait_for_cache_sync(_CACHE_SYNC_TIMEOUT)
    if not synced:
        stop_event.set()
        raise ClusterConnectionError("Timed out waiting for caches to sync")

    console.summary_panel(
        "Cluster controller",
        {
            "Version": __version__,
            "Workers": str(cfg.worker_count),
            "Resync period": f"{cfg.resync_period:g}s",
            "Retry backoff": f"{cfg.base_delay:g}s to {cfg.max_delay:g}s",
            "Rate limit": f"{cfg.qps:g} qps, burst {cfg.burst}",
        },
    )
    try:
        controller.run(cfg.worker_count, stop_event)
    finally:
        informers.stop()


@click.command(help="Reconcile control-plane clusters and their credentials")
@click.option("--version", "-v", required=False, is_flag=True, help="print version")
@click.option("--debug", required=False, is_flag=True, help="print debug information")
@click.option("--config", "config_file", required=False, help="YAML file with controller settings")
@click.option("--kubeconfig", required=False, help="path to a kubeconfig, only required if out-of-cluster")
@click.option("--master", required=False, help="address of the API server, overrides the kubeconfig")
@click.option("--context", required=False, help="kubeconfig context to use")
@click.option("--worker-count", required=False, type=click.IntRange(min=1), help="number of reconcile workers")
def cli(
    debug: bool,
    config_file: str | None,
    kubeconfig: str | None,
    master: str | None,
    context: str | None,
    worker_count: int | None,
    version: bool,
) -> None:
    """Process CLI arguments and run the controller.

    Args:
        debug: Enable debug output.
        config_file: Path to a YAML settings file.
        kubeconfig: Path to a kubeconfig file.
        master: API server address override.
        context: Kubeconfig context to use.
        worker_count: Number of reconcile workers.
        version: Print version and exit.

    """
    if not debug:
        ic.disable()

    if version:
        click.echo(__version__)
        return

    try:
        base = load_config(config_file) if config_file else ControllerConfig()
        cfg = base.merge(kubeconfig=kubeconfig, master=master, context=context, worker_count=worker_count)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from None
    ic(cfg)

    stop_event = threading.Event()
    _install_signal_handlers(stop_event)

    try:
        run_controller(cfg, stop_event)
    except ClusterConnectionError as e:
        console.error(f"Cluster connection failed: {escape(str(e))}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
