# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Orchestration functions that compose domain modules into scenario runs."""

from __future__ import annotations

import tempfile
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

import docker
import docker.errors
import sh
from rich.panel import Panel
from rich.table import Table

from ephemeral_env import console, logger
from ephemeral_env.cluster import list_nodes, provisioned_cluster, sweep_stale_clusters
from ephemeral_env.config import ClusterConfig, GeneratorConfig, RegistryConfig, ScenarioConfig, WaitConfig
from ephemeral_env.constants import REQUIRED_COMMANDS
from ephemeral_env.exceptions import ClusterSetupError, RegistrySetupError, SetupError
from ephemeral_env.manifests import ApplyStrategy
from ephemeral_env.registry import ensure_registry
from ephemeral_env.scenario import ScenarioDriver, ScenarioEnvironment, ScenarioReport
from ephemeral_env.utils import require_command

# ============================================================================
# Internal helpers
# ============================================================================


def _check_prerequisites() -> None:
    """Check that the CLI tools every run shells out to are installed."""
    console.print(Panel.fit("Checking prerequisites", style="bold blue"))
    for cmd in REQUIRED_COMMANDS:
        require_command(cmd)
    console.print("[green]✅ All required tools are available[/green]")


def _run_parallel(tasks: dict[str, Callable[[], None]], cancel: threading.Event | None = None) -> None:
    """Run tasks in parallel, printing each task's output as a clean block.

    Args:
        tasks: Mapping of task name to callable.
        cancel: Set when the caller is interrupted so running tasks stop early.

    Raises:
        Exception: Re-raises the first exception from any failed task.
    """
    if not tasks:
        return

    outputs: dict[str, str] = {}
    lock = threading.Lock()

    def _run_task(name: str, fn: Callable) -> None:
        with console.buffered(name) as buf:
            try:
                fn()
            finally:
                with lock:
                    outputs[name] = buf.getvalue()

    try:
        with ThreadPoolExecutor(max_workers=len(tasks)) as executor:
            futures = {executor.submit(_run_task, name, fn): name for name, fn in tasks.items()}
            try:
                for future in as_completed(futures):
                    future.result()
            except KeyboardInterrupt:
                # set before the executor joins the running tasks
                if cancel is not None:
                    cancel.set()
                raise
    finally:
        for name in tasks:
            if outputs.get(name):
                console.replay(outputs[name])


def _open_docker() -> docker.DockerClient:
    try:
        return docker.from_env()
    except docker.errors.DockerException as err:
        raise RegistrySetupError(f"docker backend unavailable: {err}") from err


# ============================================================================
# Scenario runs
# ============================================================================


def run_scenario(
    scenario: ScenarioConfig,
    *,
    docker_client: docker.DockerClient,
    cluster_cfg: ClusterConfig,
    reg_cfg: RegistryConfig,
    gen_cfg: GeneratorConfig,
    wait_cfg: WaitConfig,
    strategy: ApplyStrategy = ApplyStrategy.SERVER_SIDE,
    cancel: threading.Event | None = None,
    sweep: bool = True,
) -> ScenarioReport:
    """Provision a cluster, run one scenario in it, and always tear it down.

    Args:
        scenario: Scenario to run.
        docker_client: Client for the host docker daemon.
        cluster_cfg: Cluster configuration.
        reg_cfg: Registry configuration.
        gen_cfg: Generator configuration.
        wait_cfg: Readiness limits.
        strategy: Manifest apply strategy.
        cancel: Run cancellation event.
        sweep: Whether to delete stale clusters first.

    Returns:
        The scenario report; setup failures are recorded in it.
    """
    cancel = cancel or threading.Event()
    try:
        with provisioned_cluster(cluster_cfg, sweep=sweep) as cluster_env:
            try:
                node_names = list_nodes(cluster_env.cluster.name)
            except sh.ErrorReturnCode as err:
                raise ClusterSetupError(f"listing nodes of {cluster_env.cluster.name}: {err}") from err
            registry = ensure_registry(
                docker_client, reg_cfg, node_names=node_names, api_client=cluster_env.api_client,
            )
            env = ScenarioEnvironment(
                docker_client=docker_client, cluster=cluster_env, registry=registry, cancel=cancel,
            )
            driver = ScenarioDriver(scenario, env, gen_cfg, wait_cfg, strategy)
            with tempfile.TemporaryDirectory(prefix="create-command-") as workdir:
                logger.info("scenario %s working directory: %s", scenario.name, workdir)
                return driver.run(Path(workdir))
    except SetupError as err:
        logger.error("setup for scenario %s failed: %s", scenario.name, err)
        console.print(f"[red]❌ Setup for scenario {scenario.name} failed: {err}[/red]")
        return ScenarioReport(scenario=scenario.name, image_ref=scenario.image_ref, error=str(err))


def run_scenarios(
    scenarios: list[ScenarioConfig],
    *,
    cluster_cfg: ClusterConfig,
    reg_cfg: RegistryConfig,
    gen_cfg: GeneratorConfig,
    wait_cfg: WaitConfig,
    strategy: ApplyStrategy = ApplyStrategy.SERVER_SIDE,
    parallel: bool = False,
    cancel: threading.Event | None = None,
) -> list[ScenarioReport]:
    """Run scenarios, each in its own cluster, sequentially or in parallel.

    Stale clusters are swept once up front so parallel runs never delete
    each other's clusters. Only the registry is shared between runs.

    Returns:
        One report per scenario, in input order.
    """
    _check_prerequisites()
    cancel = cancel or threading.Event()
    sweep_stale_clusters(cluster_cfg.name_prefix)
    docker_client = _open_docker()
    reports: dict[int, ScenarioReport] = {}

    def _task(idx: int, scenario: ScenarioConfig) -> Callable[[], None]:
        def _run() -> None:
            reports[idx] = run_scenario(
                scenario,
                docker_client=docker_client,
                cluster_cfg=cluster_cfg,
                reg_cfg=reg_cfg,
                gen_cfg=gen_cfg,
                wait_cfg=wait_cfg,
                strategy=strategy,
                cancel=cancel,
                sweep=False,
            )
        return _run

    try:
        if parallel and len(scenarios) > 1:
            _run_parallel({f"{idx + 1}-{s.name}": _task(idx, s) for idx, s in enumerate(scenarios)}, cancel)
        else:
            for idx, scenario in enumerate(scenarios):
                try:
                    _task(idx, scenario)()
                except KeyboardInterrupt:
                    cancel.set()
                    raise
    finally:
        docker_client.close()
    return [reports[idx] for idx in range(len(scenarios))]


def print_reports(reports: list[ScenarioReport]) -> None:
    """Print a summary table of scenario outcomes."""
    table = Table(title="Scenario results")
    table.add_column("Scenario", style="cyan")
    table.add_column("Cluster")
    table.add_column("Image")
    table.add_column("Applied", justify="right")
    table.add_column("Readiness")
    table.add_column("Result")
    for report in reports:
        result = "[green]PASS[/green]" if report.passed else "[red]FAIL[/red]"
        table.add_row(
            report.scenario,
            report.cluster or "-",
            report.image_ref,
            str(len(report.applied)),
            report.readiness,
            result,
        )
    console.print(table)
    for report in reports:
        if report.error:
            console.print(f"[red]{report.scenario}: {report.error}[/red]")
