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

"""kind cluster lifecycle, stale-cluster sweeping, and run namespaces."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import sh
from kubernetes import client as k8s
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException
from rich.panel import Panel
from tenacity import retry, stop_after_attempt, wait_fixed

from ephemeral_env import console, logger
from ephemeral_env.config import ClusterConfig
from ephemeral_env.constants import CLUSTER_CREATE_RETRY_WAIT_SECONDS, RANDOM_NAME_LENGTH
from ephemeral_env.exceptions import ClusterSetupError
from ephemeral_env.utils import random_name


@dataclass(frozen=True)
class ClusterHandle:
    """A provisioned kind cluster and its kubeconfig artifact."""

    name: str
    kubeconfig: Path


@dataclass
class ClusterEnvironment:
    """Per-scenario cluster resources, passed explicitly to every step.

    Attributes:
        cluster: The throwaway cluster.
        namespace: Isolated namespace created for this run.
        api_client: Kubernetes client bound to the cluster's kubeconfig.
    """

    cluster: ClusterHandle
    namespace: str
    api_client: k8s.ApiClient


def _kind(*args: str) -> str:
    """Run a kind subcommand and return its stdout."""
    return str(sh.kind(*args))


def _new_kubeconfig_path(cluster_name: str) -> Path:
    fd, path = tempfile.mkstemp(prefix=f"{cluster_name}-", suffix=".kubeconfig")
    # kind writes the file itself; only the unique path is needed here
    os.close(fd)
    return Path(path)


# ============================================================================
# Cluster operations
# ============================================================================

def list_clusters() -> list[str]:
    """Return the names of all kind clusters on this host."""
    return [line.strip() for line in _kind("get", "clusters").splitlines() if line.strip()]


def list_nodes(cluster_name: str) -> list[str]:
    """Return the node container names of a kind cluster."""
    return [line.strip() for line in _kind("get", "nodes", "--name", cluster_name).splitlines() if line.strip()]


def delete_cluster(cluster_name: str, kubeconfig: Path | None = None) -> None:
    """Delete a kind cluster; deleting a cluster that is already gone is not an error.

    Args:
        cluster_name: Name of the kind cluster.
        kubeconfig: Kubeconfig file kind should remove the cluster's context from.
    """
    console.print(f"[yellow]ℹ️  Deleting kind cluster '{cluster_name}'...[/yellow]")
    args = ["delete", "cluster", "--name", cluster_name]
    if kubeconfig is not None:
        args += ["--kubeconfig", str(kubeconfig)]
    _kind(*args)
    logger.info("deleted kind cluster %s", cluster_name)
    console.print(f"[green]✅ Cluster '{cluster_name}' deleted[/green]")


def sweep_stale_clusters(prefix: str) -> list[str]:
    """Delete every cluster left behind by earlier runs.

    The kubeconfig of each stale cluster is exported to a scratch file first
    so that deletion does not touch the user's default kubeconfig. A cluster
    whose kubeconfig cannot be exported (e.g. its control plane is stopped)
    is still deleted, and one failed deletion does not stop the sweep.

    Args:
        prefix: Well-known prefix of clusters created by this tool.

    Returns:
        Names of the deleted clusters.

    Raises:
        ClusterSetupError: If the clusters on this host cannot be listed.
    """
    try:
        stale = [name for name in list_clusters() if name.startswith(prefix)]
    except sh.ErrorReturnCode as err:
        raise ClusterSetupError(f"listing kind clusters: {err}") from err
    if not stale:
        return []

    console.print(Panel.fit(f"Sweeping {len(stale)} stale cluster(s)", style="bold blue"))
    deleted = []
    for name in stale:
        logger.info("cleaning up old e2e cluster: %s", name)
        with tempfile.TemporaryDirectory() as tmp:
            kubeconfig: Path | None = Path(tmp) / "e2e-kubeconfig"
            try:
                _kind("export", "kubeconfig", "--name", name, "--kubeconfig", str(kubeconfig))
            except sh.ErrorReturnCode as err:
                logger.warning("exporting kubeconfig of %s failed, deleting anyway: %s", name, err)
                kubeconfig = None
            try:
                delete_cluster(name, kubeconfig)
            except sh.ErrorReturnCode as err:
                logger.error("failed to delete stale cluster %s: %s", name, err)
                console.print(f"[yellow]⚠️  Stale cluster '{name}' could not be deleted[/yellow]")
                continue
        deleted.append(name)
    return deleted


def create_cluster(cluster_cfg: ClusterConfig, cluster_name: str) -> ClusterHandle:
    """Create a kind cluster with retry logic.

    Args:
        cluster_cfg: Cluster configuration including node image and retry count.
        cluster_name: Name for the new cluster.

    Returns:
        Handle to the created cluster.

    Raises:
        ClusterSetupError: If the cluster cannot be created after all retries.
    """
    console.print(Panel.fit(f"Creating kind cluster '{cluster_name}'", style="bold blue"))
    kubeconfig = _new_kubeconfig_path(cluster_name)

    @retry(
        stop=stop_after_attempt(cluster_cfg.max_retries),
        wait=wait_fixed(CLUSTER_CREATE_RETRY_WAIT_SECONDS),
        reraise=True,
    )
    def _attempt() -> None:
        _kind("delete", "cluster", "--name", cluster_name, "--kubeconfig", str(kubeconfig))
        _kind(
            "create", "cluster",
            "--name", cluster_name,
            "--config", str(cluster_cfg.config_file),
            "--image", cluster_cfg.node_image,
            "--kubeconfig", str(kubeconfig),
            "--wait", cluster_cfg.wait_timeout,
        )

    try:
        _attempt()
    except sh.ErrorReturnCode as err:
        kubeconfig.unlink(missing_ok=True)
        stderr = err.stderr.decode(errors="replace") if isinstance(err.stderr, bytes) else str(err.stderr)
        raise ClusterSetupError(f"kind create cluster '{cluster_name}' failed: {stderr.strip()}") from err
    logger.info("created kind cluster %s (kubeconfig %s)", cluster_name, kubeconfig)
    console.print("[green]✅ Cluster created successfully[/green]")
    return ClusterHandle(name=cluster_name, kubeconfig=kubeconfig)


def new_api_client(handle: ClusterHandle) -> k8s.ApiClient:
    """Build a Kubernetes client bound to the cluster's own kubeconfig."""
    return k8s_config.new_client_from_config(config_file=str(handle.kubeconfig))


# ============================================================================
# Namespaces
# ============================================================================

def create_namespace(api_client: k8s.ApiClient, name: str) -> None:
    """Create a namespace; an existing namespace is left as is.

    Raises:
        ApiException: If the API server rejects the request for another reason.
    """
    body = k8s.V1Namespace(metadata=k8s.V1ObjectMeta(name=name))
    try:
        k8s.CoreV1Api(api_client).create_namespace(body)
        logger.info("created namespace %s", name)
    except ApiException as err:
        if err.status != 409:
            raise
        logger.info("namespace %s already exists", name)


def delete_namespace(api_client: k8s.ApiClient, name: str) -> None:
    """Delete a namespace; a missing namespace is not an error."""
    try:
        k8s.CoreV1Api(api_client).delete_namespace(name)
        logger.info("deleted namespace %s", name)
    except ApiException as err:
        if err.status != 404:
            raise


# ============================================================================
# Setup / teardown
# ============================================================================

def setup(cluster_cfg: ClusterConfig, *, sweep: bool = True, cluster_name: str | None = None) -> ClusterEnvironment:
    """Create a fresh cluster and an isolated namespace.

    Args:
        cluster_cfg: Cluster configuration.
        sweep: Whether to delete stale clusters sharing the prefix first.
        cluster_name: Explicit cluster name, or None for a random one.

    Returns:
        The new cluster environment.

    Raises:
        ClusterSetupError: If the cluster or namespace cannot be created; any
            partially created cluster has been deleted.
    """
    if sweep:
        sweep_stale_clusters(cluster_cfg.name_prefix)
    name = cluster_name or random_name(cluster_cfg.name_prefix, RANDOM_NAME_LENGTH)
    try:
        handle = create_cluster(cluster_cfg, name)
    except ClusterSetupError:
        teardown(name)
        raise
    try:
        return _attach(cluster_cfg, handle)
    except ClusterSetupError:
        teardown(handle.name, handle.kubeconfig)
        raise


def _attach(cluster_cfg: ClusterConfig, handle: ClusterHandle) -> ClusterEnvironment:
    namespace = random_name(cluster_cfg.namespace_prefix, RANDOM_NAME_LENGTH)
    try:
        api_client = new_api_client(handle)
        create_namespace(api_client, namespace)
    except (ApiException, OSError, k8s_config.ConfigException) as err:
        raise ClusterSetupError(f"creating namespace {namespace} in cluster {handle.name}: {err}") from err
    return ClusterEnvironment(cluster=handle, namespace=namespace, api_client=api_client)


def teardown(cluster_name: str, kubeconfig: Path | None = None, env: ClusterEnvironment | None = None) -> None:
    """Best-effort teardown of the namespace and cluster.

    Failures are logged and never raised so they cannot mask the scenario result.
    """
    console.print(Panel.fit(f"Tearing down cluster '{cluster_name}'", style="bold blue"))
    if env is not None:
        try:
            delete_namespace(env.api_client, env.namespace)
        except Exception as err:
            logger.warning("failed to delete namespace %s: %s", env.namespace, err)
        finally:
            env.api_client.close()
    try:
        delete_cluster(cluster_name, kubeconfig)
    except Exception as err:
        logger.error("failed to delete cluster %s: %s", cluster_name, err)
        console.print(f"[yellow]⚠️  Cluster '{cluster_name}' could not be deleted: {err}[/yellow]")
    if kubeconfig is not None:
        kubeconfig.unlink(missing_ok=True)


@contextmanager
def provisioned_cluster(cluster_cfg: ClusterConfig, *, sweep: bool = True) -> Iterator[ClusterEnvironment]:
    """Acquire a cluster for the duration of the block and always release it.

    Teardown runs exactly once however the block (or setup itself) exits,
    unless ``keep_cluster`` is set.

    Raises:
        ClusterSetupError: If setup fails; teardown has already run.
    """
    if sweep:
        sweep_stale_clusters(cluster_cfg.name_prefix)
    name = random_name(cluster_cfg.name_prefix, RANDOM_NAME_LENGTH)
    handle: ClusterHandle | None = None
    env: ClusterEnvironment | None = None
    try:
        handle = create_cluster(cluster_cfg, name)
        env = _attach(cluster_cfg, handle)
        yield env
    finally:
        if handle is not None:
            name = handle.name
        if cluster_cfg.keep_cluster:
            console.print(f"[yellow]⚠️  Keeping cluster '{name}' (kubeconfig: "
                          f"{handle.kubeconfig if handle else 'n/a'})[/yellow]")
        else:
            teardown(name, handle.kubeconfig if handle else None, env)
