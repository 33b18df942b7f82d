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

"""Local image registry container, node wiring, and in-cluster discovery.

See https://kind.sigs.k8s.io/docs/user/local-registry/ for the convention
this module follows.
"""

from __future__ import annotations

import io
import tarfile
from dataclasses import dataclass

import docker
import docker.errors
from docker.models.containers import Container
from kubernetes import client as k8s
from kubernetes.client.exceptions import ApiException
from rich.panel import Panel

from ephemeral_env import console, logger
from ephemeral_env.config import RegistryConfig
from ephemeral_env.constants import (
    CONTAINERD_CERTS_DIR,
    HOSTS_TOML,
    LOCAL_REGISTRY_CONFIGMAP,
    LOCAL_REGISTRY_HELP_KEY,
    LOCAL_REGISTRY_HELP_URL,
    LOCAL_REGISTRY_HOST_KEY,
    NS_KUBE_PUBLIC,
)
from ephemeral_env.exceptions import RegistrySetupError


@dataclass(frozen=True)
class RegistryHandle:
    """The host-wide local registry container.

    Attributes:
        container_id: Docker ID of the registry container.
        name: Fixed container name.
        host: ``host:port`` the registry is reachable at.
        network: Cluster network the registry has joined.
    """

    container_id: str
    name: str
    host: str
    network: str


# ============================================================================
# Registry container
# ============================================================================

def _get_or_create_container(docker_client: docker.DockerClient, reg_cfg: RegistryConfig) -> Container:
    """Return the registry container, creating it if absent.

    A concurrent run creating the same container first (HTTP 409) counts as
    the already-present case.
    """
    try:
        return docker_client.containers.get(reg_cfg.container_name)
    except docker.errors.NotFound:
        pass

    port = f"{reg_cfg.port}/tcp"
    console.print(f"[yellow]ℹ️  Creating registry container '{reg_cfg.container_name}'...[/yellow]")
    try:
        try:
            docker_client.images.get(reg_cfg.image)
        except docker.errors.ImageNotFound:
            docker_client.images.pull(reg_cfg.image)
        container = docker_client.containers.create(
            reg_cfg.image,
            name=reg_cfg.container_name,
            ports={port: (reg_cfg.host_ip, reg_cfg.port)},
            environment={"REGISTRY_HTTP_ADDR": f"0.0.0.0:{reg_cfg.port}"},
            restart_policy={"Name": "always"},
        )
        logger.info("created registry container %s (%s)", reg_cfg.container_name, container.id)
        return container
    except docker.errors.APIError as err:
        if err.status_code == 409:
            logger.info("registry container %s was created concurrently", reg_cfg.container_name)
            return docker_client.containers.get(reg_cfg.container_name)
        raise RegistrySetupError(f"creating new registry container: {err.explanation or err}") from err


def _ensure_running(container: Container) -> None:
    if container.status == "running":
        return
    logger.info("starting registry container with ID=%s", container.id)
    try:
        container.start()
    except docker.errors.APIError as err:
        raise RegistrySetupError(
            f"starting registry container with ID={container.id}: {err.explanation or err}"
        ) from err


def _ensure_network_membership(docker_client: docker.DockerClient, container: Container, network: str) -> None:
    """Connect the registry to the cluster network unless it is already a member."""
    container.reload()
    if network in (container.attrs.get("NetworkSettings", {}).get("Networks") or {}):
        return
    logger.info("connecting registry container %s to network %s", container.id, network)
    try:
        docker_client.networks.get(network).connect(container)
    except docker.errors.APIError as err:
        if "already exists" in str(err.explanation or err):
            return
        raise RegistrySetupError(
            f"connecting registry container {container.id} to network {network}: {err.explanation or err}"
        ) from err


# ============================================================================
# Cluster wiring
# ============================================================================

def _hosts_toml_archive(registry_name: str, port: int) -> bytes:
    body = f'[host."http://{registry_name}:{port}"]\n'.encode()
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        info = tarfile.TarInfo(name=HOSTS_TOML)
        info.mode = 0o600
        info.size = len(body)
        tar.addfile(info, io.BytesIO(body))
    return buf.getvalue()


def configure_nodes(docker_client: docker.DockerClient, node_names: list[str], reg_cfg: RegistryConfig) -> None:
    """Alias ``localhost:<port>`` to the registry container on every node.

    localhost inside a node container is the node itself, so containerd is
    told to resolve the registry host through the registry container name.

    Raises:
        RegistrySetupError: If a node cannot be configured.
    """
    registry_dir = f"{CONTAINERD_CERTS_DIR}/{reg_cfg.host}"
    archive = _hosts_toml_archive(reg_cfg.container_name, reg_cfg.port)
    for node_name in node_names:
        logger.info("writing registry config to node %s", node_name)
        try:
            node = docker_client.containers.get(node_name)
            exit_code, output = node.exec_run(["mkdir", "-p", registry_dir])
            if exit_code != 0:
                raise RegistrySetupError(
                    f"creating registry dir {registry_dir} on node {node_name}: {output.decode(errors='replace')}"
                )
            if not node.put_archive(registry_dir, archive):
                raise RegistrySetupError(f"copying {HOSTS_TOML} to node {node_name}")
        except docker.errors.APIError as err:
            raise RegistrySetupError(f"configuring registry on node {node_name}: {err.explanation or err}") from err


def document_local_registry(api_client: k8s.ApiClient, reg_cfg: RegistryConfig) -> None:
    """Publish the registry location in ``kube-public/local-registry-hosting``.

    Raises:
        RegistrySetupError: If the ConfigMap cannot be created or replaced.
    """
    core_v1 = k8s.CoreV1Api(api_client)
    body = k8s.V1ConfigMap(
        metadata=k8s.V1ObjectMeta(name=LOCAL_REGISTRY_CONFIGMAP, namespace=NS_KUBE_PUBLIC),
        data={
            LOCAL_REGISTRY_HOST_KEY: reg_cfg.host,
            LOCAL_REGISTRY_HELP_KEY: LOCAL_REGISTRY_HELP_URL,
        },
    )
    logger.info("applying local registry configmap")
    try:
        try:
            core_v1.create_namespaced_config_map(NS_KUBE_PUBLIC, body)
        except ApiException as err:
            if err.status != 409:
                raise
            core_v1.replace_namespaced_config_map(LOCAL_REGISTRY_CONFIGMAP, NS_KUBE_PUBLIC, body)
    except ApiException as err:
        raise RegistrySetupError(f"creating local registry configmap: {err.status} {err.reason}") from err


# ============================================================================
# Public API
# ============================================================================

def ensure_registry(
    docker_client: docker.DockerClient,
    reg_cfg: RegistryConfig,
    *,
    node_names: list[str],
    api_client: k8s.ApiClient,
) -> RegistryHandle:
    """Make sure the local registry exists, runs, and is wired into the cluster.

    Safe to call repeatedly and from parallel runs: every mutation is checked
    against current host state first.

    Args:
        docker_client: Docker client for the host daemon.
        reg_cfg: Registry configuration.
        node_names: Node containers of the cluster to wire the registry into.
        api_client: Client for the cluster that should discover the registry.

    Returns:
        Handle to the running registry.

    Raises:
        RegistrySetupError: If any provisioning step fails.
    """
    console.print(Panel.fit("Ensuring local registry", style="bold blue"))
    try:
        container = _get_or_create_container(docker_client, reg_cfg)
        logger.info("using registry container with ID=%s", container.id)
        _ensure_running(container)
        configure_nodes(docker_client, node_names, reg_cfg)
        _ensure_network_membership(docker_client, container, reg_cfg.network)
    except docker.errors.DockerException as err:
        raise RegistrySetupError(f"docker backend unavailable: {err}") from err
    document_local_registry(api_client, reg_cfg)
    console.print(f"[green]✅ Registry '{reg_cfg.container_name}' ready at {reg_cfg.host}[/green]")
    return RegistryHandle(
        container_id=container.id,
        name=reg_cfg.container_name,
        host=reg_cfg.host,
        network=reg_cfg.network,
    )
