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

"""Registry subcommands (ensure)."""

from __future__ import annotations

from pathlib import Path

import docker
import typer
from kubernetes import config as k8s_config

from ephemeral_env.cluster import list_nodes
from ephemeral_env.config import RegistryConfig
from ephemeral_env.registry import ensure_registry
from ephemeral_env.utils import require_command

app = typer.Typer(help="Manage the host-wide local registry.")


@app.command()
def ensure(
    cluster_name: str = typer.Option(..., "--cluster-name", help="kind cluster to wire the registry into"),
    kubeconfig: Path | None = typer.Option(
        None, "--kubeconfig", exists=True, dir_okay=False, help="Kubeconfig of the cluster"),
    port: int | None = typer.Option(None, "--port", help="Registry port (overrides E2E_REGISTRY_PORT)"),
) -> None:
    """Create or reuse the registry and connect it to an existing cluster."""
    require_command("kind")
    reg_cfg = RegistryConfig()
    if port is not None:
        reg_cfg = reg_cfg.model_copy(update={"port": port})
    api_client = k8s_config.new_client_from_config(
        config_file=str(kubeconfig) if kubeconfig else None,
        context=None if kubeconfig else f"kind-{cluster_name}",
    )
    docker_client = docker.from_env()
    try:
        ensure_registry(docker_client, reg_cfg, node_names=list_nodes(cluster_name), api_client=api_client)
    finally:
        docker_client.close()
        api_client.close()
