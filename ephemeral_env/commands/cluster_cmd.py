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

"""Cluster subcommands (create, delete, sweep, list)."""

from __future__ import annotations

import typer

from ephemeral_env import console
from ephemeral_env.cluster import create_cluster, delete_cluster, list_clusters, sweep_stale_clusters
from ephemeral_env.config import ClusterConfig
from ephemeral_env.constants import RANDOM_NAME_LENGTH
from ephemeral_env.utils import random_name, require_command

app = typer.Typer(help="Manage throwaway kind clusters.")


@app.command()
def create(
    cluster_name: str | None = typer.Option(None, "--cluster-name", help="Cluster name (default: random)"),
    image: str | None = typer.Option(None, "--image", help="kindest/node image"),
    sweep: bool = typer.Option(True, "--sweep/--no-sweep", help="Delete stale clusters first"),
) -> None:
    """Create a kind cluster and print its kubeconfig path."""
    require_command("kind")
    cluster_cfg = ClusterConfig()
    if image is not None:
        cluster_cfg = cluster_cfg.model_copy(update={"node_image": image})
    if sweep:
        sweep_stale_clusters(cluster_cfg.name_prefix)
    name = cluster_name or random_name(cluster_cfg.name_prefix, RANDOM_NAME_LENGTH)
    handle = create_cluster(cluster_cfg, name)
    console.print(f"[green]✅ kubeconfig: {handle.kubeconfig}[/green]")


@app.command()
def delete(
    cluster_name: str = typer.Argument(..., help="Cluster to delete"),
) -> None:
    """Delete a kind cluster."""
    require_command("kind")
    delete_cluster(cluster_name)


@app.command()
def sweep() -> None:
    """Delete every cluster carrying the well-known name prefix."""
    require_command("kind")
    deleted = sweep_stale_clusters(ClusterConfig().name_prefix)
    if not deleted:
        console.print("[yellow]ℹ️  No stale clusters found[/yellow]")


@app.command("list")
def list_cmd() -> None:
    """List kind clusters, marking the ones this tool created."""
    require_command("kind")
    prefix = ClusterConfig().name_prefix
    for name in list_clusters():
        marker = " [cyan](ephemeral)[/cyan]" if name.startswith(prefix) else ""
        console.print(f"{name}{marker}")
