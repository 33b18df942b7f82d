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

"""Manifest subcommands (apply)."""

from __future__ import annotations

from pathlib import Path

import typer
from kubernetes import config as k8s_config

from ephemeral_env.constants import NS_DEFAULT
from ephemeral_env.manifests import ApplyStrategy, apply_manifests

app = typer.Typer(help="Apply manifest directories.")


@app.command()
def apply(
    manifest_dir: Path = typer.Argument(..., exists=True, file_okay=False, help="Directory of manifests"),
    kubeconfig: Path | None = typer.Option(
        None, "--kubeconfig", exists=True, dir_okay=False, help="Kubeconfig (default: current context)"),
    strategy: ApplyStrategy = typer.Option(
        ApplyStrategy.SERVER_SIDE, "--strategy", help="Manifest apply strategy"),
    namespace: str = typer.Option(NS_DEFAULT, "--namespace", help="Namespace for documents without one"),
) -> None:
    """Apply every manifest under a directory, reporting all failures together."""
    api_client = k8s_config.new_client_from_config(config_file=str(kubeconfig) if kubeconfig else None)
    try:
        apply_manifests(api_client, manifest_dir, strategy=strategy, default_namespace=namespace)
    finally:
        api_client.close()
