#!/usr/bin/env python3
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

"""
cli.py - Ephemeral environment runner for generator end-to-end tests.

Subcommands:
    scenario   Run end-to-end scenarios (generate, build, push, apply, verify)
    cluster    Manage throwaway kind clusters (create, delete, sweep, list)
    registry   Provision the local registry and wire it into a cluster
    manifests  Apply a directory of manifests to any cluster

Environment Variables:
    - DRAFT_E2E_BIN (default: /workspaces/draft/draft)
    - E2E_NAME_PREFIX (default: draft-e2e)
    - E2E_KEEP_CLUSTER (default: false)
    - E2E_REGISTRY_PORT (default: 5000)
    - E2E_WAIT_TIMEOUT_SECONDS (default: 60)
    - E2E_GENERATOR_TIMEOUT, E2E_WAIT_POLL_INTERVAL_SECONDS, E2E_REGISTRY_HOST_IP

Examples:
    # Run the built-in Go sample scenario
    ./cli.py scenario run

    # Run scenarios from a file in parallel, keeping a JSON report
    ./cli.py scenario run -f scenarios.yaml --parallel --report-file report.json

    # Clean up clusters left by crashed runs
    ./cli.py cluster sweep

    # Apply manifests with the typed fallback strategy
    ./cli.py manifests apply ./manifests --strategy typed --namespace go-ns

Every subcommand accepts --help.
"""

from __future__ import annotations

import logging
import sys

import typer

from ephemeral_env import console
from ephemeral_env.commands import (
    cluster_cmd,
    manifests_cmd,
    registry_cmd,
    scenario_cmd,
)

app = typer.Typer(
    help="Ephemeral environment runner for generator end-to-end tests.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log build/push progress and polls"),
) -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.add_typer(scenario_cmd.app, name="scenario")
app.add_typer(cluster_cmd.app, name="cluster")
app.add_typer(registry_cmd.app, name="registry")
app.add_typer(manifests_cmd.app, name="manifests")


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
