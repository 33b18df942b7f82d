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

"""Scenario subcommands (run)."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import typer

from ephemeral_env.config import (
    ClusterConfig,
    GeneratorConfig,
    RegistryConfig,
    ScenarioConfig,
    WaitConfig,
    load_scenarios,
)
from ephemeral_env.manifests import ApplyStrategy
from ephemeral_env.orchestrator import print_reports, run_scenarios
from ephemeral_env.scenario import write_reports

app = typer.Typer(help="Run end-to-end scenarios.")


@app.command()
def run(
    scenario_file: Path | None = typer.Option(
        None, "--scenario-file", "-f", exists=True, dir_okay=False,
        help="YAML list of scenarios (default: the built-in Go sample)"),
    language: str | None = typer.Option(None, "--language", help="Generator language tag"),
    port: str | None = typer.Option(None, "--port", help="Application port"),
    app_name: str | None = typer.Option(None, "--app-name", help="Application and Deployment name"),
    namespace: str | None = typer.Option(None, "--namespace", help="Namespace the manifests deploy into"),
    deploy_type: str | None = typer.Option(None, "--deploy-type", help="Generator deploy type"),
    repo: str | None = typer.Option(None, "--repo", help="Sample repository (owner/name)"),
    source_dir: Path | None = typer.Option(
        None, "--source-dir", exists=True, file_okay=False, help="Local sample checkout instead of --repo"),
    strategy: ApplyStrategy = typer.Option(
        ApplyStrategy.SERVER_SIDE, "--strategy", help="Manifest apply strategy"),
    parallel: bool = typer.Option(False, "--parallel", help="Run scenarios in parallel clusters"),
    keep_cluster: bool = typer.Option(False, "--keep-cluster", help="Skip cluster teardown"),
    wait_timeout: float | None = typer.Option(
        None, "--wait-timeout", help="Readiness timeout in seconds (overrides E2E_WAIT_TIMEOUT_SECONDS)"),
    report_file: Path | None = typer.Option(None, "--report-file", help="Write JSON reports here"),
) -> None:
    """Provision, generate, build, apply and verify.

    Exits non-zero if any scenario fails.
    """
    cluster_cfg = ClusterConfig()
    if keep_cluster:
        cluster_cfg = cluster_cfg.model_copy(update={"keep_cluster": True})
    reg_cfg = RegistryConfig()
    wait_cfg = WaitConfig()
    if wait_timeout is not None:
        wait_cfg = wait_cfg.model_copy(update={"timeout_seconds": wait_timeout})

    overrides = {
        key: value for key, value in {
            "language": language,
            "port": port,
            "app_name": app_name,
            "namespace": namespace,
            "deploy_type": deploy_type,
            "repo": repo,
            "source_dir": source_dir,
        }.items() if value is not None
    }
    scenarios = load_scenarios(scenario_file) if scenario_file else [ScenarioConfig()]
    scenarios = [dataclasses.replace(s, **overrides, registry_host=reg_cfg.host) for s in scenarios]

    reports = run_scenarios(
        scenarios,
        cluster_cfg=cluster_cfg,
        reg_cfg=reg_cfg,
        gen_cfg=GeneratorConfig(),
        wait_cfg=wait_cfg,
        strategy=strategy,
        parallel=parallel,
    )
    print_reports(reports)
    if report_file is not None:
        write_reports(reports, report_file)
    if not all(report.passed for report in reports):
        raise typer.Exit(code=1)
