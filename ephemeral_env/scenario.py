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

"""Single-scenario sequencing: generate, publish, apply, verify."""

from __future__ import annotations

import dataclasses
import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import docker
from kubernetes.client.exceptions import ApiException
from rich.panel import Panel

from ephemeral_env import console, logger
from ephemeral_env.cluster import ClusterEnvironment, create_namespace
from ephemeral_env.config import GeneratorConfig, ScenarioConfig, WaitConfig
from ephemeral_env.exceptions import (
    ClusterSetupError,
    GeneratorError,
    HarnessError,
    ImageReferenceMismatchError,
    ManifestApplyFailures,
)
from ephemeral_env.generator import fetch_source, run_generator
from ephemeral_env.manifests import ApplyStrategy, apply_manifests, verify_image_references
from ephemeral_env.publisher import build_and_push
from ephemeral_env.readiness import wait_for_deployment
from ephemeral_env.registry import RegistryHandle
from ephemeral_env.utils import check_cancelled


@dataclass
class ScenarioEnvironment:
    """Everything a scenario touches, passed explicitly instead of held globally.

    Attributes:
        docker_client: Client for the host docker daemon.
        cluster: This scenario's own cluster, namespace and API client.
        registry: The host-wide registry shared by all scenarios.
        cancel: Cancellation event checked between and inside steps.
    """

    docker_client: docker.DockerClient
    cluster: ClusterEnvironment
    registry: RegistryHandle
    cancel: threading.Event = field(default_factory=threading.Event)


@dataclass
class ScenarioReport:
    """Pass/fail outcome and the side effects needed to debug a run."""

    scenario: str
    cluster: str = ""
    namespace: str = ""
    image_ref: str = ""
    generator_stdout: str = ""
    generator_stderr: str = ""
    applied: list[str] = field(default_factory=list)
    readiness: str = "not checked"
    steps: list[str] = field(default_factory=list)
    passed: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    def write_json(self, path: Path) -> None:
        path.write_text(json.dumps(self.to_dict(), indent=2))


def write_reports(reports: list[ScenarioReport], path: Path) -> None:
    """Write the reports of a run as one JSON list."""
    path.write_text(json.dumps([report.to_dict() for report in reports], indent=2))
    logger.info("wrote %d scenario report(s) to %s", len(reports), path)


class ScenarioDriver:
    """Runs one scenario against an already provisioned environment.

    Steps run strictly in order and the first failure ends the run; the
    caller owns cluster teardown.
    """

    def __init__(
        self,
        scenario: ScenarioConfig,
        env: ScenarioEnvironment,
        gen_cfg: GeneratorConfig,
        wait_cfg: WaitConfig,
        strategy: ApplyStrategy = ApplyStrategy.SERVER_SIDE,
    ) -> None:
        self.scenario = scenario
        self.env = env
        self.gen_cfg = gen_cfg
        self.wait_cfg = wait_cfg
        self.strategy = strategy
        self.report = ScenarioReport(
            scenario=scenario.name,
            cluster=env.cluster.cluster.name,
            namespace=env.cluster.namespace,
            image_ref=scenario.image_ref,
        )

    def run(self, workdir: Path) -> ScenarioReport:
        """Run every step in *workdir* and return the report.

        Step failures are recorded in the report, not raised.
        """
        console.print(Panel.fit(f"Scenario {self.scenario.name}", style="bold blue"))
        try:
            self._generate(workdir)
            self._verify_images(workdir)
            self._publish(workdir)
            self._apply(workdir)
            self._wait()
        except HarnessError as err:
            self.report.error = str(err)
            logger.error("scenario %s failed: %s", self.scenario.name, err)
            console.print(f"[red]❌ Scenario {self.scenario.name} failed: {err}[/red]")
            return self.report

        self.report.passed = True
        logger.info("scenario %s passed", self.scenario.name)
        console.print(f"[green]✅ Scenario {self.scenario.name} passed[/green]")
        return self.report

    def _step(self, name: str) -> None:
        check_cancelled(self.env.cancel, name)
        self.report.steps.append(name)

    def _generate(self, workdir: Path) -> None:
        self._step("generate")
        fetch_source(self.scenario, workdir)
        try:
            result = run_generator(self.gen_cfg, self.scenario, workdir)
        except GeneratorError as err:
            if err.result is not None:
                self.report.generator_stdout = err.result.stdout
                self.report.generator_stderr = err.result.stderr
            raise
        self.report.generator_stdout = result.stdout
        self.report.generator_stderr = result.stderr

    def _verify_images(self, workdir: Path) -> None:
        self._step("verify-images")
        if self.scenario.registry_host != self.env.registry.host:
            raise ImageReferenceMismatchError(
                f"image '{self.scenario.image_ref}' does not target registry {self.env.registry.host}"
            )
        verify_image_references(workdir / self.scenario.manifest_subdir, self.scenario.image_ref)

    def _publish(self, workdir: Path) -> None:
        self._step("publish")
        build_and_push(
            self.env.docker_client,
            self.scenario.image_ref,
            workdir,
            dockerfile=self.scenario.dockerfile,
            cancel=self.env.cancel,
        )

    def _apply(self, workdir: Path) -> None:
        self._step("apply")
        api_client = self.env.cluster.api_client
        try:
            create_namespace(api_client, self.scenario.namespace)
        except ApiException as err:
            raise ClusterSetupError(
                f"creating namespace {self.scenario.namespace}: {err.status} {err.reason}"
            ) from err
        try:
            report = apply_manifests(
                api_client,
                workdir / self.scenario.manifest_subdir,
                strategy=self.strategy,
                default_namespace=self.scenario.namespace,
            )
        except ManifestApplyFailures as err:
            self.report.applied = [str(path) for path in err.applied]
            raise
        self.report.applied = [str(path) for path in report.applied]

    def _wait(self) -> None:
        self._step("wait")
        self.report.readiness = "waiting"
        try:
            result = wait_for_deployment(
                self.env.cluster.api_client,
                self.scenario.app_name,
                self.scenario.namespace,
                min_replicas=self.wait_cfg.min_ready_replicas,
                timeout=self.wait_cfg.timeout_seconds,
                interval=self.wait_cfg.poll_interval_seconds,
                cancel=self.env.cancel,
            )
        except HarnessError as err:
            self.report.readiness = f"failed: {err}"
            raise
        self.report.readiness = f"ready after {result.attempts} poll(s)"
