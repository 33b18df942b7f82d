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

import json
import shutil
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from ephemeral_env import scenario as scenario_mod
from ephemeral_env.cluster import ClusterEnvironment, ClusterHandle
from ephemeral_env.config import GeneratorConfig, WaitConfig
from ephemeral_env.exceptions import (
    BuildError,
    GeneratorError,
    ManifestApplyFailures,
    ManifestDecodeError,
)
from ephemeral_env.generator import GeneratorResult
from ephemeral_env.manifests import ApplyReport
from ephemeral_env.readiness import ResourceRef, WaitResult
from ephemeral_env.registry import RegistryHandle
from ephemeral_env.scenario import ScenarioDriver, ScenarioEnvironment, ScenarioReport, write_reports

from conftest import DEFAULT_IMAGE_REF, FIXTURES_DIR


@pytest.fixture
def env():
    cluster_env = ClusterEnvironment(
        cluster=ClusterHandle("draft-e2e-1234", Path("/tmp/kc")),
        namespace="draft-e2e-ns-abc",
        api_client=MagicMock(),
    )
    registry = RegistryHandle(container_id="reg", name="kind-registry", host="localhost:5000", network="kind")
    return ScenarioEnvironment(docker_client=MagicMock(), cluster=cluster_env, registry=registry)


@pytest.fixture
def steps():
    """Patch every external step of the driver, recording call order."""
    recorder = MagicMock()

    def generate(gen_cfg, scenario, workdir):
        shutil.copytree(FIXTURES_DIR / "manifests", workdir / "manifests", dirs_exist_ok=True)
        (workdir / "Dockerfile").write_text("FROM scratch\n")
        return GeneratorResult(args=["draft"], returncode=0, stdout="generated", stderr="")

    recorder.run_generator.side_effect = generate
    recorder.apply_manifests.side_effect = lambda api, path, **_: ApplyReport(
        applied=sorted(path.rglob("*.y*ml"))
    )
    recorder.wait_for_deployment.return_value = WaitResult(
        ref=ResourceRef("Deployment", "go-app", "go-ns"), attempts=3, elapsed=4.0,
    )
    with patch.multiple(
        scenario_mod,
        fetch_source=recorder.fetch_source,
        run_generator=recorder.run_generator,
        build_and_push=recorder.build_and_push,
        create_namespace=recorder.create_namespace,
        apply_manifests=recorder.apply_manifests,
        wait_for_deployment=recorder.wait_for_deployment,
    ):
        yield recorder


def _driver(scenario, env):
    return ScenarioDriver(scenario, env, GeneratorConfig(bin_path="/opt/draft"), WaitConfig())


def _called(recorder):
    return [name for name, _, _ in recorder.mock_calls if "." not in name]


class TestScenarioDriver:
    def test_passes_in_order(self, scenario, env, steps, tmp_path):
        report = _driver(scenario, env).run(tmp_path)

        assert report.passed, report.error
        assert report.steps == ["generate", "verify-images", "publish", "apply", "wait"]
        assert _called(steps) == [
            "fetch_source", "run_generator", "build_and_push", "create_namespace",
            "apply_manifests", "wait_for_deployment",
        ]
        assert report.cluster == "draft-e2e-1234"
        assert report.generator_stdout == "generated"
        assert len(report.applied) == 3
        assert report.readiness == "ready after 3 poll(s)"

    def test_single_image_reference_threaded_through(self, scenario, env, steps, tmp_path):
        _driver(scenario, env).run(tmp_path)

        assert steps.build_and_push.call_args.args[1] == DEFAULT_IMAGE_REF
        assert steps.build_and_push.call_args.args[1] == scenario.image_ref
        wait_args = steps.wait_for_deployment.call_args
        assert wait_args.args[1:] == ("go-app", "go-ns")
        assert wait_args.kwargs["min_replicas"] == 1

    def test_divergent_manifest_caught_before_publish(self, scenario, env, steps, tmp_path):
        def generate(gen_cfg, scenario, workdir):
            manifests = workdir / "manifests"
            shutil.copytree(FIXTURES_DIR / "manifests", manifests)
            deployment = manifests / "deployment.yaml"
            deployment.write_text(deployment.read_text().replace(DEFAULT_IMAGE_REF, "go-app:latest"))
            return GeneratorResult(args=["draft"], returncode=0, stdout="", stderr="")

        steps.run_generator.side_effect = generate

        report = _driver(scenario, env).run(tmp_path)

        assert not report.passed
        assert "go-app:latest" in report.error
        steps.build_and_push.assert_not_called()
        steps.apply_manifests.assert_not_called()

    def test_registry_mismatch_caught_before_publish(self, scenario, env, steps, tmp_path):
        env.registry = RegistryHandle("reg", "kind-registry", "localhost:5001", "kind")
        report = _driver(scenario, env).run(tmp_path)
        assert "localhost:5001" in report.error
        steps.build_and_push.assert_not_called()

    def test_generator_failure_recorded(self, scenario, env, steps, tmp_path):
        result = GeneratorResult(args=["draft"], returncode=1, stdout="out", stderr="bad language")
        steps.run_generator.side_effect = GeneratorError("generator exited with status 1", result)

        report = _driver(scenario, env).run(tmp_path)

        assert not report.passed
        assert report.generator_stderr == "bad language"
        assert report.steps == ["generate"]
        steps.build_and_push.assert_not_called()

    def test_build_failure_short_circuits(self, scenario, env, steps, tmp_path):
        steps.build_and_push.side_effect = BuildError(DEFAULT_IMAGE_REF, "COPY failed")
        report = _driver(scenario, env).run(tmp_path)
        assert "building image failed" in report.error
        steps.apply_manifests.assert_not_called()
        steps.wait_for_deployment.assert_not_called()

    def test_apply_failures_keep_applied_list(self, scenario, env, steps, tmp_path):
        bad = tmp_path / "manifests" / "broken.yaml"
        steps.apply_manifests.side_effect = ManifestApplyFailures(
            [ManifestDecodeError(bad, "decoding manifest")], [tmp_path / "manifests" / "service.yaml"],
        )
        report = _driver(scenario, env).run(tmp_path)
        assert "broken.yaml" in report.error
        assert report.applied == [str(tmp_path / "manifests" / "service.yaml")]
        steps.wait_for_deployment.assert_not_called()

    def test_cancelled_before_start(self, scenario, env, steps, tmp_path):
        env.cancel = threading.Event()
        env.cancel.set()
        report = _driver(scenario, env).run(tmp_path)
        assert "cancelled" in report.error
        assert report.steps == []
        steps.fetch_source.assert_not_called()


class TestReports:
    def test_write_reports(self, tmp_path):
        path = tmp_path / "report.json"
        write_reports([ScenarioReport(scenario="a", passed=True), ScenarioReport(scenario="b", error="x")], path)
        data = json.loads(path.read_text())
        assert [(r["scenario"], r["passed"], r["error"]) for r in data] == [("a", True, None), ("b", False, "x")]
