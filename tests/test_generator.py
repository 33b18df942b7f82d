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

import dataclasses
import subprocess
from unittest.mock import patch

import pytest

from ephemeral_env import generator
from ephemeral_env.config import GeneratorConfig
from ephemeral_env.exceptions import GeneratorError, GeneratorOutputError
from ephemeral_env.generator import build_create_args, fetch_source, run_generator


@pytest.fixture
def gen_cfg():
    return GeneratorConfig(bin_path="/opt/draft", timeout_seconds=30)


@pytest.fixture
def workdir(tmp_path):
    (tmp_path / "Dockerfile").write_text("FROM golang:1.22\n")
    (tmp_path / "manifests").mkdir()
    return tmp_path


class TestArguments:
    def test_create_arguments(self, scenario):
        assert build_create_args(scenario) == [
            "-v", "create",
            "-l", "gomodule",
            "--deploy-type", "manifests",
            "--skip-file-detection",
            "--variable", "PORT=8080",
            "--variable", "SERVICEPORT=8080",
            "--variable", "VERSION=1.22",
            "--variable", "NAMESPACE=go-ns",
            "--variable", "APPNAME=go-app",
            "--variable", "IMAGENAME=localhost:5000/manifests-gomodule-8080",
            "--variable", "IMAGETAG=latest",
        ]


class TestRunGenerator:
    def test_success(self, gen_cfg, scenario, workdir):
        with patch.object(generator, "run_command", return_value=(0, "created files", "")) as run:
            result = run_generator(gen_cfg, scenario, workdir)

        args = run.call_args.args[0]
        assert args[0] == "/opt/draft"
        assert run.call_args.kwargs == {"cwd": workdir, "timeout": 30}
        assert result.ok
        assert result.stdout == "created files"

    def test_non_zero_exit_surfaces_output(self, gen_cfg, scenario, workdir):
        with patch.object(generator, "run_command", return_value=(2, "partial", "unknown language")):
            with pytest.raises(GeneratorError) as excinfo:
                run_generator(gen_cfg, scenario, workdir)
        assert "unknown language" in str(excinfo.value)
        assert "partial" in str(excinfo.value)
        assert excinfo.value.result.returncode == 2

    def test_missing_dockerfile(self, gen_cfg, scenario, workdir):
        (workdir / "Dockerfile").unlink()
        with patch.object(generator, "run_command", return_value=(0, "", "")):
            with pytest.raises(GeneratorOutputError, match="Dockerfile"):
                run_generator(gen_cfg, scenario, workdir)

    def test_missing_manifest_dir(self, gen_cfg, scenario, workdir):
        (workdir / "manifests").rmdir()
        with patch.object(generator, "run_command", return_value=(0, "", "")):
            with pytest.raises(GeneratorOutputError, match="manifests"):
                run_generator(gen_cfg, scenario, workdir)

    def test_timeout(self, gen_cfg, scenario, workdir):
        with patch.object(generator, "run_command", side_effect=subprocess.TimeoutExpired("draft", 30)):
            with pytest.raises(GeneratorError, match="timed out"):
                run_generator(gen_cfg, scenario, workdir)

    def test_missing_binary(self, gen_cfg, scenario, workdir):
        with patch.object(generator, "run_command", side_effect=FileNotFoundError("/opt/draft")):
            with pytest.raises(GeneratorError, match="starting generator"):
                run_generator(gen_cfg, scenario, workdir)


class TestFetchSource:
    def test_clones_repository(self, scenario, tmp_path):
        with patch.object(generator, "_git") as git:
            fetch_source(scenario, tmp_path)
        git.assert_called_once_with("clone", "https://github.com/gambtho/go_echo", ".", cwd=tmp_path)

    def test_copies_local_source(self, scenario, tmp_path):
        source = tmp_path / "src"
        source.mkdir()
        (source / "main.go").write_text("package main\n")
        dest = tmp_path / "work"
        dest.mkdir()

        with patch.object(generator, "_git") as git:
            fetch_source(dataclasses.replace(scenario, source_dir=source), dest)

        git.assert_not_called()
        assert (dest / "main.go").read_text() == "package main\n"
