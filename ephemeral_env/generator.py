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

"""Sample source checkout and generator subprocess invocation."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

import sh

from ephemeral_env import console, logger
from ephemeral_env.config import GeneratorConfig, ScenarioConfig
from ephemeral_env.constants import GENERATOR_VERB, GITHUB_URL
from ephemeral_env.exceptions import GeneratorError, GeneratorOutputError
from ephemeral_env.utils import run_command


@dataclass
class GeneratorResult:
    """Captured generator invocation."""

    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _git(*args: str, cwd: Path) -> None:
    sh.git(*args, _cwd=str(cwd))


def fetch_source(scenario: ScenarioConfig, workdir: Path) -> Path:
    """Populate *workdir* with the scenario's sample application.

    A local ``source_dir`` is copied; otherwise ``repo`` is cloned from GitHub.

    Raises:
        GeneratorError: If the source cannot be fetched.
    """
    if scenario.source_dir is not None:
        logger.info("copying %s into %s", scenario.source_dir, workdir)
        try:
            shutil.copytree(scenario.source_dir, workdir, dirs_exist_ok=True)
        except OSError as err:
            raise GeneratorError(f"copying source {scenario.source_dir}: {err}") from err
        return workdir

    repo_url = f"{GITHUB_URL}/{scenario.repo}"
    console.print(f"[yellow]ℹ️  Cloning {repo_url} into {workdir}...[/yellow]")
    try:
        _git("clone", repo_url, ".", cwd=workdir)
    except sh.ErrorReturnCode as err:
        stderr = err.stderr.decode(errors="replace") if isinstance(err.stderr, bytes) else str(err.stderr)
        raise GeneratorError(f"cloning {repo_url}: {stderr.strip()}") from err
    return workdir


def build_create_args(scenario: ScenarioConfig) -> list[str]:
    """Build the generator argument list, executable excluded.

    ``--skip-file-detection`` makes the generator overwrite a Dockerfile or
    manifests already present in the sample repository.
    """
    args = [
        "-v", GENERATOR_VERB,
        "-l", scenario.language,
        "--deploy-type", scenario.deploy_type,
        "--skip-file-detection",
    ]
    for key, value in scenario.template_variables().items():
        args += ["--variable", f"{key}={value}"]
    return args


def run_generator(gen_cfg: GeneratorConfig, scenario: ScenarioConfig, workdir: Path) -> GeneratorResult:
    """Run the generator in *workdir* and check the files it must produce.

    Args:
        gen_cfg: Binary location and timeout.
        scenario: Scenario supplying the language, deploy type and variables.
        workdir: Sample application checkout; output lands here.

    Returns:
        The captured invocation.

    Raises:
        GeneratorError: If the generator cannot start, times out, or exits non-zero.
        GeneratorOutputError: If the build descriptor or manifest directory is missing.
    """
    args = [str(gen_cfg.resolve_bin()), *build_create_args(scenario)]
    console.print(f"[yellow]ℹ️  Running generator: {' '.join(args)}[/yellow]")
    try:
        returncode, stdout, stderr = run_command(args, cwd=workdir, timeout=gen_cfg.timeout_seconds)
    except subprocess.TimeoutExpired as err:
        raise GeneratorError(f"generator timed out after {gen_cfg.timeout_seconds}s") from err
    except OSError as err:
        raise GeneratorError(f"starting generator {args[0]}: {err}") from err

    result = GeneratorResult(args=args, returncode=returncode, stdout=stdout, stderr=stderr)
    logger.info("generator exited with %d", returncode)
    logger.debug("generator stdout:\n%s", stdout)
    logger.debug("generator stderr:\n%s", stderr)
    if not result.ok:
        raise GeneratorError(
            f"generator exited with status {returncode}\nstdout:\n{stdout}\nstderr:\n{stderr}",
            result,
        )

    dockerfile = workdir / scenario.dockerfile
    if not dockerfile.is_file():
        raise GeneratorOutputError(f"generator did not produce {dockerfile}", result)
    manifest_dir = workdir / scenario.manifest_subdir
    if not manifest_dir.is_dir():
        raise GeneratorOutputError(f"generator did not produce {manifest_dir}", result)
    console.print("[green]✅ Generator produced build and deployment files[/green]")
    return result
