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

"""Exceptions raised while provisioning and exercising an environment."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ephemeral_env.generator import GeneratorResult


class HarnessError(RuntimeError):
    """Base class for every failure of a scenario step."""


class RunCancelledError(HarnessError):
    """The run's cancellation event was set."""


# -- Setup --

class SetupError(HarnessError):
    """Provisioning the environment failed; no assertion can run."""


class ClusterSetupError(SetupError):
    """The kind cluster or the run namespace could not be created."""


class RegistrySetupError(SetupError):
    """The local registry could not be created, started, or wired in."""


# -- Generator --

class GeneratorError(HarnessError):
    """The generator exited non-zero.

    Attributes:
        result: Captured invocation, including stdout and stderr.
    """

    def __init__(self, message: str, result: GeneratorResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class GeneratorOutputError(GeneratorError):
    """The generator succeeded but an expected output file is missing."""


class ImageReferenceMismatchError(HarnessError):
    """Manifests embed an image other than the one being built and pushed."""


# -- Image publishing --

class PublishError(HarnessError):
    """Base class for build and push failures.

    Attributes:
        image_ref: Image reference being published.
    """

    stage = "publish"

    def __init__(self, image_ref: str, message: str) -> None:
        super().__init__(f"{self.stage} failed for image '{image_ref}': {message}")
        self.image_ref = image_ref
        self.message = message


class ArchiveError(PublishError):
    stage = "archiving build context"


class BuildStartError(PublishError):
    stage = "starting build"


class BuildError(PublishError):
    stage = "building image"


class PushStartError(PublishError):
    stage = "starting push"


class PushError(PublishError):
    stage = "pushing image"


# -- Manifests --

class ManifestError(HarnessError):
    """A single manifest file could not be handled.

    Attributes:
        path: Offending manifest file.
    """

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class ManifestDecodeError(ManifestError):
    """The file is not a single well-formed object description."""


class UnsupportedKindError(ManifestDecodeError):
    """Typed decoding was requested for a kind outside the supported set."""


class ManifestApplyError(ManifestError):
    """The cluster rejected the object."""


class ManifestApplyFailures(HarnessError):
    """One or more manifests failed while the rest were still attempted.

    Attributes:
        failures: Per-file errors in walk order.
        applied: Files that were applied successfully.
    """

    def __init__(self, failures: list[ManifestError], applied: list[Path]) -> None:
        lines = "\n".join(f"  - {failure}" for failure in failures)
        super().__init__(f"{len(failures)} manifest(s) failed to apply:\n{lines}")
        self.failures = failures
        self.applied = applied


# -- Readiness --

class ReadinessError(HarnessError):
    """Base class for readiness polling failures."""


class ReadinessTimeoutError(ReadinessError):
    """The condition did not hold before the deadline.

    Attributes:
        attempts: Number of polls issued.
    """

    def __init__(self, description: str, timeout: float, attempts: int) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for {description} ({attempts} polls)")
        self.attempts = attempts


class ReadinessFetchError(ReadinessError):
    """Reading the resource status failed for a reason other than absence."""
