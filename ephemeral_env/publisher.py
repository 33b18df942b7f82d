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

"""Image build and push against the host docker daemon."""

from __future__ import annotations

import json
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import IO, Any

import docker
import docker.errors
import docker.utils
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from rich.panel import Panel

from ephemeral_env import console, logger
from ephemeral_env.constants import DOCKERFILE_NAME
from ephemeral_env.exceptions import (
    ArchiveError,
    BuildError,
    BuildStartError,
    PublishError,
    PushError,
    PushStartError,
)
from ephemeral_env.utils import check_cancelled


class ErrorDetail(BaseModel):
    message: str = ""

    @field_validator("message", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class ProgressLine(BaseModel):
    """One record of the daemon's line-delimited build/push progress stream.

    Only ``error`` decides anything; every other key is informational.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    error: str = ""
    error_detail: ErrorDetail = Field(default_factory=ErrorDetail, alias="errorDetail")
    stream: str = ""
    status: str = ""

    @field_validator("error", "stream", "status", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("error_detail", mode="before")
    @classmethod
    def _null_detail(cls, value: Any) -> Any:
        return {} if value is None else value

    @classmethod
    def parse(cls, raw: str) -> ProgressLine:
        """Decode a line; lines that are not a JSON object are informational.

        A malformed informational field never hides the ``error`` string of
        the same record.
        """
        try:
            data = json.loads(raw)
        except ValueError:
            return cls()
        if not isinstance(data, dict):
            return cls()
        try:
            return cls.model_validate(data)
        except ValidationError:
            error = data.get("error")
            return cls(error=error if isinstance(error, str) else "")


class _StreamFailure(Exception):
    """Internal signal carrying the first in-band error message."""


def iter_lines(chunks: Iterable[bytes | str]) -> Iterator[str]:
    """Re-split a chunked stream into newline-delimited lines.

    Chunk boundaries from the daemon do not have to match record boundaries.
    """
    pending = ""
    for chunk in chunks:
        pending += chunk.decode(errors="replace") if isinstance(chunk, bytes) else chunk
        *complete, pending = pending.split("\n")
        for line in complete:
            if line.strip():
                yield line.strip()
    if pending.strip():
        yield pending.strip()


def scan_progress(
    chunks: Iterable[bytes | str],
    *,
    cancel: threading.Event | None = None,
    step: str = "progress",
) -> None:
    """Consume a progress stream, stopping at the first embedded error.

    Args:
        chunks: Raw stream from the daemon.
        cancel: Run cancellation event, checked between lines.
        step: Label for log lines and cancellation messages.

    Raises:
        _StreamFailure: On the first line whose ``error`` field is non-empty.
        RunCancelledError: If *cancel* is set while streaming.
    """
    for line in iter_lines(chunks):
        logger.debug("%s: %s", step, line)
        record = ProgressLine.parse(line)
        if record.error:
            raise _StreamFailure(record.error)
        check_cancelled(cancel, step)


def _dockerignore(context_dir: Path) -> list[str]:
    ignore_file = context_dir / ".dockerignore"
    if not ignore_file.exists():
        return []
    lines = (line.strip() for line in ignore_file.read_text().splitlines())
    return [line for line in lines if line and not line.startswith("#")]


def archive_context(image_ref: str, context_dir: Path) -> IO[bytes]:
    """Package the build context directory as an uncompressed tar stream.

    Raises:
        ArchiveError: If the directory cannot be archived.
    """
    if not context_dir.is_dir():
        raise ArchiveError(image_ref, f"build context {context_dir} is not a directory")
    try:
        return docker.utils.tar(str(context_dir), exclude=_dockerignore(context_dir))
    except OSError as err:
        raise ArchiveError(image_ref, f"archiving dockerfile context: {err}") from err


def build_image(
    docker_client: docker.DockerClient,
    image_ref: str,
    context_dir: Path,
    *,
    dockerfile: str = DOCKERFILE_NAME,
    cancel: threading.Event | None = None,
) -> None:
    """Build *image_ref* from *context_dir*.

    Raises:
        ArchiveError: If the context cannot be archived.
        BuildStartError: If the daemon refuses to start the build.
        BuildError: If the build stream reports an error.
    """
    context = archive_context(image_ref, context_dir)
    try:
        try:
            stream = docker_client.api.build(
                fileobj=context,
                custom_context=True,
                dockerfile=dockerfile,
                tag=image_ref,
                rm=True,
                decode=False,
            )
        except docker.errors.DockerException as err:
            raise BuildStartError(image_ref, str(err)) from err
        try:
            scan_progress(stream, cancel=cancel, step="build")
        except _StreamFailure as err:
            raise BuildError(image_ref, str(err)) from None
        except docker.errors.DockerException as err:
            raise BuildError(image_ref, str(err)) from err
    finally:
        context.close()


def push_image(
    docker_client: docker.DockerClient,
    image_ref: str,
    *,
    cancel: threading.Event | None = None,
) -> None:
    """Push *image_ref* to the registry encoded in its name.

    Raises:
        PushStartError: If the daemon refuses to start the push.
        PushError: If the push stream reports an error.
    """
    repository, tag = docker.utils.parse_repository_tag(image_ref)
    try:
        stream = docker_client.api.push(repository, tag=tag, stream=True, decode=False)
    except docker.errors.DockerException as err:
        raise PushStartError(image_ref, str(err)) from err
    try:
        scan_progress(stream, cancel=cancel, step="push")
    except _StreamFailure as err:
        raise PushError(image_ref, str(err)) from None
    except docker.errors.DockerException as err:
        raise PushError(image_ref, str(err)) from err


def build_and_push(
    docker_client: docker.DockerClient,
    image_ref: str,
    context_dir: Path,
    *,
    dockerfile: str = DOCKERFILE_NAME,
    cancel: threading.Event | None = None,
) -> None:
    """Build an image and publish it to the local registry.

    On return the image is present at *image_ref*; otherwise the raised
    :class:`PublishError` subclass names the failing stage.

    Args:
        docker_client: Docker client for the host daemon.
        image_ref: Single reference used as build tag and push target.
        context_dir: Build context directory holding the build descriptor.
        dockerfile: Build descriptor file name inside *context_dir*.
        cancel: Run cancellation event.

    Raises:
        PublishError: Subclass naming the first failing stage.
        RunCancelledError: If *cancel* is set while streaming.
    """
    console.print(Panel.fit(f"Building and pushing {image_ref}", style="bold blue"))
    try:
        build_image(docker_client, image_ref, context_dir, dockerfile=dockerfile, cancel=cancel)
        console.print(f"[green]✓ built {image_ref}[/green]")
        push_image(docker_client, image_ref, cancel=cancel)
    except PublishError as err:
        logger.error("%s", err)
        raise
    logger.info("pushed image %s", image_ref)
    console.print(f"[green]✅ Pushed {image_ref}[/green]")
