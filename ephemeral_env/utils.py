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

"""Utility functions for command checks, subprocesses, and naming."""

from __future__ import annotations

import secrets
import subprocess
import threading
from collections.abc import Sequence
from pathlib import Path

import sh

from ephemeral_env.exceptions import RunCancelledError


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        RuntimeError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise RuntimeError(f"Required command '{cmd}' not found. Please install it first.") from err


def run_command(
    args: Sequence[str],
    cwd: Path | None = None,
    timeout: float | None = None,
) -> tuple[int, str, str]:
    """Run a command via subprocess and return (returncode, stdout, stderr).

    Uses subprocess instead of sh because callers surface stdout and stderr
    separately in failure reports.

    Args:
        args: Full command line, executable first.
        cwd: Working directory for the command.
        timeout: Maximum seconds to wait for the command to complete.

    Returns:
        Tuple of (returncode, stdout, stderr).

    Raises:
        subprocess.TimeoutExpired: If the command outlives *timeout*.
        OSError: If the executable cannot be started.
    """
    result = subprocess.run(
        list(args),
        cwd=str(cwd) if cwd else None,
        capture_output=True,
        text=True,
        timeout=timeout,
    )
    return result.returncode, result.stdout, result.stderr


def random_name(prefix: str, length: int) -> str:
    """Generate ``<prefix>-<hex>`` truncated to *length* characters.

    Args:
        prefix: Leading part of the name.
        length: Total length of the result, separator included.

    Returns:
        A DNS-label-safe random name.
    """
    suffix_len = max(length - len(prefix) - 1, 4)
    return f"{prefix}-{secrets.token_hex(suffix_len)[:suffix_len]}"


def check_cancelled(cancel: threading.Event | None, step: str) -> None:
    """Raise if the run's cancellation event is set.

    Raises:
        RunCancelledError: If *cancel* is set.
    """
    if cancel is not None and cancel.is_set():
        raise RunCancelledError(f"Run cancelled before {step}")
