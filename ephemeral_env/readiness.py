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

"""Bounded polling of cluster objects until a readiness condition holds."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kubernetes import client as k8s
from kubernetes.client.exceptions import ApiException
from tenacity import (
    RetryError,
    Retrying,
    retry_if_result,
    stop_before_delay,
    stop_when_event_set,
    wait_fixed,
)
from urllib3.exceptions import HTTPError

from ephemeral_env import console, logger
from ephemeral_env.exceptions import ReadinessFetchError, ReadinessTimeoutError, RunCancelledError

Condition = Callable[[Any], bool]


@dataclass(frozen=True)
class ResourceRef:
    kind: str
    name: str
    namespace: str

    def __str__(self) -> str:
        return f"{self.kind} {self.namespace}/{self.name}"


@dataclass
class WaitResult:
    """Outcome of a satisfied wait.

    Attributes:
        ref: Resource that was polled.
        attempts: Number of status reads issued, at least one.
        elapsed: Seconds from the first poll to the satisfying one.
        status: Last observed object.
    """

    ref: ResourceRef
    attempts: int
    elapsed: float
    status: Any = None


# ============================================================================
# Conditions
# ============================================================================

def job_complete(job: k8s.V1Job | None) -> bool:
    """True once the Job reports a ``Complete=True`` condition."""
    if job is None or job.status is None:
        return False
    return any(c.type == "Complete" and c.status == "True" for c in job.status.conditions or [])


def deployment_ready(min_replicas: int = 1) -> Condition:
    """Build a condition that holds once at least *min_replicas* pods are ready."""

    def _ready(deployment: k8s.V1Deployment | None) -> bool:
        if deployment is None or deployment.status is None:
            return False
        return (deployment.status.ready_replicas or 0) >= min_replicas

    return _ready


# ============================================================================
# Poll loop
# ============================================================================

def wait_for(
    fetch: Callable[[], Any],
    condition: Condition,
    ref: ResourceRef,
    *,
    timeout: float,
    interval: float,
    cancel: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> WaitResult:
    """Poll *fetch* at a fixed cadence until *condition* holds for its result.

    A 404 from the API server means the object does not exist yet and counts
    as "not satisfied". No poll is started once the deadline has passed.

    Args:
        fetch: Reads the current object from the cluster.
        condition: Predicate over the fetched object, or None when absent.
        ref: Polled resource, used in messages.
        timeout: Absolute deadline in seconds.
        interval: Seconds between polls.
        cancel: Run cancellation event; stops the loop at the next poll.
        sleep: Sleep function between polls.

    Returns:
        The satisfied wait's attempt count and timing.

    Raises:
        ReadinessTimeoutError: If the deadline passed first.
        ReadinessFetchError: If a status read failed for a reason other than absence.
        RunCancelledError: If *cancel* was set while waiting.
    """
    cancel = cancel or threading.Event()
    attempts = 0
    last: Any = None
    started = time.monotonic()

    def _poll() -> bool:
        nonlocal attempts, last
        attempts += 1
        try:
            last = fetch()
        except ApiException as err:
            if err.status != 404:
                raise ReadinessFetchError(f"reading {ref}: {err.status} {err.reason}") from err
            last = None
        except HTTPError as err:
            raise ReadinessFetchError(f"reading {ref}: {err}") from err
        satisfied = condition(last)
        logger.debug("poll %d of %s: satisfied=%s", attempts, ref, satisfied)
        return satisfied

    console.print(f"[yellow]ℹ️  Waiting up to {timeout:g}s for {ref}...[/yellow]")
    retryer = Retrying(
        stop=stop_before_delay(timeout) | stop_when_event_set(cancel),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda ok: not ok),
        sleep=sleep,
    )
    try:
        retryer(_poll)
    except RetryError:
        if cancel.is_set():
            raise RunCancelledError(f"Run cancelled while waiting for {ref}") from None
        logger.error("timed out waiting for %s after %d polls", ref, attempts)
        raise ReadinessTimeoutError(str(ref), timeout, attempts) from None

    elapsed = time.monotonic() - started
    logger.info("%s ready after %d poll(s) in %.1fs", ref, attempts, elapsed)
    console.print(f"[green]✅ {ref} is ready[/green]")
    return WaitResult(ref=ref, attempts=attempts, elapsed=elapsed, status=last)


def wait_for_job(
    api_client: k8s.ApiClient,
    name: str,
    namespace: str,
    *,
    timeout: float,
    interval: float,
    cancel: threading.Event | None = None,
) -> WaitResult:
    """Wait until the named Job has completed."""
    batch_v1 = k8s.BatchV1Api(api_client)
    return wait_for(
        lambda: batch_v1.read_namespaced_job_status(name, namespace),
        job_complete,
        ResourceRef("Job", name, namespace),
        timeout=timeout,
        interval=interval,
        cancel=cancel,
    )


def wait_for_deployment(
    api_client: k8s.ApiClient,
    name: str,
    namespace: str,
    *,
    min_replicas: int = 1,
    timeout: float,
    interval: float,
    cancel: threading.Event | None = None,
) -> WaitResult:
    """Wait until the named Deployment has at least *min_replicas* ready replicas."""
    apps_v1 = k8s.AppsV1Api(api_client)
    return wait_for(
        lambda: apps_v1.read_namespaced_deployment_status(name, namespace),
        deployment_ready(min_replicas),
        ResourceRef("Deployment", name, namespace),
        timeout=timeout,
        interval=interval,
        cancel=cancel,
    )
