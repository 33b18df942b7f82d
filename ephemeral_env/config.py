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

"""Configuration classes and the scenario configuration record."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ephemeral_env import logger
from ephemeral_env.constants import (
    CLUSTER_NAME_PREFIX,
    CLUSTER_WAIT_TIMEOUT,
    DEFAULT_CLUSTER_CONFIG_FILE,
    DEFAULT_CLUSTER_CREATE_MAX_RETRIES,
    DEFAULT_GENERATOR_BIN,
    DEFAULT_GENERATOR_TIMEOUT_SECONDS,
    DEFAULT_IMAGE_TAG,
    DEFAULT_LANGUAGE_VERSION,
    DEFAULT_MIN_READY_REPLICAS,
    DEFAULT_NODE_IMAGE,
    DEFAULT_READINESS_POLL_INTERVAL_SECONDS,
    DEFAULT_READINESS_TIMEOUT_SECONDS,
    DEFAULT_REGISTRY_PORT,
    DEFAULT_SCENARIO_APP_NAME,
    DEFAULT_SCENARIO_DEPLOY_TYPE,
    DEFAULT_SCENARIO_LANGUAGE,
    DEFAULT_SCENARIO_NAMESPACE,
    DEFAULT_SCENARIO_PORT,
    DEFAULT_SCENARIO_REPO,
    DOCKERFILE_NAME,
    ENV_GENERATOR_BIN,
    KIND_NETWORK_NAME,
    NAMESPACE_PREFIX,
    REGISTRY_CONTAINER_NAME,
    REGISTRY_HOST_IP,
    REGISTRY_IMAGE,
    REL_MANIFESTS_DIR,
)


# ============================================================================
# Configuration classes
# ============================================================================

class ClusterConfig(BaseSettings):
    """kind cluster configuration, auto-loaded from E2E_* env vars.

    Attributes:
        name_prefix: Prefix shared by every cluster this tool creates.
        namespace_prefix: Prefix for the per-run isolated namespace.
        node_image: kindest/node image to boot the cluster from.
        config_file: kind cluster config file.
        wait_timeout: How long ``kind create cluster`` waits for the control plane.
        max_retries: Maximum cluster creation attempts.
        keep_cluster: Skip teardown so the cluster can be inspected afterwards.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_", extra="ignore")

    name_prefix: str = Field(default=CLUSTER_NAME_PREFIX, pattern=r"^[a-z0-9][a-z0-9-]*$")
    namespace_prefix: str = Field(default=NAMESPACE_PREFIX, pattern=r"^[a-z0-9][a-z0-9-]*$")
    node_image: str = DEFAULT_NODE_IMAGE
    config_file: Path = DEFAULT_CLUSTER_CONFIG_FILE
    wait_timeout: str = Field(default=CLUSTER_WAIT_TIMEOUT, pattern=r"^\d+[smh]$")
    max_retries: int = Field(default=DEFAULT_CLUSTER_CREATE_MAX_RETRIES, ge=1, le=10)
    keep_cluster: bool = False


class RegistryConfig(BaseSettings):
    """Local registry configuration, auto-loaded from E2E_REGISTRY_* env vars.

    Attributes:
        container_name: Fixed name of the registry container on the host.
        image: Registry image to run.
        host_ip: Host address the registry port is bound to.
        port: Host and container port of the registry.
        network: Container network the cluster nodes live on.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_REGISTRY_", extra="ignore")

    container_name: str = REGISTRY_CONTAINER_NAME
    image: str = REGISTRY_IMAGE
    host_ip: str = REGISTRY_HOST_IP
    port: int = Field(default=DEFAULT_REGISTRY_PORT, ge=1, le=65535)
    network: str = KIND_NETWORK_NAME

    @property
    def host(self) -> str:
        """Registry address as seen from the host and, via containerd aliasing, the nodes."""
        return f"localhost:{self.port}"


class GeneratorConfig(BaseSettings):
    """Location and limits of the generator binary under test.

    Attributes:
        bin_path: Path from ``DRAFT_E2E_BIN``, or None to use the default path.
        timeout_seconds: Upper bound on a single generator invocation.
    """

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    bin_path: str | None = Field(default=None, validation_alias=ENV_GENERATOR_BIN)
    timeout_seconds: int = Field(
        default=DEFAULT_GENERATOR_TIMEOUT_SECONDS, ge=1, validation_alias="E2E_GENERATOR_TIMEOUT",
    )

    def resolve_bin(self) -> Path:
        """Return the generator binary path, falling back to the documented default."""
        if self.bin_path:
            return Path(self.bin_path)
        logger.info("no %s environment variable set, using default value of '%s'",
                    ENV_GENERATOR_BIN, DEFAULT_GENERATOR_BIN)
        return Path(DEFAULT_GENERATOR_BIN)


class WaitConfig(BaseSettings):
    """Readiness polling limits, auto-loaded from E2E_WAIT_* env vars."""

    model_config = SettingsConfigDict(env_prefix="E2E_WAIT_", extra="ignore")

    timeout_seconds: float = Field(default=DEFAULT_READINESS_TIMEOUT_SECONDS, gt=0)
    poll_interval_seconds: float = Field(default=DEFAULT_READINESS_POLL_INTERVAL_SECONDS, gt=0)
    min_ready_replicas: int = Field(default=DEFAULT_MIN_READY_REPLICAS, ge=1)


# ============================================================================
# Scenario configuration
# ============================================================================

@dataclass(frozen=True)
class ScenarioConfig:
    """One end-to-end run of generate, build, apply and verify.

    The image reference is derived exactly once, here, and every later step
    (generator variables, build tag, push target, manifest check) reads it
    from this record.

    Attributes:
        language: Generator language tag (e.g. ``gomodule``).
        port: Application port exposed by the container and the service.
        app_name: Application name; also the name of the Deployment to wait for.
        namespace: Namespace the generated manifests deploy into.
        deploy_type: Generator deploy-type selector (e.g. ``manifests``).
        repo: ``owner/name`` of the sample application on GitHub.
        image_tag: Tag pushed to the local registry.
        version: Language runtime version template variable.
        registry_host: Registry address embedded in the image reference.
        source_dir: Local checkout to use instead of cloning ``repo``.
        manifest_subdir: Generator output directory holding manifests.
        dockerfile: Build descriptor file name produced by the generator.
        image_repository: Derived ``<registry>/<deploy_type>-<language>-<port>``.
        image_ref: Derived ``<image_repository>:<image_tag>``.
    """

    language: str = DEFAULT_SCENARIO_LANGUAGE
    port: str = DEFAULT_SCENARIO_PORT
    app_name: str = DEFAULT_SCENARIO_APP_NAME
    namespace: str = DEFAULT_SCENARIO_NAMESPACE
    deploy_type: str = DEFAULT_SCENARIO_DEPLOY_TYPE
    repo: str = DEFAULT_SCENARIO_REPO
    image_tag: str = DEFAULT_IMAGE_TAG
    version: str = DEFAULT_LANGUAGE_VERSION
    registry_host: str = f"localhost:{DEFAULT_REGISTRY_PORT}"
    source_dir: Path | None = None
    manifest_subdir: str = REL_MANIFESTS_DIR
    dockerfile: str = DOCKERFILE_NAME
    image_repository: str = field(init=False)
    image_ref: str = field(init=False)

    def __post_init__(self) -> None:
        for name in ("language", "port", "app_name", "namespace", "deploy_type", "image_tag"):
            if not str(getattr(self, name)).strip():
                raise ValueError(f"Scenario field '{name}' must not be empty")
        if not str(self.port).isdigit():
            raise ValueError(f"Scenario port must be numeric, got '{self.port}'")
        repository = f"{self.registry_host}/{self.deploy_type}-{self.language}-{self.port}"
        object.__setattr__(self, "image_repository", repository)
        object.__setattr__(self, "image_ref", f"{repository}:{self.image_tag}")

    @property
    def name(self) -> str:
        """Short human-readable scenario identifier."""
        return f"{self.deploy_type}-{self.language}-{self.app_name}"

    def template_variables(self) -> dict[str, str]:
        """Template variables handed to the generator via ``--variable``."""
        return {
            "PORT": self.port,
            "SERVICEPORT": self.port,
            "VERSION": self.version,
            "NAMESPACE": self.namespace,
            "APPNAME": self.app_name,
            "IMAGENAME": self.image_repository,
            "IMAGETAG": self.image_tag,
        }

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> ScenarioConfig:
        """Build a scenario from a mapping, ignoring derived and unknown keys.

        Raises:
            ValueError: If a field value is invalid.
        """
        accepted = {f.name for f in dataclasses.fields(cls) if f.init}
        kwargs = {key: value for key, value in data.items() if key in accepted}
        if kwargs.get("source_dir") is not None:
            kwargs["source_dir"] = Path(kwargs["source_dir"])
        if "port" in kwargs:
            kwargs["port"] = str(kwargs["port"])
        return cls(**kwargs)


def load_scenarios(path: Path) -> list[ScenarioConfig]:
    """Load a list of scenarios from a YAML file.

    Args:
        path: YAML file holding a list of scenario mappings.

    Returns:
        Parsed scenarios in file order.

    Raises:
        ValueError: If the file is not a list of mappings.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise ValueError(f"{path} must contain a list of scenario mappings")
    return [ScenarioConfig.from_mapping(item) for item in data]
