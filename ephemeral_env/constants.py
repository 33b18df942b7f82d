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

"""Constants, packaged resource paths, and default values."""

from __future__ import annotations

from pathlib import Path

# -- Resolved paths --
PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_CLUSTER_CONFIG_FILE = PACKAGE_DIR / "kind-config.yaml"

# -- Generator --
ENV_GENERATOR_BIN = "DRAFT_E2E_BIN"
DEFAULT_GENERATOR_BIN = "/workspaces/draft/draft"
DEFAULT_GENERATOR_TIMEOUT_SECONDS = 300
GENERATOR_VERB = "create"

# -- Generator output layout --
DOCKERFILE_NAME = "Dockerfile"
REL_MANIFESTS_DIR = "manifests"
MANIFEST_SUFFIXES = (".yaml", ".yml")

# -- kind cluster defaults --
CLUSTER_NAME_PREFIX = "draft-e2e"
NAMESPACE_PREFIX = "draft-e2e-ns"
RANDOM_NAME_LENGTH = 16
DEFAULT_NODE_IMAGE = (
    "kindest/node:v1.28.7@sha256:9bc6c451a289cf96ad0bbaf33d416901de6fd632415b076ab05f5fa7e4f65c58"
)
CLUSTER_WAIT_TIMEOUT = "120s"
DEFAULT_CLUSTER_CREATE_MAX_RETRIES = 3
CLUSTER_CREATE_RETRY_WAIT_SECONDS = 10

# -- Local registry --
REGISTRY_CONTAINER_NAME = "kind-registry"
REGISTRY_IMAGE = "registry:2"
REGISTRY_HOST_IP = "127.0.0.1"
DEFAULT_REGISTRY_PORT = 5000
KIND_NETWORK_NAME = "kind"
CONTAINERD_CERTS_DIR = "/etc/containerd/certs.d"
HOSTS_TOML = "hosts.toml"

# -- Local registry discovery (KEP-1755) --
NS_KUBE_PUBLIC = "kube-public"
LOCAL_REGISTRY_CONFIGMAP = "local-registry-hosting"
LOCAL_REGISTRY_HOST_KEY = "localRegistryHosting.v1.host"
LOCAL_REGISTRY_HELP_KEY = "localRegistryHosting.v1.help"
LOCAL_REGISTRY_HELP_URL = "https://kind.sigs.k8s.io/docs/user/local-registry/"

# -- Manifest apply --
FIELD_MANAGER = "ephemeral-env"
NS_DEFAULT = "default"

# -- Readiness --
DEFAULT_READINESS_TIMEOUT_SECONDS = 60
DEFAULT_READINESS_POLL_INTERVAL_SECONDS = 2
DEFAULT_MIN_READY_REPLICAS = 1

# -- Default scenario (Go sample app) --
DEFAULT_SCENARIO_LANGUAGE = "gomodule"
DEFAULT_SCENARIO_PORT = "8080"
DEFAULT_SCENARIO_APP_NAME = "go-app"
DEFAULT_SCENARIO_NAMESPACE = "go-ns"
DEFAULT_SCENARIO_DEPLOY_TYPE = "manifests"
DEFAULT_SCENARIO_REPO = "gambtho/go_echo"
DEFAULT_IMAGE_TAG = "latest"
DEFAULT_LANGUAGE_VERSION = "1.22"
GITHUB_URL = "https://github.com"

# -- Prerequisites --
REQUIRED_COMMANDS = ("kind", "docker", "git")
