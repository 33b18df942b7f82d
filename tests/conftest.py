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

import os
import shutil
from pathlib import Path

import pytest
import yaml

from ephemeral_env.config import ScenarioConfig

FIXTURES_DIR = Path(__file__).parent / "fixtures"
DEFAULT_IMAGE_REF = "localhost:5000/manifests-gomodule-8080:latest"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer E2E_* settings from leaking into config defaults."""
    for key in list(os.environ):
        if key.startswith("E2E_") or key == "DRAFT_E2E_BIN":
            monkeypatch.delenv(key)


@pytest.fixture
def scenario():
    return ScenarioConfig()


@pytest.fixture
def manifest_dir(tmp_path):
    """Copy of the sample Deployment/Service/Ingress manifests."""
    target = tmp_path / "manifests"
    shutil.copytree(FIXTURES_DIR / "manifests", target)
    return target


@pytest.fixture
def write_manifest():
    """Write a mapping (or raw text) as a YAML file."""

    def _write(path: Path, body) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body if isinstance(body, str) else yaml.safe_dump(body))
        return path

    return _write


def deployment(name="go-app", namespace="go-ns", image=DEFAULT_IMAGE_REF, init_image=None):
    spec = {"containers": [{"name": name, "image": image}]}
    if init_image is not None:
        spec["initContainers"] = [{"name": "init", "image": init_image}]
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": {"app": name}},
            "template": {"metadata": {"labels": {"app": name}}, "spec": spec},
        },
    }


@pytest.fixture
def deployment_body():
    return deployment
