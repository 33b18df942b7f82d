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

"""Manifest discovery, decoding, and create-or-patch application."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, NamedTuple

import yaml
from kubernetes import client as k8s
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import DynamicApiError, ResourceNotFoundError
from rich.panel import Panel

from ephemeral_env import console, logger
from ephemeral_env.constants import FIELD_MANAGER, MANIFEST_SUFFIXES, NS_DEFAULT
from ephemeral_env.exceptions import (
    ImageReferenceMismatchError,
    ManifestApplyError,
    ManifestApplyFailures,
    ManifestDecodeError,
    ManifestError,
    UnsupportedKindError,
)


class ApplyStrategy(str, Enum):
    """How decoded documents are written to the cluster."""

    SERVER_SIDE = "server-side"
    TYPED = "typed"


@dataclass(frozen=True)
class GroupVersionKind:
    group: str
    version: str
    kind: str

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> GroupVersionKind:
        api_version = str(obj.get("apiVersion") or "")
        group, _, version = api_version.rpartition("/")
        return cls(group=group, version=version, kind=str(obj.get("kind") or ""))

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


@dataclass
class ManifestDocument:
    """A manifest file decoded into its generic form."""

    path: Path
    body: dict[str, Any]
    gvk: GroupVersionKind

    @property
    def name(self) -> str:
        return str(self.body.get("metadata", {}).get("name") or "")

    @property
    def namespace(self) -> str | None:
        return self.body.get("metadata", {}).get("namespace")


@dataclass
class ApplyReport:
    """Files applied by one :func:`apply_manifests` call, in walk order."""

    applied: list[Path] = field(default_factory=list)


class TypedKind(Enum):
    """Closed set of kinds the typed fallback path can decode and apply.

    Each member carries its GVK, the client model it decodes into, and the
    API class and method suffix used to create or patch it.
    """

    DEPLOYMENT = ("apps", "v1", "Deployment", "V1Deployment", "AppsV1Api", "namespaced_deployment")
    SERVICE = ("", "v1", "Service", "V1Service", "CoreV1Api", "namespaced_service")
    INGRESS = ("networking.k8s.io", "v1", "Ingress", "V1Ingress", "NetworkingV1Api", "namespaced_ingress")

    def __init__(self, group: str, version: str, kind: str, model: str, api: str, suffix: str) -> None:
        self.gvk = GroupVersionKind(group, version, kind)
        self.model = model
        self.api = api
        self.suffix = suffix

    @classmethod
    def for_document(cls, doc: ManifestDocument) -> TypedKind:
        """Return the variant matching the document's GVK.

        Raises:
            UnsupportedKindError: If the GVK is outside the supported set.
        """
        for member in cls:
            if member.gvk == doc.gvk:
                return member
        supported = ", ".join(str(member.gvk) for member in cls)
        raise UnsupportedKindError(doc.path, f"unsupported kind '{doc.gvk}' (typed apply supports: {supported})")


class _RawResponse(NamedTuple):
    """Minimal stand-in for an HTTP response, as ApiClient.deserialize expects."""

    data: str


# ============================================================================
# Discovery and decoding
# ============================================================================

def discover_manifests(manifest_dir: Path) -> list[Path]:
    """List manifest files under *manifest_dir*, recursively and in stable order.

    Files with other suffixes are skipped.

    Raises:
        FileNotFoundError: If *manifest_dir* is not a directory.
    """
    if not manifest_dir.is_dir():
        raise FileNotFoundError(f"manifest directory {manifest_dir} does not exist")
    return sorted(
        path for path in manifest_dir.rglob("*")
        if path.is_file() and path.suffix.lower() in MANIFEST_SUFFIXES
    )


def load_document(path: Path) -> ManifestDocument:
    """Read and decode a manifest file holding exactly one object.

    Raises:
        ManifestDecodeError: If the file is unreadable, malformed, or lacks a GVK.
    """
    try:
        body = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as err:
        raise ManifestDecodeError(path, f"decoding manifest: {err}") from err
    if not isinstance(body, dict):
        raise ManifestDecodeError(path, "manifest does not contain an object")
    gvk = GroupVersionKind.from_object(body)
    if not gvk.version or not gvk.kind:
        raise ManifestDecodeError(path, "manifest is missing apiVersion or kind")
    for key in ("metadata", "spec"):
        if key in body and not isinstance(body[key], dict):
            raise ManifestDecodeError(path, f"manifest field '{key}' is not a mapping")
    return ManifestDocument(path=path, body=body, gvk=gvk)


def decode_typed(api_client: k8s.ApiClient, doc: ManifestDocument) -> tuple[TypedKind, Any]:
    """Decode a document into the concrete client model for its kind.

    Raises:
        UnsupportedKindError: If the kind is not in :class:`TypedKind`.
        ManifestDecodeError: If the document does not fit the model.
    """
    typed_kind = TypedKind.for_document(doc)
    try:
        obj = api_client.deserialize(_RawResponse(json.dumps(doc.body)), typed_kind.model)
    except (TypeError, ValueError) as err:
        raise ManifestDecodeError(doc.path, f"decoding {doc.gvk}: {err}") from err
    return typed_kind, obj


# ============================================================================
# Apply paths
# ============================================================================

def _apply_typed(api_client: k8s.ApiClient, doc: ManifestDocument, namespace: str) -> None:
    typed_kind, obj = decode_typed(api_client, doc)
    api = getattr(k8s, typed_kind.api)(api_client)
    try:
        getattr(api, f"create_{typed_kind.suffix}")(namespace, obj)
    except ApiException as err:
        if err.status != 409:
            raise
        logger.debug("%s %s exists, patching", doc.gvk.kind, doc.name)
        getattr(api, f"patch_{typed_kind.suffix}")(doc.name, namespace, doc.body)


def _apply_server_side(dynamic: DynamicClient, doc: ManifestDocument, namespace: str) -> None:
    resource = dynamic.resources.get(api_version=doc.gvk.api_version, kind=doc.gvk.kind)
    dynamic.server_side_apply(
        resource,
        body=doc.body,
        namespace=namespace if resource.namespaced else None,
        field_manager=FIELD_MANAGER,
        force_conflicts=True,
    )


def apply_document(
    api_client: k8s.ApiClient,
    doc: ManifestDocument,
    *,
    strategy: ApplyStrategy = ApplyStrategy.SERVER_SIDE,
    default_namespace: str = NS_DEFAULT,
    dynamic: DynamicClient | None = None,
) -> None:
    """Create or update one object in the cluster.

    Raises:
        ManifestDecodeError: If typed decoding fails or the kind is unsupported.
        ManifestApplyError: If the API server rejects the object.
    """
    namespace = doc.namespace or default_namespace
    try:
        if strategy is ApplyStrategy.TYPED:
            _apply_typed(api_client, doc, namespace)
        else:
            _apply_server_side(dynamic or DynamicClient(api_client), doc, namespace)
    except ApiException as err:
        raise ManifestApplyError(doc.path, f"applying {doc.gvk} '{doc.name}': {err.status} {err.reason}") from err
    except DynamicApiError as err:
        raise ManifestApplyError(doc.path, f"applying {doc.gvk} '{doc.name}': {err.summary()}") from err
    except ResourceNotFoundError as err:
        raise ManifestApplyError(doc.path, f"cluster does not serve {doc.gvk}: {err}") from err
    except ValueError as err:
        raise ManifestApplyError(doc.path, f"applying {doc.gvk}: {err}") from err


def apply_manifests(
    api_client: k8s.ApiClient,
    manifest_dir: Path,
    *,
    strategy: ApplyStrategy = ApplyStrategy.SERVER_SIDE,
    default_namespace: str = NS_DEFAULT,
) -> ApplyReport:
    """Apply every manifest under *manifest_dir*.

    Every file is attempted; failures are collected and raised together so one
    malformed manifest does not hide problems in the others.

    Args:
        api_client: Client for the target cluster.
        manifest_dir: Directory walked recursively for ``.yaml``/``.yml`` files.
        strategy: Server-side apply (default) or typed create-or-patch.
        default_namespace: Namespace for documents that do not name one.

    Returns:
        Report of the applied files.

    Raises:
        ManifestApplyFailures: If any file failed; carries the applied files too.
    """
    console.print(Panel.fit(f"Applying manifests from {manifest_dir} ({strategy.value})", style="bold blue"))
    report = ApplyReport()
    failures: list[ManifestError] = []
    dynamic: DynamicClient | None = None

    for path in discover_manifests(manifest_dir):
        try:
            doc = load_document(path)
            if strategy is ApplyStrategy.SERVER_SIDE and dynamic is None:
                dynamic = DynamicClient(api_client)
            apply_document(
                api_client, doc,
                strategy=strategy, default_namespace=default_namespace, dynamic=dynamic,
            )
        except ManifestError as err:
            logger.error("%s", err)
            console.print(f"[red]✗ {path.name} - {err}[/red]")
            failures.append(err)
            continue
        logger.info("applied %s %s from %s", doc.gvk.kind, doc.name, path)
        console.print(f"[green]✓ {path.name} ({doc.gvk.kind} {doc.name})[/green]")
        report.applied.append(path)

    if failures:
        raise ManifestApplyFailures(failures, report.applied)
    console.print(f"[green]✅ Applied {len(report.applied)} manifest(s)[/green]")
    return report


# ============================================================================
# Image reference check
# ============================================================================

def _field(obj: Any, key: str) -> dict[str, Any]:
    value = obj.get(key) if isinstance(obj, dict) else None
    return value if isinstance(value, dict) else {}


def _pod_spec(body: dict[str, Any]) -> dict[str, Any] | None:
    kind = body.get("kind")
    spec = _field(body, "spec")
    if kind == "Pod":
        return spec
    if kind == "CronJob":
        spec = _field(_field(spec, "jobTemplate"), "spec")
    if kind in ("Deployment", "StatefulSet", "DaemonSet", "ReplicaSet", "Job", "CronJob"):
        return _field(_field(spec, "template"), "spec")
    return None


def container_images(body: dict[str, Any]) -> list[str]:
    """Return every container and init container image of a workload object."""
    pod_spec = _pod_spec(body)
    if pod_spec is None:
        return []
    containers = []
    for key in ("initContainers", "containers"):
        value = pod_spec.get(key)
        if isinstance(value, list):
            containers.extend(value)
    return [str(c.get("image", "")) for c in containers if isinstance(c, dict)]


def verify_image_references(manifest_dir: Path, image_ref: str) -> None:
    """Check that the manifests deploy exactly the image about to be pushed.

    Files that fail to decode are left for :func:`apply_manifests` to report.

    Raises:
        ImageReferenceMismatchError: If any workload embeds a different image,
            or no workload embeds *image_ref* at all.
    """
    found = False
    mismatches: list[str] = []
    for path in discover_manifests(manifest_dir):
        try:
            doc = load_document(path)
        except ManifestDecodeError:
            continue
        for image in container_images(doc.body):
            if image == image_ref:
                found = True
            else:
                mismatches.append(f"{path.name}: '{image}'")
    if mismatches:
        raise ImageReferenceMismatchError(
            f"manifests reference images other than '{image_ref}': {', '.join(mismatches)}"
        )
    if not found:
        raise ImageReferenceMismatchError(f"no manifest under {manifest_dir} references image '{image_ref}'")
