"""Retrieval and preparation of the cert-manager manifest."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import httpx
import yaml

from keeper.cluster.addons.versions import VERSION_ANNOTATION
from keeper.cluster.resources import ManagedResource
from keeper.config import ImageOverride
from keeper.utils.errors import ManifestError

logger = logging.getLogger(__name__)

# Template directory containing the embedded probe manifest
_TEMPLATE_DIR = Path(__file__).parent / "templates"
TEST_RESOURCES_TEMPLATE = "cert-manager-test-resources.yaml"

CLUSTERCTL_LABEL = "clusterctl.cluster.x-k8s.io"
CLUSTERCTL_CORE_LABEL = "clusterctl.cluster.x-k8s.io/core"
CLUSTERCTL_CORE_CERT_MANAGER = "cert-manager"

# Label selector identifying objects installed by the keeper
PROVENANCE_SELECTOR = {CLUSTERCTL_CORE_LABEL: CLUSTERCTL_CORE_CERT_MANAGER}


class ManifestRepository(ABC):
    """Source of the raw cert-manager components manifest."""

    @abstractmethod
    async def fetch(self, url: str, version: str) -> bytes:
        """Return the raw manifest for ``version`` published at ``url``.

        Raises:
            ManifestError: If the manifest cannot be retrieved
        """


def resolve_manifest_url(url: str, version: str) -> str:
    """Point a release URL at a specific version.

    ``{version}`` placeholders are substituted, and GitHub ``/releases/latest/``
    URLs are rewritten to the matching ``/releases/download/<version>/`` URL.
    """
    if "{version}" in url:
        return url.replace("{version}", version)
    if version and "/releases/latest/" in url:
        return url.replace("/releases/latest/", f"/releases/download/{version}/")
    return url


class HttpManifestRepository(ManifestRepository):
    """Downloads manifests over HTTP(S)."""

    def __init__(self, timeout: float = 30.0, client: httpx.AsyncClient | None = None):
        """Initialize HTTP manifest repository.

        Args:
            timeout: Request timeout in seconds
            client: Optional pre-configured client, mainly for tests
        """
        self.timeout = timeout
        self._client = client

    async def fetch(self, url: str, version: str) -> bytes:
        target = resolve_manifest_url(url, version)
        logger.debug(f"Fetching cert-manager manifest from {target}")

        try:
            if self._client is not None:
                response = await self._client.get(target)
            else:
                async with httpx.AsyncClient(follow_redirects=True, timeout=self.timeout) as client:
                    response = await client.get(target)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ManifestError(f"failed to fetch cert-manager manifest from {target}: {e}") from e

        return response.content


def decode_manifest(raw: bytes | str) -> list[ManagedResource]:
    """Decode a multi-document YAML manifest.

    Empty documents are skipped and ``kind: List`` documents are expanded.

    Raises:
        ManifestError: If the YAML is invalid or a document is not a Kubernetes object
    """
    try:
        documents = list(yaml.safe_load_all(raw))
    except yaml.YAMLError as e:
        raise ManifestError(f"failed to parse yaml for cert-manager manifest: {e}") from e

    objs: list[ManagedResource] = []
    for document in documents:
        if document is None:
            continue
        if not isinstance(document, dict) or "apiVersion" not in document or "kind" not in document:
            raise ManifestError("manifest document is not a Kubernetes object (missing apiVersion or kind)")
        if document["kind"] == "List":
            objs.extend(ManagedResource.from_dict(item) for item in document.get("items") or [])
            continue
        objs.append(ManagedResource.from_dict(document))
    return objs


def load_test_resources() -> list[ManagedResource]:
    """Load the embedded probe objects (a namespace, an Issuer and a Certificate).

    Raises:
        ManifestError: If the embedded manifest is missing or invalid
    """
    template_path = _TEMPLATE_DIR / TEST_RESOURCES_TEMPLATE
    try:
        content = template_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"failed to read cert-manager test resources manifest {template_path}: {e}") from e
    return decode_manifest(content)


def alter_image(image: str, override: ImageOverride) -> str:
    """Apply an override to an image reference.

    ``quay.io/jetstack/cert-manager-controller:v1.16.1`` with repository
    ``registry.local/mirror`` becomes ``registry.local/mirror/cert-manager-controller:v1.16.1``.
    Overriding the tag drops any digest.
    """
    if not override.repository and not override.tag:
        return image

    reference, _, digest = image.partition("@")
    slash = reference.rfind("/")
    colon = reference.rfind(":")
    if colon > slash:
        path, tag = reference[:colon], reference[colon + 1 :]
    else:
        path, tag = reference, ""

    repository, _, name = path.rpartition("/")
    if override.repository:
        repository = override.repository.rstrip("/")
    if override.tag:
        tag, digest = override.tag, ""

    result = f"{repository}/{name}" if repository else name
    if tag:
        result += f":{tag}"
    if digest:
        result += f"@{digest}"
    return result


def _pod_specs(obj: ManagedResource) -> list[dict[str, Any]]:
    spec = obj.body.get("spec") or {}
    if obj.kind == "Pod":
        return [spec]
    if obj.kind in ("Deployment", "DaemonSet", "StatefulSet", "ReplicaSet", "Job"):
        return [((spec.get("template") or {}).get("spec")) or {}]
    if obj.kind == "CronJob":
        job_spec = (spec.get("jobTemplate") or {}).get("spec") or {}
        return [((job_spec.get("template") or {}).get("spec")) or {}]
    return []


def _containers(obj: ManagedResource) -> Iterable[dict[str, Any]]:
    for pod_spec in _pod_specs(obj):
        for key in ("initContainers", "containers"):
            yield from pod_spec.get(key) or []


def fix_images(objs: list[ManagedResource], alter: Callable[[str], str]) -> list[ManagedResource]:
    """Rewrite every container image of the workload objects in place.

    Raises:
        ManifestError: If ``alter`` fails for an image
    """
    for obj in objs:
        for container in _containers(obj):
            image = container.get("image")
            if not image:
                continue
            try:
                container["image"] = alter(image)
            except Exception as e:
                raise ManifestError(
                    f"failed to apply image override to the cert-manager manifest ({obj.identity}): {e}"
                ) from e
    return objs


def inspect_images(objs: Iterable[ManagedResource]) -> list[str]:
    """List the container images used by the objects, without duplicates."""
    images: list[str] = []
    for obj in objs:
        for container in _containers(obj):
            image = container.get("image")
            if image and image not in images:
                images.append(image)
    return images


def stamp_provenance(objs: list[ManagedResource], version: str) -> list[ManagedResource]:
    """Add the keeper labels and the version annotation to every object."""
    for obj in objs:
        labels = dict(obj.labels)
        labels[CLUSTERCTL_LABEL] = ""
        labels[CLUSTERCTL_CORE_LABEL] = CLUSTERCTL_CORE_CERT_MANAGER
        obj.labels = labels

        annotations = dict(obj.annotations)
        annotations[VERSION_ANNOTATION] = version
        obj.annotations = annotations
    return objs
