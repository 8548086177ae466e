"""In-memory cluster, clock and manifest repository for testing."""

import copy
import itertools
from collections.abc import Iterable

from keeper.cluster.addons.manifest import ManifestRepository
from keeper.cluster.proxy import ClusterProxy
from keeper.cluster.resources import CRD_KIND, ManagedResource
from keeper.utils.errors import ClusterError, ManifestError, ResourceNotFoundError

# API groups served only once a matching CRD exists
CUSTOM_GROUP_SUFFIX = "cert-manager.io"


class FakeClock:
    """Monotonic clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeClusterProxy(ClusterProxy):
    """ClusterProxy keeping objects in a dict.

    Objects of ``*.cert-manager.io`` groups can only be created once a CRD
    serving their kind exists, which is how the readiness probe fails on a
    cluster without cert-manager. Failures can be injected per operation and
    kind with ``fail``; every call is recorded in ``calls``.
    """

    def __init__(self, objs: Iterable[ManagedResource] = ()):
        self.objects: dict[tuple[str, str, str, str], dict] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.failures: dict[tuple[str, str], list[BaseException]] = {}
        self._versions = itertools.count(1)
        self._uids = itertools.count(1)
        for obj in objs:
            self.seed(obj)

    @staticmethod
    def _key(obj: ManagedResource) -> tuple[str, str, str, str]:
        return (obj.group, obj.kind, obj.namespace, obj.name)

    def seed(self, obj: ManagedResource) -> ManagedResource:
        """Store an object directly, bypassing the API checks."""
        stored = obj.copy()
        stored.body.setdefault("metadata", {}).setdefault("uid", f"uid-{next(self._uids)}")
        stored.resource_version = str(next(self._versions))
        self.objects[self._key(stored)] = stored.body
        return stored

    def fail(self, operation: str, kind: str, *errors: BaseException) -> None:
        """Make the next calls of ``operation`` on ``kind`` raise ``errors`` in order."""
        self.failures.setdefault((operation, kind), []).extend(errors)

    def lookup(self, kind: str, name: str, namespace: str = "") -> ManagedResource | None:
        for (_, obj_kind, obj_namespace, obj_name), body in self.objects.items():
            if (obj_kind, obj_namespace, obj_name) == (kind, namespace, name):
                return ManagedResource.from_dict(copy.deepcopy(body))
        return None

    def kinds(self) -> list[str]:
        return [kind for _, kind, _, _ in self.objects]

    def operations(self, operation: str) -> list[tuple[str, str]]:
        return [(kind, name) for op, kind, name in self.calls if op == operation]

    def _record(self, operation: str, obj: ManagedResource) -> None:
        self.calls.append((operation, obj.kind, obj.name))
        pending = self.failures.get((operation, obj.kind))
        if pending:
            raise pending.pop(0)

    def _is_served(self, obj: ManagedResource) -> bool:
        if not obj.group.endswith(CUSTOM_GROUP_SUFFIX):
            return True
        for (_, kind, _, _), body in self.objects.items():
            spec = body.get("spec") or {}
            if kind == CRD_KIND and spec.get("group") == obj.group:
                if (spec.get("names") or {}).get("kind") == obj.kind:
                    return True
        return False

    async def get(self, obj: ManagedResource) -> ManagedResource:
        self._record("get", obj)
        body = self.objects.get(self._key(obj))
        if body is None:
            raise ResourceNotFoundError(f"{obj.identity} not found")
        return ManagedResource.from_dict(copy.deepcopy(body))

    async def create(self, obj: ManagedResource) -> None:
        self._record("create", obj)
        if not self._is_served(obj):
            raise ClusterError(f'no matches for kind "{obj.kind}" in version "{obj.api_version}"')
        if self._key(obj) in self.objects:
            raise ClusterError(f"{obj.identity} already exists")
        self.seed(obj)

    async def update(self, obj: ManagedResource) -> None:
        self._record("update", obj)
        current = self.objects.get(self._key(obj))
        if current is None:
            raise ResourceNotFoundError(f"{obj.identity} not found")
        current_version = current["metadata"].get("resourceVersion")
        if obj.resource_version and obj.resource_version != current_version:
            raise ClusterError(f"Operation cannot be fulfilled on {obj.identity}: the object has been modified")

        updated = obj.copy()
        updated.body.setdefault("metadata", {})["uid"] = current["metadata"].get("uid")
        updated.resource_version = str(next(self._versions))
        self.objects[self._key(obj)] = updated.body

    async def update_status(self, obj: ManagedResource) -> None:
        self._record("update_status", obj)
        current = self.objects.get(self._key(obj))
        if current is None:
            raise ResourceNotFoundError(f"{obj.identity} not found")
        current["status"] = copy.deepcopy(obj.body.get("status") or {})

    async def delete(self, obj: ManagedResource) -> None:
        self._record("delete", obj)
        if self.objects.pop(self._key(obj), None) is None:
            raise ResourceNotFoundError(f"{obj.identity} not found")

    async def list_resources(self, label_selector: dict[str, str], namespaces: Iterable[str]) -> list[ManagedResource]:
        self.calls.append(("list_resources", "", ""))
        pending = self.failures.get(("list_resources", ""))
        if pending:
            raise pending.pop(0)

        allowed = set(namespaces)
        result = []
        for body in self.objects.values():
            obj = ManagedResource.from_dict(copy.deepcopy(body))
            if obj.namespace and obj.namespace not in allowed:
                continue
            if all(obj.labels.get(k) == v for k, v in label_selector.items()):
                result.append(obj)
        return result

    async def list_objects(self, api_version: str, kind: str) -> list[ManagedResource]:
        self.calls.append(("list_objects", kind, ""))
        group = api_version.split("/", 1)[0] if "/" in api_version else ""
        return [
            ManagedResource.from_dict(copy.deepcopy(body))
            for (obj_group, obj_kind, _, _), body in self.objects.items()
            if obj_group == group and obj_kind == kind
        ]


class FakeManifestRepository(ManifestRepository):
    """Serves manifests from memory, keyed by version."""

    def __init__(self, manifests: dict[str, str] | None = None):
        self.manifests = manifests or {}
        self.fetched: list[tuple[str, str]] = []

    async def fetch(self, url: str, version: str) -> bytes:
        self.fetched.append((url, version))
        if version not in self.manifests:
            raise ManifestError(f"no manifest for version {version}")
        return self.manifests[version].encode("utf-8")


__all__ = [
    "FakeClock",
    "FakeClusterProxy",
    "FakeManifestRepository",
]
