"""Generic Kubernetes object wrapper and ordering helpers."""

import copy
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

NAMESPACE_KIND = "Namespace"
CRD_KIND = "CustomResourceDefinition"
MUTATING_WEBHOOK_KIND = "MutatingWebhookConfiguration"
VALIDATING_WEBHOOK_KIND = "ValidatingWebhookConfiguration"

# Kinds generated by the API server itself
GENERATED_KINDS = frozenset({"Endpoints", "EndpointSlice"})

# Create order for kinds other resources depend on; unknown kinds keep their
# relative order after these.
CREATE_PRIORITIES = (
    NAMESPACE_KIND,
    CRD_KIND,
    "StorageClass",
    "PersistentVolume",
    "PersistentVolumeClaim",
    "Secret",
    "ConfigMap",
    "ServiceAccount",
    "LimitRange",
    "Pod",
    "ReplicaSet",
    "Endpoints",
)


@dataclass
class ManagedResource:
    """A Kubernetes object kept as its decoded body.

    Only the fields the keeper reads or writes get typed accessors; the rest of
    the body is carried through untouched.
    """

    body: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ManagedResource":
        return cls(body=data)

    @property
    def api_version(self) -> str:
        return self.body.get("apiVersion", "")

    @property
    def group(self) -> str:
        if "/" in self.api_version:
            return self.api_version.split("/", 1)[0]
        return ""

    @property
    def version(self) -> str:
        return self.api_version.rsplit("/", 1)[-1]

    @property
    def kind(self) -> str:
        return self.body.get("kind", "")

    @property
    def metadata(self) -> dict[str, Any]:
        return self.body.get("metadata") or {}

    def _mutable_metadata(self) -> dict[str, Any]:
        if not self.body.get("metadata"):
            self.body["metadata"] = {}
        return self.body["metadata"]

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace", "")

    @property
    def uid(self) -> str:
        return self.metadata.get("uid", "")

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.get("labels") or {}

    @labels.setter
    def labels(self, value: dict[str, str]) -> None:
        self._mutable_metadata()["labels"] = value

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.get("annotations") or {}

    @annotations.setter
    def annotations(self, value: dict[str, str]) -> None:
        self._mutable_metadata()["annotations"] = value

    @property
    def resource_version(self) -> str:
        return self.metadata.get("resourceVersion", "")

    @resource_version.setter
    def resource_version(self, value: str) -> None:
        if value:
            self._mutable_metadata()["resourceVersion"] = value
        else:
            self.metadata.pop("resourceVersion", None)

    @property
    def identity(self) -> str:
        """Human readable identity used in log and error messages."""
        gvk = f"{self.group}/{self.version}, Kind={self.kind}"
        return f"{gvk} {self.namespace}/{self.name}"

    def copy(self) -> "ManagedResource":
        return ManagedResource(body=copy.deepcopy(self.body))


def sort_for_create(objs: Iterable[ManagedResource]) -> list[ManagedResource]:
    """Return objects ordered so that dependencies are created first.

    Args:
        objs: Objects to order

    Returns:
        New list; the sort is stable so objects of equal priority keep their order
    """
    priorities = {kind: index for index, kind in enumerate(CREATE_PRIORITIES)}
    default = len(CREATE_PRIORITIES)
    return sorted(objs, key=lambda o: priorities.get(o.kind, default))
