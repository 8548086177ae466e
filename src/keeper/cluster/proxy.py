"""Access to the Kubernetes API of the workload cluster.

``ClusterProxy`` is the contract the lifecycle code depends on;
``KubectlProxy`` implements it by driving the kubectl CLI.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

from keeper.cluster.resources import ManagedResource
from keeper.utils.async_subprocess import AsyncCompletedProcess, run_async
from keeper.utils.errors import KubectlCommandError, ResourceNotFoundError

logger = logging.getLogger(__name__)


class ClusterProxy(ABC):
    """Create, read, update, delete and list operations on cluster objects.

    Implementations raise ``ResourceNotFoundError`` when the object does not
    exist and ``ClusterError`` for every other failure.
    """

    @abstractmethod
    async def get(self, obj: ManagedResource) -> ManagedResource:
        """Read the live object with the same kind, namespace and name as ``obj``."""

    @abstractmethod
    async def create(self, obj: ManagedResource) -> None:
        """Create ``obj``."""

    @abstractmethod
    async def update(self, obj: ManagedResource) -> None:
        """Replace the live object with ``obj``, honouring its resourceVersion."""

    @abstractmethod
    async def delete(self, obj: ManagedResource) -> None:
        """Delete the live object identified by ``obj``."""

    @abstractmethod
    async def list_resources(self, label_selector: dict[str, str], namespaces: Iterable[str]) -> list[ManagedResource]:
        """List objects of every kind matching the selector.

        Namespaced kinds are searched in ``namespaces``; cluster-scoped kinds
        are searched once.
        """

    @abstractmethod
    async def list_objects(self, api_version: str, kind: str) -> list[ManagedResource]:
        """List every object of one kind across all namespaces."""

    @abstractmethod
    async def update_status(self, obj: ManagedResource) -> None:
        """Replace the status subresource of ``obj``."""

    async def namespace_exists(self, name: str) -> bool:
        """Check whether a namespace exists.

        Args:
            name: Namespace name

        Returns:
            True if the namespace exists
        """
        probe = ManagedResource.from_dict(
            {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}}
        )
        try:
            await self.get(probe)
        except ResourceNotFoundError:
            return False
        return True


def _is_not_found(result: AsyncCompletedProcess) -> bool:
    # Only the API server status counts; client errors such as an unknown
    # context also say "not found"
    return "(NotFound)" in result.stderr


def _resource_arg(obj: ManagedResource) -> str:
    """Build the fully qualified kubectl resource argument, e.g. ``deployment.v1.apps``."""
    if not obj.group:
        return obj.kind.lower()
    return f"{obj.kind.lower()}.{obj.version}.{obj.group}"


def format_selector(label_selector: dict[str, str]) -> str:
    """Render a label mapping as a kubectl selector string."""
    return ",".join(f"{k}={v}" if v else k for k, v in sorted(label_selector.items()))


class KubectlProxy(ClusterProxy):
    """ClusterProxy backed by the kubectl CLI."""

    def __init__(
        self,
        kubeconfig_path: Path | None = None,
        context: str | None = None,
        timeout: int = 60,
    ):
        """Initialize kubectl proxy.

        Args:
            kubeconfig_path: Optional kubeconfig file; kubectl defaults apply when omitted
            context: Optional kubeconfig context
            timeout: Per-command timeout in seconds
        """
        self.kubeconfig_path = kubeconfig_path
        self.context = context
        self.timeout = timeout

    async def _run_kubectl(self, args: list[str], input: str | None = None) -> AsyncCompletedProcess:
        """Run kubectl command with kubeconfig.

        Args:
            args: Command arguments
            input: Optional stdin content

        Returns:
            Completed subprocess

        Raises:
            KubectlCommandError: If kubectl cannot be run or times out
        """
        cmd = ["kubectl"]
        if self.kubeconfig_path:
            cmd.extend(["--kubeconfig", str(self.kubeconfig_path)])
        if self.context:
            cmd.extend(["--context", self.context])
        cmd.extend(args)

        try:
            return await run_async(cmd, input=input, timeout=self.timeout)
        except TimeoutError as e:
            raise KubectlCommandError(f"kubectl command timed out after {self.timeout} seconds") from e
        except FileNotFoundError as e:
            raise KubectlCommandError(
                "kubectl CLI not found. Please install kubectl: "
                "https://kubernetes.io/docs/tasks/tools/install-kubectl/"
            ) from e

    def _target_args(self, obj: ManagedResource) -> list[str]:
        args = [_resource_arg(obj), obj.name]
        if obj.namespace:
            args.extend(["-n", obj.namespace])
        return args

    async def get(self, obj: ManagedResource) -> ManagedResource:
        result = await self._run_kubectl(["get", *self._target_args(obj), "-o", "json"])

        if result.returncode != 0:
            if _is_not_found(result):
                raise ResourceNotFoundError(f"{obj.identity} not found")
            error_msg = result.stderr or result.stdout
            raise KubectlCommandError(f"Failed to get {obj.identity}: {error_msg}")

        try:
            return ManagedResource.from_dict(json.loads(result.stdout))
        except json.JSONDecodeError as e:
            raise KubectlCommandError(f"Failed to parse kubectl output as JSON: {e}") from e

    async def create(self, obj: ManagedResource) -> None:
        result = await self._run_kubectl(["create", "-f", "-", "-o", "name"], input=json.dumps(obj.body))
        if result.returncode != 0:
            error_msg = result.stderr or result.stdout
            raise KubectlCommandError(f"Failed to create {obj.identity}: {error_msg}")

    async def update(self, obj: ManagedResource) -> None:
        # replace sends resourceVersion, so a concurrent writer yields a conflict
        result = await self._run_kubectl(["replace", "-f", "-", "-o", "name"], input=json.dumps(obj.body))
        if result.returncode != 0:
            if _is_not_found(result):
                raise ResourceNotFoundError(f"{obj.identity} not found")
            error_msg = result.stderr or result.stdout
            raise KubectlCommandError(f"Failed to update {obj.identity}: {error_msg}")

    async def update_status(self, obj: ManagedResource) -> None:
        result = await self._run_kubectl(
            ["replace", "--subresource=status", "-f", "-", "-o", "name"], input=json.dumps(obj.body)
        )
        if result.returncode != 0:
            if _is_not_found(result):
                raise ResourceNotFoundError(f"{obj.identity} not found")
            error_msg = result.stderr or result.stdout
            raise KubectlCommandError(f"Failed to update status of {obj.identity}: {error_msg}")

    async def delete(self, obj: ManagedResource) -> None:
        result = await self._run_kubectl(["delete", *self._target_args(obj), "--wait=false"])

        if result.returncode != 0:
            if _is_not_found(result):
                raise ResourceNotFoundError(f"{obj.identity} not found")
            error_msg = result.stderr or result.stdout
            raise KubectlCommandError(f"Failed to delete {obj.identity}: {error_msg}")

        logger.debug(f"Deleted {obj.identity}")

    async def _api_resources(self, namespaced: bool) -> list[str]:
        result = await self._run_kubectl(
            [
                "api-resources",
                "--verbs=list,delete",
                f"--namespaced={str(namespaced).lower()}",
                "-o",
                "name",
            ]
        )
        if result.returncode != 0:
            error_msg = result.stderr or result.stdout
            raise KubectlCommandError(f"Failed to discover API resources: {error_msg}")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def _get_items(self, resources: list[str], selector: str, namespace: str | None) -> list[dict]:
        args = ["get", ",".join(resources), "-l", selector, "-o", "json", "--ignore-not-found"]
        if namespace:
            args.extend(["-n", namespace])

        result = await self._run_kubectl(args)
        if result.returncode != 0:
            error_msg = result.stderr or result.stdout
            where = f"namespace '{namespace}'" if namespace else "cluster scope"
            raise KubectlCommandError(f"Failed to list resources in {where}: {error_msg}")

        if not result.stdout.strip():
            return []
        try:
            return json.loads(result.stdout).get("items", [])
        except json.JSONDecodeError as e:
            raise KubectlCommandError(f"Failed to parse kubectl output as JSON: {e}") from e

    async def list_resources(self, label_selector: dict[str, str], namespaces: Iterable[str]) -> list[ManagedResource]:
        selector = format_selector(label_selector)
        items: list[dict] = []

        namespaced = await self._api_resources(namespaced=True)
        if namespaced:
            for namespace in namespaces:
                items.extend(await self._get_items(namespaced, selector, namespace))

        cluster_scoped = await self._api_resources(namespaced=False)
        if cluster_scoped:
            items.extend(await self._get_items(cluster_scoped, selector, None))

        # The same object can be served by more than one API group
        objs: list[ManagedResource] = []
        seen: set[str] = set()
        for item in items:
            obj = ManagedResource.from_dict(item)
            key = obj.uid or obj.identity
            if key in seen:
                continue
            seen.add(key)
            objs.append(obj)

        logger.debug(f"Found {len(objs)} objects matching '{selector}'")
        return objs

    async def list_objects(self, api_version: str, kind: str) -> list[ManagedResource]:
        probe = ManagedResource.from_dict({"apiVersion": api_version, "kind": kind})
        result = await self._run_kubectl(["get", _resource_arg(probe), "--all-namespaces", "-o", "json"])
        if result.returncode != 0:
            error_msg = result.stderr or result.stdout
            raise KubectlCommandError(f"Failed to list {kind} objects: {error_msg}")

        try:
            items = json.loads(result.stdout).get("items", [])
        except json.JSONDecodeError as e:
            raise KubectlCommandError(f"Failed to parse kubectl output as JSON: {e}") from e
        return [ManagedResource.from_dict(item) for item in items]
