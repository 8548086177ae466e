"""Migration of custom resources to the current CRD storage version.

When a new CRD drops a version that is still listed in the live CRD's
``status.storedVersions``, objects persisted in that version would become
unreadable. Before such a CRD is installed, every custom resource is rewritten
so the API server stores it in the current storage version, and the stored
versions are trimmed to that version.

See https://kubernetes.io/docs/tasks/extend-kubernetes/custom-resources/custom-resource-definition-versioning/
"""

import asyncio
import functools
import logging
from collections.abc import Iterable

from keeper.cluster.proxy import ClusterProxy
from keeper.cluster.resources import CRD_KIND, ManagedResource
from keeper.cluster.retry import WRITE_BACKOFF, BackoffPolicy, SleepFunc, retry_with_backoff
from keeper.utils.errors import KeeperError, MigrationError, ResourceNotFoundError

logger = logging.getLogger(__name__)


def storage_version(crd: ManagedResource) -> str:
    """Return the name of the version flagged as storage version.

    Raises:
        MigrationError: If the CRD has no storage version
    """
    for version in (crd.body.get("spec") or {}).get("versions") or []:
        if version.get("storage"):
            return version["name"]
    raise MigrationError(f"could not find storage version for CustomResourceDefinition {crd.name}")


def _version_names(crd: ManagedResource) -> set[str]:
    return {v["name"] for v in (crd.body.get("spec") or {}).get("versions") or [] if "name" in v}


class CRDMigrator:
    """Rewrites custom resources whose stored version is dropped by a new CRD."""

    def __init__(
        self,
        proxy: ClusterProxy,
        policy: BackoffPolicy = WRITE_BACKOFF,
        sleep: SleepFunc = asyncio.sleep,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.proxy = proxy
        self.policy = policy
        self.sleep = sleep
        self.log = log or logger

    async def run(self, objs: Iterable[ManagedResource]) -> None:
        """Migrate the custom resources of every CRD in ``objs`` that needs it.

        Args:
            objs: Desired objects; only CustomResourceDefinitions are considered

        Raises:
            MigrationError: If a migration cannot be performed
        """
        for obj in objs:
            if obj.kind != CRD_KIND:
                continue
            try:
                await self._migrate(obj)
            except MigrationError:
                raise
            except KeeperError as e:
                raise MigrationError(f"failed to migrate CustomResourceDefinition {obj.name}: {e}") from e

    async def _migrate(self, new_crd: ManagedResource) -> bool:
        new_versions = _version_names(new_crd)

        try:
            current_crd = await self.proxy.get(new_crd)
        except ResourceNotFoundError:
            return False

        current_storage = storage_version(current_crd)
        if current_storage not in new_versions:
            raise MigrationError(
                f"unable to upgrade CRD {new_crd.name} because the new CRD does not contain "
                f"the storage version {current_storage} of the current CRD, "
                "thus not allowing CR migration"
            )

        stored = set((current_crd.body.get("status") or {}).get("storedVersions") or [])
        if stored <= new_versions:
            self.log.debug(f"CRD migration check passed for {new_crd.name}")
            return False

        self.log.info(
            f"CR migration required for {new_crd.name}: dropping stored versions "
            f"{sorted(stored - new_versions)}, keeping {sorted(stored & new_versions)}"
        )
        await self._migrate_resources(current_crd, current_storage)
        await self._trim_stored_versions(current_crd, current_storage)
        return True

    async def _migrate_resources(self, crd: ManagedResource, version: str) -> None:
        spec = crd.body.get("spec") or {}
        api_version = f"{spec.get('group', '')}/{version}"
        kind = (spec.get("names") or {}).get("kind", "")

        resources = await self.proxy.list_objects(api_version, kind)
        for resource in resources:
            # Writing the object unchanged makes the API server persist it in the storage version
            await retry_with_backoff(
                functools.partial(self.proxy.update, resource), self.policy, self.sleep
            )
        self.log.debug(f"Migrated {len(resources)} {kind} objects to {api_version}")

    async def _trim_stored_versions(self, crd: ManagedResource, version: str) -> None:
        updated = crd.copy()
        updated.body.setdefault("status", {})["storedVersions"] = [version]
        await retry_with_backoff(
            functools.partial(self.proxy.update_status, updated), self.policy, self.sleep
        )
