"""Tolerant deletion of cert-manager objects."""

import asyncio
import functools
import logging
from collections.abc import Iterable

from keeper.cluster.proxy import ClusterProxy
from keeper.cluster.resources import (
    CRD_KIND,
    MUTATING_WEBHOOK_KIND,
    NAMESPACE_KIND,
    VALIDATING_WEBHOOK_KIND,
    ManagedResource,
)
from keeper.cluster.retry import WRITE_BACKOFF, BackoffPolicy, SleepFunc, retry_with_backoff
from keeper.utils.errors import ClusterError, KeeperError, ResourceNotFoundError

logger = logging.getLogger(__name__)

# Kept across an upgrade: CRDs and the namespace hold user objects, and the
# webhooks must keep answering until the new release is ready.
PROTECTED_KINDS = frozenset(
    {CRD_KIND, NAMESPACE_KIND, MUTATING_WEBHOOK_KIND, VALIDATING_WEBHOOK_KIND}
)


class ResourceDecommissioner:
    """Deletes objects from the cluster, treating already-absent objects as deleted."""

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

    async def delete(self, obj: ManagedResource) -> None:
        """Delete one object; not found counts as success.

        Raises:
            ClusterError: If the delete fails for another reason
        """
        self.log.debug(f"Deleting {obj.identity}")
        try:
            await self.proxy.delete(obj)
        except ResourceNotFoundError:
            self.log.debug(f"{obj.identity} already deleted")
        except KeeperError as e:
            raise ClusterError(f"failed to delete cert-manager component {obj.identity}: {e}") from e

    async def decommission(
        self,
        objs: Iterable[ManagedResource],
        protected_kinds: frozenset[str] = PROTECTED_KINDS,
    ) -> None:
        """Delete every object whose kind is not protected.

        Args:
            objs: Objects to delete
            protected_kinds: Kinds that are never deleted

        Raises:
            ClusterError: For the first object whose retries are exhausted
        """
        for obj in objs:
            if obj.kind in protected_kinds:
                continue
            await retry_with_backoff(functools.partial(self.delete, obj), self.policy, self.sleep)
