"""Create-or-update of cert-manager objects."""

import asyncio
import functools
import logging
from collections.abc import Iterable

from keeper.cluster.proxy import ClusterProxy
from keeper.cluster.resources import ManagedResource, sort_for_create
from keeper.cluster.retry import WRITE_BACKOFF, BackoffPolicy, SleepFunc, retry_with_backoff
from keeper.utils.errors import ClusterError, KeeperError, ResourceNotFoundError

logger = logging.getLogger(__name__)


class ResourceInstaller:
    """Installs objects into the cluster, updating the ones that already exist.

    Updating instead of failing is required during upgrades, where some objects
    of the previous release (CRDs, namespace, webhooks) are kept on purpose.
    """

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

    async def apply(self, obj: ManagedResource) -> None:
        """Create ``obj``, or update it with the live resourceVersion if it exists.

        Args:
            obj: Desired object; it is not modified

        Raises:
            ClusterError: If reading or writing the object fails
        """
        try:
            current = await self.proxy.get(obj)
        except ResourceNotFoundError:
            self.log.debug(f"Creating {obj.identity}")
            try:
                await self.proxy.create(obj)
            except KeeperError as e:
                raise ClusterError(f"failed to create cert-manager component {obj.identity}: {e}") from e
            return
        except KeeperError as e:
            raise ClusterError(f"failed to get cert-manager object {obj.identity}: {e}") from e

        self.log.debug(f"Updating {obj.identity}")
        desired = obj.copy()
        desired.resource_version = current.resource_version
        try:
            await self.proxy.update(desired)
        except KeeperError as e:
            raise ClusterError(f"failed to update cert-manager component {obj.identity}: {e}") from e

    async def install(self, objs: Iterable[ManagedResource]) -> None:
        """Apply objects in dependency order, retrying each with backoff.

        Args:
            objs: Objects to install

        Raises:
            ClusterError: For the first object whose retries are exhausted
        """
        for obj in sort_for_create(objs):
            await retry_with_backoff(functools.partial(self.apply, obj), self.policy, self.sleep)
