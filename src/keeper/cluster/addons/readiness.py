"""Readiness probing of the cert-manager API."""

import asyncio
import logging
import time
from collections.abc import Sequence

from keeper.cluster.addons.decommissioner import ResourceDecommissioner
from keeper.cluster.addons.installer import ResourceInstaller
from keeper.cluster.resources import ManagedResource
from keeper.cluster.retry import ClockFunc, SleepFunc, poll_until
from keeper.utils.errors import KeeperError, ReadinessTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 1.0


class ReadinessProbe:
    """Checks that the API server accepts cert-manager objects.

    Creating an Issuer and a Certificate only succeeds once the CRDs are
    served and the cert-manager webhook answers, so a successful round of
    creations means cert-manager is usable.
    """

    def __init__(
        self,
        installer: ResourceInstaller,
        decommissioner: ResourceDecommissioner,
        clock: ClockFunc = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.installer = installer
        self.decommissioner = decommissioner
        self.clock = clock
        self.sleep = sleep
        self.log = log or logger

    async def wait_ready(
        self,
        test_objects: Sequence[ManagedResource],
        interval: float = DEFAULT_INTERVAL,
        timeout: float = 600.0,
        strict: bool = False,
    ) -> None:
        """Create the probe objects until the API accepts them, then delete them.

        Args:
            test_objects: Probe objects to create
            interval: Seconds between attempts
            timeout: Overall budget in seconds
            strict: Fail on the first creation error instead of retrying

        Raises:
            ClusterError: In strict mode, for the first failed creation, or when
                the probe objects cannot be removed
            ReadinessTimeoutError: If the API did not accept the objects in time
        """

        async def attempt() -> bool:
            try:
                for obj in test_objects:
                    await self.installer.apply(obj)
            except KeeperError as e:
                if strict:
                    raise
                self.log.debug(f"cert-manager API not ready yet: {e}")
                return False
            return True

        try:
            await poll_until(attempt, interval, timeout, clock=self.clock, sleep=self.sleep)
        except ReadinessTimeoutError as e:
            raise ReadinessTimeoutError(
                f"cert-manager API did not become available within {timeout:g}s"
            ) from e

        # Probe objects are removed regardless of kind, including their namespace
        await self.decommissioner.decommission(test_objects, protected_kinds=frozenset())
