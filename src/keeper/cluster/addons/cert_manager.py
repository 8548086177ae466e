"""cert-manager addon lifecycle: install, upgrade and readiness."""

import asyncio
import logging
import time

from keeper.cluster.addons.base import BaseAddon
from keeper.cluster.addons.crd_migrator import CRDMigrator
from keeper.cluster.addons.decommissioner import PROTECTED_KINDS, ResourceDecommissioner
from keeper.cluster.addons.installer import ResourceInstaller
from keeper.cluster.addons.manifest import (
    PROVENANCE_SELECTOR,
    HttpManifestRepository,
    ManifestRepository,
    alter_image,
    decode_manifest,
    fix_images,
    inspect_images,
    load_test_resources,
    stamp_provenance,
)
from keeper.cluster.addons.readiness import ReadinessProbe
from keeper.cluster.addons.versions import UpgradePlan, determine_upgrade
from keeper.cluster.proxy import ClusterProxy
from keeper.cluster.resources import ManagedResource
from keeper.cluster.retry import WRITE_BACKOFF, BackoffPolicy, ClockFunc, SleepFunc
from keeper.config import CERT_MANAGER_COMPONENT, KeeperConfig
from keeper.observability import operation_span, set_attributes
from keeper.utils.errors import ClusterError, KeeperError, ReadinessTimeoutError


class CertManagerAddon(BaseAddon):
    """cert-manager addon.

    Installs cert-manager from its release manifest and keeps it at the
    configured version. Every object installed by the keeper carries the
    ``clusterctl.cluster.x-k8s.io/core=cert-manager`` label and a version
    annotation; when no labelled object exists, cert-manager is considered
    externally managed and is never modified.
    """

    addon_name = "cert-manager"

    NAMESPACE = "cert-manager"
    # kube-system holds cert-manager's leader election objects
    NAMESPACES = (NAMESPACE, "kube-system")
    WAIT_INTERVAL = 1.0

    def __init__(
        self,
        config: KeeperConfig,
        proxy: ClusterProxy,
        repository: ManifestRepository | None = None,
        migrator: CRDMigrator | None = None,
        policy: BackoffPolicy = WRITE_BACKOFF,
        clock: ClockFunc = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
        log: logging.Logger | None = None,
    ):
        """Initialize cert-manager addon.

        Args:
            config: Keeper configuration (version, manifest URL, image overrides, timeout)
            proxy: Access to the cluster
            repository: Manifest source; downloads over HTTP when omitted
            migrator: CRD migrator; one bound to ``proxy`` is created when omitted
            policy: Backoff policy for cluster writes
            clock: Monotonic clock used by readiness polling
            sleep: Coroutine function used for every wait
            log: Optional logger
        """
        super().__init__(log)
        self.config = config
        self.proxy = proxy
        self.repository = repository or HttpManifestRepository()
        self.migrator = migrator or CRDMigrator(proxy, policy, sleep, self.log)
        self.installer = ResourceInstaller(proxy, policy, sleep, self.log)
        self.decommissioner = ResourceDecommissioner(proxy, policy, sleep, self.log)
        self.probe = ReadinessProbe(self.installer, self.decommissioner, clock, sleep, self.log)

    @property
    def version(self) -> str:
        return self.config.cert_manager_version

    async def desired_objects(self) -> list[ManagedResource]:
        """Fetch the manifest of the configured version, ready to be installed.

        Images are rewritten with the configured overrides and every object is
        stamped with the keeper labels and version annotation.

        Raises:
            ManifestError: If the manifest cannot be fetched, decoded or rewritten
        """
        raw = await self.repository.fetch(self.config.cert_manager_url, self.version)
        objs = decode_manifest(raw)

        override = self.config.image_override(CERT_MANAGER_COMPONENT)
        fix_images(objs, lambda image: alter_image(image, override))

        return stamp_provenance(objs, self.version)

    async def _list_installed(self) -> list[ManagedResource]:
        try:
            return await self.proxy.list_resources(PROVENANCE_SELECTOR, self.NAMESPACES)
        except KeeperError as e:
            raise ClusterError(f"failed to get cert-manager components: {e}") from e

    async def _wait_for_api(self, strict: bool) -> None:
        await self.probe.wait_ready(
            load_test_resources(),
            interval=self.WAIT_INTERVAL,
            timeout=self.config.wait_timeout(),
            strict=strict,
        )

    async def _install(self, objs: list[ManagedResource]) -> None:
        self.log_info(f"Installing cert-manager version {self.version}")
        await self.installer.install(objs)

        self.log_info("Waiting for cert-manager to be available...")
        await self._wait_for_api(strict=False)

    async def ensure_installed(self) -> None:
        """Make sure cert-manager is running and its API is available.

        Raises:
            ManifestError: If the manifest cannot be prepared
            ClusterError: If installing fails
            ReadinessTimeoutError: If the API is not available within the timeout
        """
        with operation_span("cert_manager.ensure_installed", version=self.version):
            try:
                await self._wait_for_api(strict=True)
            except (ClusterError, ReadinessTimeoutError) as e:
                self.log_debug(f"cert-manager is not available: {e}")
            else:
                self.log_info("Skipping installing cert-manager as it is already installed")
                return

            objs = await self.desired_objects()
            await self._install(objs)

    async def plan_upgrade(self) -> UpgradePlan:
        """Compute the upgrade plan without changing the cluster.

        Raises:
            ClusterError: If the installed components cannot be listed
            ManifestError: If the manifest cannot be prepared
            InvalidVersionError: If a version cannot be parsed
        """
        with operation_span("cert_manager.plan_upgrade", version=self.version) as span:
            installed = await self._list_installed()
            if not installed:
                self.log_debug("Skipping cert-manager version check because externally managed")
                plan = UpgradePlan(externally_managed=True)
            else:
                desired = await self.desired_objects()
                self.log_info("Checking if cert-manager needs upgrade...")
                plan = determine_upgrade(self.version, installed, desired)

            set_attributes(
                span,
                externally_managed=plan.externally_managed,
                from_version=plan.from_version,
                should_upgrade=plan.should_upgrade,
            )
            return plan

    async def ensure_latest_version(self) -> None:
        """Upgrade cert-manager if the installed version is not the configured one.

        The upgrade migrates custom resources while the old webhooks still
        serve conversions, deletes the old release except protected kinds,
        installs the new release and waits for its API.

        Raises:
            ClusterError: If listing, deleting or installing fails
            ManifestError: If the manifest cannot be prepared
            InvalidVersionError: If a version cannot be parsed
            MigrationError: If custom resources cannot be migrated
            ReadinessTimeoutError: If the API is not available within the timeout
        """
        with operation_span("cert_manager.ensure_latest_version", version=self.version) as span:
            installed = await self._list_installed()
            if not installed:
                self.log_debug("Skipping cert-manager upgrade because externally managed")
                return

            desired = await self.desired_objects()
            self.log_info("Checking if cert-manager needs upgrade...")
            plan = determine_upgrade(self.version, installed, desired)
            set_attributes(span, from_version=plan.from_version, should_upgrade=plan.should_upgrade)

            if plan.externally_managed:
                self.log_debug("Skipping cert-manager upgrade because externally managed")
                return
            if not plan.should_upgrade:
                self.log_info("Cert-manager is already up to date")
                return

            # Conversion webhooks of the installed release are needed for the migration
            await self.migrator.run(desired)

            self.log_info(f"Deleting cert-manager version {plan.from_version}")
            await self.decommissioner.decommission(installed, PROTECTED_KINDS)

            await self._install(desired)

    async def images(self) -> list[str]:
        """Return the images required to install cert-manager.

        Nothing is needed when the cert-manager namespace already exists.

        Raises:
            ClusterError: If the namespace lookup fails
            ManifestError: If the manifest cannot be prepared
        """
        if await self.proxy.namespace_exists(self.NAMESPACE):
            return []
        return inspect_images(await self.desired_objects())
