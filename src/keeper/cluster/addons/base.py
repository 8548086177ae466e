"""Base addon class for cluster add-ons managed by the keeper."""

import logging
from abc import ABC, abstractmethod

from keeper.cluster.addons.versions import UpgradePlan

logger = logging.getLogger(__name__)


class AddonLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the addon name."""

    def process(self, msg, kwargs):
        return f"[{self.extra['addon']}] {msg}", kwargs


class BaseAddon(ABC):
    """Abstract base class for cluster add-ons.

    Subclasses implement the lifecycle operations; every operation reads the
    cluster state afresh, so each of them can be re-run after a failure.
    """

    addon_name = "addon"

    def __init__(self, log: logging.Logger | None = None):
        """Initialize addon.

        Args:
            log: Optional logger; the module logger is used when omitted
        """
        self.log = AddonLogAdapter(log or logger, {"addon": self.addon_name})

    def log_info(self, message: str) -> None:
        """Log info message with addon prefix."""
        self.log.info(message)

    def log_warn(self, message: str) -> None:
        """Log warning message with addon prefix."""
        self.log.warning(message)

    def log_error(self, message: str) -> None:
        """Log error message with addon prefix."""
        self.log.error(message)

    def log_debug(self, message: str) -> None:
        """Log debug message with addon prefix."""
        self.log.debug(message)

    @abstractmethod
    async def ensure_installed(self) -> None:
        """Make sure the addon is installed and its API is available."""
        pass

    @abstractmethod
    async def ensure_latest_version(self) -> None:
        """Upgrade the addon if the installed version is older than the desired one."""
        pass

    @abstractmethod
    async def plan_upgrade(self) -> UpgradePlan:
        """Describe the upgrade ensure_latest_version would perform."""
        pass

    @abstractmethod
    async def images(self) -> list[str]:
        """Return the container images needed to install the addon."""
        pass
