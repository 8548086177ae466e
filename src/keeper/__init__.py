"""cert-manager lifecycle keeper.

Installs cert-manager into a Kubernetes cluster and keeps it at the
configured version, upgrading it without losing user certificates.
"""

from importlib.metadata import PackageNotFoundError, version

from keeper.cluster.addons.cert_manager import CertManagerAddon
from keeper.config import KeeperConfig

# Read version from package metadata with fallback
try:
    __version__ = version("cert-manager-keeper")
except PackageNotFoundError:
    # Fallback for development/testing environments
    __version__ = "0.1.0"

__all__ = [
    "CertManagerAddon",
    "KeeperConfig",
    "__version__",
]
