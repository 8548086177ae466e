"""Cluster add-on lifecycle management.

The cert-manager addon is built from small parts: an installer, a
decommissioner, a readiness probe and a version reconciler.
"""

from keeper.cluster.addons.cert_manager import CertManagerAddon
from keeper.cluster.addons.decommissioner import PROTECTED_KINDS, ResourceDecommissioner
from keeper.cluster.addons.installer import ResourceInstaller
from keeper.cluster.addons.readiness import ReadinessProbe
from keeper.cluster.addons.versions import UpgradePlan, determine_upgrade

__all__ = [
    "PROTECTED_KINDS",
    "CertManagerAddon",
    "ReadinessProbe",
    "ResourceDecommissioner",
    "ResourceInstaller",
    "UpgradePlan",
    "determine_upgrade",
]
