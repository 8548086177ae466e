"""Version parsing and the cert-manager upgrade decision."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import semver

from keeper.cluster.resources import GENERATED_KINDS, ManagedResource
from keeper.utils.errors import InvalidVersionError

logger = logging.getLogger(__name__)

# Written on every object installed by the keeper
VERSION_ANNOTATION = "cert-manager.clusterctl.cluster.x-k8s.io/version"

# Only read, for installs made before VERSION_ANNOTATION existed
LEGACY_VERSION_ANNOTATION = "certmanager.clusterctl.cluster.x-k8s.io/version"

# Objects without any version annotation were installed as cert-manager v0.11.0
BASELINE_VERSION = "v0.11.0"


class VersionComparison(Enum):
    """Outcome of comparing two versions including build metadata."""

    LESS = "less"
    EQUAL = "equal"
    EQUAL_DIFFERENT_METADATA = "equal-different-metadata"
    GREATER = "greater"


@dataclass(frozen=True)
class VersionTag:
    """A parsed semantic version that remembers the text it came from."""

    raw: str
    parsed: semver.Version

    @classmethod
    def parse(cls, value: str) -> "VersionTag":
        """Parse a version leniently.

        Leading/trailing whitespace and a leading ``v`` are ignored, and missing
        minor or patch numbers default to zero.

        Raises:
            InvalidVersionError: If the value is not a semantic version
        """
        text = value.strip()
        if text[:1] in ("v", "V"):
            text = text[1:]
        try:
            parsed = semver.Version.parse(text, optional_minor_and_patch=True)
        except (ValueError, TypeError) as e:
            raise InvalidVersionError(f"invalid semantic version '{value}'") from e
        return cls(raw=value, parsed=parsed)

    @property
    def build_identifiers(self) -> list[str]:
        if not self.parsed.build:
            return []
        return self.parsed.build.split(".")


def _compare_build(a: list[str], b: list[str]) -> VersionComparison:
    for left, right in zip(a, b):
        if left.isdigit() and right.isdigit():
            if int(left) != int(right):
                return VersionComparison.LESS if int(left) < int(right) else VersionComparison.GREATER
        elif left != right:
            return VersionComparison.EQUAL_DIFFERENT_METADATA

    if len(a) == len(b):
        return VersionComparison.EQUAL

    longer = a if len(a) > len(b) else b
    extra = longer[min(len(a), len(b))]
    if not extra.isdigit():
        return VersionComparison.EQUAL_DIFFERENT_METADATA
    return VersionComparison.GREATER if longer is a else VersionComparison.LESS


def compare_versions(a: VersionTag, b: VersionTag) -> VersionComparison:
    """Compare two versions, taking build metadata into account.

    Semantic version precedence decides first. When it ties, build identifiers
    are compared pairwise: numeric identifiers order numerically, and any
    non-numeric difference means the versions are the same release built
    differently (``EQUAL_DIFFERENT_METADATA``).

    Args:
        a: Left version
        b: Right version

    Returns:
        How ``a`` relates to ``b``
    """
    result = a.parsed.compare(b.parsed)
    if result < 0:
        return VersionComparison.LESS
    if result > 0:
        return VersionComparison.GREATER
    return _compare_build(a.build_identifiers, b.build_identifiers)


@dataclass(frozen=True)
class UpgradePlan:
    """Whether cert-manager has to be upgraded, and between which versions."""

    externally_managed: bool = False
    from_version: str = ""
    to_version: str = ""
    should_upgrade: bool = False


def resolve_version(obj: ManagedResource) -> str | None:
    """Return the version an object was installed at, or None if it is not annotated."""
    annotations = obj.annotations
    if VERSION_ANNOTATION in annotations:
        return annotations[VERSION_ANNOTATION]
    return annotations.get(LEGACY_VERSION_ANNOTATION)


def determine_upgrade(
    desired_version: str,
    installed: Sequence[ManagedResource],
    desired: Sequence[ManagedResource],
) -> UpgradePlan:
    """Decide whether the installed cert-manager must be upgraded.

    The installed objects are scanned in order and the first object that is
    older than the desired version (or the same release with different build
    metadata) decides the upgrade. An object at exactly the desired version
    requires an upgrade only when the number of installed objects differs from
    the number of objects in the desired manifest, which repairs partial
    installs. Newer objects never trigger an upgrade on their own.

    Args:
        desired_version: Version the keeper is configured to run
        installed: Live objects carrying the cert-manager provenance label
        desired: Objects of the desired manifest

    Returns:
        The upgrade plan

    Raises:
        InvalidVersionError: If the desired version or an installed object's
            version annotation cannot be parsed
    """
    try:
        desired_tag = VersionTag.parse(desired_version)
    except InvalidVersionError as e:
        raise InvalidVersionError(
            f"failed to parse config version [{desired_version}] for cert-manager component"
        ) from e

    relevant = [o for o in installed if o.kind not in GENERATED_KINDS]
    if not relevant:
        return UpgradePlan(externally_managed=True)

    current_version = ""
    need_upgrade = False

    for obj in relevant:
        obj_version = resolve_version(obj)
        if obj_version is None:
            current_version = BASELINE_VERSION
            need_upgrade = True
            break

        try:
            obj_tag = VersionTag.parse(obj_version)
        except InvalidVersionError as e:
            raise InvalidVersionError(
                f"failed to parse version for cert-manager component {obj.kind}/{obj.name}"
            ) from e

        comparison = compare_versions(obj_tag, desired_tag)
        current_version = obj_version
        if comparison in (VersionComparison.LESS, VersionComparison.EQUAL_DIFFERENT_METADATA):
            need_upgrade = True
        elif comparison is VersionComparison.EQUAL:
            # Same version but a different object count means a broken install
            need_upgrade = len(relevant) != len(desired)

        if need_upgrade:
            break

    logger.debug(
        f"cert-manager version check: installed={current_version} desired={desired_version} "
        f"upgrade={need_upgrade}"
    )
    return UpgradePlan(
        from_version=current_version,
        to_version=desired_version,
        should_upgrade=need_upgrade,
    )
