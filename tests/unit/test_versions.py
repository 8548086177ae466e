"""Tests for version parsing, comparison and the upgrade decision."""

import pytest

from keeper.cluster.addons.versions import (
    BASELINE_VERSION,
    LEGACY_VERSION_ANNOTATION,
    VERSION_ANNOTATION,
    UpgradePlan,
    VersionComparison,
    VersionTag,
    compare_versions,
    determine_upgrade,
    resolve_version,
)
from keeper.cluster.resources import ManagedResource
from keeper.utils.errors import InvalidVersionError


def make_obj(kind="Deployment", name="cert-manager", version=None, legacy=None):
    annotations = {}
    if version is not None:
        annotations[VERSION_ANNOTATION] = version
    if legacy is not None:
        annotations[LEGACY_VERSION_ANNOTATION] = legacy
    return ManagedResource.from_dict(
        {
            "apiVersion": "apps/v1",
            "kind": kind,
            "metadata": {"name": name, "namespace": "cert-manager", "annotations": annotations},
        }
    )


def compare(a: str, b: str) -> VersionComparison:
    return compare_versions(VersionTag.parse(a), VersionTag.parse(b))


class TestVersionTag:
    """Tests for VersionTag.parse."""

    def test_parse_with_v_prefix(self):
        tag = VersionTag.parse("v1.16.1")
        assert tag.raw == "v1.16.1"
        assert (tag.parsed.major, tag.parsed.minor, tag.parsed.patch) == (1, 16, 1)

    def test_parse_without_prefix_and_whitespace(self):
        tag = VersionTag.parse("  1.9.0  ")
        assert str(tag.parsed) == "1.9.0"

    def test_parse_missing_minor_and_patch(self):
        assert str(VersionTag.parse("v1").parsed) == "1.0.0"

    def test_build_identifiers(self):
        assert VersionTag.parse("v1.9.0+build.3").build_identifiers == ["build", "3"]
        assert VersionTag.parse("v1.9.0").build_identifiers == []

    @pytest.mark.parametrize("value", ["", "latest", "v1.x.0", "1.2.3.4"])
    def test_parse_invalid(self, value):
        with pytest.raises(InvalidVersionError):
            VersionTag.parse(value)


class TestCompareVersions:
    """Tests for the four-way version comparator."""

    def test_less_and_greater(self):
        assert compare("v1.8.0", "v1.9.0") is VersionComparison.LESS
        assert compare("v1.10.0", "v1.9.0") is VersionComparison.GREATER

    def test_prerelease_sorts_first(self):
        assert compare("v1.9.0-alpha.1", "v1.9.0") is VersionComparison.LESS

    def test_equal(self):
        assert compare("v1.9.0", "1.9.0") is VersionComparison.EQUAL
        assert compare("v1.9.0+build.1", "v1.9.0+build.1") is VersionComparison.EQUAL

    def test_build_metadata_against_none(self):
        assert compare("v1.9.0+buildX", "v1.9.0") is VersionComparison.EQUAL_DIFFERENT_METADATA

    def test_different_non_numeric_build(self):
        assert compare("v1.9.0+abc", "v1.9.0+def") is VersionComparison.EQUAL_DIFFERENT_METADATA

    def test_numeric_build_identifiers(self):
        assert compare("v1.9.0+build.1", "v1.9.0+build.2") is VersionComparison.LESS
        assert compare("v1.9.0+build.10", "v1.9.0+build.2") is VersionComparison.GREATER

    def test_extra_numeric_build_identifier(self):
        assert compare("v1.9.0+build.1", "v1.9.0+build") is VersionComparison.GREATER
        assert compare("v1.9.0+build", "v1.9.0+build.1") is VersionComparison.LESS


class TestResolveVersion:
    """Tests for reading the version annotations."""

    def test_primary_annotation(self):
        assert resolve_version(make_obj(version="v1.9.0")) == "v1.9.0"

    def test_primary_wins_over_legacy(self):
        assert resolve_version(make_obj(version="v1.9.0", legacy="v0.16.0")) == "v1.9.0"

    def test_legacy_annotation(self):
        assert resolve_version(make_obj(legacy="v0.16.0")) == "v0.16.0"

    def test_unannotated(self):
        assert resolve_version(make_obj()) is None


class TestDetermineUpgrade:
    """Tests for the upgrade decision."""

    def test_older_object_requires_upgrade(self):
        plan = determine_upgrade("v1.9.0", [make_obj(version="v1.8.0")], [make_obj()])
        assert plan == UpgradePlan(from_version="v1.8.0", to_version="v1.9.0", should_upgrade=True)

    def test_build_metadata_requires_upgrade(self):
        plan = determine_upgrade("v1.9.0", [make_obj(version="v1.9.0+buildX")], [make_obj()])
        assert plan.should_upgrade is True
        assert plan.from_version == "v1.9.0+buildX"

    def test_unannotated_object_uses_baseline(self):
        installed = [
            make_obj(name="a", version="v1.9.0"),
            make_obj(name="b"),
            make_obj(name="c", version="v2.0.0"),
        ]
        plan = determine_upgrade("v1.9.0", installed, installed)
        assert plan.from_version == BASELINE_VERSION
        assert plan.should_upgrade is True

    def test_legacy_annotation_is_honoured(self):
        plan = determine_upgrade("v1.9.0", [make_obj(legacy="v0.16.1")], [make_obj()])
        assert plan.from_version == "v0.16.1"
        assert plan.should_upgrade is True

    @pytest.mark.parametrize("desired_version", ["v1.9.0", "v0.1.0", "v99.0.0"])
    def test_empty_installed_set_is_externally_managed(self, desired_version):
        plan = determine_upgrade(desired_version, [], [make_obj()])
        assert plan.externally_managed is True
        assert plan.should_upgrade is False

    def test_only_generated_kinds_is_externally_managed(self):
        installed = [make_obj(kind="Endpoints", version="v1.8.0"), make_obj(kind="EndpointSlice")]
        plan = determine_upgrade("v1.9.0", installed, [make_obj()])
        assert plan == UpgradePlan(externally_managed=True)

    def test_same_version_same_count_is_up_to_date(self):
        installed = [make_obj(name=n, version="v1.9.0") for n in ("a", "b", "c")]
        plan = determine_upgrade("v1.9.0", installed, [make_obj(name=n) for n in ("a", "b", "c")])
        assert plan == UpgradePlan(from_version="v1.9.0", to_version="v1.9.0", should_upgrade=False)

    def test_same_version_different_count_requires_upgrade(self):
        installed = [make_obj(name=n, version="v1.9.0") for n in ("a", "b")]
        plan = determine_upgrade("v1.9.0", installed, [make_obj(name=n) for n in ("a", "b", "c")])
        assert plan.should_upgrade is True
        assert plan.from_version == "v1.9.0"

    def test_generated_kinds_are_not_counted(self):
        installed = [
            make_obj(name="a", version="v1.9.0"),
            make_obj(kind="Endpoints", name="a", version="v1.9.0"),
        ]
        plan = determine_upgrade("v1.9.0", installed, [make_obj(name="a")])
        assert plan.should_upgrade is False

    def test_newer_objects_do_not_require_upgrade(self):
        installed = [make_obj(name=n, version="v2.0.0") for n in ("a", "b")]
        plan = determine_upgrade("v1.9.0", installed, [make_obj(name="a")])
        assert plan.should_upgrade is False
        assert plan.from_version == "v2.0.0"

    def test_first_match_wins_on_mixed_versions(self):
        installed = [
            make_obj(name="a", version="v2.0.0"),
            make_obj(name="b", version="v1.7.0"),
            make_obj(name="c", version="v1.8.0"),
        ]
        plan = determine_upgrade("v1.9.0", installed, installed)
        assert plan.from_version == "v1.7.0"
        assert plan.should_upgrade is True

    def test_invalid_desired_version(self):
        with pytest.raises(InvalidVersionError) as exc_info:
            determine_upgrade("not-a-version", [make_obj(version="v1.8.0")], [])
        assert "failed to parse config version [not-a-version]" in str(exc_info.value)

    def test_invalid_installed_version(self):
        with pytest.raises(InvalidVersionError) as exc_info:
            determine_upgrade("v1.9.0", [make_obj(name="broken", version="garbage")], [])
        assert "Deployment/broken" in str(exc_info.value)
