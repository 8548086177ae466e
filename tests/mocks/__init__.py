"""Test doubles for the cert-manager keeper."""

from tests.mocks.fake_cluster import FakeClock, FakeClusterProxy, FakeManifestRepository

__all__ = ["FakeClock", "FakeClusterProxy", "FakeManifestRepository"]
