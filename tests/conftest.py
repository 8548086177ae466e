"""Pytest fixtures for testing the cert-manager keeper."""

import pytest

from keeper.cluster.addons.cert_manager import CertManagerAddon
from keeper.cluster.retry import BackoffPolicy
from keeper.config import KeeperConfig
from tests.mocks import FakeClock, FakeClusterProxy, FakeManifestRepository
from tests.mocks.manifests import cert_manager_manifest

KEEPER_ENV_VARS = (
    "KUBECONFIG",
    "KEEPER_KUBE_CONTEXT",
    "KEEPER_CONFIG_FILE",
    "CERT_MANAGER_URL",
    "CERT_MANAGER_VERSION",
    "CERT_MANAGER_TIMEOUT",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Isolate tests from the developer's environment and .env file."""
    for name in KEEPER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("keeper.config.load_dotenv", lambda *args, **kwargs: False)


@pytest.fixture
def fake_clock() -> FakeClock:
    """Create a clock whose sleep advances time instantly."""
    return FakeClock()


@pytest.fixture
def fake_cluster() -> FakeClusterProxy:
    """Create an empty in-memory cluster."""
    return FakeClusterProxy()


@pytest.fixture
def fast_policy() -> BackoffPolicy:
    """Backoff policy that gives up quickly."""
    return BackoffPolicy(steps=3)


@pytest.fixture
def manifest_repository() -> FakeManifestRepository:
    """Create a repository serving cert-manager v1.15.0 and v1.16.1."""
    return FakeManifestRepository(
        {
            "v1.15.0": cert_manager_manifest("v1.15.0"),
            "v1.16.1": cert_manager_manifest("v1.16.1"),
        }
    )


@pytest.fixture
def keeper_config() -> KeeperConfig:
    """Create a configuration targeting cert-manager v1.16.1.

    Returns:
        KeeperConfig with test values
    """
    return KeeperConfig(cert_manager_version="v1.16.1", cert_manager_timeout="5s")


@pytest.fixture
def addon(keeper_config, fake_cluster, manifest_repository, fast_policy, fake_clock) -> CertManagerAddon:
    """Create a cert-manager addon wired to the in-memory cluster."""
    return CertManagerAddon(
        keeper_config,
        fake_cluster,
        repository=manifest_repository,
        policy=fast_policy,
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )
