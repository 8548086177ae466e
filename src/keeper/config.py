"""Configuration management for the cert-manager keeper.

Configuration is read from environment variables and .env files, optionally
layered on top of a clusterctl-style YAML file:

    cert-manager:
      url: https://github.com/cert-manager/cert-manager/releases/latest/cert-manager.yaml
      version: v1.16.1
      timeout: 10m
    images:
      all:
        repository: registry.example.com/mirror
      cert-manager:
        tag: v1.16.1
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from keeper.utils.errors import ConfigurationError, InvalidConfigError, InvalidVersionError

logger = logging.getLogger(__name__)

DEFAULT_CERT_MANAGER_URL = (
    "https://github.com/cert-manager/cert-manager/releases/latest/cert-manager.yaml"
)
DEFAULT_CERT_MANAGER_VERSION = "v1.16.1"
DEFAULT_TIMEOUT_SECONDS = 10 * 60.0

CERT_MANAGER_COMPONENT = "cert-manager"

# Key used in the images section for overrides applying to every component
ALL_IMAGES = "all"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """Parse a Go-style duration such as ``90s``, ``1m30s`` or ``1.5h``.

    Args:
        value: Duration text

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the text is not a duration
    """
    text = value.strip()
    if text == "0":
        return 0.0
    if not text:
        raise ValueError("empty duration")

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ValueError(f"invalid duration '{value}'")
    return total


def load_config_file(path: Path) -> dict[str, Any]:
    """Load a YAML configuration file.

    Raises:
        ConfigurationError: If the file does not exist
        InvalidConfigError: If the file is not a YAML mapping
    """
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise InvalidConfigError(f"Invalid YAML in configuration file {path}: {e}") from e

    if not isinstance(data, dict):
        raise InvalidConfigError(f"Configuration file {path} must contain a mapping")
    return data


@dataclass(frozen=True)
class ImageOverride:
    """Replacement repository and/or tag for container images."""

    repository: str | None = None
    tag: str | None = None

    def merge(self, other: "ImageOverride") -> "ImageOverride":
        """Return an override where fields set on ``other`` win."""
        return ImageOverride(
            repository=other.repository or self.repository,
            tag=other.tag or self.tag,
        )


@dataclass
class KeeperConfig:
    """Keeper configuration.

    Values passed explicitly are used as defaults; the configuration file and
    then the environment override them.
    """

    # Cluster access
    kubeconfig: str | None = None
    kube_context: str | None = None

    # cert-manager
    cert_manager_url: str = DEFAULT_CERT_MANAGER_URL
    cert_manager_version: str = DEFAULT_CERT_MANAGER_VERSION
    cert_manager_timeout: str | None = None

    # Image overrides keyed by component name (or "all")
    images: dict[str, ImageOverride] = field(default_factory=dict)

    config_file: str | None = None
    log_level: str = "info"

    def __post_init__(self):
        """Load configuration from the config file and environment variables."""
        load_dotenv()

        self.config_file = os.getenv("KEEPER_CONFIG_FILE", self.config_file)
        if self.config_file:
            self._apply_file(load_config_file(Path(self.config_file).expanduser()))

        # Cluster access
        self.kubeconfig = os.getenv("KUBECONFIG", self.kubeconfig)
        self.kube_context = os.getenv("KEEPER_KUBE_CONTEXT", self.kube_context)

        # cert-manager
        self.cert_manager_url = os.getenv("CERT_MANAGER_URL", self.cert_manager_url)
        self.cert_manager_version = os.getenv("CERT_MANAGER_VERSION", self.cert_manager_version)
        self.cert_manager_timeout = os.getenv("CERT_MANAGER_TIMEOUT", self.cert_manager_timeout)

        self.log_level = os.getenv("LOG_LEVEL", self.log_level).lower()

    def _apply_file(self, data: dict[str, Any]) -> None:
        cert_manager = data.get("cert-manager") or {}
        if not isinstance(cert_manager, dict):
            raise InvalidConfigError("'cert-manager' must be a mapping")
        self.cert_manager_url = cert_manager.get("url", self.cert_manager_url)
        self.cert_manager_version = cert_manager.get("version", self.cert_manager_version)
        if "timeout" in cert_manager:
            self.cert_manager_timeout = str(cert_manager["timeout"])

        images = data.get("images") or {}
        if not isinstance(images, dict):
            raise InvalidConfigError("'images' must be a mapping")
        for component, override in images.items():
            if not isinstance(override, dict):
                raise InvalidConfigError(f"image override for '{component}' must be a mapping")
            self.images[component] = ImageOverride(
                repository=override.get("repository"),
                tag=override.get("tag"),
            )

    def validate(self) -> None:
        """Validate configuration.

        Raises:
            ConfigurationError: If the manifest URL is empty or the version is invalid
        """
        from keeper.cluster.addons.versions import VersionTag

        if not self.cert_manager_url:
            raise ConfigurationError("cert-manager manifest URL must not be empty")
        try:
            VersionTag.parse(self.cert_manager_version)
        except InvalidVersionError as e:
            raise ConfigurationError(
                f"Invalid cert-manager version: {self.cert_manager_version}"
            ) from e

    def wait_timeout(self) -> float:
        """Return the readiness timeout in seconds.

        Falls back to 10 minutes when no timeout is configured or the value is invalid.
        """
        if not self.cert_manager_timeout:
            return DEFAULT_TIMEOUT_SECONDS
        try:
            return parse_duration(self.cert_manager_timeout)
        except ValueError:
            logger.info(
                f"Invalid value set for cert-manager configuration timeout: {self.cert_manager_timeout}"
            )
            return DEFAULT_TIMEOUT_SECONDS

    def image_override(self, component: str = CERT_MANAGER_COMPONENT) -> ImageOverride:
        """Return the override for a component, layered over the ``all`` override."""
        base = self.images.get(ALL_IMAGES, ImageOverride())
        specific = self.images.get(component)
        return base.merge(specific) if specific else base

    def get_kubeconfig_path(self) -> Path | None:
        """Get the kubeconfig path, if one is configured."""
        if not self.kubeconfig:
            return None
        # KUBECONFIG may list several files; kubectl merges them but --kubeconfig takes one
        return Path(self.kubeconfig.split(os.pathsep)[0]).expanduser()
