"""Custom exception classes for the cert-manager keeper."""


class KeeperError(Exception):
    """Base exception for keeper errors."""

    pass


class ConfigurationError(KeeperError):
    """Raised when configuration is invalid or missing."""

    pass


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration file is invalid or malformed."""

    pass


class InvalidVersionError(KeeperError):
    """Raised when a version string is not a valid semantic version."""

    pass


class ManifestError(KeeperError):
    """Raised when the cert-manager manifest cannot be fetched, decoded or rewritten."""

    pass


class ClusterError(KeeperError):
    """Raised when a call against the cluster fails for a reason other than not found."""

    pass


class KubectlCommandError(ClusterError):
    """Raised when a kubectl command fails."""

    pass


class ResourceNotFoundError(KeeperError):
    """Raised when a Kubernetes resource is not found."""

    pass


class ReadinessTimeoutError(KeeperError):
    """Raised when the cert-manager API does not become ready in time."""

    pass


class MigrationError(KeeperError):
    """Raised when migrating custom resources to the latest storage version fails."""

    pass
