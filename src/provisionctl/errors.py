"""Error taxonomy shared by the bootstrap compiler and service backends."""
from __future__ import annotations


class ProvisionError(RuntimeError):
    """Base class for every error raised by provisionctl."""


class ValidationError(ProvisionError):
    """Raised when a descriptor or document is missing required fields."""


class SerializationError(ProvisionError):
    """Raised when content cannot be represented in the target wire form."""


class InvalidPackageSpec(ProvisionError):
    """Raised for malformed legacy ``--target-release`` package arguments."""


class LiveSystemError(ProvisionError):
    """Raised when an init-system status or control command fails."""


class ConfigConflict(ProvisionError):
    """Raised when package sources are requested while updates are disabled."""


class ConfigError(ProvisionError):
    """Raised when configuration parsing fails."""


class ProvisioningError(ProvisionError):
    """Raised by the provisioning compiler, tagged with the failing stage."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        """Record the *stage* that produced *cause*."""
        super().__init__(f"{stage}: {cause}")
        self.stage = stage
        self.cause = cause


__all__ = [
    "ConfigConflict",
    "ConfigError",
    "InvalidPackageSpec",
    "LiveSystemError",
    "ProvisionError",
    "ProvisioningError",
    "SerializationError",
    "ValidationError",
]
