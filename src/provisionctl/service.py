"""Declarative model of one supervised process."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ValidationError

REQUIRED_FIELDS = ("name", "description", "command")


@dataclass(slots=True)
class ServiceDescriptor:
    """Everything an init system needs to supervise one process.

    ``environment`` and ``command`` are replaced wholesale between
    reconciliations; backends never patch a registered unit incrementally.
    """

    name: str
    description: str = ""
    command: str = ""
    environment: dict[str, str] = field(default_factory=dict)
    extra_script: str = ""
    init_directory: Path | None = None

    def missing_fields(self) -> list[str]:
        """Return the names of required fields that are empty."""
        return [name for name in REQUIRED_FIELDS if not str(getattr(self, name)).strip()]

    def validate(self) -> None:
        """Raise :class:`ValidationError` when a required field is empty."""
        missing = self.missing_fields()
        if missing:
            raise ValidationError(f"Service descriptor is missing {', '.join(missing)}.")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object]) -> ServiceDescriptor:
        """Build a descriptor from a plain mapping (YAML, CLI options)."""
        environment_raw = raw.get("environment") or {}
        if not isinstance(environment_raw, Mapping):
            raise ValidationError("Service environment must be a mapping of names to values.")
        init_directory = raw.get("init_directory")
        return cls(
            name=str(raw.get("name") or ""),
            description=str(raw.get("description") or ""),
            command=str(raw.get("command") or ""),
            environment={str(key): str(value) for key, value in environment_raw.items()},
            extra_script=str(raw.get("extra_script") or ""),
            init_directory=Path(str(init_directory)) if init_directory else None,
        )


__all__ = ["ServiceDescriptor"]
