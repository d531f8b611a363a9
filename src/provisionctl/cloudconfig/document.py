"""Backend-agnostic first-boot document and its two renderings.

A :class:`ConfigDocument` is an attribute bag plus three ordered command
lists. It renders either to a ``#cloud-config`` YAML document or to a linear
bash script. Rendering never mutates the document; compilers that need to
translate attributes into commands do so on a :meth:`ConfigDocument.copy`.
"""
from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import yaml

from ..errors import SerializationError
from ..shell import shquote

CLOUD_CONFIG_HEADER = "#cloud-config\n"
SCRIPT_HEADER = ("#!/bin/bash", "set -e")
PROGRESS_FD_VAR = "PROVISIONCTL_PROGRESS_FD"


def progress_command(message: str) -> str:
    """Return a command reporting *message* on the progress descriptor."""
    return f"echo {shquote(message)} >&${PROGRESS_FD_VAR}"


def init_progress_command() -> str:
    """Return the command that opens the progress descriptor."""
    return f'test -n "${PROGRESS_FD_VAR}" || {{ exec 9>&2; {PROGRESS_FD_VAR}=9; }}'


@dataclass(frozen=True, slots=True)
class FileWrite:
    """A file to create before any other command runs."""

    path: str
    content: str
    mode: int = 0o644

    def to_dict(self) -> dict[str, str]:
        """Return the ``write_files`` entry for this file."""
        return {
            "path": self.path,
            "content": self.content,
            "permissions": f"0{self.mode:03o}",
        }

    def shell_commands(self) -> list[str]:
        """Return the commands creating this file from a script."""
        path = shquote(self.path)
        return [
            f"install -D -m {self.mode:o} /dev/null {path}",
            f"printf '%s' {shquote(self.content)} > {path}",
        ]


@dataclass(slots=True)
class ConfigDocument:
    """Ordered attributes and commands consumed by a first-boot agent."""

    attributes: dict[str, object] = field(default_factory=dict)
    boot_commands: list[str] = field(default_factory=list)
    run_commands: list[str] = field(default_factory=list)
    files: list[FileWrite] = field(default_factory=list)

    def set_attribute(self, key: str, value: object) -> None:
        """Set *key* to *value*, replacing any previous value."""
        self.attributes[key] = value

    def unset_attribute(self, key: str) -> None:
        """Remove *key* if present."""
        self.attributes.pop(key, None)

    def attribute(self, key: str, default: object = None) -> object:
        """Return the value stored under *key*."""
        return self.attributes.get(key, default)

    def add_boot_command(self, command: str) -> None:
        """Append a command run early in boot, before packages are handled."""
        self.boot_commands.append(command)

    def add_run_command(self, command: str) -> None:
        """Append a command run after packages are installed."""
        self.run_commands.append(command)

    def add_file(self, path: str, content: str, mode: int = 0o644) -> None:
        """Append a file to write before other commands run."""
        self.files.append(FileWrite(path=path, content=content, mode=mode))

    def copy(self) -> ConfigDocument:
        """Return an independent copy safe to rewrite during rendering."""
        return ConfigDocument(
            attributes=copy.deepcopy(self.attributes),
            boot_commands=list(self.boot_commands),
            run_commands=list(self.run_commands),
            files=list(self.files),
        )

    def structured_payload(self) -> dict[str, object]:
        """Return the mapping serialised by :meth:`render_structured`."""
        payload = dict(self.attributes)
        if self.boot_commands:
            payload["bootcmd"] = list(self.boot_commands)
        if self.run_commands:
            payload["runcmd"] = list(self.run_commands)
        if self.files:
            payload["write_files"] = [item.to_dict() for item in self.files]
        return payload

    def render_structured(self) -> bytes:
        """Render the ``#cloud-config`` document."""
        return dump_cloud_config(self.structured_payload())

    def render_script(self, package_commands: Iterable[str] = ()) -> str:
        """Render a bash script: file writes, boot, *package_commands*, run."""
        lines = [*SCRIPT_HEADER, init_progress_command()]
        for item in self.files:
            lines.extend(item.shell_commands())
        lines.extend(self.boot_commands)
        lines.extend(package_commands)
        lines.extend(self.run_commands)
        return "\n".join(lines) + "\n"


def dump_cloud_config(payload: Mapping[str, object]) -> bytes:
    """Serialise *payload* as YAML behind the ``#cloud-config`` marker."""
    try:
        data = yaml.safe_dump(dict(payload), default_flow_style=False, sort_keys=True)
    except yaml.YAMLError as exc:
        raise SerializationError(f"Cannot serialise cloud-config document: {exc}") from exc
    return (CLOUD_CONFIG_HEADER + data).encode("utf-8")


__all__ = [
    "CLOUD_CONFIG_HEADER",
    "ConfigDocument",
    "FileWrite",
    "dump_cloud_config",
    "init_progress_command",
    "progress_command",
]
