"""Systemd backend: unit files under ``/etc/systemd/system`` driven by ``systemctl``."""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from ..errors import LiveSystemError
from .base import ServiceBackend, first_match

SYSTEM_UNIT_DIR = Path("/etc/systemd/system")
USER_UNIT_DIR = Path("~/.config/systemd/user")


@dataclass(slots=True)
class SystemdBackend(ServiceBackend):
    """Render and manage a ``<name>.service`` unit."""

    systemctl_bin: str = "systemctl"
    user_mode: bool = False

    init_system: ClassVar[str] = "systemd"
    default_init_directory: ClassVar[Path] = SYSTEM_UNIT_DIR
    unit_suffix: ClassVar[str] = ".service"
    unit_template: ClassVar[str] = "systemd/service.j2"
    running_marker: ClassVar[str] = "Active: active (running)"

    @property
    def unit_directory(self) -> Path:
        """Return the unit directory, honouring ``user_mode``."""
        if self.descriptor.init_directory is not None:
            return self.descriptor.init_directory
        if self.init_directory is not None:
            return self.init_directory
        if self.user_mode:
            return USER_UNIT_DIR.expanduser()
        return SYSTEM_UNIT_DIR

    def _systemctl(self, command: str, *args: str) -> list[str]:
        argv = [self.systemctl_bin]
        if self.user_mode:
            argv.append("--user")
        argv.append(command)
        argv.extend(args)
        return argv

    def _list_args(self) -> list[str]:
        return self._systemctl(
            "list-unit-files", "--all", "--type=service", "--no-legend", "--no-pager"
        )

    def _service_names(self, output: str) -> list[str]:
        names = []
        for line in output.splitlines():
            fields = line.split()
            if fields and fields[0].endswith(self.unit_suffix):
                names.append(fields[0].removesuffix(self.unit_suffix))
        return names

    def _enabled_query_args(self) -> list[str]:
        return self._systemctl("status", self.unit_name)

    def _running_query_args(self) -> list[str]:
        return self._systemctl("status", self.unit_name)

    def _is_enabled(self, output: str) -> bool:
        return first_match(re.escape(f"{self.unit_path}; enabled"), output)

    def _enable_args(self) -> list[str]:
        return self._systemctl("enable", self.unit_name)

    def _disable_args(self) -> list[str] | None:
        return self._systemctl("disable", self.unit_name)

    def _start_args(self) -> list[str]:
        return self._systemctl("start", self.unit_name)

    def _stop_args(self) -> list[str]:
        return self._systemctl("stop", self.unit_name)

    def _after_remove(self) -> None:
        try:
            self.runner.run(self._systemctl("daemon-reload"))
        except LiveSystemError as exc:
            # Hosts without systemd (containers, tests) have nothing to reload.
            if "not found" in str(exc).lower():
                return
            raise


__all__ = ["SystemdBackend"]
