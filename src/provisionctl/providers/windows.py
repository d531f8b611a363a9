"""Windows backend: services registered through PowerShell scripts."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path, PureWindowsPath
from typing import ClassVar

from ..shell import powershell_quote, powershell_write_command
from .base import ServiceBackend, first_match

DEFAULT_INIT_DIR = Path("C:/provisionctl/init")


@dataclass(slots=True)
class WindowsServiceBackend(ServiceBackend):
    """Register a Windows service via a generated ``<name>.ps1`` script.

    The registration script is the "unit definition": enabling the service
    runs it, and it creates the service with an automatic start mode. Every
    control command is a PowerShell statement run through ``powershell_bin``.
    """

    powershell_bin: str = "powershell.exe"

    init_system: ClassVar[str] = "windows"
    default_init_directory: ClassVar[Path] = DEFAULT_INIT_DIR
    unit_suffix: ClassVar[str] = ".ps1"
    extra_suffix: ClassVar[str] = ".ps1"
    unit_template: ClassVar[str] = "windows/service.ps1.j2"
    extra_template: ClassVar[str] = "windows/extra.ps1.j2"
    running_marker: ClassVar[str] = "Running"

    def display_path(self, path: Path) -> str:
        """Return *path* with Windows separators, keeping its drive root."""
        return str(PureWindowsPath(str(path)))

    def command_line(self, args: Sequence[str]) -> str:
        """Return the bare PowerShell statement wrapped in *args*."""
        return args[-1]

    def _file_write_commands(
        self, path: Path, content: bytes, *, executable: bool = False
    ) -> list[str]:
        return [powershell_write_command(self.display_path(path), content.decode("utf-8"))]

    @property
    def _quoted_name(self) -> str:
        return powershell_quote(self.descriptor.name)

    def _powershell(self, statement: str) -> list[str]:
        return [self.powershell_bin, "-NonInteractive", "-Command", statement]

    def _list_args(self) -> list[str]:
        return self._powershell("(Get-Service).Name")

    def _enabled_query_args(self) -> list[str]:
        return self._powershell(
            f"(Get-CimInstance Win32_Service -Filter \"Name={self._quoted_name}\").StartMode"
        )

    def _running_query_args(self) -> list[str]:
        return self._powershell(f"(Get-Service -Name {self._quoted_name}).Status")

    def _is_enabled(self, output: str) -> bool:
        return first_match(r"^\s*Auto\s*$", output)

    def _enable_args(self) -> list[str]:
        return self._powershell(f"& {powershell_quote(self.display_path(self.unit_path))}")

    def _disable_args(self) -> list[str] | None:
        return self._powershell(f"sc.exe delete {self._quoted_name}")

    def _start_args(self) -> list[str]:
        return self._powershell(f"Start-Service -Name {self._quoted_name}")

    def _stop_args(self) -> list[str]:
        return self._powershell(f"Stop-Service -Name {self._quoted_name} -Force")


__all__ = ["WindowsServiceBackend"]
