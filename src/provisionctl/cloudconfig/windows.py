"""Bootstrap compiler for Windows machines.

Windows has no package manager, so every package operation is accepted and
ignored. Both renderings produce the same PowerShell document, consumed by
cloudbase-init through its ``#ps1_sysnative`` marker.
"""
from __future__ import annotations

from typing import ClassVar

from ..shell import powershell_write_command
from .base import BootstrapCompiler
from .packaging import PackagePreference, PackageSource, ProxySettings

WINDOWS_HEADER = "#ps1_sysnative\r\n"
WINDOWS_NEWLINE = "\r\n"


class WindowsCompiler(BootstrapCompiler):
    """Render boot and run commands as a PowerShell script."""

    family: ClassVar[str] = "windows"

    def __init__(self, backend: None = None, *, series: str | None = None) -> None:
        """Create a compiler; Windows takes no package backend."""
        super().__init__(None, series=series)

    def set_package_proxy(self, url: str) -> None:
        """No-op on Windows."""

    def set_package_mirror(self, url: str) -> None:
        """No-op on Windows."""

    def set_proxy_settings(self, settings: ProxySettings) -> None:
        """No-op on Windows."""

    def add_package_source(self, source: PackageSource) -> None:
        """No-op on Windows."""

    def add_package_preference(self, preference: PackagePreference) -> None:
        """No-op on Windows."""

    def add_package(self, package: str) -> None:
        """No-op on Windows."""

    def enable_system_update(self, enabled: bool = True) -> None:
        """No-op on Windows."""

    def enable_system_upgrade(self, enabled: bool = True) -> None:
        """No-op on Windows."""

    def render_structured(self) -> bytes:
        """Render the PowerShell user-data document."""
        document = self.document
        statements = [
            *(powershell_write_command(item.path, item.content) for item in document.files),
            *document.boot_commands,
            *document.run_commands,
        ]
        script = WINDOWS_HEADER + "".join(WINDOWS_NEWLINE + item for item in statements)
        return script.encode("utf-8")

    def render_script(self) -> str:
        """Return :meth:`render_structured` as text; there is no separate script form."""
        return self.render_structured().decode("utf-8")


__all__ = ["WINDOWS_HEADER", "WindowsCompiler"]
