"""Bootstrap compiler for CentOS and RHEL machines (yum).

cloud-init on these releases has no first-class proxy, mirror or repository
keys, so the structured rendering expresses them as boot commands instead.
"""
from __future__ import annotations

from typing import ClassVar

from ..shell import shquote
from .base import BootstrapCompiler
from .document import ConfigDocument, progress_command
from .packaging import PackagePreference, ProxySettings, YumBackend

CENTOS_BASE_REPO = "/etc/yum.repos.d/CentOS-Base.repo"
MIRROR_NOT_SUPPORTED = "Changing the package mirror is not yet supported on CentOS"


def package_proxy_command(url: str, config_path: str = "/etc/yum.conf") -> str:
    """Return the command appending the proxy *url* to yum's global config."""
    return f"/bin/echo {shquote(f'proxy={url}')} >> {config_path}"


def package_mirror_command(url: str) -> str:
    """Return the command pointing the base repository at *url*."""
    return (
        "sed -r -i -e 's|^mirrorlist|#mirrorlist|g' "
        f"-e 's|#baseurl=http://mirror.centos.org|baseurl={url}|g' {CENTOS_BASE_REPO}"
    )


class CentOSCompiler(BootstrapCompiler):
    """Compile yum-based package intent into cloud-config or a bash script."""

    family: ClassVar[str] = "centos"
    default_packages: ClassVar[tuple[str, ...]] = (
        "curl",
        "bridge-utils",
        "rsyslog-gnutls",
        "cloud-utils",
    )

    backend: YumBackend

    def __init__(self, backend: YumBackend | None = None, *, series: str | None = None) -> None:
        """Create a compiler using a yum backend."""
        super().__init__(backend or YumBackend(series=series), series=series)

    def add_package_preference(self, preference: PackagePreference) -> None:
        """Accept and ignore *preference*; yum priorities are not modelled."""

    @property
    def package_preferences(self) -> list[PackagePreference]:
        """Return no preferences."""
        return []

    @property
    def warnings(self) -> list[str]:
        """Return the mirror notice when a mirror is configured."""
        return [MIRROR_NOT_SUPPORTED] if self.package_mirror else []

    def package_commands(self) -> list[str]:
        """Return the yum command sequence for the script rendering."""
        commands: list[str] = []

        mirror = self.package_mirror
        if mirror:
            commands.append(progress_command(MIRROR_NOT_SUPPORTED))
            commands.append(package_mirror_command(mirror))

        # Repository keys are offered by the repositories themselves.
        for source in self.package_sources:
            commands.append(progress_command(f"Adding yum repository: {source.url}"))
            commands.append(self.backend.add_repository_command(source.url))

        if self.system_update:
            commands.append(progress_command("Running yum update"))
            commands.append(self.backend.update_command())
        if self.system_upgrade:
            commands.append(progress_command("Running yum upgrade"))
            commands.append(self.backend.upgrade_command())

        for package in self.packages:
            commands.append(progress_command(f"Installing package: {package}"))
            commands.append(self.backend.install_command(package))
        return commands

    def _structured_view(self) -> ConfigDocument:
        view = super()._structured_view()
        proxy = self.package_proxy
        if proxy:
            view.add_boot_command(package_proxy_command(proxy, self.backend.proxy_config_path))
            view.unset_attribute(self.proxy_key)
        mirror = self.package_mirror
        if mirror:
            view.add_boot_command(package_mirror_command(mirror))
            view.unset_attribute(self.mirror_key)
        for source in self.package_sources:
            view.add_boot_command(self.backend.add_repository_command(source.url))
        view.unset_attribute(self.sources_key)
        return view

    def _script_view(self) -> ConfigDocument:
        view = super()._script_view()
        proxy = self.package_proxy
        if proxy:
            view.add_boot_command(package_proxy_command(proxy, self.backend.proxy_config_path))
        return view

    def _proxy_settings_command(self, settings: ProxySettings) -> str:
        contents = self.backend.proxy_config_contents(settings)
        if not contents:
            return ""
        return f"/bin/echo {shquote(contents)} >> {self.backend.proxy_config_path}"


__all__ = ["CentOSCompiler", "package_mirror_command", "package_proxy_command"]
