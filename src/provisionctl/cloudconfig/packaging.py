"""Package-manager command generators.

A package backend knows the command syntax of one package manager and
nothing about documents or rendering. Compilers combine a backend with a
:class:`~provisionctl.cloudconfig.document.ConfigDocument`.
"""
from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Protocol

from ..errors import ValidationError

APT_OPTIONS = (
    "--option=Dpkg::Options::=--force-confold "
    "--option=Dpkg::options::=--force-unsafe-io "
    "--assume-yes --quiet"
)
APT_GET = f"apt-get {APT_OPTIONS}"
YUM = "yum --assumeyes --debuglevel=1"

# Series whose first-boot agent needs cloud-tools packages requested through
# an explicit ``--target-release`` triple.
CLOUD_ARCHIVE_SERIES = frozenset({"precise"})
CLOUD_ARCHIVE_PACKAGES = frozenset(
    {
        "cloud-image-utils",
        "cloud-utils",
        "libvirt-bin",
        "lxc",
        "mongodb-server",
        "qemu-kvm",
    }
)
CLOUD_ARCHIVE_URL = "http://ubuntu-cloud.archive.canonical.com/ubuntu"
CLOUD_TOOLS_PREFERENCES_PATH = "/etc/apt/preferences.d/50-cloud-tools"


@dataclass(frozen=True, slots=True)
class PackageSource:
    """A repository to register before installing packages."""

    url: str
    key: str = ""

    def to_dict(self) -> dict[str, str]:
        """Return the first-boot document representation."""
        payload = {"source": self.url}
        if self.key:
            payload["key"] = self.key
        return payload


@dataclass(frozen=True, slots=True)
class PackagePreference:
    """A pin/priority file written to *path* before installs run."""

    path: str
    content: str


@dataclass(frozen=True, slots=True)
class ProxySettings:
    """Per-protocol proxy settings for the package manager."""

    http: str = ""
    https: str = ""
    ftp: str = ""
    no_proxy: str = ""

    def is_empty(self) -> bool:
        """Return ``True`` when no proxy is configured."""
        return not (self.http or self.https or self.ftp or self.no_proxy)


class PackageBackend(Protocol):
    """Command syntax of a single package manager."""

    name: str
    proxy_config_path: str

    def install_command(self, package: str) -> str: ...

    def update_command(self) -> str: ...

    def upgrade_command(self) -> str: ...

    def add_repository_command(self, url: str) -> str: ...

    def proxy_config_contents(self, settings: ProxySettings) -> str: ...

    def render_preferences(self, preference: PackagePreference) -> str: ...

    def is_cloud_archive_package(self, package: str) -> bool: ...

    def apply_cloud_archive_target(self, package: str) -> list[str]: ...

    def cloud_archive_source(self) -> tuple[PackageSource, PackagePreference] | None: ...


@dataclass(slots=True)
class AptBackend:
    """apt-get command syntax for Debian and Ubuntu."""

    series: str | None = None
    name: str = "apt"
    proxy_config_path: str = "/etc/apt/apt.conf.d/95-provisionctl-proxy"

    def install_command(self, package: str) -> str:
        """Return the command installing *package*."""
        return f"{APT_GET} install {package}"

    def update_command(self) -> str:
        """Return the command refreshing the package index."""
        return f"{APT_GET} update"

    def upgrade_command(self) -> str:
        """Return the command upgrading installed packages."""
        return f"{APT_GET} upgrade"

    def add_repository_command(self, url: str) -> str:
        """Return the command registering the repository at *url*."""
        return f"add-apt-repository --yes {shlex.quote(url)}"

    def proxy_config_contents(self, settings: ProxySettings) -> str:
        """Return an apt.conf fragment for *settings*."""
        lines = []
        for protocol in ("http", "https", "ftp"):
            value = getattr(settings, protocol)
            if value:
                lines.append(f'Acquire::{protocol}::Proxy "{value}";')
        return "\n".join(lines)

    def render_preferences(self, preference: PackagePreference) -> str:
        """Return the pin file content for *preference*."""
        content = preference.content
        return content if content.endswith("\n") else content + "\n"

    def is_cloud_archive_package(self, package: str) -> bool:
        """Return ``True`` when *package* must come from the cloud-tools pocket."""
        return self.series in CLOUD_ARCHIVE_SERIES and package in CLOUD_ARCHIVE_PACKAGES

    def apply_cloud_archive_target(self, package: str) -> list[str]:
        """Return the package tokens requesting *package* from cloud-tools.

        Old first-boot agents split ``--target-release X Y`` incorrectly unless
        the flag, the release and the package arrive as separate entries.
        """
        if not self.is_cloud_archive_package(package):
            return [package]
        return ["--target-release", f"{self.series}-updates/cloud-tools", package]

    def cloud_archive_source(self) -> tuple[PackageSource, PackagePreference] | None:
        """Return the cloud-tools pocket for the series and a low-priority pin.

        The pin keeps cloud-tools packages from replacing the series' own
        packages unless they are requested explicitly.
        """
        if not self.series:
            raise ValidationError("A series is required to add the cloud-tools archive.")
        pocket = f"{self.series}-updates/cloud-tools"
        source = PackageSource(url=f"deb {CLOUD_ARCHIVE_URL} {pocket} main")
        preference = PackagePreference(
            path=CLOUD_TOOLS_PREFERENCES_PATH,
            content=(
                "Explanation: Pin with lower priority, not to interfere with charms.\n"
                "Package: *\n"
                f"Pin: release n={pocket}\n"
                "Pin-Priority: 400\n"
            ),
        )
        return source, preference


@dataclass(slots=True)
class YumBackend:
    """yum command syntax for CentOS and RHEL."""

    series: str | None = None
    name: str = "yum"
    proxy_config_path: str = "/etc/yum.conf"

    def install_command(self, package: str) -> str:
        """Return the command installing *package*."""
        return f"{YUM} install {package}"

    def update_command(self) -> str:
        """Return the command refreshing the package metadata."""
        return f"{YUM} clean expire-cache"

    def upgrade_command(self) -> str:
        """Return the command upgrading installed packages."""
        return f"{YUM} update"

    def add_repository_command(self, url: str) -> str:
        """Return the command registering the repository at *url*."""
        return f"yum-config-manager --add-repo {shlex.quote(url)}"

    def proxy_config_contents(self, settings: ProxySettings) -> str:
        """Return the ``proxy=`` line for yum.conf (yum takes a single proxy)."""
        proxy = settings.http or settings.https or settings.ftp
        return f"proxy={proxy}" if proxy else ""

    def render_preferences(self, preference: PackagePreference) -> str:
        """yum has no pinning mechanism; preferences render to nothing."""
        return ""

    def is_cloud_archive_package(self, package: str) -> bool:
        """CentOS has no cloud archive."""
        return False

    def apply_cloud_archive_target(self, package: str) -> list[str]:
        """Return *package* unchanged."""
        return [package]

    def cloud_archive_source(self) -> tuple[PackageSource, PackagePreference] | None:
        """CentOS has no cloud archive."""
        return None


__all__ = [
    "APT_GET",
    "AptBackend",
    "PackageBackend",
    "PackagePreference",
    "PackageSource",
    "ProxySettings",
    "YUM",
    "YumBackend",
]
