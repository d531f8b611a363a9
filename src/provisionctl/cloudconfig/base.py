"""Shared package-management intent for the bootstrap compilers.

A compiler owns a :class:`ConfigDocument` and a package backend. Mutators
record intent in the document's attribute bag under family-specific keys;
the two terminal operations translate that intent into a derived copy of the
document and render it, leaving the compiler reusable.
"""
from __future__ import annotations

from typing import ClassVar

from ..errors import ConfigConflict
from .document import ConfigDocument
from .packaging import PackageBackend, PackagePreference, PackageSource, ProxySettings

PACKAGES_KEY = "packages"
UPDATE_KEY = "package_update"
UPGRADE_KEY = "package_upgrade"


class BootstrapCompiler:
    """Accumulate package and command directives for one OS family."""

    family: ClassVar[str] = ""
    proxy_key: ClassVar[str] = "package_proxy"
    mirror_key: ClassVar[str] = "package_mirror"
    sources_key: ClassVar[str] = "package_sources"
    preferences_key: ClassVar[str] = "package_preferences"
    default_packages: ClassVar[tuple[str, ...]] = ()

    def __init__(self, backend: PackageBackend | None, *, series: str | None = None) -> None:
        """Create an empty compiler bound to *backend*."""
        self.backend = backend
        self.series = series
        self.document = ConfigDocument()

    # Proxy and mirror ---------------------------------------------------
    def set_package_proxy(self, url: str) -> None:
        """Route package downloads through the proxy at *url*."""
        self.document.set_attribute(self.proxy_key, url)

    def unset_package_proxy(self) -> None:
        """Forget any package proxy."""
        self.document.unset_attribute(self.proxy_key)

    @property
    def package_proxy(self) -> str:
        """Return the configured package proxy, or an empty string."""
        value = self.document.attribute(self.proxy_key, "")
        return value if isinstance(value, str) else ""

    def set_package_mirror(self, url: str) -> None:
        """Switch the package mirror to *url*."""
        self.document.set_attribute(self.mirror_key, url)

    def unset_package_mirror(self) -> None:
        """Forget any package mirror."""
        self.document.unset_attribute(self.mirror_key)

    @property
    def package_mirror(self) -> str:
        """Return the configured package mirror, or an empty string."""
        value = self.document.attribute(self.mirror_key, "")
        return value if isinstance(value, str) else ""

    def set_proxy_settings(self, settings: ProxySettings) -> None:
        """Write the package manager's proxy configuration file at boot."""
        if settings.is_empty() or self.backend is None:
            return
        command = self._proxy_settings_command(settings)
        if command:
            self.document.add_boot_command(command)

    # Sources, preferences and packages -----------------------------------
    def add_package_source(self, source: PackageSource) -> None:
        """Register an additional package repository."""
        self.document.set_attribute(self.sources_key, [*self.package_sources, source])

    @property
    def package_sources(self) -> list[PackageSource]:
        """Return the registered package repositories."""
        value = self.document.attribute(self.sources_key, [])
        return list(value) if isinstance(value, list) else []

    def add_package_preference(self, preference: PackagePreference) -> None:
        """Register a pin/priority file."""
        self.document.set_attribute(
            self.preferences_key, [*self.package_preferences, preference]
        )

    @property
    def package_preferences(self) -> list[PackagePreference]:
        """Return the registered pin/priority files."""
        value = self.document.attribute(self.preferences_key, [])
        return list(value) if isinstance(value, list) else []

    def add_cloud_archive_cloud_tools(self) -> None:
        """Register the cloud-tools archive for the series with its pin file."""
        if self.backend is None:
            return
        archive = self.backend.cloud_archive_source()
        if archive is None:
            return
        source, preference = archive
        self.add_package_source(source)
        self.add_package_preference(preference)

    def add_package(self, package: str) -> None:
        """Request installation of *package*."""
        self.document.set_attribute(PACKAGES_KEY, [*self.packages, package])

    @property
    def packages(self) -> list[str]:
        """Return the requested package tokens, in order."""
        value = self.document.attribute(PACKAGES_KEY, [])
        return list(value) if isinstance(value, list) else []

    def add_default_packages(self) -> None:
        """Request the family's base package set.

        Packages served from the cloud archive are expanded into the token
        sequence the backend requires for them.
        """
        if self.backend is None:
            return
        for package in self.default_packages:
            if self.backend.is_cloud_archive_package(package):
                for token in self.backend.apply_cloud_archive_target(package):
                    self.add_package(token)
            else:
                self.add_package(package)

    # Updates -----------------------------------------------------------
    def enable_system_update(self, enabled: bool = True) -> None:
        """Explicitly enable or disable the package index refresh."""
        self.document.set_attribute(UPDATE_KEY, bool(enabled))

    def enable_system_upgrade(self, enabled: bool = True) -> None:
        """Enable or disable upgrading installed packages."""
        self.document.set_attribute(UPGRADE_KEY, bool(enabled))

    @property
    def system_update(self) -> bool:
        """Return whether the index is refreshed; defaults on when sources exist."""
        value = self.document.attribute(UPDATE_KEY)
        if value is None:
            return bool(self.package_sources)
        return bool(value)

    @property
    def system_upgrade(self) -> bool:
        """Return whether installed packages are upgraded."""
        return bool(self.document.attribute(UPGRADE_KEY, False))

    # Commands ------------------------------------------------------------
    def add_boot_command(self, command: str) -> None:
        """Append a boot command to the document."""
        self.document.add_boot_command(command)

    def add_run_command(self, command: str) -> None:
        """Append a run command to the document."""
        self.document.add_run_command(command)

    def add_file(self, path: str, content: str, mode: int = 0o644) -> None:
        """Append a file write to the document."""
        self.document.add_file(path, content, mode)

    @property
    def warnings(self) -> list[str]:
        """Return non-fatal notices about the current configuration."""
        return []

    # Rendering -----------------------------------------------------------
    def validate(self) -> None:
        """Raise :class:`ConfigConflict` for contradictory package settings."""
        explicit = self.document.attribute(UPDATE_KEY)
        if self.package_sources and explicit is False:
            raise ConfigConflict(
                "Package sources were specified, but system updates have been disabled."
            )

    def package_commands(self) -> list[str]:
        """Return the script commands applying the package configuration."""
        return []

    def render_structured(self) -> bytes:
        """Render the structured first-boot document."""
        self.validate()
        return self._structured_view().render_structured()

    def render_script(self) -> str:
        """Render the equivalent linear script."""
        self.validate()
        return self._script_view().render_script(self.package_commands())

    def _structured_view(self) -> ConfigDocument:
        view = self.document.copy()
        view.unset_attribute(self.preferences_key)
        sources = self.package_sources
        if sources:
            view.set_attribute(self.sources_key, [source.to_dict() for source in sources])
            view.set_attribute(UPDATE_KEY, self.system_update)
        return view

    def _script_view(self) -> ConfigDocument:
        return self.document.copy()

    def _proxy_settings_command(self, settings: ProxySettings) -> str:
        return ""


__all__ = ["BootstrapCompiler", "PACKAGES_KEY", "UPDATE_KEY", "UPGRADE_KEY"]
