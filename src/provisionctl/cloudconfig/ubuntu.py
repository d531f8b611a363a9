"""Bootstrap compiler for Debian and Ubuntu machines (apt)."""
from __future__ import annotations

from collections.abc import Sequence
from typing import ClassVar

from ..errors import InvalidPackageSpec
from ..shell import shquote
from .base import BootstrapCompiler
from .document import ConfigDocument, FileWrite, progress_command
from .packaging import AptBackend, ProxySettings

APT_SOURCES_FILE = "/etc/apt/sources.list"
APT_LISTS_DIRECTORY = "/var/lib/apt/lists"

# Turns a mirror URL into the prefix apt uses for its cached index files.
APT_SOURCE_LIST_PREFIX = "sed 's,.*://,,' | sed 's,/$,,' | tr / _"
TARGET_RELEASE = "--target-release"
REPOSITORY_TOOL_PACKAGE = "software-properties-common"


def extract_apt_source_command(sources_file: str) -> str:
    """Return a command printing the first "main" mirror for the running release."""
    return 'awk "/^deb .* $(lsb_release -sc) .*main.*\\$/{print \\$2;exit}" ' + sources_file


def rename_apt_list_files_commands(
    new_mirror: str,
    old_mirror: str,
    *,
    lists_directory: str = APT_LISTS_DIRECTORY,
) -> list[str]:
    """Return commands renaming cached index files after a mirror switch.

    Files named after *old_mirror* are moved to the equivalent name for
    *new_mirror*. Nothing happens when the old mirror is empty, when both
    mirrors map to the same prefix, or when no cached file matches.
    """
    rename = (
        'if [ -n "$old_prefix" ] && [ "$old_prefix" != "$new_prefix" ]; then\n'
        '    for old in "$lists_dir/$old_prefix"_*; do\n'
        '        [ -e "$old" ] || continue\n'
        '        mv "$old" "$lists_dir/$new_prefix${old#"$lists_dir/$old_prefix"}"\n'
        "    done\n"
        "fi"
    )
    return [
        f"lists_dir={shquote(lists_directory)}",
        f"old_prefix=$(echo {old_mirror} | {APT_SOURCE_LIST_PREFIX})",
        f"new_prefix=$(echo {new_mirror} | {APT_SOURCE_LIST_PREFIX})",
        rename,
    ]


def apt_mirror_commands(
    mirror: str,
    *,
    sources_file: str = APT_SOURCES_FILE,
    lists_directory: str = APT_LISTS_DIRECTORY,
) -> list[str]:
    """Return commands pointing *sources_file* at *mirror* and renaming the cache.

    When no main mirror is configured for the running release (deb822-only
    hosts), the switch does nothing.
    """
    sources = shquote(sources_file)
    return [
        f"old_mirror=$({extract_apt_source_command(sources)})",
        f"new_mirror={shquote(mirror)}",
        f'[ -z "$old_mirror" ] || sed -i s,$old_mirror,$new_mirror, {sources}',
        *rename_apt_list_files_commands(
            '"$new_mirror"', '"$old_mirror"', lists_directory=lists_directory
        ),
    ]


def coalesce_packages(packages: Sequence[str]) -> list[str]:
    """Join legacy ``--target-release <release> <package>`` triples.

    Old first-boot agents need the triple as three separate entries; a
    script needs it as one install argument.
    """
    result: list[str] = []
    index = 0
    while index < len(packages):
        package = packages[index]
        if package == TARGET_RELEASE:
            if index + 2 >= len(packages):
                remaining = " ".join(packages[index:])
                raise InvalidPackageSpec(
                    f"invalid package {remaining!r}: expected {TARGET_RELEASE} <release> <package>"
                )
            package = " ".join(packages[index : index + 3])
            index += 3
        else:
            index += 1
        result.append(package)
    return result


class UbuntuCompiler(BootstrapCompiler):
    """Compile apt-based package intent into cloud-config or a bash script."""

    family: ClassVar[str] = "ubuntu"
    proxy_key: ClassVar[str] = "apt_proxy"
    mirror_key: ClassVar[str] = "apt_mirror"
    sources_key: ClassVar[str] = "apt_sources"
    preferences_key: ClassVar[str] = "apt_preferences"
    default_packages: ClassVar[tuple[str, ...]] = (
        "curl",
        "cpu-checker",
        "bridge-utils",
        "rsyslog-gnutls",
        "cloud-utils",
        "cloud-image-utils",
    )

    backend: AptBackend

    def __init__(self, backend: AptBackend | None = None, *, series: str | None = None) -> None:
        """Create a compiler using an apt backend for *series*."""
        super().__init__(backend or AptBackend(series=series), series=series)

    def package_commands(self) -> list[str]:
        """Return the apt command sequence for the script rendering."""
        commands: list[str] = []

        mirror = self.package_mirror
        if mirror:
            commands.append(progress_command(f"Changing apt mirror to {mirror}"))
            commands.extend(apt_mirror_commands(mirror))

        sources = self.package_sources
        if sources:
            commands.append(progress_command("Installing add-apt-repository"))
            commands.append(self.backend.install_command(REPOSITORY_TOOL_PACKAGE))
        for source in sources:
            # ppa: aliases fetch their own keys from Launchpad.
            if source.key and not source.url.startswith("ppa:"):
                commands.append(f"printf '%s\\n' {shquote(source.key)} | apt-key add -")
            commands.append(progress_command(f"Adding apt repository: {source.url}"))
            commands.append(self.backend.add_repository_command(source.url))

        if self.system_update:
            commands.append(progress_command("Running apt-get update"))
            commands.append(self.backend.update_command())
        if self.system_upgrade:
            commands.append(progress_command("Running apt-get upgrade"))
            commands.append(self.backend.upgrade_command())

        for package in coalesce_packages(self.packages):
            commands.append(progress_command(f"Installing package: {package}"))
            commands.append(self.backend.install_command(package))

        if commands:
            commands.insert(0, "export DEBIAN_FRONTEND=noninteractive")
        return commands

    def _structured_view(self) -> ConfigDocument:
        view = super()._structured_view()
        view.files = [*self._preference_files(), *view.files]
        return view

    def _script_view(self) -> ConfigDocument:
        view = super()._script_view()
        view.files = [*self._preference_files(), *view.files]
        proxy = self.package_proxy
        if proxy:
            view.add_boot_command(
                self._proxy_settings_command(ProxySettings(http=proxy, https=proxy))
            )
        return view

    def _preference_files(self) -> list[FileWrite]:
        return [
            FileWrite(path=pref.path, content=self.backend.render_preferences(pref), mode=0o644)
            for pref in self.package_preferences
        ]

    def _proxy_settings_command(self, settings: ProxySettings) -> str:
        contents = self.backend.proxy_config_contents(settings)
        if not contents:
            return ""
        return f"printf '%s\\n' {shquote(contents)} > {self.backend.proxy_config_path}"


__all__ = [
    "APT_LISTS_DIRECTORY",
    "UbuntuCompiler",
    "apt_mirror_commands",
    "coalesce_packages",
    "rename_apt_list_files_commands",
]
