"""Configuration loader for provisionctl.

Values are merged from, in increasing precedence:

1. Built-in defaults.
2. ``/etc/provisionctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``PROVISIONCTL_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export PROVISIONCTL_OS_FAMILY=centos
    export PROVISIONCTL_PACKAGES__UPGRADE=true

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The result is exposed as immutable ``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .cloudconfig.packaging import PackagePreference, PackageSource
from .errors import ConfigError
from .provisioning import FAMILY_ALIASES, FORMATS, PackageOptions
from .providers import BACKENDS

ENV_PREFIX = "PROVISIONCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR, f"{ENV_PREFIX}PROGRESS_FD"}


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration settings."""

    unit_dir: Path | None = None
    systemctl_bin: str = "systemctl"
    user_mode: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "unit_dir": str(self.unit_dir) if self.unit_dir is not None else None,
            "systemctl_bin": self.systemctl_bin,
            "user_mode": self.user_mode,
        }


@dataclass(frozen=True)
class UpstartConfig:
    """Upstart integration settings."""

    init_dir: Path | None = None
    initctl_bin: str = "initctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "init_dir": str(self.init_dir) if self.init_dir is not None else None,
            "initctl_bin": self.initctl_bin,
        }


@dataclass(frozen=True)
class WindowsConfig:
    """Windows service manager settings."""

    init_dir: Path | None = None
    powershell_bin: str = "powershell.exe"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "init_dir": str(self.init_dir) if self.init_dir is not None else None,
            "powershell_bin": self.powershell_bin,
        }


@dataclass(frozen=True)
class PackagesConfig:
    """Package-manager intent for rendered artifacts."""

    proxy: str = ""
    mirror: str = ""
    update: bool | None = None
    upgrade: bool = False
    defaults: bool = False
    cloud_tools: bool = False
    sources: tuple[PackageSource, ...] = ()
    preferences: tuple[PackagePreference, ...] = ()
    install: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "proxy": self.proxy,
            "mirror": self.mirror,
            "update": self.update,
            "upgrade": self.upgrade,
            "defaults": self.defaults,
            "cloud_tools": self.cloud_tools,
            "sources": [{"url": source.url, "key": source.key} for source in self.sources],
            "preferences": [
                {"path": pref.path, "content": pref.content} for pref in self.preferences
            ],
            "install": list(self.install),
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for provisionctl."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path
    os_family: str
    series: str | None
    init_system: str | None
    output_format: str
    systemd: SystemdConfig
    upstart: UpstartConfig
    windows: WindowsConfig
    packages: PackagesConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "os_family": self.os_family,
            "series": self.series,
            "init_system": self.init_system,
            "output_format": self.output_format,
            "systemd": self.systemd.to_dict(),
            "upstart": self.upstart.to_dict(),
            "windows": self.windows.to_dict(),
            "packages": self.packages.to_dict(),
        }

    def package_options(self) -> PackageOptions:
        """Return the ``packages`` section as :class:`PackageOptions`."""
        packages = self.packages
        return PackageOptions(
            proxy=packages.proxy,
            mirror=packages.mirror,
            sources=packages.sources,
            preferences=packages.preferences,
            packages=packages.install,
            update=packages.update,
            upgrade=packages.upgrade,
            default_packages=packages.defaults,
            cloud_tools=packages.cloud_tools,
        )

    def init_directories(self) -> dict[str, Path]:
        """Return configured unit directories keyed by init system."""
        candidates = {
            "systemd": self.systemd.unit_dir,
            "upstart": self.upstart.init_dir,
            "windows": self.windows.init_dir,
        }
        return {name: path for name, path in candidates.items() if path is not None}

    def backend_options(self) -> dict[str, dict[str, object]]:
        """Return per-init-system backend settings."""
        return {
            "systemd": {
                "systemctl_bin": self.systemd.systemctl_bin,
                "user_mode": self.systemd.user_mode,
            },
            "upstart": {"initctl_bin": self.upstart.initctl_bin},
            "windows": {"powershell_bin": self.windows.powershell_bin},
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/provisionctl/config.yml",
    "logs_dir": "/var/log/provisionctl",
    "templates_dir": "/etc/provisionctl/templates",
    "os_family": "ubuntu",
    "series": None,
    "init_system": None,
    "output_format": "structured",
    "systemd": {
        "unit_dir": None,
        "systemctl_bin": "systemctl",
        "user_mode": False,
    },
    "upstart": {
        "init_dir": None,
        "initctl_bin": "initctl",
    },
    "windows": {
        "init_dir": None,
        "powershell_bin": "powershell.exe",
    },
    "packages": {
        "proxy": "",
        "mirror": "",
        "update": None,
        "upgrade": False,
        "defaults": False,
        "cloud_tools": False,
        "sources": [],
        "preferences": [],
        "install": [],
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
SECTION_KEYS: dict[str, set[str]] = {
    name: set(cast(Mapping[str, object], DEFAULTS[name]).keys())
    for name in ("systemd", "upstart", "windows", "packages")
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = str(merged["config_file"])
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    os_family = raw.get("os_family")
    if str(os_family).lower() not in FAMILY_ALIASES:
        allowed_families = ", ".join(sorted(FAMILY_ALIASES))
        raise ConfigError(
            f"Unsupported os_family '{os_family}'. Allowed: {allowed_families}."
        )

    init_system = raw.get("init_system")
    if init_system is not None and str(init_system) not in BACKENDS:
        allowed_inits = ", ".join(sorted(BACKENDS))
        raise ConfigError(f"Unsupported init_system '{init_system}'. Allowed: {allowed_inits}.")

    output_format = raw.get("output_format")
    if str(output_format) not in FORMATS:
        raise ConfigError(
            f"Unsupported output_format '{output_format}'. Allowed: {', '.join(FORMATS)}."
        )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        unit_dir=_optional_path(systemd_mapping.get("unit_dir")),
        systemctl_bin=str(systemd_mapping.get("systemctl_bin") or "systemctl"),
        user_mode=_expect_bool(systemd_mapping.get("user_mode"), "systemd.user_mode"),
    )

    upstart_mapping = _as_dict(raw.get("upstart"), "upstart")
    upstart = UpstartConfig(
        init_dir=_optional_path(upstart_mapping.get("init_dir")),
        initctl_bin=str(upstart_mapping.get("initctl_bin") or "initctl"),
    )

    windows_mapping = _as_dict(raw.get("windows"), "windows")
    windows = WindowsConfig(
        init_dir=_optional_path(windows_mapping.get("init_dir"), expand=False),
        powershell_bin=str(windows_mapping.get("powershell_bin") or "powershell.exe"),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        os_family=str(raw.get("os_family")).lower(),
        series=_optional_str(raw.get("series")),
        init_system=_optional_str(raw.get("init_system")),
        output_format=str(raw.get("output_format")),
        systemd=systemd,
        upstart=upstart,
        windows=windows,
        packages=_build_packages(_as_dict(raw.get("packages"), "packages")),
    )


def _build_packages(mapping: Mapping[str, object]) -> PackagesConfig:
    update_raw = mapping.get("update")
    update = None if update_raw is None else _expect_bool(update_raw, "packages.update")

    sources: list[PackageSource] = []
    for index, entry in enumerate(_as_sequence(mapping.get("sources") or [], "packages.sources")):
        label = f"packages.sources[{index}]"
        if isinstance(entry, str):
            sources.append(PackageSource(url=entry))
            continue
        entry_map = _as_dict(entry, label)
        unknown = set(entry_map.keys()) - {"url", "key"}
        if unknown:
            raise ConfigError(f"Unknown keys for {label}: {', '.join(sorted(unknown))}.")
        url = entry_map.get("url")
        if not isinstance(url, str) or not url.strip():
            raise ConfigError(f"{label}.url must be a non-empty string.")
        sources.append(PackageSource(url=url, key=str(entry_map.get("key") or "")))

    preferences: list[PackagePreference] = []
    raw_preferences = _as_sequence(mapping.get("preferences") or [], "packages.preferences")
    for index, entry in enumerate(raw_preferences):
        label = f"packages.preferences[{index}]"
        entry_map = _as_dict(entry, label)
        path = entry_map.get("path")
        content = entry_map.get("content")
        if not isinstance(path, str) or not path.strip():
            raise ConfigError(f"{label}.path must be a non-empty string.")
        if not isinstance(content, str):
            raise ConfigError(f"{label}.content must be a string.")
        preferences.append(PackagePreference(path=path, content=content))

    install = _as_sequence(mapping.get("install") or [], "packages.install")

    return PackagesConfig(
        proxy=str(mapping.get("proxy") or ""),
        mirror=str(mapping.get("mirror") or ""),
        update=update,
        upgrade=_expect_bool(mapping.get("upgrade"), "packages.upgrade"),
        defaults=_expect_bool(mapping.get("defaults"), "packages.defaults"),
        cloud_tools=_expect_bool(mapping.get("cloud_tools"), "packages.cloud_tools"),
        sources=tuple(sources),
        preferences=tuple(preferences),
        install=tuple(str(item) for item in install),
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _optional_path(value: object, *, expand: bool = True) -> Path | None:
    if value is None or value == "":
        return None
    if not expand:
        return Path(str(value))
    return _to_path(value)


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _expect_bool(value: object | None, label: str, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "PackagesConfig",
    "SystemdConfig",
    "UpstartConfig",
    "WindowsConfig",
    "load_config",
]
