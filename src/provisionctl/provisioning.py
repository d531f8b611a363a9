"""Compose a first-boot artifact from package intent and a service descriptor.

The OS family is selected once, up front, as an :class:`OSFamily` value that
knows how to build both the bootstrap compiler and the service backend for
that family. Nothing here touches the live system: service backends are only
asked for their install commands.
"""
from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import AbstractContextManager, contextmanager, nullcontext
from dataclasses import dataclass, field
from pathlib import Path

from .cloudconfig import BootstrapCompiler, new_compiler
from .cloudconfig.packaging import PackagePreference, PackageSource, ProxySettings
from .errors import ProvisionError, ProvisioningError, ValidationError
from .logging import OperationScope, StructuredLogger
from .providers import ServiceBackend, new_backend
from .service import ServiceDescriptor
from .templates import TemplateEngine

FORMATS = ("structured", "script")

FAMILY_ALIASES = {
    "ubuntu": "ubuntu",
    "debian": "ubuntu",
    "centos": "centos",
    "rhel": "centos",
    "windows": "windows",
}
DEFAULT_INIT_SYSTEMS = {"ubuntu": "systemd", "centos": "systemd", "windows": "windows"}
# Ubuntu releases that predate the switch to systemd.
UPSTART_SERIES = frozenset({"precise", "trusty"})


@dataclass(frozen=True, slots=True)
class PackageOptions:
    """Package-manager intent applied to a bootstrap compiler."""

    proxy: str = ""
    proxy_settings: ProxySettings | None = None
    mirror: str = ""
    sources: tuple[PackageSource, ...] = ()
    preferences: tuple[PackagePreference, ...] = ()
    packages: tuple[str, ...] = ()
    update: bool | None = None
    upgrade: bool = False
    default_packages: bool = False
    cloud_tools: bool = False


@dataclass(frozen=True, slots=True)
class OSFamily:
    """A resolved target platform: compiler family, release and init system."""

    name: str
    init_system: str
    series: str | None = None

    def new_compiler(self) -> BootstrapCompiler:
        """Return an empty bootstrap compiler for this family."""
        return new_compiler(self.name, series=self.series)

    def new_backend(
        self,
        descriptor: ServiceDescriptor,
        *,
        templates: TemplateEngine | None = None,
        init_directory: Path | None = None,
        options: Mapping[str, object] | None = None,
    ) -> ServiceBackend:
        """Return the service backend for this family's init system."""
        return new_backend(
            self.init_system,
            descriptor,
            templates=templates,
            init_directory=init_directory,
            **dict(options or {}),
        )


def resolve_family(
    name: str,
    series: str | None = None,
    init_system: str | None = None,
) -> OSFamily:
    """Return the :class:`OSFamily` for an OS *name* such as ``debian`` or ``rhel``."""
    key = (name or "").strip().lower()
    try:
        family = FAMILY_ALIASES[key]
    except KeyError:
        allowed = ", ".join(sorted(FAMILY_ALIASES))
        raise ValidationError(f"Unsupported OS family '{name}'. Allowed: {allowed}.") from None
    if init_system is None:
        if family == "ubuntu" and series in UPSTART_SERIES:
            init_system = "upstart"
        else:
            init_system = DEFAULT_INIT_SYSTEMS[family]
    if family == "windows" and init_system != "windows":
        raise ValidationError(f"Windows machines cannot use the {init_system} init system.")
    if family != "windows" and init_system == "windows":
        raise ValidationError(f"{name} machines cannot use the windows init system.")
    return OSFamily(name=family, init_system=init_system, series=series)


@dataclass(frozen=True, slots=True)
class Artifact:
    """The rendered first-boot document."""

    content: bytes
    fmt: str
    os_family: str
    warnings: tuple[str, ...] = ()

    def as_bytes(self) -> bytes:
        """Return the artifact exactly as rendered."""
        return self.content

    def as_text(self) -> str:
        """Return the artifact decoded as UTF-8."""
        return self.content.decode("utf-8")


@dataclass(slots=True)
class ProvisioningCompiler:
    """Build first-boot artifacts that install packages and a service."""

    templates: TemplateEngine = field(default_factory=lambda: TemplateEngine.with_overrides(None))
    logger: StructuredLogger | None = None
    init_directories: Mapping[str, Path] = field(default_factory=dict)
    backend_options: Mapping[str, Mapping[str, object]] = field(default_factory=dict)

    def build(
        self,
        descriptor: ServiceDescriptor,
        os_family: OSFamily | str,
        package_options: PackageOptions | None = None,
        *,
        fmt: str = "structured",
    ) -> Artifact:
        """Return the artifact for *descriptor* on *os_family* in format *fmt*."""
        if fmt not in FORMATS:
            allowed = ", ".join(FORMATS)
            raise ValidationError(f"Unknown output format '{fmt}'. Allowed: {allowed}.")
        family = os_family if isinstance(os_family, OSFamily) else resolve_family(os_family)
        options = package_options or PackageOptions()
        args = {"service": descriptor.name, "format": fmt}
        target = {"os_family": family.name, "init_system": family.init_system}

        with self._operation("provision.build", args=args, target=target) as op:
            compiler = family.new_compiler()
            with _stage("packages"):
                apply_package_options(compiler, options)

            with _stage("service"):
                backend = family.new_backend(
                    descriptor,
                    templates=self.templates,
                    init_directory=self.init_directories.get(family.init_system),
                    options=self.backend_options.get(family.init_system),
                )
                commands = backend.install_commands()
            for command in commands:
                compiler.add_run_command(command)

            with _stage("render"):
                if fmt == "structured":
                    content = compiler.render_structured()
                else:
                    content = compiler.render_script().encode("utf-8")

            warnings = tuple(compiler.warnings)
            context = {"bytes": len(content), "run_commands": len(commands)}
            if warnings:
                op.warning("Artifact rendered with warnings.", warnings=warnings, context=context)
            else:
                op.success("Artifact rendered.", context=context)
        return Artifact(content=content, fmt=fmt, os_family=family.name, warnings=warnings)

    def _operation(
        self,
        command: str,
        *,
        args: Mapping[str, object],
        target: Mapping[str, object],
    ) -> AbstractContextManager[OperationScope]:
        if self.logger is None:
            return nullcontext(OperationScope(command=command, args=args, target=target))
        return self.logger.operation(command, args=args, target=target)


def apply_package_options(compiler: BootstrapCompiler, options: PackageOptions) -> None:
    """Record *options* on *compiler*, in the order the document renders them."""
    if options.proxy:
        compiler.set_package_proxy(options.proxy)
    if options.proxy_settings is not None:
        compiler.set_proxy_settings(options.proxy_settings)
    if options.mirror:
        compiler.set_package_mirror(options.mirror)
    if options.cloud_tools:
        compiler.add_cloud_archive_cloud_tools()
    for source in options.sources:
        compiler.add_package_source(source)
    for preference in options.preferences:
        compiler.add_package_preference(preference)
    if options.default_packages:
        compiler.add_default_packages()
    for package in options.packages:
        compiler.add_package(package)
    if options.update is not None:
        compiler.enable_system_update(options.update)
    if options.upgrade:
        compiler.enable_system_upgrade(True)


@contextmanager
def _stage(stage: str) -> Iterator[None]:
    try:
        yield
    except ProvisionError as exc:
        raise ProvisioningError(stage, exc) from exc


__all__ = [
    "Artifact",
    "FORMATS",
    "OSFamily",
    "PackageOptions",
    "ProvisioningCompiler",
    "apply_package_options",
    "resolve_family",
]
