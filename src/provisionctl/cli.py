"""Typer-powered command line interface for ``provisionctl``.

``render`` compiles a first-boot artifact for a new machine; the ``service``
commands converge the init system of the machine they run on.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import NoReturn

import typer
import yaml
from rich.console import Console
from rich.table import Table

from . import __version__
from .cloudconfig.packaging import PackageSource
from .config import AppConfig, load_config
from .errors import ConfigError, LiveSystemError, ProvisionError, ProvisioningError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .providers import ServiceBackend, new_backend
from .provisioning import OSFamily, ProvisioningCompiler, resolve_family
from .runner import CommandRunner, SubprocessRunner
from .service import ServiceDescriptor
from .templates import TemplateEngine

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to provisionctl's YAML config file.",
)
DESCRIPTOR_OPTION = typer.Option(
    None,
    "--descriptor",
    "-d",
    exists=True,
    dir_okay=False,
    help="YAML file describing the service (name, description, command, environment).",
)
NAME_OPTION = typer.Option(None, "--name", help="Service name.")
DESCRIPTION_OPTION = typer.Option(None, "--description", help="Human-readable description.")
COMMAND_OPTION = typer.Option(None, "--command", help="Command line the service runs.")
ENV_OPTION = typer.Option(
    None,
    "--env",
    "-e",
    help="Environment variable for the service as KEY=VALUE (repeatable).",
)
EXTRA_SCRIPT_OPTION = typer.Option(
    None,
    "--extra-script",
    exists=True,
    dir_okay=False,
    help="File whose contents run before the service starts.",
)
INIT_DIR_OPTION = typer.Option(
    None,
    "--init-dir",
    help="Directory receiving the unit definition (defaults per init system).",
)
OS_FAMILY_OPTION = typer.Option(
    None,
    "--os-family",
    help="Target OS family (ubuntu, debian, centos, rhel, windows).",
)
SERIES_OPTION = typer.Option(None, "--series", help="Target OS release codename.")
INIT_SYSTEM_OPTION = typer.Option(
    None,
    "--init-system",
    help="Target init system (systemd, upstart, windows).",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        First-boot provisioning and service reconciliation.

        Render cloud-init documents or bash scripts that install packages and
        register a service, or converge the local init system directly.
        """
    ).strip(),
)
service_app = typer.Typer(help="Converge a service on the local init system.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(service_app, name="service")
app.add_typer(config_app, name="config")

# Command name to backend method.
SERVICE_ACTIONS = {
    "install": "install",
    "start": "start",
    "stop": "stop",
    "remove": "stop_and_remove",
}


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    runner: CommandRunner


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
        runner=SubprocessRunner(),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the provisionctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    runtime = _ensure_runtime(ctx, config_file)
    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"provisionctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _exit_code_for(exc: ProvisionError) -> ExitCode:
    cause = exc.cause if isinstance(exc, ProvisioningError) else exc
    if isinstance(cause, LiveSystemError):
        return ExitCode.PROVIDER
    return ExitCode.VALIDATION


def _command_error(op: OperationScope, exc: ProvisionError) -> NoReturn:
    """Emit a structured error for *exc* and terminate the command."""
    rc = int(_exit_code_for(exc))
    message = str(exc)
    err_console.print(f"[red]{message}[/red]")
    op.error(message, errors=[message], rc=rc)
    raise typer.Exit(code=rc)


def _parse_environment(pairs: Sequence[str] | None) -> dict[str, str]:
    environment: dict[str, str] = {}
    for pair in pairs or ():
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected KEY=VALUE, got {pair!r}.", param_hint="--env")
        environment[key.strip()] = value
    return environment


def _load_descriptor_file(path: Path) -> dict[str, object]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise typer.BadParameter(f"{path}: {exc}", param_hint="--descriptor") from exc
    if not isinstance(data, Mapping):
        raise typer.BadParameter(f"{path} must contain a mapping.", param_hint="--descriptor")
    return dict(data)


def _build_descriptor(
    *,
    descriptor_file: Path | None,
    name: str | None,
    description: str | None,
    command: str | None,
    env: Sequence[str] | None,
    extra_script: Path | None,
    init_dir: Path | None,
) -> ServiceDescriptor:
    """Merge the descriptor file (if any) with command-line overrides."""
    raw: dict[str, object] = _load_descriptor_file(descriptor_file) if descriptor_file else {}
    descriptor = ServiceDescriptor.from_mapping(raw) if raw else ServiceDescriptor(name="")
    environment = {**descriptor.environment, **_parse_environment(env)}
    return replace(
        descriptor,
        name=name if name is not None else descriptor.name,
        description=description if description is not None else descriptor.description,
        command=command if command is not None else descriptor.command,
        environment=environment,
        extra_script=(
            extra_script.read_text(encoding="utf-8")
            if extra_script is not None
            else descriptor.extra_script
        ),
        init_directory=init_dir if init_dir is not None else descriptor.init_directory,
    )


def _resolve_family(
    config: AppConfig,
    os_family: str | None,
    series: str | None,
    init_system: str | None,
) -> OSFamily:
    return resolve_family(
        os_family or config.os_family,
        series=series or config.series,
        init_system=init_system or config.init_system,
    )


def _backend_for(
    runtime: RuntimeContext,
    descriptor: ServiceDescriptor,
    init_system: str | None,
) -> ServiceBackend:
    config = runtime.config
    system = init_system or _resolve_family(config, None, None, None).init_system
    return new_backend(
        system,
        descriptor,
        runner=runtime.runner,
        templates=runtime.templates,
        init_directory=config.init_directories().get(system),
        **config.backend_options().get(system, {}),
    )


@app.command()
def render(
    ctx: typer.Context,
    descriptor_file: Path | None = DESCRIPTOR_OPTION,
    name: str | None = NAME_OPTION,
    description: str | None = DESCRIPTION_OPTION,
    command: str | None = COMMAND_OPTION,
    env: list[str] | None = ENV_OPTION,
    extra_script: Path | None = EXTRA_SCRIPT_OPTION,
    init_dir: Path | None = INIT_DIR_OPTION,
    os_family: str | None = OS_FAMILY_OPTION,
    series: str | None = SERIES_OPTION,
    init_system: str | None = INIT_SYSTEM_OPTION,
    output_format: str | None = typer.Option(
        None,
        "--format",
        "-f",
        help="Artifact format: structured (cloud-config) or script (bash).",
    ),
    packages: list[str] | None = typer.Option(
        None,
        "--package",
        "-p",
        help="Additional package to install (repeatable).",
    ),
    sources: list[str] | None = typer.Option(
        None,
        "--source",
        help="Additional package repository (repeatable).",
    ),
    upgrade: bool | None = typer.Option(
        None,
        "--upgrade/--no-upgrade",
        help="Upgrade installed packages at first boot.",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        dir_okay=False,
        help="Write the artifact to this file instead of stdout.",
    ),
) -> None:
    """Render a first-boot artifact that installs packages and the service."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    fmt = output_format or config.output_format

    with runtime.logger.operation(
        "render",
        args={"format": fmt, "output": output, "packages": list(packages or [])},
        target={"kind": "artifact", "os_family": os_family or config.os_family},
    ) as op:
        try:
            descriptor = _build_descriptor(
                descriptor_file=descriptor_file,
                name=name,
                description=description,
                command=command,
                env=env,
                extra_script=extra_script,
                init_dir=init_dir,
            )
            family = _resolve_family(config, os_family, series, init_system)
            options = config.package_options()
            options = replace(
                options,
                packages=(*options.packages, *(packages or [])),
                sources=(*options.sources, *(PackageSource(url=url) for url in sources or [])),
                upgrade=options.upgrade if upgrade is None else upgrade,
            )
            compiler = ProvisioningCompiler(
                templates=runtime.templates,
                logger=runtime.logger,
                init_directories=config.init_directories(),
                backend_options=config.backend_options(),
            )
            artifact = compiler.build(descriptor, family, options, fmt=fmt)
        except ProvisionError as exc:
            _command_error(op, exc)

        for warning in artifact.warnings:
            err_console.print(f"[yellow]Warning:[/yellow] {warning}")

        if output is not None:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(artifact.as_bytes())
            err_console.print(f"[green]Wrote {artifact.fmt} artifact to {output}.[/green]")
            artifacts: list[str | Path] = [output]
        else:
            typer.echo(artifact.as_text(), nl=False)
            artifacts = []

        if artifact.warnings:
            op.warning("Rendered artifact.", warnings=artifact.warnings, artifacts=artifacts)
        else:
            op.success("Rendered artifact.", changed=1 if output else 0, artifacts=artifacts)


def _service_command(
    ctx: typer.Context,
    action: str,
    *,
    descriptor_file: Path | None,
    name: str | None,
    description: str | None,
    command: str | None,
    env: Sequence[str] | None,
    extra_script: Path | None,
    init_dir: Path | None,
    init_system: str | None,
) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        f"service {action}",
        args={"init_system": init_system or runtime.config.init_system},
        target={"kind": "service", "name": name},
    ) as op:
        try:
            descriptor = _build_descriptor(
                descriptor_file=descriptor_file,
                name=name,
                description=description,
                command=command,
                env=env,
                extra_script=extra_script,
                init_dir=init_dir,
            )
            backend = _backend_for(runtime, descriptor, init_system)
            if action == "status":
                _render_status(backend)
                op.success("Reported service status.", changed=0)
                return
            getattr(backend, SERVICE_ACTIONS[action])()
        except ProvisionError as exc:
            _command_error(op, exc)

        console.print(f"[green]Service '{descriptor.name}': {action} complete.[/green]")
        op.success(f"Service {action} complete.", context={"unit": backend.unit_path})


def _render_status(backend: ServiceBackend) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Service", style="bold")
    table.add_column("Init system")
    table.add_column("Unit")
    table.add_column("Installed")
    table.add_column("Matches")
    table.add_column("Running")

    matches = False
    if not backend.descriptor.missing_fields():
        _, matches = backend.exists_and_matches()
    table.add_row(
        backend.descriptor.name,
        backend.init_system,
        str(backend.unit_path),
        "yes" if backend.installed() else "no",
        "yes" if matches else "no",
        "yes" if backend.running() else "no",
    )
    console.print(table)


@service_app.command("install")
def service_install(
    ctx: typer.Context,
    descriptor_file: Path | None = DESCRIPTOR_OPTION,
    name: str | None = NAME_OPTION,
    description: str | None = DESCRIPTION_OPTION,
    command: str | None = COMMAND_OPTION,
    env: list[str] | None = ENV_OPTION,
    extra_script: Path | None = EXTRA_SCRIPT_OPTION,
    init_dir: Path | None = INIT_DIR_OPTION,
    init_system: str | None = INIT_SYSTEM_OPTION,
) -> None:
    """Install (or reinstall) the service, enable it and start it."""
    _service_command(
        ctx,
        "install",
        descriptor_file=descriptor_file,
        name=name,
        description=description,
        command=command,
        env=env,
        extra_script=extra_script,
        init_dir=init_dir,
        init_system=init_system,
    )


@service_app.command("start")
def service_start(
    ctx: typer.Context,
    descriptor_file: Path | None = DESCRIPTOR_OPTION,
    name: str | None = NAME_OPTION,
    init_dir: Path | None = INIT_DIR_OPTION,
    init_system: str | None = INIT_SYSTEM_OPTION,
) -> None:
    """Start the service unless it is already running."""
    _service_command(
        ctx,
        "start",
        descriptor_file=descriptor_file,
        name=name,
        description=None,
        command=None,
        env=None,
        extra_script=None,
        init_dir=init_dir,
        init_system=init_system,
    )


@service_app.command("stop")
def service_stop(
    ctx: typer.Context,
    descriptor_file: Path | None = DESCRIPTOR_OPTION,
    name: str | None = NAME_OPTION,
    init_dir: Path | None = INIT_DIR_OPTION,
    init_system: str | None = INIT_SYSTEM_OPTION,
) -> None:
    """Stop the service unless it is already stopped."""
    _service_command(
        ctx,
        "stop",
        descriptor_file=descriptor_file,
        name=name,
        description=None,
        command=None,
        env=None,
        extra_script=None,
        init_dir=init_dir,
        init_system=init_system,
    )


@service_app.command("remove")
def service_remove(
    ctx: typer.Context,
    descriptor_file: Path | None = DESCRIPTOR_OPTION,
    name: str | None = NAME_OPTION,
    init_dir: Path | None = INIT_DIR_OPTION,
    init_system: str | None = INIT_SYSTEM_OPTION,
) -> None:
    """Stop the service, disable it and delete its files."""
    _service_command(
        ctx,
        "remove",
        descriptor_file=descriptor_file,
        name=name,
        description=None,
        command=None,
        env=None,
        extra_script=None,
        init_dir=init_dir,
        init_system=init_system,
    )


@service_app.command("status")
def service_status(
    ctx: typer.Context,
    descriptor_file: Path | None = DESCRIPTOR_OPTION,
    name: str | None = NAME_OPTION,
    description: str | None = DESCRIPTION_OPTION,
    command: str | None = COMMAND_OPTION,
    env: list[str] | None = ENV_OPTION,
    extra_script: Path | None = EXTRA_SCRIPT_OPTION,
    init_dir: Path | None = INIT_DIR_OPTION,
    init_system: str | None = INIT_SYSTEM_OPTION,
) -> None:
    """Report whether the service is installed, up to date and running."""
    _service_command(
        ctx,
        "status",
        descriptor_file=descriptor_file,
        name=name,
        description=description,
        command=command,
        env=env,
        extra_script=extra_script,
        init_dir=init_dir,
        init_system=init_system,
    )


@service_app.command("list")
def service_list(
    ctx: typer.Context,
    init_dir: Path | None = INIT_DIR_OPTION,
    init_system: str | None = INIT_SYSTEM_OPTION,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit service names as a JSON list.",
    ),
) -> None:
    """List the services known to the local init system."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "service list",
        args={"init_system": init_system or runtime.config.init_system, "json": json_output},
        target={"kind": "service"},
    ) as op:
        try:
            descriptor = ServiceDescriptor(name="", init_directory=init_dir)
            backend = _backend_for(runtime, descriptor, init_system)
            names = backend.list_services()
        except ProvisionError as exc:
            _command_error(op, exc)

        if json_output:
            console.print_json(data=names)
        else:
            for service_name in names:
                console.print(service_name, markup=False, highlight=False)
        op.success("Listed services.", changed=0, context={"count": len(names)})


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console-script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
