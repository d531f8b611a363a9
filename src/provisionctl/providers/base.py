"""Shared reconciliation logic for init-system service backends.

A backend converges one :class:`~provisionctl.service.ServiceDescriptor` onto
the live init system. Subclasses only describe *where* unit files live and
*which* commands query and control the init system; the install/remove state
machine lives here.
"""
from __future__ import annotations

import re
import shlex
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from ..errors import LiveSystemError, ValidationError
from ..runner import CommandResult, CommandRunner, SubprocessRunner
from ..service import ServiceDescriptor
from ..shell import heredoc_write_command
from ..templates import TemplateEngine


def _default_templates() -> TemplateEngine:
    return TemplateEngine.with_overrides(None)


@contextmanager
def annotate(operation: str) -> Iterator[None]:
    """Re-raise live-system and filesystem failures prefixed with *operation*."""
    try:
        yield
    except LiveSystemError as exc:
        raise LiveSystemError(f"{operation}: {exc}") from exc
    except OSError as exc:
        raise LiveSystemError(f"{operation}: {exc}") from exc


@dataclass(slots=True)
class ServiceBackend:
    """Converge a service descriptor onto one init system."""

    descriptor: ServiceDescriptor
    runner: CommandRunner = field(default_factory=SubprocessRunner)
    templates: TemplateEngine = field(default_factory=_default_templates)
    init_directory: Path | None = None

    init_system: ClassVar[str] = ""
    default_init_directory: ClassVar[Path] = Path("/")
    unit_suffix: ClassVar[str] = ""
    extra_suffix: ClassVar[str] = ".sh"
    unit_template: ClassVar[str] = ""
    extra_template: ClassVar[str] = "common/extra.sh.j2"
    running_marker: ClassVar[str] = ""

    # ------------------------------------------------------------------
    # Locations
    @property
    def unit_directory(self) -> Path:
        """Return the directory holding the unit definition."""
        if self.descriptor.init_directory is not None:
            return self.descriptor.init_directory
        if self.init_directory is not None:
            return self.init_directory
        return self.default_init_directory

    @property
    def unit_name(self) -> str:
        """Return the file name of the unit definition."""
        return f"{self.descriptor.name}{self.unit_suffix}"

    @property
    def unit_path(self) -> Path:
        """Return the full path of the unit definition."""
        return self._directory() / self.unit_name

    @property
    def extra_script_path(self) -> Path | None:
        """Return the extra script path, or ``None`` when none is configured."""
        if not self.descriptor.extra_script:
            return None
        return self._directory() / f"{self.descriptor.name}-extra{self.extra_suffix}"

    def display_path(self, path: Path) -> str:
        """Return *path* as it appears inside generated unit files and commands."""
        return str(path)

    # ------------------------------------------------------------------
    # Rendering
    def validate(self) -> None:
        """Raise :class:`ValidationError` unless the descriptor can be rendered."""
        missing = self.descriptor.missing_fields()
        if not str(self.unit_directory).strip():
            missing.append("init_directory")
        if missing:
            raise ValidationError(f"Service descriptor is missing {', '.join(missing)}.")

    def template_context(self) -> dict[str, object]:
        """Return the variables available to the unit and extra-script templates."""
        descriptor = self.descriptor
        extra_path = self.extra_script_path
        return {
            "name": descriptor.name,
            "description": descriptor.description,
            "command": descriptor.command,
            "environment": sorted(descriptor.environment.items()),
            "extra_script": descriptor.extra_script.rstrip("\n"),
            "extra_script_path": self.display_path(extra_path) if extra_path else "",
            "unit_path": self.display_path(self.unit_path),
        }

    def render(self) -> bytes:
        """Return the unit definition bytes for the current descriptor."""
        self.validate()
        content = self.templates.render_to_string(self.unit_template, self.template_context())
        return content.encode("utf-8")

    def render_extra_script(self) -> bytes | None:
        """Return the extra script bytes, or ``None`` when none is configured."""
        self.validate()
        if not self.descriptor.extra_script:
            return None
        content = self.templates.render_to_string(self.extra_template, self.template_context())
        return content.encode("utf-8")

    # ------------------------------------------------------------------
    # Observation
    def exists_and_matches(self) -> tuple[bool, bool]:
        """Return whether the unit file exists and whether it matches the render."""
        expected = self.render()
        found = self._read(self.unit_path)
        if found is None:
            return False, False
        if found != expected:
            return True, False
        extra_path = self.extra_script_path
        if extra_path is not None and self._read(extra_path) != self.render_extra_script():
            return True, False
        return True, True

    def enabled(self) -> bool:
        """Return whether the init system reports the service as enabled."""
        result = self._query(self._enabled_query_args())
        return result is not None and self._is_enabled(result.output)

    def running(self) -> bool:
        """Return whether the init system reports the service as running."""
        result = self._query(self._running_query_args())
        return result is not None and self.running_marker in result.output

    def installed(self) -> bool:
        """Return whether a unit file is present and enabled, whatever its content."""
        try:
            present = self.unit_path.exists()
        except OSError:
            return False
        return present and self.enabled()

    def exists(self) -> bool:
        """Return whether the unit matches the descriptor and is enabled."""
        _, matches = self.exists_and_matches()
        return matches and self.enabled()

    # ------------------------------------------------------------------
    # Mutation
    def install(self) -> None:
        """Converge the live system onto the descriptor and start the service."""
        with annotate("install"):
            exists, matches = self.exists_and_matches()
            if matches and self.enabled():
                return
            if exists:
                self.stop_and_remove()
            self._write_files()
            self.runner.run(self._enable_args())
            self.start()

    def start(self) -> None:
        """Start the service unless it is already running."""
        if self.running():
            return
        with annotate("start"):
            self.runner.run(self._start_args())

    def stop(self) -> None:
        """Stop the service unless it is already stopped."""
        if not self.running():
            return
        with annotate("stop"):
            self.runner.run(self._stop_args())

    def remove(self) -> None:
        """Disable the service and delete its files; missing files are fine."""
        disable = self._disable_args()
        if disable:
            # Disabling an unknown service fails on every init system.
            self._query(disable)
        with annotate("remove"):
            self.unit_path.unlink(missing_ok=True)
            extra_path = self._directory() / f"{self.descriptor.name}-extra{self.extra_suffix}"
            extra_path.unlink(missing_ok=True)
            self._after_remove()

    def stop_and_remove(self) -> None:
        """Stop the service, then remove it."""
        self.stop()
        self.remove()

    def install_commands(self) -> list[str]:
        """Return shell commands that install and start the service at first boot."""
        commands = self._file_write_commands(self.unit_path, self.render())
        extra = self.render_extra_script()
        extra_path = self.extra_script_path
        if extra is not None and extra_path is not None:
            commands.extend(self._file_write_commands(extra_path, extra, executable=True))
        commands.append(self.command_line(self._enable_args()))
        commands.append(self.command_line(self._start_args()))
        return commands

    def list_services(self) -> list[str]:
        """Return the sorted names of the services the init system knows about."""
        with annotate("list"):
            result = self.runner.run(self._list_args())
        return sorted(set(self._service_names(result.stdout)))

    def update_descriptor(self, descriptor: ServiceDescriptor) -> None:
        """Replace the descriptor wholesale; the next install reconciles."""
        self.descriptor = descriptor

    # ------------------------------------------------------------------
    # Init-system specific hooks
    def command_line(self, args: Sequence[str]) -> str:
        """Return *args* as a single first-boot command."""
        return shlex.join(args)

    def _file_write_commands(
        self, path: Path, content: bytes, *, executable: bool = False
    ) -> list[str]:
        shown = self.display_path(path)
        commands = [heredoc_write_command(shown, content.decode("utf-8"))]
        if executable:
            commands.append(f"chmod 0755 {shlex.quote(shown)}")
        return commands

    def _list_args(self) -> list[str]:
        raise NotImplementedError

    def _service_names(self, output: str) -> list[str]:
        return output.split()

    def _enabled_query_args(self) -> list[str]:
        raise NotImplementedError

    def _running_query_args(self) -> list[str]:
        raise NotImplementedError

    def _is_enabled(self, output: str) -> bool:
        raise NotImplementedError

    def _enable_args(self) -> list[str]:
        raise NotImplementedError

    def _disable_args(self) -> list[str] | None:
        return None

    def _start_args(self) -> list[str]:
        raise NotImplementedError

    def _stop_args(self) -> list[str]:
        raise NotImplementedError

    def _after_remove(self) -> None:
        return None

    # ------------------------------------------------------------------
    def _directory(self) -> Path:
        return Path(self.unit_directory)

    def _query(self, args: Sequence[str]) -> CommandResult | None:
        try:
            return self.runner.run(args, check=False)
        except LiveSystemError:
            return None

    def _write_files(self) -> None:
        context = self.template_context()
        self.templates.render_to_path(self.unit_template, self.unit_path, context, mode=0o644)
        extra_path = self.extra_script_path
        if extra_path is not None:
            self.templates.render_to_path(self.extra_template, extra_path, context, mode=0o755)

    @staticmethod
    def _read(path: Path) -> bytes | None:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise LiveSystemError(f"Unable to read {path}: {exc}") from exc


def first_match(pattern: str, output: str) -> bool:
    """Return whether *pattern* (a regular expression) occurs in *output*."""
    return re.search(pattern, output, flags=re.MULTILINE) is not None


__all__ = ["ServiceBackend", "annotate", "first_match"]
