"""Command execution capability used to query and control init systems.

Backends never call :mod:`subprocess` directly; they receive a
:class:`CommandRunner` at construction time so tests can substitute a
recording fake without patching module state.
"""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from .errors import LiveSystemError


@dataclass(slots=True)
class CommandResult:
    """Captured outcome of an external command."""

    args: list[str]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        """Return stdout and stderr joined, as status matchers expect."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class CommandRunner(Protocol):
    """Run an external command synchronously and capture its output."""

    def run(self, args: Sequence[str], *, check: bool = True) -> CommandResult:
        """Execute *args*; raise :class:`LiveSystemError` on failure when *check*."""
        ...


@dataclass(slots=True)
class SubprocessRunner:
    """Default :class:`CommandRunner` backed by :func:`subprocess.run`."""

    env: dict[str, str] | None = None

    def run(self, args: Sequence[str], *, check: bool = True) -> CommandResult:
        """Execute *args* and return the captured result."""
        argv = [str(arg) for arg in args]
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                check=False,
                env=self.env,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise LiveSystemError(f"{argv[0]} not found: {exc}") from exc
        result = CommandResult(
            args=argv,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if check and result.returncode != 0:
            raise LiveSystemError(_failure_message(result))
        return result


def _failure_message(result: CommandResult) -> str:
    message = result.stderr.strip() or result.stdout.strip() or "no output"
    return f"{' '.join(result.args)} failed (exit {result.returncode}): {message}"


__all__ = ["CommandResult", "CommandRunner", "SubprocessRunner"]
