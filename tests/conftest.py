"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from provisionctl.errors import LiveSystemError
from provisionctl.runner import CommandResult
from provisionctl.templates import TemplateEngine


def _check(result: CommandResult, check: bool) -> CommandResult:
    if check and result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "no output"
        raise LiveSystemError(
            f"{' '.join(result.args)} failed (exit {result.returncode}): {message}"
        )
    return result


class RecordingRunner:
    """Command runner returning canned results and recording every call."""

    def __init__(
        self,
        responses: dict[tuple[str, ...], CommandResult] | None = None,
        *,
        missing: bool = False,
    ) -> None:
        """Initialise with optional canned *responses* keyed by argv tuple."""
        self.responses = dict(responses or {})
        self.missing = missing
        self.calls: list[list[str]] = []

    def respond(self, args: Sequence[str], stdout: str = "", returncode: int = 0) -> None:
        """Register the result returned for *args*."""
        argv = [str(arg) for arg in args]
        self.responses[tuple(argv)] = CommandResult(
            args=argv, returncode=returncode, stdout=stdout
        )

    def run(self, args: Sequence[str], *, check: bool = True) -> CommandResult:
        """Record *args* and return the canned result (success by default)."""
        argv = [str(arg) for arg in args]
        self.calls.append(argv)
        if self.missing:
            raise LiveSystemError(f"{argv[0]} not found: [Errno 2] No such file or directory")
        result = self.responses.get(tuple(argv), CommandResult(args=argv))
        return _check(result, check)


class FakeSystemctl:
    """A stateful ``systemctl`` stand-in tracking enabled and running units."""

    def __init__(self, unit_dir: Path, *, failing: Sequence[str] = ()) -> None:
        """Simulate systemd managing units in *unit_dir*."""
        self.unit_dir = unit_dir
        self.failing = set(failing)
        self.enabled: set[str] = set()
        self.running: set[str] = set()
        self.calls: list[list[str]] = []

    def actions(self) -> list[str]:
        """Return the mutating verbs issued so far, in order."""
        return [call[1] for call in self.calls if call[1] != "status"]

    def run(self, args: Sequence[str], *, check: bool = True) -> CommandResult:
        """Apply a systemctl verb to the simulated state."""
        argv = [str(arg) for arg in args]
        self.calls.append(argv)
        verb = argv[1]
        unit = argv[2] if len(argv) > 2 else ""
        if verb in self.failing:
            return _check(CommandResult(argv, 1, "", f"Failed to {verb} {unit}."), check)
        if verb == "status":
            return self._status(argv, unit)
        if verb == "list-unit-files":
            return self._list_unit_files(argv)
        if verb == "enable":
            self.enabled.add(unit)
        elif verb == "disable":
            self.enabled.discard(unit)
        elif verb == "start":
            self.running.add(unit)
        elif verb == "stop":
            self.running.discard(unit)
        return CommandResult(argv)

    def _list_unit_files(self, argv: list[str]) -> CommandResult:
        lines = []
        for path in sorted(self.unit_dir.glob("*.service")):
            state = "enabled" if path.name in self.enabled else "disabled"
            lines.append(f"{path.name} {state} enabled")
        return CommandResult(argv, 0, "\n".join(lines) + "\n", "")

    def _status(self, argv: list[str], unit: str) -> CommandResult:
        path = self.unit_dir / unit
        if not path.exists():
            return CommandResult(argv, 4, "", f"Unit {unit} could not be found.")
        state = "enabled" if unit in self.enabled else "disabled"
        active = "active (running)" if unit in self.running else "inactive (dead)"
        stdout = (
            f"● {unit} - test unit\n"
            f"     Loaded: loaded ({path}; {state}; preset: enabled)\n"
            f"     Active: {active} since Sat 2026-10-17 10:00:00 UTC\n"
        )
        return CommandResult(argv, 0 if unit in self.running else 3, stdout, "")


@pytest.fixture
def templates() -> TemplateEngine:
    """Return the built-in template engine."""
    return TemplateEngine.with_overrides(None)


@pytest.fixture
def recording_runner() -> RecordingRunner:
    """Return a runner that succeeds silently and records calls."""
    return RecordingRunner()
