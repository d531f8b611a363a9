"""Structured operation logging for provisionctl.

Every CLI command and provisioning build is recorded as one JSON object per
line in ``operations.jsonl`` inside the configured logs directory, with a
short human-readable line mirrored to ``provisionctl.log``. Logging is best
effort: when the directory cannot be created or a write fails, the logger
disables itself instead of failing the operation being logged.
"""
from __future__ import annotations

import json
import os
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _sanitise(value: object) -> object:
    """Return a JSON-safe representation of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitise(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitise(item) for item in value]
    return str(value)


@dataclass(slots=True)
class OperationScope:
    """Collects the outcome of a single logged operation."""

    command: str
    args: Mapping[str, object]
    target: Mapping[str, object]
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: str = field(default_factory=_timestamp)
    result: dict[str, object] | None = None
    _started: float = field(default_factory=time.monotonic)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        warnings: Iterable[str] | None = None,
        artifacts: Iterable[str | Path] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set("success", message, changed=changed, warnings=warnings,
                  artifacts=artifacts, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int | None = None,
        artifacts: Iterable[str | Path] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set("warning", message, changed=changed, warnings=warnings, errors=errors,
                  artifacts=artifacts, context=context)

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set("error", message, errors=errors if errors is not None else [message],
                  rc=rc, context=context)

    def duration_ms(self) -> int:
        """Return the elapsed time since the scope was opened."""
        return int((time.monotonic() - self._started) * 1000)

    def _set(
        self,
        status: str,
        message: str,
        *,
        changed: int | None = None,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        artifacts: Iterable[str | Path] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if changed is not None:
            result["changed"] = changed
        if warnings is not None:
            result["warnings"] = list(warnings)
        if errors is not None:
            result["errors"] = list(errors)
        if artifacts is not None:
            result["artifacts"] = [str(item) for item in artifacts]
        if rc is not None:
            result["rc"] = rc
        if context is not None:
            result["context"] = _sanitise(dict(context))
        self.result = result


class StructuredLogger:
    """Append operation records to the provisionctl log directory."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare the log directory, disabling logging if it is unusable."""
        self._log_dir = Path(log_dir)
        self._operations_log_path = self._log_dir / "operations.jsonl"
        self._human_log_path = self._log_dir / "provisionctl.log"
        self._enabled = True
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return ``True`` while records are being written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Open a scope for *command*; the record is written on exit."""
        scope = OperationScope(
            command=command,
            args=dict(args or {}),
            target=dict(target or {}),
        )
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None or scope.result.get("status") != "error":
                scope.error(str(exc) or type(exc).__name__, rc=None)
            self._write(scope)
            raise
        if scope.result is None:
            scope.success("Completed.")
        self._write(scope)

    # ------------------------------------------------------------------
    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        result = scope.result or {}
        record = {
            "op_id": scope.op_id,
            "ts": scope.started_at,
            "user": os.environ.get("USER", "unknown"),
            "command": scope.command,
            "args": _sanitise(dict(scope.args)),
            "target": _sanitise(dict(scope.target)),
            "duration_ms": scope.duration_ms(),
            "result": result,
        }
        status = result.get("status", "unknown")
        line = f"{scope.started_at} {scope.command} {status}: {result.get('message', '')}\n"
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
            with self._human_log_path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
