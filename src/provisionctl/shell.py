"""Quoting and file-write helpers for generated shell and PowerShell code."""
from __future__ import annotations

import shlex

HEREDOC_MARKER = "EOF"


def shquote(value: str) -> str:
    """Quote *value* for safe inclusion in a POSIX shell command."""
    return shlex.quote(value)


def heredoc_write_command(path: str, content: str) -> str:
    """Return a bash command replacing *path* with *content* via a heredoc.

    The marker is quoted so the body is written verbatim, without parameter
    expansion, and is chosen so that no line of *content* terminates it early.
    """
    body = content if content.endswith("\n") else content + "\n"
    lines = set(body.splitlines())
    marker = HEREDOC_MARKER
    suffix = 0
    while marker in lines:
        suffix += 1
        marker = f"PROVISIONCTL_{HEREDOC_MARKER}_{suffix}"
    return f"cat > {shquote(path)} << '{marker}'\n{body}{marker}"


def powershell_quote(value: str) -> str:
    """Quote *value* as a single-quoted PowerShell string literal."""
    return "'" + value.replace("'", "''") + "'"


def powershell_write_command(path: str, content: str) -> str:
    """Return a PowerShell statement replacing *path* with *content*."""
    body = content[:-1] if content.endswith("\n") else content
    return (
        f"New-Item -ItemType Directory -Force -Path (Split-Path -Parent {powershell_quote(path)})"
        f" | Out-Null\r\nSet-Content -Path {powershell_quote(path)} -Value @'\r\n"
        + body.replace("\n", "\r\n")
        + "\r\n'@"
    )


__all__ = [
    "heredoc_write_command",
    "powershell_quote",
    "powershell_write_command",
    "shquote",
]
