"""Upstart backend: job files under ``/etc/init`` driven by ``initctl``."""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from .base import ServiceBackend, annotate, first_match

JOB_FILE = re.compile(r"^([A-Za-z0-9_:-]+)\.conf$")


@dataclass(slots=True)
class UpstartBackend(ServiceBackend):
    """Render and manage a ``<name>.conf`` job.

    Upstart has no separate enable step: a job is enabled by its ``start on``
    stanza, so enabling only asks upstart to re-read its configuration.
    """

    initctl_bin: str = "initctl"

    init_system: ClassVar[str] = "upstart"
    default_init_directory: ClassVar[Path] = Path("/etc/init")
    unit_suffix: ClassVar[str] = ".conf"
    unit_template: ClassVar[str] = "upstart/service.conf.j2"
    running_marker: ClassVar[str] = "start/running"

    def list_services(self) -> list[str]:
        """Return the sorted names of the jobs in the init directory."""
        directory = self._directory()
        with annotate("list"):
            if not directory.is_dir():
                return []
            entries = [entry.name for entry in directory.iterdir() if entry.is_file()]
        names = []
        for entry in entries:
            match = JOB_FILE.match(entry)
            if match:
                names.append(match.group(1))
        return sorted(names)

    def _enabled_query_args(self) -> list[str]:
        return [self.initctl_bin, "show-config", self.descriptor.name]

    def _running_query_args(self) -> list[str]:
        return [self.initctl_bin, "status", self.descriptor.name]

    def _is_enabled(self, output: str) -> bool:
        return first_match(r"^\s*start on\b", output)

    def _enable_args(self) -> list[str]:
        return [self.initctl_bin, "reload-configuration"]

    def _start_args(self) -> list[str]:
        return [self.initctl_bin, "start", self.descriptor.name]

    def _stop_args(self) -> list[str]:
        return [self.initctl_bin, "stop", self.descriptor.name]


__all__ = ["UpstartBackend"]
