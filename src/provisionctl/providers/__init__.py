"""Init-system service backends."""
from __future__ import annotations

from pathlib import Path

from ..errors import ValidationError
from ..runner import CommandRunner, SubprocessRunner
from ..service import ServiceDescriptor
from ..templates import TemplateEngine
from .base import ServiceBackend
from .systemd import SystemdBackend
from .upstart import UpstartBackend
from .windows import WindowsServiceBackend

BACKENDS: dict[str, type[ServiceBackend]] = {
    SystemdBackend.init_system: SystemdBackend,
    UpstartBackend.init_system: UpstartBackend,
    WindowsServiceBackend.init_system: WindowsServiceBackend,
}


def new_backend(
    init_system: str,
    descriptor: ServiceDescriptor,
    *,
    runner: CommandRunner | None = None,
    templates: TemplateEngine | None = None,
    init_directory: Path | None = None,
    **options: object,
) -> ServiceBackend:
    """Return the backend for *init_system* managing *descriptor*.

    ``options`` carries backend-specific settings such as ``systemctl_bin``
    or ``user_mode``.
    """
    try:
        backend_cls = BACKENDS[init_system]
    except KeyError:
        allowed = ", ".join(sorted(BACKENDS))
        raise ValidationError(
            f"Unsupported init system '{init_system}'. Allowed: {allowed}."
        ) from None
    return backend_cls(
        descriptor=descriptor,
        runner=runner or SubprocessRunner(),
        templates=templates or TemplateEngine.with_overrides(None),
        init_directory=init_directory,
        **options,
    )


__all__ = [
    "BACKENDS",
    "ServiceBackend",
    "SystemdBackend",
    "UpstartBackend",
    "WindowsServiceBackend",
    "new_backend",
]
