"""First-boot document compilers for each supported OS family."""
from __future__ import annotations

from ..errors import ValidationError
from .base import BootstrapCompiler
from .centos import CentOSCompiler
from .document import CLOUD_CONFIG_HEADER, ConfigDocument, FileWrite
from .packaging import (
    AptBackend,
    PackageBackend,
    PackagePreference,
    PackageSource,
    ProxySettings,
    YumBackend,
)
from .ubuntu import UbuntuCompiler
from .windows import WINDOWS_HEADER, WindowsCompiler

COMPILERS: dict[str, type[BootstrapCompiler]] = {
    "ubuntu": UbuntuCompiler,
    "centos": CentOSCompiler,
    "windows": WindowsCompiler,
}


def new_compiler(os_family: str, *, series: str | None = None) -> BootstrapCompiler:
    """Return an empty compiler for *os_family* (``ubuntu``, ``centos`` or ``windows``)."""
    try:
        compiler_cls = COMPILERS[os_family]
    except KeyError:
        allowed = ", ".join(sorted(COMPILERS))
        raise ValidationError(
            f"Unsupported OS family '{os_family}'. Allowed: {allowed}."
        ) from None
    return compiler_cls(series=series)


__all__ = [
    "AptBackend",
    "BootstrapCompiler",
    "CLOUD_CONFIG_HEADER",
    "COMPILERS",
    "CentOSCompiler",
    "ConfigDocument",
    "FileWrite",
    "PackageBackend",
    "PackagePreference",
    "PackageSource",
    "ProxySettings",
    "UbuntuCompiler",
    "WINDOWS_HEADER",
    "WindowsCompiler",
    "YumBackend",
    "new_compiler",
]
