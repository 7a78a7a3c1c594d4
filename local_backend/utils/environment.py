"""
Platform detection for backend binary selection.

Maps the running OS and CPU architecture onto the target triple used in the
backend's release asset names.
"""

import platform
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from local_backend.errors import UnsupportedPlatform

ASSET_PREFIX = "convex-local-backend"


class OSFamily(Enum):
    """Operating systems with published backend binaries."""
    MACOS = "darwin"
    LINUX = "linux"
    WINDOWS = "windows"


_TARGET_SUFFIX = {
    OSFamily.MACOS: "apple-darwin",
    OSFamily.LINUX: "unknown-linux-gnu",
    OSFamily.WINDOWS: "pc-windows-msvc",
}

_ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
}


@dataclass(frozen=True)
class PlatformInfo:
    """Resolved platform details"""
    os_family: OSFamily
    arch: str
    target: str

    @property
    def is_windows(self) -> bool:
        return self.os_family is OSFamily.WINDOWS

    @property
    def exe_suffix(self) -> str:
        return ".exe" if self.is_windows else ""


def _normalize_arch(machine: str) -> str:
    return _ARCH_ALIASES.get(machine.lower(), machine.lower())


def detect_platform(
    system: Optional[str] = None,
    machine: Optional[str] = None,
) -> PlatformInfo:
    """
    Detect the platform target for the current machine.

    Args:
        system: Override for ``platform.system()`` (for tests)
        machine: Override for ``platform.machine()`` (for tests)

    Returns:
        PlatformInfo with the release asset target string

    Raises:
        UnsupportedPlatform: if the OS has no published binary
    """
    system = (system or platform.system()).lower()
    arch = _normalize_arch(machine or platform.machine())

    try:
        os_family = OSFamily(system)
    except ValueError:
        raise UnsupportedPlatform(f"Unsupported platform: {system}") from None

    target = f"{ASSET_PREFIX}-{arch}-{_TARGET_SUFFIX[os_family]}"
    return PlatformInfo(os_family=os_family, arch=arch, target=target)
