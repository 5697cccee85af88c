"""Process classes and the host architectures payloads are built for."""

from __future__ import annotations

import enum
import platform

from goauld.errors import UnsupportedArchError

EM_386 = 3
EM_ARM = 40
EM_X86_64 = 62
EM_AARCH64 = 183


class ProcClass(enum.Enum):
    """Word size of a process: 32 bit or 64 bit."""

    THIRTY_TWO = 32
    SIXTY_FOUR = 64


class Arch(enum.Enum):
    """Architectures this package can build payloads on."""

    AARCH64 = "aarch64"
    X86 = "x86"
    X86_64 = "x86_64"


_MACHINE_NAMES = {
    "aarch64": Arch.AARCH64,
    "arm64": Arch.AARCH64,
    "x86_64": Arch.X86_64,
    "amd64": Arch.X86_64,
    "x86": Arch.X86,
    "i386": Arch.X86,
    "i486": Arch.X86,
    "i586": Arch.X86,
    "i686": Arch.X86,
}


def host_arch() -> Arch:
    """Architecture of the running interpreter's machine."""
    machine = platform.machine().lower()
    try:
        return _MACHINE_NAMES[machine]
    except KeyError:
        raise UnsupportedArchError(f"unsupported host architecture: {machine!r}") from None


def proc_class_for_machine(machine: int, arch: Arch | None = None) -> ProcClass | None:
    """Class of a process whose executable has ``e_machine``, as seen from ``arch``.

    Returns None when the host cannot inject into such a process.
    """
    if arch is None:
        arch = host_arch()
    if arch is Arch.AARCH64:
        return {EM_ARM: ProcClass.THIRTY_TWO, EM_AARCH64: ProcClass.SIXTY_FOUR}.get(machine)
    if machine == EM_386:
        return ProcClass.THIRTY_TWO
    if arch is Arch.X86_64 and machine == EM_X86_64:
        return ProcClass.SIXTY_FOUR
    return None