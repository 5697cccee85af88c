"""Choice of payload builder by host architecture and target process class."""

from __future__ import annotations

from goauld.arch import Arch, ProcClass, host_arch
from goauld.errors import UnsupportedArchError
from goauld.payloads import aarch64, x86, x86_64


def first_shellcode(
    proc_class: ProcClass, var_addr: int, alloc_len: int, arch: Arch | None = None
) -> bytes:
    """Build the first stage for a process of ``proc_class``."""
    arch = arch or host_arch()
    if arch is Arch.AARCH64:
        return aarch64.first_shellcode(var_addr, alloc_len)
    if proc_class is ProcClass.THIRTY_TWO:
        return x86.first_shellcode(var_addr, alloc_len)
    if arch is Arch.X86:
        raise UnsupportedArchError("64-bit targets are not supported on x86 hosts")
    return x86_64.first_shellcode(var_addr, alloc_len)


def raw_dlopen_shellcode(
    proc_class: ProcClass,
    dlopen_addr: int,
    dlopen_path: str | bytes,
    jmp_addr: int,
    arch: Arch | None = None,
) -> bytes:
    """Build the dlopen stage for a process of ``proc_class``."""
    arch = arch or host_arch()
    if arch is Arch.AARCH64:
        return aarch64.raw_dlopen_shellcode(dlopen_addr, dlopen_path, jmp_addr)
    if proc_class is ProcClass.THIRTY_TWO:
        return x86.raw_dlopen_shellcode(dlopen_addr, dlopen_path, jmp_addr)
    if arch is Arch.X86:
        raise UnsupportedArchError("64-bit targets are not supported on x86 hosts")
    return x86_64.raw_dlopen_shellcode(dlopen_addr, dlopen_path, jmp_addr)


def self_jmp(arch: Arch | None = None) -> bytes:
    """Build a branch-to-self; only AArch64 needs one."""
    arch = arch or host_arch()
    if arch is Arch.AARCH64:
        return aarch64.self_jmp()
    raise UnsupportedArchError(f"no self jump payload for {arch.value}")