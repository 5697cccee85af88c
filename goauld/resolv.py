"""Symbol lookup in ELF files backing modules of a remote process."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from typing import NamedTuple

from goauld.errors import InjectionFileError, RemoteModuleError, SymbolNotFoundError

log = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"
SHT_SYMTAB = 2
SHT_DYNSYM = 11


@dataclass(frozen=True)
class ElfSymbol:
    """A named symbol and its value; ``dynamic`` marks ``.dynsym`` entries."""

    name: str
    value: int
    dynamic: bool


class _Section(NamedTuple):
    kind: int
    offset: int
    size: int
    link: int


def _layout(data: bytes) -> tuple[str, bool]:
    if len(data) < 16 or data[:4] != ELF_MAGIC:
        raise RemoteModuleError("not an ELF file")
    elf_class, encoding = data[4], data[5]
    if elf_class not in (1, 2) or encoding not in (1, 2):
        raise RemoteModuleError("unsupported ELF class or encoding")
    return ("<" if encoding == 1 else ">"), elf_class == 2


def _unpack(fmt: str, data: bytes, offset: int) -> tuple:
    try:
        return struct.unpack_from(fmt, data, offset)
    except struct.error as exc:
        raise RemoteModuleError(f"truncated ELF data at 0x{offset:x}") from exc


def read_elf_machine(data: bytes) -> int:
    """Return the ``e_machine`` field of an ELF header."""
    endian, _ = _layout(data)
    (machine,) = _unpack(endian + "H", data, 18)
    return machine


def _sections(data: bytes, endian: str, is64: bool) -> list[_Section]:
    if is64:
        (shoff,) = _unpack(endian + "Q", data, 0x28)
        shentsize, shnum = _unpack(endian + "HH", data, 0x3A)
        header_fmt = endian + "IIQQQQIIQQ"
    else:
        (shoff,) = _unpack(endian + "I", data, 0x20)
        shentsize, shnum = _unpack(endian + "HH", data, 0x2E)
        header_fmt = endian + "IIIIIIIIII"
    sections = []
    for index in range(shnum):
        fields = _unpack(header_fmt, data, shoff + index * shentsize)
        sections.append(_Section(kind=fields[1], offset=fields[4], size=fields[5], link=fields[6]))
    return sections


def _read_string(data: bytes, table: _Section, index: int) -> str:
    if index >= table.size:
        raise RemoteModuleError(f"string index {index} outside string table")
    start = table.offset + index
    end = data.find(b"\0", start, table.offset + table.size)
    if end == -1:
        raise RemoteModuleError("unterminated string in string table")
    return data[start:end].decode("utf-8", errors="replace")


def _section_symbols(
    data: bytes, sections: list[_Section], section: _Section, endian: str, is64: bool, dynamic: bool
):
    if section.link >= len(sections):
        raise RemoteModuleError("symbol table links to a missing string table")
    strings = sections[section.link]
    entry_fmt = endian + ("IBBHQQ" if is64 else "IIIBBH")
    entry_size = struct.calcsize(entry_fmt)
    for index in range(section.size // entry_size):
        fields = _unpack(entry_fmt, data, section.offset + index * entry_size)
        name_index = fields[0]
        value = fields[4] if is64 else fields[1]
        yield ElfSymbol(_read_string(data, strings, name_index), value, dynamic)


def read_elf_symbols(data: bytes) -> list[ElfSymbol]:
    """List the ``.symtab`` symbols followed by the ``.dynsym`` symbols."""
    endian, is64 = _layout(data)
    sections = _sections(data, endian, is64)
    symbols: list[ElfSymbol] = []
    for kind, dynamic in ((SHT_SYMTAB, False), (SHT_DYNSYM, True)):
        for section in sections:
            if section.kind == kind:
                symbols.extend(_section_symbols(data, sections, section, endian, is64, dynamic))
    return symbols


def find_symbol_offset(data: bytes, symbol_name: str) -> int:
    """Value of a symbol, preferring ``.symtab`` over ``.dynsym``."""
    symbols = read_elf_symbols(data)
    for dynamic in (False, True):
        match = next(
            (s for s in symbols if s.dynamic is dynamic and s.name == symbol_name), None
        )
        if match is not None:
            return match.value
        if not dynamic:
            log.warning("symbol not found in .symtab, trying .dynsym: %s", symbol_name)
    log.error("symbol not found: %s", symbol_name)
    raise SymbolNotFoundError(symbol_name)


@dataclass
class RemoteModule:
    """A module mapped in a remote process: its file, base address and bytes."""

    name: str
    vm_addr: int
    data: bytes = field(default=b"", repr=False)

    def dlsym_from_fs(self, symbol_name: str) -> int:
        """Resolve a symbol's remote address from the module's file on disk."""
        try:
            with open(self.name, "rb") as handle:
                contents = handle.read()
        except OSError as exc:
            raise InjectionFileError(f"cannot read {self.name}: {exc}") from exc
        return find_symbol_offset(contents, symbol_name) + self.vm_addr