"""Access to ``/proc/<pid>``: memory, mappings and the executable's class."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from goauld.arch import ProcClass, proc_class_for_machine
from goauld.errors import (
    MissingModuleError,
    OpenMemoryError,
    ProcessNotRunningError,
    ReadMemoryError,
    RemoteModuleError,
    RemoteProcessError,
    UnsupportedArchError,
    WriteMemoryError,
)
from goauld.resolv import RemoteModule, read_elf_machine

log = logging.getLogger(__name__)

PROC_ROOT = Path("/proc")
ELF_HEADER_SIZE = 0x40


@dataclass(frozen=True)
class MapRange:
    """One line of ``/proc/<pid>/maps``."""

    start: int
    end: int
    perms: str
    offset: int
    dev: str
    inode: int
    pathname: str = ""

    @classmethod
    def from_line(cls, line: str) -> "MapRange":
        """Parse a maps line; a malformed line is a ValueError."""
        parts = line.rstrip("\n").split(maxsplit=5)
        if len(parts) < 5:
            raise ValueError(f"malformed maps line: {line!r}")
        try:
            start_text, end_text = parts[0].split("-")
            start, end = int(start_text, 16), int(end_text, 16)
            offset = int(parts[2], 16)
            inode = int(parts[4])
        except ValueError as exc:
            raise ValueError(f"malformed maps line: {line!r}") from exc
        pathname = parts[5] if len(parts) > 5 else ""
        return cls(start, end, parts[1], offset, parts[3], inode, pathname)

    @property
    def size(self) -> int:
        """Length of the mapping in bytes."""
        return self.end - self.start

    @property
    def filename(self) -> str | None:
        """Last component of the mapped path, or None for anonymous mappings."""
        if not self.pathname:
            return None
        return Path(self.pathname).name or None


def parse_maps(text: str) -> list[MapRange]:
    """Parse the whole content of a maps file, skipping blank lines."""
    return [MapRange.from_line(line) for line in text.splitlines() if line.strip()]


class Mem:
    """Random access to the memory file of a process."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        log.debug("Opening %s", self.path)
        try:
            self._fd: int | None = os.open(self.path, os.O_RDWR)
        except OSError as exc:
            raise OpenMemoryError(f"cannot open {self.path}: {exc}") from exc

    def read(self, addr: int, length: int) -> bytes:
        """Read exactly ``length`` bytes at ``addr``."""
        log.debug("reading from remote memory: addr: 0x%x, len: %d", addr, length)
        if self._fd is None:
            raise ReadMemoryError("memory file is closed")
        try:
            data = os.pread(self._fd, length, addr)
        except (OSError, OverflowError, ValueError) as exc:
            raise ReadMemoryError(f"cannot read 0x{addr:x}: {exc}") from exc
        if len(data) != length:
            raise ReadMemoryError(f"short read at 0x{addr:x}: {len(data)} of {length}")
        return data

    def write(self, addr: int, data: bytes) -> None:
        """Write all of ``data`` at ``addr``."""
        log.debug("writing into remote memory: addr: 0x%x, len: %d", addr, len(data))
        if self._fd is None:
            raise WriteMemoryError("memory file is closed")
        view = memoryview(bytes(data))
        written = 0
        try:
            while written < len(view):
                count = os.pwrite(self._fd, view[written:], addr + written)
                if count == 0:
                    raise WriteMemoryError(f"no progress writing at 0x{addr + written:x}")
                written += count
        except (OSError, OverflowError, ValueError) as exc:
            raise WriteMemoryError(f"cannot write 0x{addr:x}: {exc}") from exc

    def close(self) -> None:
        """Close the memory file; closing twice is harmless."""
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> "Mem":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Maps:
    """The mappings of a process, with its memory to read modules from."""

    def __init__(self, path: str | Path, mem: Mem) -> None:
        self.path = Path(path)
        self.mem = mem

    def __enter__(self) -> "Maps":
        return self

    def __exit__(self, *exc_info) -> None:
        self.mem.close()

    def _ranges(self) -> list[MapRange]:
        try:
            return parse_maps(self.path.read_text())
        except (OSError, ValueError) as exc:
            raise RemoteProcessError(f"cannot read {self.path}: {exc}") from exc

    def maps_by_name(self, name: str) -> list[MapRange]:
        """Mappings whose file name starts with ``name``."""
        matches = [
            entry for entry in self._ranges()
            if entry.filename is not None and entry.filename.startswith(name)
        ]
        if not matches:
            raise MissingModuleError(f"module not mapped: {name}")
        return matches

    def module_bytes(self, module_name: str) -> bytes:
        """Reassemble a module's image, placing each mapping at its file offset."""
        image = bytearray()
        for entry in self.maps_by_name(module_name):
            if len(image) > entry.offset:
                del image[entry.offset:]
            else:
                image.extend(bytes(entry.offset - len(image)))
            image += self.mem.read(entry.start, entry.size)
        return bytes(image)

    def module(self, module_name: str) -> RemoteModule:
        """The module's path, base address and bytes."""
        first = self.maps_by_name(module_name)[0]
        return RemoteModule(first.pathname, first.start, self.module_bytes(module_name))


@dataclass(frozen=True)
class Proc:
    """A ``/proc/<pid>`` directory."""

    path: Path
    pid: int

    @classmethod
    def current(cls) -> "Proc":
        """The running process."""
        return cls(PROC_ROOT / "self", 0)

    @classmethod
    def from_pid(cls, pid: int) -> "Proc":
        """The process ``pid``; raises ProcessNotRunningError if it does not exist."""
        path = PROC_ROOT / str(pid)
        if not path.exists():
            raise ProcessNotRunningError(f"no such process: {pid}")
        return cls(path, pid)

    def owner(self) -> tuple[int, int]:
        """User and group ids owning the process."""
        status = self.path.stat()
        return status.st_uid, status.st_gid

    def exe(self) -> BinaryIO:
        """Open the process executable."""
        return open(self.path / "exe", "rb")

    def maps(self) -> Maps:
        """The process mappings, backed by its memory file."""
        return Maps(self.path / "maps", self.mem())

    def mem(self) -> Mem:
        """Open the process memory file."""
        return Mem(self.path / "mem")

    def syscall(self) -> BinaryIO:
        """Open the process syscall file."""
        return open(self.path / "syscall", "rb")

    def task(self) -> list[Path]:
        """The thread directories of the process."""
        return sorted((self.path / "task").iterdir())

    def proc_class(self) -> ProcClass | None:
        """Word size of the executable, or None if it cannot be injected from here."""
        try:
            with self.exe() as handle:
                header = handle.read(ELF_HEADER_SIZE)
        except OSError:
            return None
        if len(header) < ELF_HEADER_SIZE:
            return None
        try:
            return proc_class_for_machine(read_elf_machine(header))
        except (RemoteModuleError, UnsupportedArchError):
            return None

    def privileged(self) -> bool:
        """Whether the process belongs to root."""
        return self.owner()[0] == 0