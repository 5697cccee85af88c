import os
import struct
from pathlib import Path

import pytest

from goauld.arch import proc_class_for_machine
from goauld.errors import (
    MissingModuleError,
    OpenMemoryError,
    ProcessNotRunningError,
    ReadMemoryError,
    RemoteProcessError,
    WriteMemoryError,
)
from goauld.process import MapRange, Mem, Proc, parse_maps

MEMORY = bytes(i % 251 for i in range(0x400))


def elf_header(machine):
    ident = b"\x7fELF\x02\x01\x01" + bytes(9)
    return (ident + struct.pack("<HH", 2, machine)).ljust(0x40, b"\0")


@pytest.fixture
def proc_dir(tmp_path):
    directory = tmp_path / "4242"
    directory.mkdir()
    (directory / "mem").write_bytes(MEMORY)
    return directory


def write_maps(directory, lines):
    (directory / "maps").write_text("".join(line + "\n" for line in lines))


def test_map_range_from_line():
    entry = MapRange.from_line("00000100-00000110 r--p 00000000 08:01 42 /lib/libfoo.so.1\n")
    assert entry.start == 0x100
    assert entry.end == 0x110
    assert entry.perms == "r--p"
    assert entry.offset == 0
    assert entry.dev == "08:01"
    assert entry.inode == 42
    assert entry.pathname == "/lib/libfoo.so.1"
    assert entry.filename == "libfoo.so.1"
    assert entry.size == 0x10


def test_map_range_keeps_spaces_in_path():
    entry = MapRange.from_line("1000-2000 r-xp 00000000 08:01 7      /tmp/my lib.so")
    assert entry.pathname == "/tmp/my lib.so"
    assert entry.filename == "my lib.so"


def test_anonymous_mapping_has_no_filename():
    entry = MapRange.from_line("1000-2000 rw-p 00000000 00:00 0")
    assert entry.pathname == ""
    assert entry.filename is None


@pytest.mark.parametrize("line", ["garbage", "zz-10 r--p 0 00:00 0", "10 r--p 0 00:00 0 /x"])
def test_malformed_map_line(line):
    with pytest.raises(ValueError):
        MapRange.from_line(line)


def test_parse_maps_skips_blank_lines():
    ranges = parse_maps("1000-2000 r--p 0 00:00 0 /a\n\n3000-4000 r--p 0 00:00 0 /b\n")
    assert [entry.pathname for entry in ranges] == ["/a", "/b"]


def test_mem_round_trip(proc_dir):
    with Mem(proc_dir / "mem") as mem:
        mem.write(0x20, b"hello")
        assert mem.read(0x20, 5) == b"hello"
        assert mem.read(0x10, 4) == MEMORY[0x10:0x14]


def test_mem_short_read(proc_dir):
    with Mem(proc_dir / "mem") as mem:
        with pytest.raises(ReadMemoryError):
            mem.read(len(MEMORY) - 2, 8)


def test_mem_open_missing(tmp_path):
    with pytest.raises(OpenMemoryError):
        Mem(tmp_path / "missing")


def test_mem_closed(proc_dir):
    mem = Mem(proc_dir / "mem")
    mem.close()
    mem.close()
    with pytest.raises(ReadMemoryError):
        mem.read(0, 1)
    with pytest.raises(WriteMemoryError):
        mem.write(0, b"x")


def test_maps_by_name_prefix(proc_dir):
    write_maps(proc_dir, [
        "00000100-00000110 r--p 00000000 08:01 42 /lib/libfoo.so.1",
        "00000200-00000210 r-xp 00000018 08:01 42 /lib/libfoo.so.1",
        "00000300-00000310 rw-p 00000000 00:00 0",
        "00000310-00000320 rw-p 00000000 00:00 0 [heap]",
    ])
    with Proc(proc_dir, 4242).maps() as maps:
        found = maps.maps_by_name("libfoo.so")
        assert [entry.start for entry in found] == [0x100, 0x200]
        with pytest.raises(MissingModuleError):
            maps.maps_by_name("libbar")


def test_module_bytes_pads_to_offset(proc_dir):
    write_maps(proc_dir, [
        "00000100-00000110 r--p 00000000 08:01 42 /lib/libfoo.so.1",
        "00000200-00000210 r-xp 00000018 08:01 42 /lib/libfoo.so.1",
    ])
    with Proc(proc_dir, 4242).maps() as maps:
        image = maps.module_bytes("libfoo")
    assert image == MEMORY[0x100:0x110] + bytes(8) + MEMORY[0x200:0x210]


def test_module_bytes_truncates_to_offset(proc_dir):
    write_maps(proc_dir, [
        "00000100-00000110 r--p 00000000 08:01 42 /lib/libfoo.so.1",
        "00000200-00000210 r-xp 00000008 08:01 42 /lib/libfoo.so.1",
    ])
    with Proc(proc_dir, 4242).maps() as maps:
        image = maps.module_bytes("libfoo")
    assert image == MEMORY[0x100:0x108] + MEMORY[0x200:0x210]


def test_module(proc_dir):
    write_maps(proc_dir, ["00000100-00000110 r--p 00000000 08:01 42 /lib/libfoo.so.1"])
    with Proc(proc_dir, 4242).maps() as maps:
        module = maps.module("libfoo")
    assert module.name == "/lib/libfoo.so.1"
    assert module.vm_addr == 0x100
    assert module.data == MEMORY[0x100:0x110]


def test_missing_maps_file(proc_dir):
    with Proc(proc_dir, 4242).maps() as maps:
        with pytest.raises(RemoteProcessError):
            maps.maps_by_name("libfoo")


def test_current_proc():
    current = Proc.current()
    assert current.path == Path("/proc/self")
    assert current.pid == 0


def test_from_pid_missing():
    with pytest.raises(ProcessNotRunningError):
        Proc.from_pid(99999999)


def test_from_pid_self():
    proc = Proc.from_pid(os.getpid())
    assert proc.pid == os.getpid()
    assert proc.path == Path("/proc") / str(os.getpid())


def test_owner_and_privileged(proc_dir):
    proc = Proc(proc_dir, 4242)
    status = os.stat(proc_dir)
    assert proc.owner() == (status.st_uid, status.st_gid)
    assert proc.privileged() is (status.st_uid == 0)


def test_task_and_syscall(proc_dir):
    (proc_dir / "task").mkdir()
    (proc_dir / "task" / "2").mkdir()
    (proc_dir / "task" / "1").mkdir()
    (proc_dir / "syscall").write_bytes(b"running")
    proc = Proc(proc_dir, 4242)
    assert [entry.name for entry in proc.task()] == ["1", "2"]
    with proc.syscall() as handle:
        assert handle.read() == b"running"


def test_proc_class_unknown_machine(proc_dir):
    (proc_dir / "exe").write_bytes(elf_header(0))
    assert Proc(proc_dir, 4242).proc_class() is None


def test_proc_class_short_or_missing(proc_dir):
    proc = Proc(proc_dir, 4242)
    assert proc.proc_class() is None
    (proc_dir / "exe").write_bytes(elf_header(62)[:0x20])
    assert proc.proc_class() is None


def test_proc_class_matches_machine_table(proc_dir):
    (proc_dir / "exe").write_bytes(elf_header(62))
    try:
        expected = proc_class_for_machine(62)
    except Exception:
        expected = None
    assert Proc(proc_dir, 4242).proc_class() == expected