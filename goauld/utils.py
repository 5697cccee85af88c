"""File preparation, hex dumps and process helpers."""

from __future__ import annotations

import contextlib
import itertools
import logging
import os
import shutil
import subprocess
import time
from pathlib import Path
from typing import Sequence

from goauld.errors import CommandError, InjectionFileError

log = logging.getLogger(__name__)

HEXDUMP_BUFFER_SIZE = 0x200
ELF_MAGIC = b"\x7fELF"
LINUX_TMP_DIR = "/tmp"
ANDROID_TMP_DIR = "/data/local/tmp"
POLL_INTERVAL = 0.0005


def is_android() -> bool:
    """Tell whether this process runs on Android."""
    return "ANDROID_ROOT" in os.environ or "ANDROID_DATA" in os.environ


def get_dlopen_lib_name(android: bool | None = None) -> str:
    """Name of the library that provides ``dlopen``."""
    if android is None:
        android = is_android()
    return "libdl.so" if android else "libc.so"


def _hex_line(index: int, chunk: bytes) -> str:
    hex_part = "".join(f"{byte:02X} " for byte in chunk).ljust(16 * 3)
    text = "".join(chr(byte) if 0x21 <= byte <= 0x7E else "." for byte in chunk)
    return f"{index * 16:04}: {hex_part} {text}"


def hexdump(buffer: bytes, max_lines: int | None = None) -> str:
    """Render ``buffer`` as 16-byte lines of hex and printable characters."""
    chunks = (buffer[start:start + 16] for start in range(0, len(buffer), 16))
    lines = (_hex_line(index, chunk) for index, chunk in enumerate(chunks))
    if max_lines is not None:
        lines = itertools.islice(lines, max_lines)
    return "\n".join(lines)


def print_file_hexdump(file_path: str | Path) -> str:
    """Log and return a hex dump of the first 0x200 bytes of a file."""
    try:
        with open(file_path, "rb") as handle:
            head = handle.read(HEXDUMP_BUFFER_SIZE)
    except OSError as exc:
        log.error("Error opening file: %s", exc)
        raise InjectionFileError(f"cannot read {file_path}: {exc}") from exc
    dump = hexdump(head.ljust(HEXDUMP_BUFFER_SIZE, b"\0"))
    log.debug("Hexdump of file: %s", dump)
    return dump


def verify_elf_file(file_path: str | Path) -> None:
    """Raise InjectionFileError unless the file starts with the ELF magic."""
    try:
        with open(file_path, "rb") as handle:
            magic = handle.read(4)
    except OSError as exc:
        log.error("Error opening file: %s", exc)
        raise InjectionFileError(f"cannot open {file_path}: {exc}") from exc
    if len(magic) < 4:
        log.error("Error reading file: %s", file_path)
        raise InjectionFileError(f"file too short: {file_path}")
    if magic != ELF_MAGIC:
        log.error("File is not an ELF file")
        raise InjectionFileError(f"not an ELF file: {file_path}")


def copy_file_to_tmp(file_path: str | Path, tmp_dir: str | Path | None = None) -> str:
    """Copy a file into the temporary directory the target can read from."""
    if tmp_dir is None:
        tmp_dir = ANDROID_TMP_DIR if is_android() else LINUX_TMP_DIR
    tmp_dir = Path(tmp_dir)
    try:
        absolute = Path(file_path).resolve(strict=True)
    except OSError as exc:
        log.error("Error getting file path: %s", exc)
        raise InjectionFileError(f"cannot resolve {file_path}: {exc}") from exc

    log.info("File path: %s", absolute)
    if absolute.is_relative_to(tmp_dir):
        log.info("File is already in %s", tmp_dir)
        return str(absolute)

    if not absolute.name:
        log.error("Error getting file name")
        raise InjectionFileError(f"no file name in {absolute}")

    destination = tmp_dir / absolute.name
    log.info("Copying file %s to %s", file_path, destination)
    try:
        shutil.copy(file_path, destination)
    except OSError as exc:
        log.error("Error copying file: %s", exc)
        raise InjectionFileError(f"cannot copy {file_path}: {exc}") from exc
    log.info("File copied successfully")
    return str(destination)


def execute_command(program: str, args: Sequence[str]) -> subprocess.CompletedProcess:
    """Run a program, raising CommandError if it cannot start or fails."""
    command = [program, *args]
    try:
        result = subprocess.run(command, capture_output=True)
    except OSError as exc:
        log.error("Error running cmd %s %s err: %s", program, list(args), exc)
        raise CommandError(f"cannot run {program}: {exc}") from exc
    if result.returncode != 0:
        stderr = (result.stderr or b"").decode(errors="replace")
        log.error("Error running cmd %s %s err: %s", program, list(args), stderr)
        raise CommandError(f"{program} failed: {stderr}")
    log.info("Running cmd successfully: %s %s", program, list(args))
    return result


def fix_file_context(file_path: str | Path) -> None:
    """Give the file the SELinux context that lets ``dlopen`` load it."""
    log.info("Fixing file context for %s", file_path)
    execute_command("chcon", ["u:object_r:apk_data_file:s0", str(file_path)])
    log.info("File context fixed")


def fix_file_permissions(file_path: str | Path) -> None:
    """Make the file readable by everyone."""
    log.info("Fixing file permissions for %s", file_path)
    execute_command("chmod", ["+r", str(file_path)])
    log.info("File permissions fixed")


def get_pid_by_package(pkg_name: str, proc_root: str | Path = "/proc") -> int:
    """Find the pid whose command line is exactly ``pkg_name``; 0 if none."""
    for cmdline in sorted(Path(proc_root).glob("*/cmdline")):
        try:
            contents = cmdline.read_bytes()
        except (FileNotFoundError, ProcessLookupError):
            continue
        name = contents.rstrip(b"\0").decode("utf-8", errors="surrogateescape")
        if name == pkg_name:
            return int(cmdline.parent.name)
    return 0


def get_pid_by_package_with_polling(pkg_name: str, attempts: int = 100) -> int:
    """Poll for the package's pid a limited number of times; 0 if not found."""
    pid = 0
    for _ in range(attempts):
        pid = get_pid_by_package(pkg_name)
        if pid > 0:
            break
        time.sleep(POLL_INTERVAL)
    return pid


def restart_app_and_get_pid(pkg_name: str) -> int:
    """Force-stop and relaunch an Android application, returning its pid."""
    with contextlib.suppress(CommandError):
        execute_command("am", ["force-stop", pkg_name])
    with contextlib.suppress(CommandError):
        execute_command(
            "monkey",
            ["-p", pkg_name, "-c", "android.intent.category.LAUNCHER", "1"],
        )

    pid = get_pid_by_package_with_polling(pkg_name)
    if pid == 0:
        resolved = execute_command(
            "cmd",
            ["package", "resolve-activity", "--brief", pkg_name, "|", "tail", "-n", "1"],
        )
        lines = resolved.stdout.decode().splitlines()
        if not lines:
            raise CommandError(f"no launchable activity for {pkg_name}")
        with contextlib.suppress(CommandError):
            execute_command("am", ["start", lines[-1]])
        pid = get_pid_by_package_with_polling(pkg_name)
    return pid