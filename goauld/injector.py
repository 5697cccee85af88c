"""Injection of a shared library into a running process through its memory file."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from goauld import utils
from goauld.arch import Arch, host_arch
from goauld.errors import (
    InjectionFileError,
    InsufficientPrivilegesError,
    PidNotFoundError,
    SymbolNotFoundError,
    UnsupportedArchError,
)
from goauld.payloads import dispatch as payloads
from goauld.process import Mem, Proc
from goauld.ptrace import PtraceScope
from goauld.resolv import RemoteModule

log = logging.getLogger(__name__)

FIRST_STAGE_ALLOC_LEN = 4028
POLL_INTERVAL = 0.001
SETTLE_DELAY = 1.0
MAP_ADDRESS_MASK = 0xFFFF_FFFF_FFFF_FFF0


def has_sufficient_privileges(
    scope: PtraceScope, target_privileged: bool, self_privileged: bool
) -> bool:
    """Whether the current process may access the target under ``scope``."""
    if scope is PtraceScope.ALL:
        return not target_privileged or self_privileged
    if scope in (PtraceScope.RESTRICTED, PtraceScope.ADMIN):
        return self_privileged
    return False


class Injector:
    """Loads a library into a target process by hijacking a function and a variable."""

    def __init__(
        self,
        pid: int,
        *,
        proc: Proc | None = None,
        scope: PtraceScope | None = None,
        tmp_dir: str | Path | None = None,
    ) -> None:
        log.info("[GOAULD][NEW] injector for pid: %d", pid)
        self.pid = pid
        self.proc = proc if proc is not None else Proc.from_pid(pid)
        scope = PtraceScope.current() if scope is None else scope
        if not has_sufficient_privileges(
            scope, self.proc.privileged(), Proc.current().privileged()
        ):
            raise InsufficientPrivilegesError(f"cannot access process {pid}")
        self.tmp_dir = tmp_dir
        self.file_path = ""
        self.func_sym_name = ""
        self.func_sym_addr = 0
        self.var_sym_name = ""
        self.var_sym_addr = 0
        self._modules: dict[str, RemoteModule] = {}
        self._symbols: dict[str, int] = {}

    def set_file_path(self, file_path: str | Path) -> "Injector":
        """Choose the library to inject; it must be readable."""
        try:
            with open(file_path, "rb"):
                pass
        except OSError as exc:
            log.error("File not found: %s", file_path)
            raise InjectionFileError(f"cannot open {file_path}: {exc}") from exc
        self.file_path = str(file_path)
        return self

    def prepare_file(self) -> str:
        """Verify the library and copy it where the target can load it."""
        utils.verify_elf_file(self.file_path)
        tmp_path = utils.copy_file_to_tmp(self.file_path, self.tmp_dir)
        if utils.is_android():
            utils.fix_file_context(tmp_path)
            utils.fix_file_permissions(tmp_path)
            utils.print_file_hexdump(tmp_path)
        return tmp_path

    def _add_sym(self, module_name: str, sym_name: str) -> int:
        log.debug("add_sym: %s!%s", module_name, sym_name)
        module = self._modules.get(module_name)
        if module is None:
            with self.proc.maps() as maps:
                module = maps.module(module_name)
            self._modules[module_name] = module
        log.debug("add_sym: %s 0x%x", module_name, module.vm_addr)
        if sym_name not in self._symbols:
            self._symbols[sym_name] = module.dlsym_from_fs(sym_name)
        address = self._symbols[sym_name]
        log.debug("add_sym: %s 0x%x", sym_name, address)
        return address

    def set_func_sym(self, module_name: str, sym_name: str) -> "Injector":
        """Choose the function whose code is hijacked."""
        self.func_sym_addr = self._add_sym(module_name, sym_name)
        self.func_sym_name = sym_name
        log.debug("set_func_sym: %s 0x%x", sym_name, self.func_sym_addr)
        return self

    def set_var_sym(self, module_name: str, sym_name: str) -> "Injector":
        """Choose the variable used to synchronise with the target."""
        self.var_sym_addr = self._add_sym(module_name, sym_name)
        self.var_sym_name = sym_name
        log.debug("set_var_sym: %s 0x%x", sym_name, self.var_sym_addr)
        return self

    def set_default_syms(self) -> "Injector":
        """Hijack ``malloc`` and ``timezone`` from libc."""
        self.set_func_sym("libc.so", "malloc")
        self.set_var_sym("libc.so", "timezone")
        return self

    def use_raw_dlopen(self) -> "Injector":
        """Resolve ``dlopen`` in the target, needed by the second stage."""
        self.set_func_sym(utils.get_dlopen_lib_name(), "dlopen")
        return self

    @staticmethod
    def restart_app_and_get_pid(package_name: str) -> int:
        """Restart an Android application and return its new pid."""
        pid = utils.restart_app_and_get_pid(package_name)
        if pid <= 0:
            raise PidNotFoundError(f"no pid for package {package_name}")
        return pid

    def _wait_for_first_stage(self, mem: Mem) -> int:
        while True:
            time.sleep(POLL_INTERVAL)
            value = int.from_bytes(mem.read(self.var_sym_addr, 8), "little")
            if value & 0x1 and value & MAP_ADDRESS_MASK:
                log.info("Boom ... 0x%x", value)
                return value & MAP_ADDRESS_MASK

    def inject(self) -> None:
        """Load the library into the target and restore its original state."""
        file_path = self.prepare_file()

        if not self.func_sym_name or not self.var_sym_name:
            log.warning("target_func_sym or target_var_sym is empty, using defaults")
            self.set_default_syms()

        proc_class = self.proc.proc_class()
        if proc_class is None:
            raise UnsupportedArchError("unsupported target architecture")
        dlopen_addr = self._symbols.get("dlopen")
        if dlopen_addr is None:
            raise SymbolNotFoundError("dlopen")

        log.info("Building second stage shellcode")
        second_stage = payloads.raw_dlopen_shellcode(
            proc_class, dlopen_addr, file_path, self.func_sym_addr
        )
        log.info("Building first stage shellcode")
        first_stage = payloads.first_shellcode(
            proc_class, self.var_sym_addr, FIRST_STAGE_ALLOC_LEN
        )

        with self.proc.mem() as mem:
            log.info("read original bytes")
            func_original = mem.read(self.func_sym_addr, len(first_stage))
            var_original = mem.read(self.var_sym_addr, 8)

            log.info("write first stage shellcode")
            mem.write(self.var_sym_addr, bytes(8))
            mem.write(self.func_sym_addr, first_stage)

            log.info("wait for shellcode to trigger")
            new_map = self._wait_for_first_stage(mem)
            log.info("new map: 0x%x", new_map)

            if host_arch() is Arch.AARCH64:
                log.info("overwrite malloc with loop")
                mem.write(self.func_sym_addr, payloads.self_jmp())

            time.sleep(SETTLE_DELAY)

            log.info("restore original bytes")
            mem.write(self.func_sym_addr, func_original)
            mem.write(self.var_sym_addr, var_original)

            log.info("overwrite new map")
            mem.write(new_map, second_stage)
        log.info("injection done.")