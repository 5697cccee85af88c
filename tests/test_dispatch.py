import pytest

from goauld.arch import Arch, ProcClass
from goauld.errors import UnsupportedArchError
from goauld.payloads import aarch64, dispatch, x86, x86_64

VAR_ADDR = 0x10000000
DLOPEN_ADDR = 0x20000000
JMP_ADDR = 0x30000000
PATH = "/tmp/libpayload.so"


@pytest.mark.parametrize(
    "proc_class, arch, module",
    [
        (ProcClass.SIXTY_FOUR, Arch.AARCH64, aarch64),
        (ProcClass.THIRTY_TWO, Arch.AARCH64, aarch64),
        (ProcClass.THIRTY_TWO, Arch.X86, x86),
        (ProcClass.THIRTY_TWO, Arch.X86_64, x86),
        (ProcClass.SIXTY_FOUR, Arch.X86_64, x86_64),
    ],
)
def test_routes_to_builder(proc_class, arch, module):
    assert dispatch.first_shellcode(proc_class, VAR_ADDR, 4028, arch) == (
        module.first_shellcode(VAR_ADDR, 4028)
    )
    assert dispatch.raw_dlopen_shellcode(proc_class, DLOPEN_ADDR, PATH, JMP_ADDR, arch) == (
        module.raw_dlopen_shellcode(DLOPEN_ADDR, PATH, JMP_ADDR)
    )


def test_sixty_four_bit_on_x86_is_unsupported():
    with pytest.raises(UnsupportedArchError):
        dispatch.first_shellcode(ProcClass.SIXTY_FOUR, VAR_ADDR, 4028, Arch.X86)
    with pytest.raises(UnsupportedArchError):
        dispatch.raw_dlopen_shellcode(ProcClass.SIXTY_FOUR, DLOPEN_ADDR, PATH, JMP_ADDR, Arch.X86)


def test_self_jmp_on_aarch64():
    assert dispatch.self_jmp(Arch.AARCH64) == aarch64.self_jmp()


@pytest.mark.parametrize("arch", [Arch.X86, Arch.X86_64])
def test_self_jmp_elsewhere_is_unsupported(arch):
    with pytest.raises(UnsupportedArchError):
        dispatch.self_jmp(arch)


def test_default_arch_comes_from_host(monkeypatch):
    monkeypatch.setattr("platform.machine", lambda: "x86_64")
    assert dispatch.first_shellcode(ProcClass.SIXTY_FOUR, VAR_ADDR, 4028) == (
        x86_64.first_shellcode(VAR_ADDR, 4028)
    )