import struct

import pytest

from goauld.errors import ShellcodeError
from goauld.payloads import aarch64

VAR_ADDR = 0x7F12345000
DLOPEN_ADDR = 0x7F00112233
JMP_ADDR = 0x7F00AABBCC
PATH = "/data/local/tmp/libpayload.so"


def _word(code, index):
    return struct.unpack_from("<I", code, index * 4)[0]


def _literal_target(code, index):
    imm19 = (_word(code, index) >> 5) & 0x7FFFF
    return index * 4 + imm19 * 4


def test_self_jmp_is_branch_to_itself():
    assert aarch64.self_jmp() == bytes.fromhex("00000014")


def test_first_shellcode_ends_with_self_jmp():
    code = aarch64.first_shellcode(VAR_ADDR, 4028)
    assert code.endswith(aarch64.self_jmp())
    assert len(code) % 4 == 0


def test_first_shellcode_loads_var_addr():
    code = aarch64.first_shellcode(VAR_ADDR, 4028)
    target = _literal_target(code, 0)
    assert code[target:target + 8] == VAR_ADDR.to_bytes(8, "little")
    assert code[target - 8:target] == b"\xff" * 8
    assert code[target + 8:target + 16] == (4028).to_bytes(8, "little")


def test_alloc_len_changes_only_its_mov_and_literal():
    a = aarch64.first_shellcode(VAR_ADDR, 0x1000)
    b = aarch64.first_shellcode(VAR_ADDR, 0x2000)
    assert len(a) == len(b)
    differing = [i for i in range(len(a) // 4) if _word(a, i) != _word(b, i)]
    assert len(differing) == 2


def test_alloc_len_shifted_immediate_is_accepted():
    code = aarch64.first_shellcode(VAR_ADDR, 0x10000)
    assert (0x10000).to_bytes(8, "little") in code


@pytest.mark.parametrize("alloc_len", [0x12345, -1])
def test_unencodable_alloc_len(alloc_len):
    with pytest.raises(ShellcodeError):
        aarch64.first_shellcode(VAR_ADDR, alloc_len)


def test_raw_dlopen_adr_points_at_path():
    code = aarch64.raw_dlopen_shellcode(DLOPEN_ADDR, PATH, JMP_ADDR)
    word = _word(code, 0)
    offset = ((word >> 5) & 0x7FFFF) << 2 | (word >> 29) & 0x3
    expected = PATH.encode() + b"\0"
    assert code[offset:offset + len(expected)] == expected


def test_raw_dlopen_literals():
    code = aarch64.raw_dlopen_shellcode(DLOPEN_ADDR, PATH, JMP_ADDR)
    flags_at = _literal_target(code, 1)
    dlopen_at = _literal_target(code, 2)
    assert int.from_bytes(code[flags_at:flags_at + 8], "little") == aarch64.RTLD_NOW
    assert int.from_bytes(code[dlopen_at:dlopen_at + 8], "little") == DLOPEN_ADDR
    assert code.endswith(JMP_ADDR.to_bytes(8, "little"))
    assert len(code) % 4 == 0


def test_raw_dlopen_accepts_bytes_path():
    assert aarch64.raw_dlopen_shellcode(DLOPEN_ADDR, PATH.encode(), JMP_ADDR) == (
        aarch64.raw_dlopen_shellcode(DLOPEN_ADDR, PATH, JMP_ADDR)
    )