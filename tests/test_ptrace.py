import pytest

from goauld.ptrace import PtraceScope


@pytest.mark.parametrize(
    "text, expected",
    [
        ("0", PtraceScope.ALL),
        ("1\n", PtraceScope.RESTRICTED),
        (" 2 ", PtraceScope.ADMIN),
        ("3\n", PtraceScope.NONE),
    ],
)
def test_from_text(text, expected):
    assert PtraceScope.from_text(text) is expected


@pytest.mark.parametrize("text", ["4", "", "all", "-1"])
def test_from_text_rejects_unknown_values(text):
    with pytest.raises(ValueError):
        PtraceScope.from_text(text)


def test_current_reads_file(tmp_path):
    scope_file = tmp_path / "ptrace_scope"
    scope_file.write_text("2\n")
    assert PtraceScope.current(scope_file) is PtraceScope.ADMIN


def test_current_defaults_to_all_without_file(tmp_path):
    assert PtraceScope.current(tmp_path / "missing") is PtraceScope.ALL


def test_current_rejects_garbage(tmp_path):
    scope_file = tmp_path / "ptrace_scope"
    scope_file.write_text("9")
    with pytest.raises(ValueError):
        PtraceScope.current(scope_file)


@pytest.mark.parametrize("number", [0, 1, 2, 3])
def test_values_follow_file_numbers(number):
    assert PtraceScope.from_text(str(number)).value == number