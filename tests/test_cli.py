import pytest

from goauld.cli import build_parser, main, parse_symbol


def test_parse_symbol():
    assert parse_symbol("libc.so!malloc") == ("libc.so", "malloc")


def test_parse_symbol_keeps_empty_parts():
    assert parse_symbol("!timezone") == ("", "timezone")


@pytest.mark.parametrize("spec", ["libc.so", "a!b!c", ""])
def test_parse_symbol_invalid(spec):
    with pytest.raises(ValueError):
        parse_symbol(spec)


def test_parser_reads_all_options():
    args = build_parser().parse_args(
        ["-p", "12", "-f", "lib.so", "--func-sym", "libc.so!malloc",
         "--var-sym", "libc.so!timezone", "-d", "--logcat", "-a", "com.example.app"]
    )
    assert args.pid == 12
    assert args.file == "lib.so"
    assert args.func_sym == "libc.so!malloc"
    assert args.var_sym == "libc.so!timezone"
    assert args.debug is True
    assert args.logcat is True
    assert args.app_package_name == "com.example.app"


def test_parser_defaults():
    args = build_parser().parse_args(["--file", "lib.so"])
    assert args.pid is None
    assert args.func_sym is None
    assert args.var_sym is None
    assert args.debug is False


def test_file_is_required():
    with pytest.raises(SystemExit) as info:
        main(["--pid", "1"])
    assert info.value.code == 2


def test_missing_process_fails(tmp_path):
    library = tmp_path / "lib.so"
    library.write_bytes(b"\x7fELF")
    assert main(["--pid", "99999999", "--file", str(library)]) == 1