"""Command line entry point for injecting a library into a running process."""

from __future__ import annotations

import argparse
import logging

from goauld.errors import InjectionError
from goauld.injector import Injector
from goauld.utils import is_android

log = logging.getLogger(__name__)


def parse_symbol(spec: str) -> tuple[str, str]:
    """Split ``lib.so!symbol_name`` into library and symbol."""
    parts = spec.split("!")
    if len(parts) != 2:
        raise ValueError(f"invalid symbol format {spec!r}, use lib.so!symbol_name")
    return parts[0], parts[1]


def build_parser() -> argparse.ArgumentParser:
    """The argument parser of the command."""
    parser = argparse.ArgumentParser(
        prog="goauld-cli",
        description="Inject code into a running process using /proc/pid/mem",
    )
    parser.add_argument("-p", "--pid", type=int, help="pid of the target process")
    parser.add_argument(
        "-a", "--app-package-name",
        help="target application's package name, (re)start the application and do injection",
    )
    parser.add_argument("-f", "--file", required=True, help="path of the library to inject")
    parser.add_argument(
        "--func-sym",
        help='function to hijack for injection, in the form "lib.so!symbol_name"',
    )
    parser.add_argument(
        "--var-sym",
        help='variable to hijack for injection, in the form "lib.so!symbol_name"',
    )
    parser.add_argument("-d", "--debug", action="store_true", help="enable debug logs")
    parser.add_argument("--logcat", action="store_true", help="print logs to logcat")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the command; returns the process exit status."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    target_pid = args.pid or 0
    try:
        if target_pid <= 0 and is_android():
            if not args.app_package_name:
                log.error("No pid or app_package_name is specified")
                return 1
            target_pid = Injector.restart_app_and_get_pid(args.app_package_name)

        log.info("target process pid: %d", target_pid)
        injector = Injector(target_pid)
        injector.set_file_path(args.file)
        injector.use_raw_dlopen()
        log.info("use_raw_dlopen successful")

        if args.func_sym is not None:
            injector.set_func_sym(*parse_symbol(args.func_sym))
        if args.var_sym is not None:
            injector.set_var_sym(*parse_symbol(args.var_sym))

        if args.func_sym is None or args.var_sym is None:
            log.warning("function or variable symbol not specified, using defaults")
            injector.set_default_syms()

        injector.inject()
    except (InjectionError, ValueError, OSError) as exc:
        log.error("Injection failed: %s: %s", type(exc).__name__, exc)
        return 1

    log.info("Injection successful")
    return 0