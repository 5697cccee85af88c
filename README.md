# goauld

goauld loads a shared library into a process that is already running on
Linux or Android. It does not use `ptrace`. It reads and writes the target's
memory through `/proc/<pid>/mem`.

## How it works

1. **Prepare the library.** goauld checks that the library starts with the
   ELF magic. It then copies the library into a temporary directory that the
   target can read: `/tmp`, or `/data/local/tmp` on Android. If the file is
   already under that directory, it is used where it is. On Android, goauld
   also does the following to the copy:
   - sets its SELinux context with `chcon`;
   - makes it readable with `chmod +r`;
   - logs a hex dump of it at debug level.
2. **Find the addresses.** goauld finds the address of `dlopen`, taken from
   `libdl.so` on Android and `libc.so` elsewhere. It also finds two hijack
   symbols:
   - a function, `malloc` in `libc.so` by default;
   - a variable, `timezone` in `libc.so` by default.

   To find a symbol, goauld looks for the first mapping in
   `/proc/<pid>/maps` whose file name starts with the library name. It then
   reads the ELF symbol tables of that file on disk, trying `.symtab` first
   and `.dynsym` second.
3. **Write the first stage.** goauld overwrites the start of the hijacked
   function with a first-stage payload. It also clears the hijacked
   variable. The next thread that calls the function does this:
   1. takes a lock bit in the variable;
   2. saves its registers;
   3. maps a fresh RWX page;
   4. publishes the page's address through the variable;
   5. spins in that page.
4. **Write the second stage.** goauld polls the variable until the address
   appears. On an AArch64 host, it first parks the hijacked function on a
   branch to itself. It then waits one second and restores the original
   bytes of both symbols. Finally it writes a second-stage payload into the
   new page. That payload does three things:
   1. calls `dlopen(path, RTLD_NOW)`;
   2. restores the registers;
   3. jumps back into the original function.

Payloads are built for the machine goauld runs on:

| Host | Target processes |
| --- | --- |
| AArch64 | AArch64 and 32-bit ARM |
| x86-64 | x86-64 and 32-bit x86 |
| x86 | 32-bit x86 |

## Requirements

- Linux or Android.
- Python 3.10 or later. There are no other dependencies.
- Enough privilege, which depends on `/proc/sys/kernel/yama/ptrace_scope`:

  | Value | What is needed |
  | --- | --- |
  | 0, or the file is missing | You must be root only when the target runs as root. |
  | 1 or 2 | You must be root. |
  | 3 | goauld refuses. |

## Command line

```
goauld-cli --pid 1234 --file ./libpayload.so
```

| Option | Meaning |
| --- | --- |
| `-p`, `--pid` | pid of the target process |
| `-a`, `--app-package-name` | On Android only, and only when no pid is given. Force-stops the package, relaunches it with `am` and `monkey`, and injects into the new process. |
| `-f`, `--file` | path of the shared library to load (required) |
| `--func-sym` | function to hijack, written `lib.so!symbol_name` |
| `--var-sym` | variable to hijack, written `lib.so!symbol_name` |
| `-d`, `--debug` | enable debug logs |
| `--logcat` | accepted but has no effect; logs always go to standard error |

If either `--func-sym` or `--var-sym` is left out, the defaults
`libc.so!malloc` and `libc.so!timezone` are used. The command exits with
status 0 on success and 1 on any failure.

## Library use

```python
from goauld.injector import Injector

injector = Injector(1234)
injector.set_file_path("./libpayload.so")
injector.use_raw_dlopen()
injector.set_default_syms()
injector.inject()
```

`Injector` also takes these keyword arguments:

| Argument | Meaning |
| --- | --- |
| `proc` | a `goauld.process.Proc` |
| `scope` | a `goauld.ptrace.PtraceScope`, used instead of reading the real one |
| `tmp_dir` | where the library is copied |

`Injector.restart_app_and_get_pid(package)` restarts an Android application
and returns its pid.

Failures raise subclasses of `goauld.errors.InjectionError`, for example:

- `ProcessNotRunningError`
- `InsufficientPrivilegesError`
- `InjectionFileError`
- `MissingModuleError`
- `SymbolNotFoundError`
- `UnsupportedArchError`

Lower-level pieces:

- `goauld.process`:
  - `Proc`
  - `Maps`, with `maps_by_name`, `module_bytes` and `module`
  - `Mem`, a context manager with `read` and `write`
  - `parse_maps`
- `goauld.resolv`:
  - `read_elf_machine`
  - `read_elf_symbols`
  - `find_symbol_offset`
  - `RemoteModule.dlsym_from_fs`
- `goauld.payloads.dispatch`:
  - `first_shellcode`
  - `raw_dlopen_shellcode`
  - `self_jmp`

  These dispatch to `goauld.payloads.aarch64`, `goauld.payloads.x86` and
  `goauld.payloads.x86_64`.
- `goauld.utils`:
  - `hexdump`
  - `verify_elf_file`
  - `copy_file_to_tmp`
  - `get_pid_by_package`

## What it does not do

- It does not log to logcat. The `--logcat` option is ignored.
- Symbols are resolved only from library files on disk, never from the
  target's memory.
- There is no timeout. If no thread calls the hijacked function, `inject`
  keeps polling forever.
- There is no tool for building the library to inject, and no test target
  process.

## Running the tests

```
pip install -e .[test]
pytest
```