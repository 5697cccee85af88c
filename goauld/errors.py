"""Exceptions raised while preparing or performing an injection."""


class InjectionError(Exception):
    """Base class for every injection failure."""


class RemoteProcessError(InjectionError):
    """The target process could not be inspected."""


class OpenMemoryError(InjectionError):
    """The memory file of the target process could not be opened."""


class ReadMemoryError(InjectionError):
    """Reading the memory of the target process failed."""


class WriteMemoryError(InjectionError):
    """Writing the memory of the target process failed."""


class RemoteModuleError(InjectionError):
    """A module mapped in the target process could not be parsed."""


class MissingModuleError(InjectionError):
    """No mapping of the requested module exists in the target process."""


class InjectionFileError(InjectionError):
    """The library file could not be opened, read, verified or copied."""


class CommandError(InjectionError):
    """An external command could not be run or exited with failure."""


class ShellcodeError(InjectionError):
    """A payload could not be assembled."""


class PidNotFoundError(InjectionError):
    """No process id could be found for an application package."""


class LibraryNotFoundError(InjectionError):
    """The library providing ``dlopen`` is not mapped in the target process."""

    def __init__(self, library: str) -> None:
        super().__init__(f"library not found: {library}")
        self.library = library


class SymbolNotFoundError(InjectionError):
    """A symbol was not found in the expected library."""

    def __init__(self, symbol: str) -> None:
        super().__init__(f"symbol not found: {symbol}")
        self.symbol = symbol


class InstructionPointerNotFoundError(InjectionError):
    """The instruction pointer of the target process could not be retrieved."""


class UnsupportedArchError(InjectionError):
    """The architecture of the target process is not supported."""


class ProcessNotRunningError(InjectionError):
    """The target process does not exist."""


class InsufficientPrivilegesError(InjectionError):
    """The current process lacks the privileges to access the target."""