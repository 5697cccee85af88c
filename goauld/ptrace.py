"""Reading of the Yama ``ptrace_scope`` setting."""

from __future__ import annotations

import enum
from pathlib import Path

PTRACE_SCOPE_PATH = "/proc/sys/kernel/yama/ptrace_scope"


class PtraceScope(enum.IntEnum):
    """Content of ``/proc/sys/kernel/yama/ptrace_scope``.

    Even without ptrace, readability of ``/proc/<pid>`` depends on it.
    """

    ALL = 0
    RESTRICTED = 1
    ADMIN = 2
    NONE = 3

    @classmethod
    def from_text(cls, text: str) -> "PtraceScope":
        """Parse the file content; anything but 0 to 3 is a ValueError."""
        stripped = text.strip()
        if stripped not in {"0", "1", "2", "3"}:
            raise ValueError(f"unexpected ptrace_scope value: {stripped!r}")
        return cls(int(stripped))

    @classmethod
    def current(cls, path: str | Path = PTRACE_SCOPE_PATH) -> "PtraceScope":
        """Read the current scope; without Yama every process is reachable."""
        try:
            text = Path(path).read_text()
        except OSError:
            return cls.ALL
        return cls.from_text(text)