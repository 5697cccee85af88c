"""Load a shared library into a running process through /proc/<pid>/mem."""

__version__ = "0.1.0"