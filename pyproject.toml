[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "goauld"
version = "0.1.0"
description = "Load a shared library into a running Linux or Android process by writing to /proc/<pid>/mem"
requires-python = ">=3.10"
dependencies = []
keywords = ["injection", "dlopen", "procfs", "linux", "android", "elf", "instrumentation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Operating System :: Android",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Debuggers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
goauld-cli = "goauld.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["goauld"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
