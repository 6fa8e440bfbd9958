[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "eterm"
version = "0.1.0"
description = "Headless terminal multiplexer and helpers for resilient remote shells"
requires-python = ">=3.10"
dependencies = [
    "platformdirs",
]
keywords = [
    "terminal",
    "multiplexer",
    "pty",
    "ssh",
    "remote shell",
    "ipc",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Terminals",
    "Topic :: System :: Shells",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
htm = "eterm.htm_client:main"
htmd = "eterm.htm_server:main"

[tool.hatch.build.targets.wheel]
packages = ["eterm"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
