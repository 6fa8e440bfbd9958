"""Where the server's router fifo lives, and how clients find it.

As root only ``/var/run`` is used: no environment variables are read and
no directories are created.  Other users get a private directory under
``$XDG_RUNTIME_DIR`` (or ``$HOME/.local/share``).  Problems are reported
by raising rather than by being corrected.
"""

from __future__ import annotations

import errno
import os
import socket
import stat
from typing import Any, Callable, NamedTuple

ROUTER_FIFO_BASENAME = "etserver.idpasskey.fifo"
ROOT_FIFO_DIRECTORY = "/var/run"
ROOT_ROUTER_FIFO_NAME = f"{ROOT_FIFO_DIRECTORY}/{ROUTER_FIFO_BASENAME}"


class FifoConnectionError(ConnectionError):
    """The server fifo could not be connected to."""


class RuntimeDir(NamedTuple):
    path: str
    is_default: bool


def _is_root() -> bool:
    return os.geteuid() == 0


def _is_absolute(path: str) -> bool:
    return path.startswith("/")


def _get_home() -> str:
    home = os.environ.get("HOME")
    if home is None:
        raise RuntimeError("Failed to get the value of the $HOME environment variable.")
    if not _is_absolute(home):
        raise ValueError(f"Unexpected relative path for $HOME environment variable: {home}")
    return home


def get_xdg_runtime_dir() -> RuntimeDir:
    """``$XDG_RUNTIME_DIR`` if absolute, else ``$HOME/.local/share``."""
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir and _is_absolute(runtime_dir):
        return RuntimeDir(runtime_dir, False)
    return RuntimeDir(_get_home() + "/.local/share", True)


def _non_root_fifo_path() -> str:
    return f"{get_xdg_runtime_dir().path}/etserver/{ROUTER_FIFO_BASENAME}"


def _try_create_directory(path: str, mode: int) -> None:
    old_mask = os.umask(0)
    try:
        os.mkdir(path, mode)
    except FileExistsError:
        pass
    finally:
        os.umask(old_mask)


class ServerFifoPath:
    """Computes the fifo path for the server and the endpoint for clients."""

    def __init__(self) -> None:
        self.path_override: str | None = None

    def set_path_override(self, path: str) -> None:
        """Use ``path`` instead of detecting the location."""
        if not path:
            raise ValueError("Server fifo path must not be empty")
        self.path_override = path

    def create_directories_if_required(self) -> None:
        """Create and verify the private fifo directory for non-root users."""
        if self.path_override is not None or _is_root():
            return

        runtime_dir = get_xdg_runtime_dir()
        if runtime_dir.is_default:
            home = _get_home()
            _try_create_directory(home + "/.local", 0o755)
            _try_create_directory(home + "/.local/share", 0o755)

        etserver_dir = runtime_dir.path + "/etserver"
        _try_create_directory(etserver_dir, 0o700)

        info = os.stat(etserver_dir)
        euid = os.geteuid()
        if info.st_uid != euid:
            raise PermissionError(
                "Server fifo directory must be owned by the current user: "
                f"{etserver_dir} (expected euid={euid}, actual={info.st_uid})"
            )
        if not stat.S_ISDIR(info.st_mode):
            raise NotADirectoryError(
                f"Server fifo directory must be a directory: {etserver_dir}"
            )
        if info.st_mode & (stat.S_IWGRP | stat.S_IWOTH):
            raise PermissionError(
                "Server fifo directory must not provide write access to "
                f"group/other: {etserver_dir}"
            )

    def get_path_for_creation(self) -> str:
        """The path at which the server should create its fifo."""
        if self.path_override is not None:
            return self.path_override
        if _is_root():
            return ROOT_ROUTER_FIFO_NAME
        return _non_root_fifo_path()

    def get_endpoint_for_connect(self) -> str | None:
        """The overridden path, or None to let :func:`detect_and_connect` search."""
        return self.path_override


def _connect_unix(path: str) -> socket.socket:
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(path)
    except OSError:
        sock.close()
        raise
    return sock


def _connection_error(exc: OSError) -> FifoConnectionError:
    if exc.errno == errno.ECONNREFUSED:
        message = (
            "Error:  The Eternal Terminal daemon is not running.  "
            "Please (re)start the et daemon on the server."
        )
    else:
        reason = os.strerror(exc.errno) if exc.errno else str(exc)
        message = f"Error:  Connection error communicating with et daemon: {reason}."
    return FifoConnectionError(message)


def detect_and_connect(
    specific_endpoint: str | None = None,
    connect: Callable[[str], Any] = _connect_unix,
) -> Any:
    """Connect to ``specific_endpoint``, or try the root then the user location."""
    if specific_endpoint is not None:
        try:
            return connect(specific_endpoint)
        except OSError as exc:
            raise _connection_error(exc) from exc

    try:
        return connect(ROOT_ROUTER_FIFO_NAME)
    except OSError as exc:
        last_error = exc

    if not _is_root():
        try:
            return connect(_non_root_fifo_path())
        except OSError as exc:
            last_error = exc

    raise _connection_error(last_error) from last_error