"""A shell running on a pseudo-terminal, with a bounded scrollback."""

from __future__ import annotations

import errno
import fcntl
import os
import pty
import pwd
import select
import signal
import struct
import termios
from collections import deque

HTM_VERSION = "1.0"
MAX_BUFFER_LINES = 1024
MAX_BUFFER_CHARS = 128 * MAX_BUFFER_LINES
READ_SIZE = 16 * 1024


class ScrollbackBuffer:
    """Recent terminal output kept as lines, capped in lines and characters."""

    def __init__(
        self, max_lines: int = MAX_BUFFER_LINES, max_chars: int = MAX_BUFFER_CHARS
    ) -> None:
        self.max_lines = max_lines
        self.max_chars = max_chars
        self.lines: deque[bytes] = deque()
        self.length = 0

    def __len__(self) -> int:
        return len(self.lines)

    def append(self, chunk: bytes) -> None:
        """Add raw output; a newline starts a new line."""
        tokens = chunk.split(b"\n")
        self.length += sum(len(token) for token in tokens)
        if self.lines:
            self.lines[-1] += tokens[0]
            self.lines.extend(tokens[1:])
        else:
            self.lines.extend(tokens)
        while len(self.lines) > self.max_lines:
            self.length -= len(self.lines.popleft())
        while self.length > self.max_chars and self.lines:
            self.length -= len(self.lines.popleft())

    def text(self) -> bytes:
        """The buffered output with lines joined by newlines."""
        return b"\n".join(self.lines)


class TerminalHandler:
    """Runs a login shell on a pty and collects what it prints."""

    def __init__(self, shell: str | None = None, shell_args=("-l",)) -> None:
        self.shell = shell
        self.shell_args = tuple(shell_args)
        self.buffer = ScrollbackBuffer()
        self.running = True
        self.master_fd: int | None = None
        self.child_pid: int | None = None

    def start(self) -> None:
        """Fork the shell on a new pseudo-terminal."""
        shell = self.shell or os.environ["SHELL"]
        pid, fd = pty.fork()
        if pid == 0:
            try:
                os.chdir(pwd.getpwuid(os.getuid()).pw_dir)
            except (KeyError, OSError):
                pass
            os.environ["HTM_VERSION"] = HTM_VERSION
            try:
                os.execl(shell, shell, *self.shell_args)
            except OSError:
                pass
            os._exit(0)
        self.child_pid = pid
        self.master_fd = fd

    def poll(self, timeout: float = 0.01) -> bytes:
        """Wait up to ``timeout`` seconds for output and return what arrived."""
        if not self.running or self.master_fd is None:
            return b""
        try:
            readable, _, _ = select.select([self.master_fd], [], [], timeout)
            if not readable:
                return b""
            chunk = os.read(self.master_fd, READ_SIZE)
        except OSError:
            self._finish()
            return b""
        if not chunk:
            self._finish()
            return b""
        self.buffer.append(chunk)
        return chunk

    def append_data(self, data: bytes) -> None:
        """Send input to the shell."""
        if self.master_fd is None:
            raise RuntimeError("terminal is not open")
        view = memoryview(data)
        while view:
            written = os.write(self.master_fd, view)
            view = view[written:]

    def resize(self, cols: int, rows: int) -> None:
        """Set the window size of the pseudo-terminal."""
        if self.master_fd is None:
            raise RuntimeError("terminal is not open")
        fcntl.ioctl(
            self.master_fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0)
        )

    def stop(self) -> None:
        """Kill the shell."""
        if self.child_pid is not None:
            try:
                os.kill(self.child_pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        self._finish()

    def _finish(self) -> None:
        self.running = False
        if self.child_pid is not None:
            try:
                os.waitpid(self.child_pid, 0)
            except ChildProcessError:
                pass
            except OSError as exc:
                if exc.errno != errno.ECHILD:
                    raise
            self.child_pid = None
        if self.master_fd is not None:
            try:
                os.close(self.master_fd)
            except OSError:
                pass
            self.master_fd = None