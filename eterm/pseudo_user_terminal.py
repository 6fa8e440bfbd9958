"""A user's login shell started on a pseudo-terminal for the server."""

from __future__ import annotations

import fcntl
import os
import pty
import pwd
import signal
import struct
import termios

ET_VERSION = "1.0"


class PseudoUserTerminal:
    """Forks the user's shell on a pty and exposes the master side."""

    def __init__(self, shell: str | None = None, shell_args=("-l",)) -> None:
        self.shell = shell
        self.shell_args = tuple(shell_args)
        self.pid: int | None = None
        self.master_fd: int | None = None

    @property
    def fd(self) -> int | None:
        return self.master_fd

    def setup(self, router_fd: int) -> int:
        """Start the shell and return the pty master descriptor."""
        pid, fd = pty.fork()
        if pid == 0:
            try:
                os.close(router_fd)
            except OSError:
                pass
            try:
                self.run_terminal()
            finally:
                os._exit(0)
        self.pid = pid
        self.master_fd = fd
        return fd

    def run_terminal(self) -> None:
        """Replace the current process with the user's login shell."""
        os.chdir(pwd.getpwuid(os.getuid()).pw_dir)
        shell = self.shell or os.environ["SHELL"]
        os.environ["ET_VERSION"] = ET_VERSION
        # Shells remember the inherited SIGCHLD disposition; make it the default.
        signal.signal(signal.SIGCHLD, signal.SIG_DFL)
        os.execl(shell, shell, *self.shell_args)

    def cleanup(self) -> None:
        """Release the pty master."""
        if self.master_fd is not None:
            try:
                os.close(self.master_fd)
            except OSError:
                pass
            self.master_fd = None

    def handle_session_end(self) -> int:
        """Reap the shell and return its exit status."""
        if self.pid is None:
            raise RuntimeError("terminal was never started")
        _, status = os.waitpid(self.pid, 0)
        self.pid = None
        return os.waitstatus_to_exitcode(status)

    def set_info(self, rows: int, cols: int, width: int = 0, height: int = 0) -> None:
        """Set the pty window size in characters and pixels."""
        if self.master_fd is None:
            raise RuntimeError("terminal is not open")
        fcntl.ioctl(
            self.master_fd,
            termios.TIOCSWINSZ,
            struct.pack("HHHH", rows, cols, width, height),
        )