"""The multiplexer client: relays the local terminal to the daemon."""

from __future__ import annotations

import argparse
import logging
import os
import select
import signal
import subprocess
import sys
import tempfile
import termios
import time
import tty

from .htm_server import get_pipe_name
from .ipc import IpcPairClient
from .protocol import Header

log = logging.getLogger(__name__)

EXIT_HTM_MODE = b"\x1b[$$$q"
DAEMON_COMMAND = "htmd"
READ_SIZE = 1024
POLL_TIMEOUT = 0.01


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


class HtmClient(IpcPairClient):
    """Pipes keystrokes to the daemon and its output to the terminal."""

    def run(self, stdin_fd: int = 0, stdout_fd: int = 1) -> None:
        """Relay until the daemon closes or ends the session."""
        while True:
            sock = self._connected()
            readable, _, _ = select.select([stdin_fd, sock], [], [], POLL_TIMEOUT)

            if stdin_fd in readable:
                data = os.read(stdin_fd, READ_SIZE)
                if not data:
                    raise ConnectionError("stdin has closed abruptly.")
                sock.sendall(data)

            if sock in readable:
                data = sock.recv(READ_SIZE)
                # A lone session-end byte means the daemon is going away.
                if not data or data == Header.SESSION_END.value:
                    log.info("htmd has closed")
                    sock.close()
                    self.endpoint = None
                    return
                _write_all(stdout_fd, data)


def _daemon_running(uid: str) -> bool:
    result = subprocess.run(
        ["pgrep", "-x", "-U", uid, DAEMON_COMMAND],
        capture_output=True,
        text=True,
        check=False,
    )
    return bool(result.stdout.strip())


def _start_daemon() -> None:
    subprocess.Popen(
        [DAEMON_COMMAND],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
    )


def _leave_htm_mode(stdin_fd: int, stdout_fd: int, saved_mode) -> None:
    _write_all(stdout_fd, EXIT_HTM_MODE)
    if saved_mode is not None:
        termios.tcsetattr(stdin_fd, termios.TCSANOW, saved_mode)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="htm", description="Headless terminal multiplexer")
    parser.add_argument(
        "-x",
        "--kill-other-sessions",
        action="store_true",
        help="kill all old sessions belonging to the user",
    )
    args, _ = parser.parse_known_args(argv)
    logging.basicConfig(
        filename=os.path.join(tempfile.gettempdir(), "htm.log"),
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    stdin_fd = sys.stdin.fileno()
    stdout_fd = sys.stdout.fileno()
    saved_mode = termios.tcgetattr(stdin_fd) if os.isatty(stdin_fd) else None

    def on_terminate(signum, frame):
        _leave_htm_mode(stdin_fd, stdout_fd, saved_mode)
        os._exit(1)

    if saved_mode is not None:
        tty.setraw(stdin_fd)
    signal.signal(signal.SIGTERM, on_terminate)
    try:
        uid = str(os.getuid())
        if args.kill_other_sessions:
            log.info("Killing previous htmd")
            subprocess.run(["pkill", "-x", "-U", uid, DAEMON_COMMAND], check=False)
        if not _daemon_running(uid):
            _start_daemon()
        # Let the daemon come alive.
        time.sleep(0.01)
        with HtmClient(get_pipe_name()) as client:
            client.run(stdin_fd, stdout_fd)
    finally:
        _leave_htm_mode(stdin_fd, stdout_fd, saved_mode)
    return 0