"""A pair of endpoints joined by a local stream socket: one server, one client."""

from __future__ import annotations

import abc
import base64
import binascii
import logging
import os
import socket
import stat
import time

from .protocol import INT_FIELD_LENGTH, Header, decode_int

log = logging.getLogger(__name__)


class IpcPairEndpoint:
    """One side of a connection that says goodbye with a session-end byte."""

    def __init__(self, endpoint: socket.socket | None = None) -> None:
        self.endpoint = endpoint

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close_endpoint()

    def _connected(self) -> socket.socket:
        if self.endpoint is None:
            raise ConnectionError("endpoint is not connected")
        return self.endpoint

    def write(self, data: bytes) -> None:
        """Send all of ``data`` to the peer."""
        self._connected().sendall(data)

    def read_exactly(self, size: int) -> bytes:
        """Read exactly ``size`` bytes from the peer."""
        if size < 0:
            raise ValueError(f"cannot read a negative number of bytes: {size}")
        sock = self._connected()
        chunks = []
        remaining = size
        while remaining:
            chunk = sock.recv(remaining)
            if not chunk:
                raise ConnectionError("endpoint closed while reading")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def read_int(self) -> int:
        """Read one base64 encoded 32-bit integer field."""
        return decode_int(self.read_exactly(INT_FIELD_LENGTH))

    def read_b64(self, encoded_size: int) -> bytes:
        """Read ``encoded_size`` base64 characters and decode them."""
        raw = self.read_exactly(encoded_size)
        try:
            return base64.b64decode(raw, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"invalid base64 payload of {encoded_size} bytes") from exc

    def close_endpoint(self) -> None:
        """Tell the peer the session is over and drop the connection."""
        if self.endpoint is None:
            return
        log.info("SENDING SESSION END")
        try:
            self.endpoint.sendall(Header.SESSION_END.value)
        except OSError:
            pass
        finally:
            self.endpoint.close()
            self.endpoint = None


class IpcPairClient(IpcPairEndpoint):
    """Connects to an :class:`IpcPairServer`, retrying for a while."""

    def __init__(self, path: str, retries: int = 5, retry_delay: float = 1.0) -> None:
        super().__init__()
        for _ in range(retries):
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                sock.connect(path)
            except OSError:
                sock.close()
                time.sleep(retry_delay)
                continue
            self.endpoint = sock
            return
        raise ConnectionError("Connect to IPC failed")


def _remove_stale_socket(path: str) -> None:
    try:
        mode = os.stat(path).st_mode
    except FileNotFoundError:
        return
    if stat.S_ISSOCK(mode):
        os.unlink(path)


class IpcPairServer(IpcPairEndpoint, abc.ABC):
    """Listens on a socket path and serves one client at a time."""

    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = path
        _remove_stale_socket(path)
        self.server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            self.server.bind(path)
            self.server.listen()
            self.server.setblocking(False)
        except OSError:
            self.server.close()
            raise

    def poll_accept(self) -> bool:
        """Accept a waiting client, replacing the current one; True if accepted."""
        try:
            conn, _ = self.server.accept()
        except (BlockingIOError, InterruptedError):
            return False
        conn.setblocking(True)
        if self.endpoint is not None:
            self.close_endpoint()
        self.endpoint = conn
        self.recover()
        return True

    @abc.abstractmethod
    def recover(self) -> None:
        """Bring a newly connected client up to date."""

    def close(self) -> None:
        """Drop the client, stop listening and remove the socket file."""
        self.close_endpoint()
        self.server.close()
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass

    def __exit__(self, *exc_info) -> None:
        self.close()