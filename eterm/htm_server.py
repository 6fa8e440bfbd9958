"""The multiplexer daemon: owns the terminals and serves one client."""

from __future__ import annotations

import argparse
import logging
import os
import select
import tempfile
import time

from .ipc import IpcPairServer
from .multiplexer_state import MultiplexerState
from .protocol import UUID_LENGTH, Header, debug_log_message, encode_int

log = logging.getLogger(__name__)

ENTER_HTM_MODE = b"\x1b[###q"


class ProtocolError(RuntimeError):
    """The client sent a message the daemon does not understand."""


class HtmServer(IpcPairServer):
    """Reads commands from the client and streams terminal output back."""

    def __init__(
        self,
        path: str,
        state: MultiplexerState | None = None,
        accept_interval: float = 1.0,
        select_timeout: float = 0.01,
    ) -> None:
        super().__init__(path)
        self.state = state if state is not None else MultiplexerState()
        self.running = True
        self.accept_interval = accept_interval
        self.select_timeout = select_timeout

    def run(self) -> None:
        """Serve until told to stop or until no panes are left."""
        try:
            while self.running:
                if self.endpoint is None:
                    time.sleep(self.accept_interval)
                    self.poll_accept()
                    continue
                try:
                    readable, _, _ = select.select(
                        [self.endpoint], [], [], self.select_timeout
                    )
                    if readable:
                        self.process_packet()
                    if self.endpoint is not None:
                        self.state.update(self.write)
                except (OSError, ValueError) as exc:
                    log.error("%s", exc)
                    self.close_endpoint()
        finally:
            self.close_endpoint()

    def _read_id(self) -> str:
        return self.read_exactly(UUID_LENGTH).decode("ascii")

    def process_packet(self) -> Header:
        """Read one message from the client, act on it and return its header."""
        raw = self.read_exactly(1)
        try:
            header = Header(raw)
        except ValueError:
            raise ProtocolError(f"Got unknown packet header: {raw[0]}") from None
        length = self.read_int()
        log.info("Got message header %r with length %d", raw, length)

        if header is Header.INSERT_KEYS:
            pane_id = self._read_id()
            data = self.read_b64(length - UUID_LENGTH)
            self.state.append_data(pane_id, data)
        elif header is Header.INSERT_DEBUG_KEYS:
            key = self.read_exactly(length)[:1]
            if key == b"x":
                self.running = False
            if key == b"\x1b":
                log.info("CLOSING ENDPOINT")
                self.close_endpoint()
            if key == b"d":
                log.info("Current State: %s", self.state.to_json_string())
        elif header is Header.NEW_TAB:
            tab_id = self._read_id()
            pane_id = self._read_id()
            self.state.new_tab(tab_id, pane_id)
        elif header is Header.NEW_SPLIT:
            source_id = self._read_id()
            pane_id = self._read_id()
            vertical = self.read_exactly(1) == b"1"
            self.state.new_split(source_id, pane_id, vertical)
        elif header is Header.RESIZE_PANE:
            cols = self.read_int()
            rows = self.read_int()
            pane_id = self._read_id()
            self.state.resize_pane(pane_id, cols, rows)
        elif header is Header.CLIENT_CLOSE_PANE:
            pane_id = self._read_id()
            log.info("CLOSING PANE: %s", pane_id)
            self.state.close_pane(pane_id)
            if self.state.num_panes == 0:
                self.running = False
        else:
            raise ProtocolError(f"Got unknown packet header: {raw[0]}")
        return header

    def send_debug(self, msg: str) -> None:
        """Show a message in the client's debug area."""
        log.info("SENDING DEBUG LOG: %s", msg)
        self.write(debug_log_message(msg))

    def recover(self) -> None:
        """Put a fresh client into multiplexer mode and send it the full state."""
        self.write(ENTER_HTM_MODE)
        # Give the client a moment to process the escape code.
        time.sleep(0.01)
        log.info("Starting terminal")
        self.send_debug("Initializing HTM, please wait...\n\r")

        state_json = self.state.to_json_string().encode("utf-8")
        self.write(Header.INIT_STATE.value + encode_int(len(state_json)) + state_json)

        self.state.send_terminal_buffers(self.write)
        self.send_debug(
            "HTM initialized.\n\rPress escape in this terminal to "
            "disconnect.\n\rPress x in this terminal to shut down HTM\n\r"
        )


def get_pipe_name() -> str:
    """Path of the per-user socket the daemon listens on."""
    return os.path.join(tempfile.gettempdir(), f"htm.{os.getuid()}.ipc")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="htmd", description="Headless terminal multiplexer daemon"
    )
    parser.parse_known_args(argv)
    logging.basicConfig(
        filename=os.path.join(tempfile.gettempdir(), "htmd.log"),
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    with HtmServer(get_pipe_name()) as server:
        server.run()
    log.info("Server is shutting down")
    return 0