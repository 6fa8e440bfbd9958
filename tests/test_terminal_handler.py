import time

import pytest

from eterm.terminal_handler import (
    MAX_BUFFER_CHARS,
    MAX_BUFFER_LINES,
    ScrollbackBuffer,
    TerminalHandler,
)


def test_buffer_joins_partial_lines():
    buf = ScrollbackBuffer()
    buf.append(b"ab\ncd")
    buf.append(b"ef")
    assert list(buf.lines) == [b"ab", b"cdef"]
    assert buf.text() == b"ab\ncdef"


def test_buffer_trailing_newline_starts_new_line():
    buf = ScrollbackBuffer()
    buf.append(b"one\n")
    buf.append(b"two")
    assert list(buf.lines) == [b"one", b"two"]


def test_buffer_length_tracks_characters():
    buf = ScrollbackBuffer()
    buf.append(b"abc\nde\n")
    assert buf.length == sum(len(line) for line in buf.lines)


def test_buffer_caps_lines():
    buf = ScrollbackBuffer(max_lines=3, max_chars=1000)
    buf.append(b"a\nb\nc\nd\ne")
    assert list(buf.lines) == [b"c", b"d", b"e"]
    assert buf.length == 3


def test_buffer_caps_characters():
    buf = ScrollbackBuffer(max_lines=100, max_chars=5)
    buf.append(b"aaa\nbbb\ncc")
    assert list(buf.lines) == [b"cc"]
    assert buf.length <= 5


def test_default_limits():
    buf = ScrollbackBuffer()
    assert buf.max_lines == MAX_BUFFER_LINES
    assert buf.max_chars == MAX_BUFFER_CHARS
    buf.append(b"\n" * (MAX_BUFFER_LINES + 10))
    assert len(buf) == MAX_BUFFER_LINES


def _poll_until(handler, predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    out = b""
    while time.monotonic() < deadline:
        out += handler.poll(0.05)
        if predicate(out, handler):
            break
    return out


@pytest.fixture
def shell():
    handler = TerminalHandler(shell="/bin/sh", shell_args=())
    handler.start()
    yield handler
    handler.stop()


def test_shell_runs_commands(shell):
    shell.append_data(b"echo marker$((1+1))\n")
    out = _poll_until(shell, lambda o, h: b"marker2" in o)
    assert b"marker2" in out
    assert b"marker2" in shell.buffer.text()


def test_resize_is_seen_by_shell(shell):
    shell.resize(100, 40)
    shell.append_data(b"stty size\n")
    out = _poll_until(shell, lambda o, h: b"40 100" in o)
    assert b"40 100" in out


def test_exit_stops_running(shell):
    shell.append_data(b"exit 0\n")
    _poll_until(shell, lambda o, h: not h.running)
    assert shell.running is False
    assert shell.poll(0.01) == b""


def test_stop_kills_shell(shell):
    shell.stop()
    assert shell.running is False
    assert shell.poll(0.01) == b""
    with pytest.raises(RuntimeError):
        shell.append_data(b"echo\n")