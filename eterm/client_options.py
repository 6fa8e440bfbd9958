"""Command-line handling for the terminal client: options and destinations."""

from __future__ import annotations

import argparse
import socket
from dataclasses import dataclass

DEFAULT_PORT = 2022
MAX_CLIENT_KEEP_ALIVE_DURATION = 11
PASSKEY_LENGTH = 32
MAC_TERMINAL_PATH = "/usr/local/bin/etterminal"
PING_TIMEOUT = 5.0

_USAGE_NOTE = (
    "Note that 'host' can be a hostname or ipv4 address with or without a port "
    "or an ipv6 address. If the ipv6 address is abbreviated with :: then it "
    "must be specified without a port (use -p,--port)."
)


class HostParseError(ValueError):
    """The destination given on the command line could not be understood."""


@dataclass(frozen=True)
class Destination:
    """Where to connect: an optional user, a host and a port."""

    username: str
    host: str
    port: int


def _parse_bool(text: str) -> bool:
    value = text.strip().lower()
    if value in ("true", "yes", "1", "on"):
        return True
    if value in ("false", "no", "0", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected a boolean, got {text!r}")


def build_parser(tmp_dir: str) -> argparse.ArgumentParser:
    """The client's option parser; unknown options are left to the caller."""
    parser = argparse.ArgumentParser(
        prog="et",
        description="Remote shell for the busy and impatient",
        usage="%(prog)s [OPTION...] [user@]host[:port]",
        epilog=_USAGE_NOTE,
    )
    parser.add_argument("host", nargs="?", help="Remote host name")
    parser.add_argument("--version", action="store_true", help="Print version")
    parser.add_argument("-u", "--username", help="Username")
    parser.add_argument(
        "-p", "--port", type=int, default=DEFAULT_PORT,
        help="Remote machine etserver port",
    )
    parser.add_argument(
        "-c", "--command", help="Run command on connect and exit after command is run"
    )
    parser.add_argument(
        "-e", "--noexit", action="store_true",
        help="Used together with -c to not exit after command is run",
    )
    parser.add_argument(
        "--terminal-path",
        help="Path to etterminal on server side. "
        "Use if etterminal is not on the system path.",
    )
    parser.add_argument(
        "-t", "--tunnel",
        help="Tunnel: Array of source:destination ports or "
        "srcStart-srcEnd:dstStart-dstEnd (inclusive) port ranges "
        "(e.g. 10080:80,10443:443, 10090-10092:8000-8002)",
    )
    parser.add_argument(
        "-r", "--reversetunnel",
        help="Reverse Tunnel: Array of source:destination ports or "
        "srcStart-srcEnd:dstStart-dstEnd (inclusive) port ranges",
    )
    parser.add_argument("--jumphost", help="jumphost between localhost and destination")
    parser.add_argument(
        "--jport", type=int, default=DEFAULT_PORT, help="Jumphost machine port"
    )
    parser.add_argument(
        "--jserverfifo", default="",
        help="If set, communicate to jumphost on the matching fifo name",
    )
    parser.add_argument(
        "-x", "--kill-other-sessions", action="store_true",
        help="kill all old sessions belonging to the user",
    )
    parser.add_argument(
        "--macserver", action="store_true",
        help="Set when connecting to an macOS server.  Sets "
        f"--terminal-path={MAC_TERMINAL_PATH}",
    )
    parser.add_argument(
        "-v", "--verbose", type=int, default=0, help="Enable verbose logging"
    )
    parser.add_argument(
        "-k", "--keepalive", type=int, help="Client keepalive duration in seconds"
    )
    parser.add_argument(
        "-l", "--logdir", default=tmp_dir, help="Base directory for log files."
    )
    parser.add_argument("--logtostdout", action="store_true", help="Write log to stdout")
    parser.add_argument("--silent", action="store_true", help="Disable logging")
    parser.add_argument(
        "-N", "--no-terminal", action="store_true", help="Do not create a terminal"
    )
    parser.add_argument(
        "-f", "--forward-ssh-agent", action="store_true",
        help="Forward ssh-agent socket",
    )
    parser.add_argument("--ssh-socket", help="The ssh-agent socket to forward")
    parser.add_argument(
        "--telemetry", type=_parse_bool, nargs="?", const=True, default=True,
        help="Allow et to anonymously send errors to guide future improvements",
    )
    parser.add_argument(
        "--serverfifo", default="",
        help="If set, communicate to etserver on the matching fifo name",
    )
    parser.add_argument(
        "--ssh-option", action="append", default=[],
        help="Options to pass down to `ssh -o`",
    )
    return parser


def _parse_port(text: str, host_arg: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise HostParseError(f"Invalid port in host positional arg: {host_arg}") from None


def parse_destination(host_arg: str, default_port: int = DEFAULT_PORT) -> Destination:
    """Split ``[user@]host[:port]``, allowing bare and fully expanded IPv6."""
    original = host_arg
    username = ""
    if "@" in host_arg:
        username, _, host_arg = host_arg.partition("@")

    port = default_port
    colon_count = host_arg.count(":")
    if colon_count == 1:
        host_arg, _, port_text = host_arg.rpartition(":")
        port = _parse_port(port_text, original)
    elif colon_count >= 2 and "::" not in host_arg:
        if colon_count == 8:
            host_arg, _, port_text = host_arg.rpartition(":")
            port = _parse_port(port_text, original)
        elif colon_count != 7:
            raise HostParseError(f"Invalid host positional arg: {original}")
    return Destination(username, host_arg, port)


def resolve_jumphost(
    jumphost: str,
    username: str,
    proxy_jump: str | None,
    jport: int,
    destination: Destination,
) -> tuple[str, str, int]:
    """Pick the jump host and the endpoint to connect to.

    Returns ``(jumphost, endpoint_host, endpoint_port)``; ``jumphost`` is empty
    when the destination is reached directly.  A jump host given on the command
    line wins over a ProxyJump from the ssh configuration.
    """
    if proxy_jump and not jumphost:
        jumphost = proxy_jump.partition(":")[0]
    if not jumphost:
        return "", destination.host, destination.port
    if "@" in jumphost:
        return jumphost, jumphost.partition("@")[2], jport
    return f"{username}@{jumphost}", jumphost, jport


def validate_keepalive(value: int | None) -> int:
    """The keep-alive duration in seconds, defaulting to the maximum."""
    if value is None:
        return MAX_CLIENT_KEEP_ALIVE_DURATION
    if value < 1 or value > MAX_CLIENT_KEEP_ALIVE_DURATION:
        raise ValueError(
            f"Keep-alive duration must between 1 and "
            f"{MAX_CLIENT_KEEP_ALIVE_DURATION} seconds"
        )
    return value


def split_idpasskey(pair: str) -> tuple[str, str]:
    """Split an ``id/passkey`` reply into its parts, checking the key length."""
    pair = pair.rstrip(" \n\r\t")
    if "/" not in pair:
        raise ValueError(f"Invalid idPasskey id/key pair: {pair}")
    id_, _, passkey = pair.partition("/")
    if len(passkey) != PASSKEY_LENGTH:
        raise ValueError(f"Invalid/missing passkey: {passkey} {len(passkey)}")
    return id_, passkey


def ping(host: str, port: int) -> bool:
    """True if a TCP connection to ``host:port`` can be opened."""
    try:
        with socket.create_connection((host, port), timeout=PING_TIMEOUT):
            return True
    except OSError:
        return False