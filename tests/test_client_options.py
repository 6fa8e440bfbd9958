import socket

import pytest

from eterm.client_options import (
    DEFAULT_PORT,
    MAX_CLIENT_KEEP_ALIVE_DURATION,
    PASSKEY_LENGTH,
    Destination,
    HostParseError,
    build_parser,
    parse_destination,
    ping,
    resolve_jumphost,
    split_idpasskey,
    validate_keepalive,
)


def test_parser_defaults():
    args, extra = build_parser("/tmp/logs").parse_known_args(["myhost"])
    assert args.host == "myhost"
    assert args.port == 2022
    assert args.jport == 2022
    assert args.logdir == "/tmp/logs"
    assert args.telemetry is True
    assert args.serverfifo == ""
    assert args.ssh_option == []
    assert extra == []


def test_parser_collects_ssh_options_and_ignores_unknown():
    args, extra = build_parser("/tmp").parse_known_args(
        ["--ssh-option", "Port=22", "--ssh-option", "User=bob", "--bogus", "h"]
    )
    assert args.ssh_option == ["Port=22", "User=bob"]
    assert "--bogus" in extra


def test_parser_telemetry_false():
    args, _ = build_parser("/tmp").parse_known_args(["--telemetry=false", "h"])
    assert args.telemetry is False


def test_parser_short_flags():
    args, _ = build_parser("/tmp").parse_known_args(
        ["-x", "-N", "-f", "-v", "3", "-p", "5000", "h"]
    )
    assert args.kill_other_sessions and args.no_terminal and args.forward_ssh_agent
    assert args.verbose == 3
    assert args.port == 5000


def test_destination_user_host_port():
    assert parse_destination("alice@server:2222", DEFAULT_PORT) == Destination(
        "alice", "server", 2222
    )


def test_destination_plain_host_uses_default_port():
    assert parse_destination("server", 4000) == Destination("", "server", 4000)


def test_destination_abbreviated_ipv6_kept():
    assert parse_destination("::1", 4000) == Destination("", "::1", 4000)


def test_destination_full_ipv6_without_port():
    addr = "1:2:3:4:5:6:7:8"
    assert parse_destination(addr, 4000) == Destination("", addr, 4000)


def test_destination_full_ipv6_with_port():
    result = parse_destination("1:2:3:4:5:6:7:8:9000", 4000)
    assert result.host == "1:2:3:4:5:6:7:8"
    assert result.port == 9000


def test_destination_invalid_colons():
    with pytest.raises(HostParseError):
        parse_destination("a:b:c", 4000)


def test_destination_invalid_port():
    with pytest.raises(HostParseError):
        parse_destination("host:abc", 4000)


def test_resolve_direct():
    dest = Destination("bob", "server", 3000)
    assert resolve_jumphost("", "bob", None, 2022, dest) == ("", "server", 3000)


def test_resolve_jumphost_without_user():
    dest = Destination("bob", "server", 3000)
    assert resolve_jumphost("jump", "bob", None, 2100, dest) == (
        "bob@jump",
        "jump",
        2100,
    )


def test_resolve_jumphost_with_user():
    dest = Destination("bob", "server", 3000)
    assert resolve_jumphost("carol@jump", "bob", None, 2100, dest) == (
        "carol@jump",
        "jump",
        2100,
    )


def test_resolve_proxy_jump_strips_port():
    dest = Destination("bob", "server", 3000)
    jump, host, port = resolve_jumphost("", "bob", "jump:22", 2100, dest)
    assert (jump, host, port) == ("bob@jump", "jump", 2100)


def test_resolve_command_line_wins_over_proxy_jump():
    dest = Destination("bob", "server", 3000)
    jump, host, _ = resolve_jumphost("first", "bob", "second", 2100, dest)
    assert host == "first"


def test_keepalive_default_and_bounds():
    assert validate_keepalive(None) == MAX_CLIENT_KEEP_ALIVE_DURATION
    assert validate_keepalive(1) == 1
    assert validate_keepalive(MAX_CLIENT_KEEP_ALIVE_DURATION) == MAX_CLIENT_KEEP_ALIVE_DURATION


@pytest.mark.parametrize("value", [0, -5, MAX_CLIENT_KEEP_ALIVE_DURATION + 1])
def test_keepalive_out_of_range(value):
    with pytest.raises(ValueError):
        validate_keepalive(value)


def test_split_idpasskey_round_trip():
    key = "k" * PASSKEY_LENGTH
    assert split_idpasskey(f"XXXabc/{key}\r\n") == ("XXXabc", key)


def test_split_idpasskey_missing_slash():
    with pytest.raises(ValueError):
        split_idpasskey("noslash")


def test_split_idpasskey_short_key():
    with pytest.raises(ValueError):
        split_idpasskey("id/short")


def test_ping_reaches_listener():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen()
        port = server.getsockname()[1]
        assert ping("127.0.0.1", port) is True


def test_ping_closed_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]
    assert ping("127.0.0.1", port) is False