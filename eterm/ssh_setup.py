"""Starting the remote terminal through ssh and reading back its id and key."""

from __future__ import annotations

import logging
import os
import secrets
import string
import subprocess
from typing import Callable, Sequence

log = logging.getLogger(__name__)

ETTERMINAL_BIN = "etterminal"
ID_LENGTH = 16
PASSKEY_LENGTH = 32
_IDPASSKEY_MARKER = "IDPASSKEY:"
_ALPHANUM = string.ascii_letters + string.digits

Runner = Callable[[str, Sequence[str]], str]


class SshSetupError(RuntimeError):
    """The remote terminal could not be started or its reply was unusable."""


def gen_random_alphanum(length: int) -> str:
    """A random string of ASCII letters and digits."""
    return "".join(secrets.choice(_ALPHANUM) for _ in range(length))


def gen_command(
    passkey: str,
    id_: str,
    client_term: str,
    user: str,
    kill: bool,
    etterminal_path: str,
    options: str,
) -> str:
    """The shell command run on the remote host to start the terminal."""
    binary = etterminal_path or ETTERMINAL_BIN
    command = f"echo '{id_}/{passkey}_{client_term}' | {binary} {options}"
    if kill:
        command = f"pkill etterminal -u {user}; sleep 0.5; " + command
    return command


def _split_pair(text: str) -> tuple[str, str]:
    parts = text.split("/")
    if len(parts) < 2:
        raise SshSetupError(f"Invalid id/passkey pair: {text!r}")
    return parts[0], parts[1]


def parse_idpasskey(output: str) -> tuple[str, str]:
    """Extract ``(id, passkey)`` from the remote terminal's output."""
    index = output.find(_IDPASSKEY_MARKER)
    if index < 0:
        raise SshSetupError(
            f"Error in authentication with etserver: {output}, please make sure "
            "you don't print anything in server's .bashrc/.zshrc"
        )
    start = index + len(_IDPASSKEY_MARKER)
    return _split_pair(output[start : start + ID_LENGTH + 1 + PASSKEY_LENGTH])


def parse_jump_idpasskey(output: str) -> tuple[str, str]:
    """Extract ``(id, passkey)`` from the jump host's reply."""
    parts = output.split(":")
    if len(parts) < 2:
        raise SshSetupError(f"Invalid jumphost reply: {output!r}")
    pair = parts[1].rstrip(" \n\r\t")[: ID_LENGTH + 1 + PASSKEY_LENGTH]
    return _split_pair(pair)


def _run_interactive(program: str, args: Sequence[str]) -> str:
    """Run a program on the user's terminal and capture only its stdout."""
    try:
        result = subprocess.run(
            [program, *args], stdout=subprocess.PIPE, text=True, check=False
        )
    except OSError as exc:
        raise SshSetupError(f"Could not run {program}: {exc}") from exc
    return result.stdout


def setup_ssh(
    user: str,
    host: str,
    host_alias: str,
    port: int,
    jumphost: str = "",
    jserver_fifo: str = "",
    kill: bool = False,
    vlevel: int = 0,
    etterminal_path: str = "",
    server_fifo: str = "",
    ssh_options: Sequence[str] = (),
    runner: Runner = _run_interactive,
) -> str:
    """Start the remote terminal over ssh and return ``"id/passkey"``."""
    client_term = os.environ.get("TERM", "xterm-256color")
    passkey = gen_random_alphanum(PASSKEY_LENGTH)
    # Old servers that do not generate their own keys expect this prefix.
    id_ = "XXX" + gen_random_alphanum(ID_LENGTH)[3:]

    options = f"--verbose={vlevel}"
    if server_fifo:
        options += f" --serverfifo={server_fifo}"
    script = gen_command(passkey, id_, client_term, user, kill, etterminal_path, options)

    ssh_args: list[str] = ["-J", jumphost] if jumphost else []
    ssh_args.append(f"{user}@{host_alias}" if user else host_alias)
    ssh_args.extend(f"-o{option}" for option in ssh_options)
    ssh_args.append(script)

    log.debug("Trying ssh with args: %s", " ".join(ssh_args))
    output = runner("ssh", ssh_args)
    if not output:
        raise SshSetupError(
            "Error starting ET process through ssh, please make sure your ssh works first"
        )
    id_, passkey = parse_idpasskey(output)
    log.info("etserver started")

    if jumphost:
        jump_options = f"--verbose={vlevel}"
        if jserver_fifo:
            jump_options += f" --serverfifo={jserver_fifo}"
        jump_options += f" --jump --dsthost={host} --dstport={port}"
        jump_script = gen_command(
            passkey, id_, client_term, user, kill, etterminal_path, jump_options
        )
        jump_output = runner("ssh", [jumphost, jump_script])
        if not jump_output:
            raise SshSetupError("etserver jumpclient failed to start")
        id_, passkey = parse_jump_idpasskey(jump_output)

    if not id_ or not passkey:
        raise SshSetupError(f"Somehow missing id or passkey: {len(id_)} {len(passkey)}")
    return f"{id_}/{passkey}"