# eterm

A headless terminal multiplexer daemon with its relay client, and the
building blocks of a resilient remote shell client.

## The multiplexer

`htmd` is a per-user daemon that owns a set of shells running in
pseudo-terminals. The shells are organised as tabs, and each tab holds either
a single pane or a tree of horizontal and vertical splits. Because the shells
belong to the daemon, a client can detach and re-attach and find them still
running, together with the last lines of their output (up to 1024 lines and
128 KiB per pane).

`htm` attaches the current terminal to the daemon:

    htm

Kill any daemon you already have running and start a fresh one:

    htm -x

Show the available options:

    htm --help

`htm` puts the terminal into raw mode, starts `htmd` in the background if
`pgrep` finds none running for your user, and then relays bytes both ways
over a Unix socket named `htm.<uid>.ipc` in the temporary directory. On
attaching, the daemon sends the escape sequence `ESC [###q` to switch the
terminal into multiplexer mode, followed by the layout as JSON and each
pane's scrollback. When the daemon goes away, or on `SIGTERM`, `htm` writes
`ESC [$$$q` and restores the terminal mode.

`htmd` can also be run directly, for example under a supervisor:

    htmd

It keeps serving until a client asks it to shut down or the last pane is
closed. A new client replaces the one already attached. `htm` logs to
`htm.log` and `htmd` to `htmd.log` in the temporary directory.

### What the multiplexer does not do

`htm` only relays raw bytes. It does not draw tabs or splits, and it does not
turn keystrokes into protocol messages. The attached terminal must itself
understand the multiplexer mode escape sequence and speak the wire format
below; in a plain terminal the daemon's messages appear as raw text.

## Wire format

Every message starts with a one-byte header from `eterm.protocol.Header`.
Integer fields are signed 32-bit little-endian values sent base64 encoded
(eight bytes on the wire), and terminal data is base64 encoded as well.
`encode_int`, `decode_int`, `encoded_length`, `append_to_pane_message`,
`server_close_pane_message` and `debug_log_message` build and read these
frames.

The daemon (`eterm.htm_server.HtmServer`) accepts `INSERT_KEYS`,
`INSERT_DEBUG_KEYS`, `NEW_TAB`, `NEW_SPLIT`, `RESIZE_PANE` and
`CLIENT_CLOSE_PANE`; any other header raises `ProtocolError` and drops the
client. In a debug-keys message, `x` shuts the daemon down, escape
disconnects the client and `d` logs the current layout. The daemon sends
`INIT_STATE`, `APPEND_TO_PANE`, `SERVER_CLOSE_PANE`, `DEBUG_LOG` and, on
disconnect, a single `SESSION_END` byte.

## Using the library

- `eterm.multiplexer_state.MultiplexerState` tracks `Tab`, `Split` and `Pane`
  objects, serialises them with `to_json` / `to_json_string`, and raises
  `MultiplexerStateError` when asked to do something inconsistent, such as
  closing a pane that does not exist. It takes a `terminal_factory`, so a
  layout can be driven without real shells.
- `eterm.terminal_handler.TerminalHandler` forks a login shell on a
  pseudo-terminal and records its output in a `ScrollbackBuffer`.
- `eterm.ipc` provides `IpcPairServer` and `IpcPairClient`, the two ends of a
  Unix socket connection that closes with a session-end byte.

For the remote-shell side:

- `eterm.server_fifo_path` computes the server's router socket path: as root
  `/var/run/etserver.idpasskey.fifo`, otherwise an `etserver` directory under
  `$XDG_RUNTIME_DIR` or `$HOME/.local/share`, which it can create and check
  for ownership and permissions (`ServerFifoPath`). `detect_and_connect`
  tries the root location, then the user's, and raises `FifoConnectionError`.
- `eterm.ssh_setup.setup_ssh` starts the remote terminal over `ssh`, through
  an optional jump host, and returns `"id/passkey"`; `gen_command`,
  `parse_idpasskey` and `parse_jump_idpasskey` are available on their own,
  and failures raise `SshSetupError`.
- `eterm.pseudo_user_terminal.PseudoUserTerminal` launches the user's login
  shell on a pseudo-terminal for a server.
- `eterm.client_options` holds the client's option parser (`build_parser`),
  parses `[user@]host[:port]` destinations including IPv6 addresses
  (`parse_destination`, raising `HostParseError`), and provides
  `resolve_jumphost`, `validate_keepalive`, `split_idpasskey` and a TCP
  `ping`.
- `eterm.telemetry` buffers error-level log records and, given a sender or
  the `ET_TELEMETRY_URL` environment variable, posts them as JSON batches
  from a background thread. A random id is stored in `telemetry.ini` in the
  user's `et` configuration directory. Setting `ET_NO_TELEMETRY` to any
  non-empty value turns it off.

### What the remote-shell side does not do

These modules are building blocks only. The package has no `et` client
command, no terminal server or router, no encrypted reconnecting connection
and no port forwarding.

## Requirements

Python 3.10 or later on a POSIX system; pseudo-terminals and Unix sockets are
required. `platformdirs` is the only dependency. Install the `test` extra to
run the tests with pytest.