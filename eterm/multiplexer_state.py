"""Layout of tabs, splits and panes held by the multiplexer daemon."""

from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from .protocol import append_to_pane_message, server_close_pane_message
from .terminal_handler import TerminalHandler

log = logging.getLogger(__name__)


class MultiplexerStateError(RuntimeError):
    """The layout was asked to do something inconsistent."""


@dataclass
class Pane:
    id: str
    parent_id: str
    terminal: Any = field(default=None, repr=False)

    def to_json(self) -> dict:
        return {"id": self.id}


@dataclass
class Split:
    id: str
    parent_id: str
    vertical: bool
    panes_or_splits: list[str] = field(default_factory=list)
    sizes: list[float] = field(default_factory=list)

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "vertical": self.vertical,
            "panesOrSplits": list(self.panes_or_splits),
            "sizes": list(self.sizes),
        }


@dataclass
class Tab:
    id: str
    pane_or_split_id: str
    order: int

    def to_json(self) -> dict:
        return {"id": self.id, "order": self.order, "paneOrSplit": self.pane_or_split_id}


class MultiplexerState:
    """Tabs, splits and panes, each pane backed by a running terminal."""

    def __init__(self, terminal_factory: Callable[[], Any] = TerminalHandler) -> None:
        self._terminal_factory = terminal_factory
        self.tabs: dict[str, Tab] = {}
        self.panes: dict[str, Pane] = {}
        self.splits: dict[str, Split] = {}
        self.closed: set[str] = set()

        tab_id = str(uuid.uuid4())
        pane_id = str(uuid.uuid4())
        self.tabs[tab_id] = Tab(tab_id, pane_id, 0)
        self.panes[pane_id] = Pane(pane_id, tab_id, self._spawn_terminal())

    @property
    def num_panes(self) -> int:
        return len(self.panes)

    def _spawn_terminal(self) -> Any:
        terminal = self._terminal_factory()
        terminal.start()
        return terminal

    def _get_tab(self, tab_id: str) -> Tab:
        try:
            return self.tabs[tab_id]
        except KeyError:
            raise MultiplexerStateError(f"Tried to get a tab that doesn't exist: {tab_id}") from None

    def _get_pane(self, pane_id: str) -> Pane:
        try:
            return self.panes[pane_id]
        except KeyError:
            raise MultiplexerStateError(f"Tried to get a pane that doesn't exist: {pane_id}") from None

    def _get_split(self, split_id: str) -> Split:
        try:
            return self.splits[split_id]
        except KeyError:
            raise MultiplexerStateError(f"Tried to get a split that doesn't exist: {split_id}") from None

    def _fail_if_found(self, item_id: str) -> None:
        for kind, table in (("panes", self.panes), ("splits", self.splits), ("tabs", self.tabs)):
            if item_id in table:
                raise MultiplexerStateError(f"Found unexpected id in {kind}: {item_id}")

    def to_json(self) -> dict:
        """The layout as a JSON-ready dict."""
        state: dict[str, Any] = {"shell": os.environ.get("SHELL", "")}
        for key, table in (("tabs", self.tabs), ("panes", self.panes), ("splits", self.splits)):
            if table:
                state[key] = {item_id: table[item_id].to_json() for item_id in sorted(table)}
        return state

    def to_json_string(self) -> str:
        return json.dumps(self.to_json(), sort_keys=True, separators=(",", ":"))

    def append_data(self, pane_id: str, data: bytes) -> None:
        """Send keystrokes to a pane's terminal."""
        if pane_id not in self.panes:
            raise MultiplexerStateError("Tried to write to non-existent terminal")
        self.panes[pane_id].terminal.append_data(data)

    def new_tab(self, tab_id: str, pane_id: str) -> None:
        self._fail_if_found(tab_id)
        self._fail_if_found(pane_id)
        self.tabs[tab_id] = Tab(tab_id, pane_id, len(self.tabs))
        self.panes[pane_id] = Pane(pane_id, tab_id, self._spawn_terminal())

    def new_split(self, source_id: str, pane_id: str, vertical: bool) -> None:
        """Split ``source_id`` and put a new pane ``pane_id`` beside it."""
        self._fail_if_found(pane_id)
        source = self._get_pane(source_id)
        new_pane = Pane(pane_id, "", self._spawn_terminal())
        self.panes[pane_id] = new_pane

        parent_split = self.splits.get(source.parent_id)
        if parent_split is not None and parent_split.vertical == vertical:
            log.info("Continuing a split")
            parent_split.sizes = [size / 2.0 for size in parent_split.sizes]
            parent_split.sizes.append(0.5)
            parent_split.panes_or_splits.append(pane_id)
            new_pane.parent_id = parent_split.id
            return

        split = Split(
            id=str(uuid.uuid4()),
            parent_id=source.parent_id,
            vertical=vertical,
            panes_or_splits=[source_id, pane_id],
            sizes=[0.5, 0.5],
        )
        self.splits[split.id] = split
        new_pane.parent_id = split.id
        source.parent_id = split.id

        if parent_split is not None:
            log.info("Splitting in a new direction")
            try:
                index = parent_split.panes_or_splits.index(source_id)
            except ValueError:
                raise MultiplexerStateError("SourcePane missing from parent split") from None
            parent_split.panes_or_splits[index] = split.id
            return

        log.info("Splitting a root pane")
        self._get_tab(split.parent_id).pane_or_split_id = split.id

    def close_pane(self, pane_id: str) -> None:
        """Stop a pane's terminal and remove it from the layout."""
        if pane_id in self.closed:
            return
        if pane_id not in self.panes:
            raise MultiplexerStateError("Tried to close a pane that doesn't exist")
        pane = self.panes.pop(pane_id)
        self.closed.add(pane_id)
        pane.terminal.stop()

        if pane.parent_id in self.tabs:
            order = self.tabs[pane.parent_id].order
            for tab in self.tabs.values():
                if tab.order > order:
                    tab.order -= 1
            for tab_id, tab in self.tabs.items():
                if tab.pane_or_split_id == pane.id:
                    del self.tabs[tab_id]
                    return
            raise MultiplexerStateError("Could not find tab")

        split = self._get_split(pane.parent_id)
        try:
            index = split.panes_or_splits.index(pane.id)
        except ValueError:
            raise MultiplexerStateError(
                f"Parent pane {split.id} did not contain child pane {pane.id}"
            ) from None
        del split.panes_or_splits[index]
        del split.sizes[index]

        if len(split.panes_or_splits) > 1:
            new_size = len(split.sizes)
            old_size = new_size + 1
            split.sizes = [size * old_size / new_size for size in split.sizes]
            return

        remaining = self._get_pane(split.panes_or_splits[0])
        remaining.parent_id = split.parent_id
        if remaining.parent_id in self.tabs:
            self.tabs[remaining.parent_id].pane_or_split_id = remaining.id
        else:
            parent_split = self._get_split(remaining.parent_id)
            try:
                slot = parent_split.panes_or_splits.index(split.id)
            except ValueError:
                raise MultiplexerStateError("Could not find parent split") from None
            parent_split.panes_or_splits[slot] = remaining.id
        del self.splits[split.id]

    def update(self, write: Callable[[bytes], Any]) -> None:
        """Forward new terminal output through ``write`` and report ended panes."""
        for pane_id in sorted(self.panes):
            terminal = self.panes[pane_id].terminal
            data = terminal.poll()
            if data:
                write(append_to_pane_message(pane_id, data))
            if not terminal.running:
                self.close_pane(pane_id)
                write(server_close_pane_message(pane_id))
                break

    def send_terminal_buffers(self, write: Callable[[bytes], Any]) -> None:
        """Replay each pane's scrollback through ``write``."""
        for pane_id in sorted(self.panes):
            buffer = self.panes[pane_id].terminal.buffer
            if len(buffer):
                write(append_to_pane_message(pane_id, buffer.text()))

    def resize_pane(self, pane_id: str, cols: int, rows: int) -> None:
        self._get_pane(pane_id).terminal.resize(cols, rows)