"""
In-Memory Host
==============

In-memory implementations of every host capability. Used by the test suite
and the demo; the document graph is a networkx DiGraph with parent -> child
edges, so the descendant query is the transitive closure over those edges.
"""

from __future__ import annotations
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import asyncio
import logging

import networkx as nx

from .contracts import ContentItem, FetchError, NodeRef
from .host import CommandCallback, CommandPalette, ContentSource, DocumentGraph, SettingsBackend, SettingsListener

logger = logging.getLogger(__name__)


class InMemoryDocumentGraph(DocumentGraph):
    """
    Outliner graph held in memory.

    Node ids are integers assigned in creation order, keys are 'uid-<id>'
    unless given explicitly. Day pages use the key format MM-DD-YYYY.

    With simulate_latency=True every host call yields to the event loop once,
    so concurrent callers interleave the way they would against a remote host.
    """

    def __init__(self, today: Callable[[], date] = date.today, simulate_latency: bool = False):
        self._graph = nx.DiGraph()
        self._keys: Dict[str, int] = {}
        self._next_id = 1
        self._today = today
        self._simulate_latency = simulate_latency
        self.focused_key: Optional[str] = None
        self.creation_log: List[Tuple[str, str]] = []

    # -------------------------------------------------------------------------
    # Synchronous helpers (test and demo setup)
    # -------------------------------------------------------------------------

    @staticmethod
    def day_key(day: date) -> str:
        return day.strftime("%m-%d-%Y")

    def add_page(self, title: str, key: Optional[str] = None) -> NodeRef:
        return self._add_node(title, key=key, parent_id=None)

    def add_day_page(self, day: Optional[date] = None) -> NodeRef:
        day = day or self._today()
        return self.add_page(day.strftime("%B %d, %Y"), key=self.day_key(day))

    def add_child(self, parent_key: str, text: str, key: Optional[str] = None) -> NodeRef:
        if parent_key not in self._keys:
            raise KeyError(f"unknown parent key: {parent_key}")
        return self._add_node(text, key=key, parent_id=self._keys[parent_key])

    def focus(self, key: Optional[str]) -> None:
        self.focused_key = key

    def node(self, key: str) -> NodeRef:
        return NodeRef(node_id=self._keys[key], key=key)

    def text(self, key: str) -> str:
        return self._graph.nodes[self._keys[key]]['text']

    def children(self, key: str) -> List[NodeRef]:
        node_id = self._keys[key]
        child_ids = sorted(self._graph.successors(node_id), key=lambda n: self._graph.nodes[n]['order'])
        return [NodeRef(node_id=c, key=self._graph.nodes[c]['key']) for c in child_ids]

    def find_by_text(self, text: str) -> List[NodeRef]:
        return [
            NodeRef(node_id=n, key=data['key'])
            for n, data in sorted(self._graph.nodes(data=True))
            if data['text'] == text
        ]

    @property
    def node_count(self) -> int:
        return self._graph.number_of_nodes()

    def render_outline(self, key: str, indent: str = "  ") -> str:
        """Plain-text outline of a node and its subtree."""
        lines: List[str] = []

        def walk(ref: NodeRef, depth: int) -> None:
            text = self.text(ref.key).replace("\n", f"\n{indent * (depth + 1)}")
            lines.append(f"{indent * depth}- {text}")
            for child in self.children(ref.key):
                walk(child, depth + 1)

        walk(self.node(key), 0)
        return "\n".join(lines)

    def _add_node(self, text: str, key: Optional[str], parent_id: Optional[int]) -> NodeRef:
        node_id = self._next_id
        self._next_id += 1
        key = key or f"uid-{node_id}"
        if key in self._keys:
            raise ValueError(f"duplicate key: {key}")
        order = 0 if parent_id is None else self._graph.out_degree(parent_id)
        self._graph.add_node(node_id, key=key, text=text, order=order)
        if parent_id is not None:
            self._graph.add_edge(parent_id, node_id)
        self._keys[key] = node_id
        return NodeRef(node_id=node_id, key=key)

    async def _latency(self) -> None:
        if self._simulate_latency:
            await asyncio.sleep(0)

    # -------------------------------------------------------------------------
    # DocumentGraph
    # -------------------------------------------------------------------------

    async def get_open_or_focused_node_key(self) -> Optional[str]:
        await self._latency()
        return self.focused_key

    async def get_today_node_key(self) -> Optional[str]:
        await self._latency()
        return self.day_key(self._today())

    async def expand_key_to_node(self, key: str) -> Optional[NodeRef]:
        await self._latency()
        node_id = self._keys.get(key)
        if node_id is None:
            return None
        return NodeRef(node_id=node_id, key=key)

    async def query_descendant_by_text(self, ancestor_node_id: Any, text: str) -> Optional[NodeRef]:
        await self._latency()
        if ancestor_node_id not in self._graph:
            return None
        matches = sorted(
            n for n in nx.descendants(self._graph, ancestor_node_id)
            if self._graph.nodes[n]['text'] == text
        )
        if not matches:
            return None
        return NodeRef(node_id=matches[0], key=self._graph.nodes[matches[0]]['key'])

    async def create_child_node(self, parent_key: str, text: str, position: str = "last") -> None:
        await self._latency()
        if position != "last":
            raise ValueError(f"unsupported position: {position}")
        self.add_child(parent_key, text)
        self.creation_log.append((parent_key, text))


class InMemorySettingsBackend(SettingsBackend):
    """
    Raw settings dictionary with synchronous change notification.

    `writes` records set_raw calls only; simulate_edit models a user typing
    into a control, which updates the value and notifies listeners.
    """

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})
        self._listeners: List[SettingsListener] = []
        self.writes: List[Tuple[str, Any]] = []

    def get_all_raw(self) -> Dict[str, Any]:
        return dict(self._values)

    def set_raw(self, raw_key: str, value: Any) -> None:
        self._values[raw_key] = value
        self.writes.append((raw_key, value))
        self._notify(raw_key, value)

    def subscribe(self, listener: SettingsListener) -> None:
        self._listeners.append(listener)

    def simulate_edit(self, raw_key: str, value: Any) -> None:
        self._values[raw_key] = value
        self._notify(raw_key, value)

    def _notify(self, raw_key: str, value: Any) -> None:
        for listener in list(self._listeners):
            listener(raw_key, value)


class InMemoryCommandPalette(CommandPalette):
    """Command registry keyed by label."""

    def __init__(self):
        self.commands: Dict[str, CommandCallback] = {}

    async def add_command(self, label: str, callback: CommandCallback) -> None:
        if label in self.commands:
            logger.warning("add_command: replacing existing command %r", label)
        self.commands[label] = callback

    async def remove_command(self, label: str) -> None:
        self.commands.pop(label, None)

    @property
    def labels(self) -> List[str]:
        return list(self.commands)

    async def invoke(self, label: str) -> Any:
        return await self.commands[label]()


class StaticContentSource(ContentSource):
    """
    Content source answering from a fixed table.

    A table value that is an exception is raised as a FetchError; an unknown
    source id is a FetchError as well.
    """

    def __init__(self, items: Mapping[str, Union[Sequence[ContentItem], BaseException]]):
        self._items = dict(items)
        self.calls: List[str] = []

    async def fetch_ranked_items(self, source_id: str) -> Tuple[ContentItem, ...]:
        self.calls.append(source_id)
        entry = self._items.get(source_id)
        if entry is None:
            raise FetchError(f"404 Not Found: {source_id}", source_id=source_id)
        if isinstance(entry, FetchError):
            raise entry
        if isinstance(entry, BaseException):
            raise FetchError(str(entry), source_id=source_id) from entry
        return tuple(entry)
