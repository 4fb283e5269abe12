"""
Host Capabilities
=================

Narrow interfaces to the document host. GraphFeed never talks to a host
except through these capability sets, so every component can be exercised
against an in-memory fake (see graphfeed.memory).

Capability sets:
- DocumentGraph: lookup-by-key, lookup-descendant-by-text, create-child
- SettingsBackend: raw persisted key/value settings with change notification
- CommandPalette: register/deregister named commands
- ContentSource: ranked content items per source
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple

from .contracts import ContentItem, NodeRef

SettingsListener = Callable[[str, Any], None]
CommandCallback = Callable[[], Awaitable[Any]]


class DocumentGraph(ABC):
    """Graph-query and node-creation primitives of the host."""

    @abstractmethod
    async def get_open_or_focused_node_key(self) -> Optional[str]:
        """Key of the currently open page or focused node, if any."""

    @abstractmethod
    async def get_today_node_key(self) -> Optional[str]:
        """Key of the node for the current calendar day (deterministic per day)."""

    @abstractmethod
    async def expand_key_to_node(self, key: str) -> Optional[NodeRef]:
        """Structural lookup of a key. None when the key is dangling."""

    @abstractmethod
    async def query_descendant_by_text(self, ancestor_node_id: Any, text: str) -> Optional[NodeRef]:
        """
        A node whose full text equals `text` and that is a direct or
        transitive child of `ancestor_node_id`. When several match, the
        earliest created one.
        """

    @abstractmethod
    async def create_child_node(self, parent_key: str, text: str, position: str = "last") -> None:
        """Append a child node. Callers must not rely on a return value."""


class SettingsBackend(ABC):
    """The host's raw persisted settings."""

    @abstractmethod
    def get_all_raw(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    def set_raw(self, raw_key: str, value: Any) -> None:
        """Persist synchronously. May notify subscribers before returning."""

    @abstractmethod
    def subscribe(self, listener: SettingsListener) -> None:
        """Register a change listener called with (raw_key, raw_value)."""


class CommandPalette(ABC):
    """The host's command registry."""

    @abstractmethod
    async def add_command(self, label: str, callback: CommandCallback) -> None:
        pass

    @abstractmethod
    async def remove_command(self, label: str) -> None:
        pass


class ContentSource(ABC):
    """External collaborator producing ranked items for a source id."""

    @abstractmethod
    async def fetch_ranked_items(self, source_id: str) -> Tuple[ContentItem, ...]:
        """Ordered items, or raises FetchError."""


# =============================================================================
# DATALOG HOST ADAPTER
# =============================================================================

# Reusable ancestor-closure rule over the graph's parent/child edges.
RULE_ANCESTORS = """[
    [ (ancestor ?child ?parent)
         [?parent :block/children ?child] ]
    [ (ancestor ?child ?a)
         [?parent :block/children ?child ]
         (ancestor ?parent ?a) ] ]"""

QUERY_EXPAND_KEY = "[:find ?e ?uid :in $ ?uid :where [?e :block/uid ?uid]]"

QUERY_DESCENDANT_BY_TEXT = """[
    :find ?e ?uid
    :in $ ?i ?text %
    :where
    [?e :block/string ?text]
    [?e :block/uid ?uid]
    (ancestor ?e ?i)
]"""


class DatalogDocumentGraph(DocumentGraph):
    """
    DocumentGraph for hosts that expose a datalog query function.

    The host client supplies:
        query(q, *inputs) -> list of result tuples (synchronous)
        create_block(parent_uid, text, order) -> awaitable
        open_uid() -> awaitable of Optional[str]
        date_to_uid(date) -> str
    """

    def __init__(
        self,
        query: Callable[..., Sequence[Sequence[Any]]],
        create_block: Callable[[str, str, str], Awaitable[Any]],
        open_uid: Callable[[], Awaitable[Optional[str]]],
        date_to_uid: Callable[[date], str],
        today: Callable[[], date] = date.today
    ):
        self._query = query
        self._create_block = create_block
        self._open_uid = open_uid
        self._date_to_uid = date_to_uid
        self._today = today

    async def get_open_or_focused_node_key(self) -> Optional[str]:
        return await self._open_uid()

    async def get_today_node_key(self) -> Optional[str]:
        return self._date_to_uid(self._today())

    async def expand_key_to_node(self, key: str) -> Optional[NodeRef]:
        rows = self._query(QUERY_EXPAND_KEY, key)
        if not rows or not rows[0][0]:
            return None
        entity_id, uid = rows[0][0], rows[0][1]
        return NodeRef(node_id=entity_id, key=uid)

    async def query_descendant_by_text(self, ancestor_node_id: Any, text: str) -> Optional[NodeRef]:
        rows = self._query(QUERY_DESCENDANT_BY_TEXT, ancestor_node_id, text, RULE_ANCESTORS)
        if not rows:
            return None
        # Entity ids grow with creation order; the smallest is the first anchor
        entity_id, uid = min(rows, key=lambda row: row[0])
        return NodeRef(node_id=entity_id, key=uid)

    async def create_child_node(self, parent_key: str, text: str, position: str = "last") -> None:
        await self._create_block(parent_key, text, position)
