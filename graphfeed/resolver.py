"""
Insertion Target Resolution
===========================

Computes, for a single run, the node that content is inserted under, and
answers whether an automatic run is currently eligible.

The document graph is the only persistent state. The anchor node is looked up
by its exact text among the search node's descendants and created when
missing; the host's creation call returns no identifiers, so every creation is
followed by a re-query. Re-querying also converges concurrent creators on the
same (earliest created) anchor.

GUARANTEES:
- Search nodes are resolved fresh on every call, never cached
- Anchor creation is attempted at most max_anchor_attempts times per call
- `created` is True only if this call issued a creation before the lookup
  that succeeded
"""

from __future__ import annotations
from typing import Optional
import logging

from .config import GraphFeedConfig
from .contracts import AnchorResolution, AutoRunDecision, NodeRef, ResolutionError, RunPhase
from .host import DocumentGraph
from .settings import Settings

logger = logging.getLogger(__name__)


class InsertionResolver:
    """Resolves search nodes and anchors against a DocumentGraph."""

    def __init__(
        self,
        graph: DocumentGraph,
        settings: Settings,
        config: Optional[GraphFeedConfig] = None
    ):
        self._graph = graph
        self._settings = settings
        self._config = config or GraphFeedConfig()

    def anchor_text(self, settings: Optional[Settings] = None) -> str:
        """Text the anchor node must carry: the hashtag, else the fallback literal."""
        settings = settings or self._settings
        return settings.hashtag or self._config.fallback_anchor_text

    async def resolve_search_node(self, today_only: bool = False) -> NodeRef:
        """
        The open or focused node, falling back to today's day node.

        Raises ResolutionError if no key is available or the key is dangling.
        """
        key = None
        if not today_only:
            key = await self._graph.get_open_or_focused_node_key()
            logger.debug("resolve_search_node: open or focused key=%r", key)
        if not key:
            key = await self._graph.get_today_node_key()
            logger.debug("resolve_search_node: today's key=%r", key)
        if not key:
            raise ResolutionError("unable to get a search node")

        node = await self._graph.expand_key_to_node(key)
        if node is None:
            raise ResolutionError(f"unable to expand search node key: key={key}")
        logger.debug("resolve_search_node: resolved %s", node)
        return node

    async def resolve_anchor(
        self,
        search_node: NodeRef,
        grouped: bool,
        settings: Optional[Settings] = None
    ) -> AnchorResolution:
        """
        Find or create the anchor under search_node.

        Ungrouped runs insert directly under the search node. Grouped runs
        share one anchor node whose text is anchor_text().
        """
        if not grouped:
            return AnchorResolution(anchor=search_node, created=False)

        text = self.anchor_text(settings)
        logger.debug("resolve_anchor: searching for %r under %s", text, search_node)

        existing = await self._graph.query_descendant_by_text(search_node.node_id, text)
        if existing is not None:
            logger.debug("resolve_anchor: found existing anchor %s", existing)
            return AnchorResolution(anchor=existing, created=False)

        attempts = self._config.max_anchor_attempts
        for attempt in range(1, attempts + 1):
            await self._graph.create_child_node(search_node.key, text, "last")
            found = await self._graph.query_descendant_by_text(search_node.node_id, text)
            logger.debug("resolve_anchor: attempt=%d, found=%s", attempt, found)
            if found is not None:
                return AnchorResolution(anchor=found, created=True)

        raise ResolutionError(
            f"exhausted retries while getting or creating anchor {text!r} ({attempts} attempts)",
            search_node=search_node
        )

    async def evaluate_auto_run(self, settings: Optional[Settings] = None) -> AutoRunDecision:
        """
        Walk the auto-run gate.

        A freshly created anchor under today's node is the only durable signal
        that no automatic run happened today yet. With grouping disabled the
        anchor is the day node itself and is never created, so the gate then
        passes whenever auto-run is enabled.
        """
        settings = settings or self._settings
        phase = RunPhase.IDLE

        if not settings.auto_run_enabled:
            return AutoRunDecision(RunPhase.SKIPPED, "auto-run disabled")

        phase = RunPhase.RESOLVING_SEARCH_NODE
        try:
            day_node = await self.resolve_search_node(today_only=True)
        except ResolutionError as e:
            logger.debug("evaluate_auto_run: no day node (%s) during %s", e, phase.value)
            return AutoRunDecision(RunPhase.SKIPPED, f"today's day node is not available: {e}")

        phase = RunPhase.RESOLVING_ANCHOR
        try:
            resolution = await self.resolve_anchor(day_node, settings.group_under_anchor, settings)
        except ResolutionError as e:
            logger.warning("evaluate_auto_run: anchor resolution failed during %s: %s", phase.value, e)
            return AutoRunDecision(RunPhase.FAILED, f"anchor resolution failed: {e}")

        if not settings.group_under_anchor:
            return AutoRunDecision(RunPhase.ELIGIBLE, "grouping disabled; gate always open", resolution)
        if not resolution.created:
            return AutoRunDecision(RunPhase.SKIPPED, "anchor already exists under today's node", resolution)
        return AutoRunDecision(RunPhase.ELIGIBLE, "anchor freshly created under today's node", resolution)

    async def is_auto_run_eligible(self, settings: Optional[Settings] = None) -> bool:
        decision = await self.evaluate_auto_run(settings)
        return decision.eligible
