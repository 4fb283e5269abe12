"""
Integration Test Fixtures

Explicit content and host builders for end-to-end runs. All fixtures are
deterministic: fixed day, seeded selection, canned content.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from graphfeed.config import GraphFeedConfig
from graphfeed.contracts import ContentItem, NodeRef
from graphfeed.coordinator import ResolutionCoordinator
from graphfeed.memory import (
    InMemoryCommandPalette,
    InMemoryDocumentGraph,
    InMemorySettingsBackend,
    StaticContentSource,
)


# =============================================================================
# FIXED DAYS
# =============================================================================

DAY_1 = date(2026, 10, 19)
DAY_2 = date(2026, 10, 20)


# =============================================================================
# CONTENT FIXTURES
# =============================================================================

def make_item(title: str, source: str = "lifeprotips", n: int = 1, body: str = "", score: int = 100) -> ContentItem:
    return ContentItem(
        title=title,
        body=body,
        author=f"user{n}",
        source_ref=f"https://www.reddit.com/r/{source}/comments/{n}/",
        score=score,
        source=f"r/{source}"
    )


LIFEPROTIPS_ITEMS = [
    make_item("LPT: write it down", n=1, body="Memory is unreliable."),
    make_item("LPT: sleep on it", n=2),
    make_item("LPT: ask twice", n=3, score=5),
]

TIL_ITEMS = [
    make_item("TIL octopuses have three hearts", source="todayilearned", n=10),
    make_item("TIL honey never spoils", source="todayilearned", n=11),
]


def create_default_items() -> Dict[str, List[ContentItem]]:
    return {"lifeprotips": list(LIFEPROTIPS_ITEMS), "todayilearned": list(TIL_ITEMS)}


# =============================================================================
# HOST FIXTURES
# =============================================================================

@dataclass
class Host:
    """Everything a coordinator talks to, kept for assertions."""
    graph: InMemoryDocumentGraph
    day: NodeRef
    backend: InMemorySettingsBackend
    palette: InMemoryCommandPalette
    source: Any
    coordinator: ResolutionCoordinator
    days: List[date]

    def anchors(self, text: str = "#graphfeed") -> List[NodeRef]:
        return [c for c in self.graph.children(self.day.key) if self.graph.text(c.key) == text]

    def texts_under(self, node: NodeRef) -> List[str]:
        return [self.graph.text(c.key) for c in self.graph.children(node.key)]


def create_host(
    raw: Optional[Dict[str, Any]] = None,
    items: Optional[Dict[str, Any]] = None,
    graph_cls=InMemoryDocumentGraph,
    source=None,
    config: Optional[GraphFeedConfig] = None,
    with_day_page: bool = True,
    graph: Optional[InMemoryDocumentGraph] = None,
) -> Host:
    """
    Build an in-memory host and a coordinator over it.

    Must be called from inside the test's event loop. Passing an existing graph
    simulates reloading the extension against the same document.
    """
    days = [DAY_1]
    if graph is None:
        graph = graph_cls(today=lambda: days[0])
        day = graph.add_day_page() if with_day_page else NodeRef(node_id=None, key=graph.day_key(DAY_1))
    else:
        day = graph.node(graph.day_key(DAY_1))
    backend = InMemorySettingsBackend(raw or {})
    palette = InMemoryCommandPalette()
    if source is None:
        source = StaticContentSource(items if items is not None else create_default_items())
    coordinator = ResolutionCoordinator(
        graph,
        backend,
        content_source=source,
        command_palette=palette,
        config=config or GraphFeedConfig(random_seed=1234, debounce_seconds=0.01)
    )
    return Host(graph, day, backend, palette, source, coordinator, days)
