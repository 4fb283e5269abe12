"""
GraphFeed Demo
==============

Loads GraphFeed against an in-memory document graph, lets the automatic run
fire on today's page and prints the resulting outline.

RUN:
    python -m graphfeed
    python -m graphfeed --offline
    python -m graphfeed --sources lifeprotips,todayilearned --items 3
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, List
import argparse
import asyncio
import sys

from .config import GraphFeedConfig
from .contracts import ContentItem
from .coordinator import ResolutionCoordinator
from .logging_utils import configure_logging
from .memory import InMemoryCommandPalette, InMemoryDocumentGraph, InMemorySettingsBackend, StaticContentSource
from .settings import SETTING_HASHTAG, SETTING_ITEMS_PER_RUN, SETTING_SOURCES


def offline_items(sources: List[str]) -> Dict[str, List[ContentItem]]:
    """A few canned items per source so the demo runs without network access."""
    return {
        source: [
            ContentItem(
                title=f"Sample item {n} from {source}",
                body="" if n % 2 else f"Body text for sample item {n}.",
                author=f"user{n}",
                source_ref=f"https://www.reddit.com/r/{source}/comments/{n}/",
                score=100 * n,
                source=f"r/{source}"
            )
            for n in range(1, 6)
        ]
        for source in sources
    }


async def run_demo(args: argparse.Namespace) -> int:
    config = GraphFeedConfig.load(Path(args.config) if args.config else None)

    graph = InMemoryDocumentGraph()
    day = graph.add_day_page()

    raw = {}
    if args.sources:
        raw[SETTING_SOURCES] = args.sources
    if args.items is not None:
        raw[SETTING_ITEMS_PER_RUN] = args.items
    if args.hashtag is not None:
        raw[SETTING_HASHTAG] = args.hashtag
    backend = InMemorySettingsBackend(raw)

    source = None
    if args.offline:
        sources = [s.strip() for s in (args.sources or "lifeprotips").split(",") if s.strip()]
        source = StaticContentSource(offline_items(sources))

    palette = InMemoryCommandPalette()
    coordinator = ResolutionCoordinator(graph, backend, content_source=source,
                                        command_palette=palette, config=config)

    loaded = await coordinator.on_load()
    print(f"Loaded: {loaded}")
    print(f"Commands: {', '.join(palette.labels)}")
    print()
    print(graph.render_outline(day.key))

    if args.run_again:
        batch = await coordinator.run_all_sources("demo")
        print()
        print(f"Manual run {batch.batch_id}: {batch.success_count}/{len(batch.results)} sources succeeded")
        print(graph.render_outline(day.key))

    await coordinator.on_unload()
    return 0 if loaded else 1


# =============================================================================
# CLI ENTRY POINT
# =============================================================================

def main() -> int:
    parser = argparse.ArgumentParser(
        description="GraphFeed Demo - in-memory document graph",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m graphfeed                          # Fetch live listings
  python -m graphfeed --offline                # Canned items, no network
  python -m graphfeed --items 3 --run-again    # Auto run, then a manual run
        """
    )

    parser.add_argument(
        '--config', '-c',
        default=None,
        help='Path to a GraphFeed JSON config file'
    )

    parser.add_argument(
        '--sources', '-s',
        default=None,
        help='Comma-separated source list'
    )

    parser.add_argument(
        '--items', '-n',
        type=int,
        default=None,
        help='Number of items per run'
    )

    parser.add_argument(
        '--hashtag',
        default=None,
        help='Hashtag appended to inserted items (empty for none)'
    )

    parser.add_argument(
        '--offline',
        action='store_true',
        help='Use canned items instead of fetching listings'
    )

    parser.add_argument(
        '--run-again',
        action='store_true',
        help='Run all sources once more after loading'
    )

    parser.add_argument(
        '--log-level',
        default='WARNING',
        help='Console log level'
    )

    parser.add_argument(
        '--log-file',
        default=None,
        help='Also write DEBUG logs to this file'
    )

    args = parser.parse_args()
    configure_logging(args.log_level, args.log_file)
    return asyncio.run(run_demo(args))


if __name__ == "__main__":
    sys.exit(main())
