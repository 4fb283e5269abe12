"""
GraphFeed

Pulls ranked items from external content sources (subreddit listings) into an
outliner-style document graph, under a per-day anchor node.

DIRECTION OF DEPENDENCY:
========================
coordinator -> resolver / pipeline / settings -> host capabilities -> contracts

NEVER:
- Components talking to a host except through graphfeed.host capabilities
- Settings mutated anywhere but SettingsStore.reconcile_one
"""

from .contracts import (
    ErrorKind,
    FetchStatus,
    ReconcileStatus,
    RunPhase,
    GraphFeedError,
    ParseError,
    ResolutionError,
    FetchError,
    InsertionError,
    NodeRef,
    AnchorResolution,
    AutoRunDecision,
    ContentItem,
    FetchResult,
    Reconciliation,
    InsertionOutcome,
    SourceRunResult,
    RunBatch,
    AutoRunResult,
)

from .config import GraphFeedConfig

from .host import (
    DocumentGraph,
    SettingsBackend,
    CommandPalette,
    ContentSource,
    DatalogDocumentGraph,
)

from .settings import Settings, SettingsStore, ALL_SETTING_KEYS
from .resolver import InsertionResolver
from .pipeline import ContentPipeline
from .fetcher import RedditFetcher
from .coordinator import ResolutionCoordinator

__version__ = "1.0.0"
