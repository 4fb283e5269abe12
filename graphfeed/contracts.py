"""
GraphFeed Contracts

Immutable data structures and error types shared by every GraphFeed layer.

BOUNDARY: all data crossing between the settings store, the resolver, the
content pipeline and the coordinator is expressed with these types.

PRINCIPLES:
===========
1. Failures are first-class results at the public boundary
2. Exceptions are only used inside a run and are converted before returning
3. Node identity is whatever the host assigns; we never invent identifiers
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


# =============================================================================
# ENUMS
# =============================================================================

class ErrorKind(Enum):
    """Error taxonomy. Every failure maps to exactly one kind."""
    PARSE = "parse"
    RESOLUTION = "resolution"
    FETCH = "fetch"
    INSERTION = "insertion"
    UNEXPECTED = "unexpected"


class FetchStatus(Enum):
    """Status of a content-source fetch attempt."""
    SUCCESS = "success"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    PARSE_ERROR = "parse_error"
    NETWORK_ERROR = "network_error"


class ReconcileStatus(Enum):
    """Outcome of reconciling one raw setting."""
    APPLIED = "applied"
    DEFAULTED = "defaulted"
    UNRECOGNIZED = "unrecognized"
    MALFORMED_KEY = "malformed_key"
    FAILED = "failed"


class RunPhase(Enum):
    """Per-run state machine for the auto-run gate."""
    IDLE = "idle"
    RESOLVING_SEARCH_NODE = "resolving_search_node"
    RESOLVING_ANCHOR = "resolving_anchor"
    ELIGIBLE = "eligible"
    SKIPPED = "skipped"
    FAILED = "failed"


# =============================================================================
# ERRORS
# =============================================================================

class GraphFeedError(Exception):
    """Base for all GraphFeed errors."""
    kind = ErrorKind.UNEXPECTED


class ParseError(GraphFeedError):
    """Raw setting value is invalid. Always recovered with a default."""
    kind = ErrorKind.PARSE


class ResolutionError(GraphFeedError):
    """Cannot locate or create a search node or anchor node."""
    kind = ErrorKind.RESOLUTION

    def __init__(self, message: str, search_node: Optional[NodeRef] = None):
        super().__init__(message)
        self.search_node = search_node


class FetchError(GraphFeedError):
    """Content source unreachable or answered with a non-success status."""
    kind = ErrorKind.FETCH

    def __init__(self, message: str, source_id: str = "", status: Optional[FetchStatus] = None):
        super().__init__(message)
        self.source_id = source_id
        self.status = status


class InsertionError(GraphFeedError):
    """Host creation call failed for a single item."""
    kind = ErrorKind.INSERTION


# =============================================================================
# GRAPH CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class NodeRef:
    """
    A node in the host document graph.

    node_id is the host's internal identifier (used for structural queries),
    key is the stable external key (used for host API calls).
    """
    node_id: object
    key: str


@dataclass(frozen=True)
class AnchorResolution:
    """
    Result of resolving the anchor for one run.

    created answers "did this call mint the first occurrence of the anchor
    under the search node". It is transient and never persisted.
    """
    anchor: NodeRef
    created: bool = False


@dataclass(frozen=True)
class AutoRunDecision:
    """Outcome of the auto-run gate, including where the state machine stopped."""
    phase: RunPhase
    reason: str
    resolution: Optional[AnchorResolution] = None

    @property
    def eligible(self) -> bool:
        return self.phase == RunPhase.ELIGIBLE


# =============================================================================
# CONTENT CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class ContentItem:
    """A single ranked item returned by a content source."""
    title: str
    body: str
    author: str
    source_ref: str
    score: int
    source: str = ""


@dataclass(frozen=True)
class FetchResult:
    """
    Result of a fetch attempt (success or failure).

    Failed fetches are FIRST-CLASS outputs, not exceptions.
    """
    source_id: str
    url: str
    attempted_at: datetime
    completed_at: datetime
    status: FetchStatus
    items: Tuple[ContentItem, ...] = ()
    http_status: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == FetchStatus.SUCCESS

    @property
    def duration_ms(self) -> float:
        return (self.completed_at - self.attempted_at).total_seconds() * 1000


# =============================================================================
# SETTINGS CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class Reconciliation:
    """Record of one reconcile_one call."""
    raw_key: object
    status: ReconcileStatus
    field_name: Optional[str] = None
    value: object = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status in (ReconcileStatus.APPLIED, ReconcileStatus.DEFAULTED)

    @property
    def used_default(self) -> bool:
        return self.status == ReconcileStatus.DEFAULTED


# =============================================================================
# RUN RESULT CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class InsertionOutcome:
    """Result of inserting one piece of content."""
    content: str
    is_notice: bool
    inserted: bool
    parent_key: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class SourceRunResult:
    """Result of a run against one content source."""
    source_id: str
    caller: str
    started_at: datetime
    completed_at: datetime
    items_fetched: int = 0
    outcomes: Tuple[InsertionOutcome, ...] = ()
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    @property
    def items_inserted(self) -> int:
        return sum(1 for o in self.outcomes if o.inserted and not o.is_notice)

    @property
    def notices_inserted(self) -> int:
        return sum(1 for o in self.outcomes if o.inserted and o.is_notice)

    @property
    def success(self) -> bool:
        return self.items_inserted > 0


@dataclass(frozen=True)
class RunBatch:
    """Aggregate of source runs triggered together."""
    batch_id: str
    caller: str
    started_at: datetime
    completed_at: datetime
    results: Tuple[SourceRunResult, ...]

    @property
    def success(self) -> bool:
        return any(r.success for r in self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)


@dataclass(frozen=True)
class AutoRunResult:
    """Result of an automatic run: the gate decision and, if it fired, the batch."""
    decision: AutoRunDecision
    batch: Optional[RunBatch] = None

    @property
    def success(self) -> bool:
        return self.batch is not None and self.batch.success
