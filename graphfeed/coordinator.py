"""
Resolution Coordinator

Orchestrates runs: resolves the insertion target, obtains formatted content
from the content pipeline and inserts it through the host.

DESIGN:
=======
1. Owns the single Settings instance; every component gets it by reference
2. Exposed entry points never raise; failures come back as result records
3. Each item insertion is independent of the others
4. "Run all" fans out per source concurrently and succeeds if any source did
"""

from __future__ import annotations
from datetime import datetime, timezone
from functools import partial
from typing import Any, List, Mapping, Optional, Tuple
import asyncio
import logging
import random

from .config import GraphFeedConfig
from .contracts import (
    AutoRunDecision, AutoRunResult, ErrorKind, FetchError, GraphFeedError, InsertionError,
    InsertionOutcome, NodeRef, Reconciliation, ResolutionError, RunBatch, RunPhase, SourceRunResult
)
from .fetcher import RedditFetcher
from .host import CommandPalette, ContentSource, DocumentGraph, SettingsBackend
from .logging_utils import log_exception
from .pipeline import ContentPipeline
from .resolver import InsertionResolver
from .settings import Settings, SettingsStore

logger = logging.getLogger(__name__)

FRIENDLY_NAME = "GraphFeed"
RUN_SINGLE_COMMAND_PREFIX = f"{FRIENDLY_NAME}: Retrieve items from"
RUN_ALL_COMMAND_LABEL = f"{FRIENDLY_NAME}: Retrieve all sources"


def format_command_label(source_id: str) -> str:
    return f"{RUN_SINGLE_COMMAND_PREFIX} {source_id}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ResolutionCoordinator:
    """
    Wires settings, resolver and content pipeline into the run entry points
    and the command/lifecycle glue.
    """

    def __init__(
        self,
        graph: DocumentGraph,
        settings_backend: SettingsBackend,
        content_source: Optional[ContentSource] = None,
        command_palette: Optional[CommandPalette] = None,
        config: Optional[GraphFeedConfig] = None
    ):
        self._config = config or GraphFeedConfig()
        self.settings = Settings()
        self._graph = graph
        self._backend = settings_backend
        self._palette = command_palette
        self._store = SettingsStore(
            self.settings,
            settings_backend,
            on_sources_changed=self.reinstall_commands,
            config=self._config
        )
        self._resolver = InsertionResolver(graph, self.settings, self._config)
        self._pipeline = ContentPipeline(self.settings, random.Random(self._config.random_seed))
        self._source = content_source or RedditFetcher(self.settings, self._config)
        self._installed_sources: List[str] = []
        self._commands_installed = False
        self._command_lock = asyncio.Lock()

        settings_backend.subscribe(self._store.on_control_changed)

    @property
    def store(self) -> SettingsStore:
        return self._store

    @property
    def resolver(self) -> InsertionResolver:
        return self._resolver

    @property
    def pipeline(self) -> ContentPipeline:
        return self._pipeline

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    async def run_single_source(
        self,
        source_id: str,
        caller: str = "none",
        today_only: bool = False
    ) -> SourceRunResult:
        """Fetch, select, format and insert content for one source."""
        started_at = _now()
        logger.debug("run_single_source: starting: source=%s, caller=%s", source_id, caller)
        try:
            result = await self._run_single(source_id, caller, today_only, started_at)
        except Exception as e:
            logger.error("run_single_source: unexpected failure: source=%s", source_id, exc_info=e)
            return SourceRunResult(
                source_id=source_id,
                caller=caller,
                started_at=started_at,
                completed_at=_now(),
                error_kind=ErrorKind.UNEXPECTED,
                error_message=str(e)
            )
        logger.debug("run_single_source: finished: source=%s, inserted=%d, notices=%d",
                     source_id, result.items_inserted, result.notices_inserted)
        return result

    async def _run_single(
        self,
        source_id: str,
        caller: str,
        today_only: bool,
        started_at: datetime
    ) -> SourceRunResult:
        error: Optional[GraphFeedError] = None
        items_fetched = 0

        try:
            fetched = await self._source.fetch_ranked_items(source_id)
        except FetchError as e:
            logger.error("run_single_source: fetch failed: source=%s, error=%s", source_id, e)
            error = e
            contents = [(self._pipeline.format_notice(str(e), prefix="ERROR"), True)]
        else:
            items_fetched = len(fetched)
            selected = self._pipeline.select(fetched)
            if selected:
                contents = [(self._pipeline.format_item(item), False) for item in selected]
            else:
                contents = [(self._pipeline.format_notice(
                    f"got nothing back from {source_id}, maybe check your settings in Settings -> {FRIENDLY_NAME}"
                ), True)]

        shared_parent: Optional[NodeRef] = None
        if self.settings.group_under_anchor:
            try:
                shared_parent = await self._resolve_parent(today_only)
            except ResolutionError as e:
                logger.error("run_single_source: cannot resolve anchor: %s", e)
                notice = await self._insert_resolution_notice(e, today_only)
                return SourceRunResult(
                    source_id=source_id,
                    caller=caller,
                    started_at=started_at,
                    completed_at=_now(),
                    items_fetched=items_fetched,
                    outcomes=(notice,) if notice else (),
                    error_kind=ErrorKind.RESOLUTION,
                    error_message=str(e)
                )

        outcomes: List[InsertionOutcome] = []
        for content, is_notice in contents:
            outcomes.append(await self._insert(content, is_notice, shared_parent, today_only))

        failed = [o for o in outcomes if not o.inserted]
        if error is None and failed:
            error = InsertionError(failed[0].error_message or "insertion failed")

        return SourceRunResult(
            source_id=source_id,
            caller=caller,
            started_at=started_at,
            completed_at=_now(),
            items_fetched=items_fetched,
            outcomes=tuple(outcomes),
            error_kind=error.kind if error else None,
            error_message=str(error) if error else None
        )

    async def _resolve_parent(self, today_only: bool) -> NodeRef:
        search_node = await self._resolver.resolve_search_node(today_only)
        resolution = await self._resolver.resolve_anchor(search_node, self.settings.group_under_anchor)
        return resolution.anchor

    async def _insert(
        self,
        content: str,
        is_notice: bool,
        parent: Optional[NodeRef],
        today_only: bool
    ) -> InsertionOutcome:
        """Insert one piece of content. Ungrouped runs resolve a fresh parent per item."""
        if parent is None:
            try:
                parent = await self._resolve_parent(today_only)
            except ResolutionError as e:
                logger.error("insert: cannot resolve insertion target: %s", e)
                return InsertionOutcome(content=content, is_notice=is_notice, inserted=False, error_message=str(e))

        try:
            await self._graph.create_child_node(parent.key, content, "last")
        except Exception as e:
            error = InsertionError(f"failed to insert under {parent.key}: {e}")
            logger.error("insert: %s", error, exc_info=e)
            return InsertionOutcome(
                content=content, is_notice=is_notice, inserted=False,
                parent_key=parent.key, error_message=str(error)
            )

        logger.debug("insert: inserted under %s: %d chars", parent.key, len(content))
        return InsertionOutcome(content=content, is_notice=is_notice, inserted=True, parent_key=parent.key)

    async def _insert_resolution_notice(self, error: ResolutionError, today_only: bool) -> Optional[InsertionOutcome]:
        if error.search_node is None:
            logger.error("run_single_source: no search node to report %r under", str(error))
            return None
        notice = self._pipeline.format_notice(str(error), prefix="ERROR")
        return await self._insert(notice, True, error.search_node, today_only)

    async def run_all_sources(self, caller: str = "none", today_only: bool = False) -> RunBatch:
        """Run every configured source concurrently."""
        started_at = _now()
        sources = list(self.settings.sources)
        logger.debug("run_all_sources: starting: caller=%s, sources=%s", caller, sources)
        results = await asyncio.gather(*(
            self.run_single_source(source_id, caller, today_only) for source_id in sources
        ))
        batch = RunBatch(
            batch_id=f"batch_{started_at.strftime('%Y%m%d%H%M%S')}",
            caller=caller,
            started_at=started_at,
            completed_at=_now(),
            results=tuple(results)
        )
        logger.debug("run_all_sources: finished: succeeded=%s (%d/%d)",
                     batch.success, batch.success_count, len(batch.results))
        return batch

    async def run_automatic(self, caller: str = "none") -> AutoRunResult:
        """Run all sources against today's day node if the auto-run gate is open."""
        logger.debug("run_automatic: starting: caller=%s", caller)
        try:
            decision = await self._resolver.evaluate_auto_run(self.settings)
        except Exception as e:
            logger.error("run_automatic: gate failed", exc_info=e)
            return AutoRunResult(decision=AutoRunDecision(RunPhase.FAILED, str(e)))

        if not decision.eligible:
            logger.info("run_automatic: skipped: %s", decision.reason)
            return AutoRunResult(decision=decision)

        batch = await self.run_all_sources(caller, today_only=True)
        logger.info("run_automatic: finished: succeeded=%s", batch.success)
        return AutoRunResult(decision=decision, batch=batch)

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    async def reconcile_all(self, raw_entries: Optional[Mapping[str, Any]]) -> Tuple[Reconciliation, ...]:
        """Reconcile a full raw snapshot, then refresh commands once if installed."""
        results = self._store.reconcile_all(raw_entries, refresh_commands=False)
        if self._commands_installed:
            try:
                await self.reinstall_commands("settings-update")
            except Exception as e:
                logger.error("reconcile_all: command refresh failed", exc_info=e)
        return results

    def reconcile_one(self, raw_key: str, raw_value: Any) -> Reconciliation:
        return self._store.reconcile_one(raw_key, raw_value)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def install_commands(self, caller: str = "none") -> None:
        if self._palette is None:
            return
        logger.debug("install_commands: starting: caller=%s", caller)
        if self._installed_sources:
            logger.warning("install_commands: previous commands not uninstalled first")
            self._installed_sources = []
        for source_id in self.settings.sources:
            await self._palette.add_command(
                format_command_label(source_id),
                partial(self.run_single_source, source_id, "command-palette")
            )
            self._installed_sources.append(source_id)
        await self._palette.add_command(RUN_ALL_COMMAND_LABEL, partial(self.run_all_sources, "command-palette"))
        self._commands_installed = True
        logger.debug("install_commands: installed %d source commands", len(self._installed_sources))

    async def uninstall_commands(self, caller: str = "none") -> None:
        if self._palette is None:
            return
        logger.debug("uninstall_commands: starting: caller=%s", caller)
        await self._palette.remove_command(RUN_ALL_COMMAND_LABEL)
        for source_id in self._installed_sources:
            await self._palette.remove_command(format_command_label(source_id))
        self._installed_sources = []
        self._commands_installed = False

    async def reinstall_commands(self, caller: str = "settings-update") -> None:
        """Re-register per-source commands. No-op unless commands are installed."""
        async with self._command_lock:
            if not self._commands_installed:
                logger.debug("reinstall_commands: commands not installed, skipped")
                return
            await self.uninstall_commands(caller)
            await self.install_commands(caller)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def on_load(self, caller: str = "onload") -> bool:
        """Reconcile settings, install commands and attempt an automatic run."""
        try:
            self._store.reconcile_all(self._backend.get_all_raw() or {})
            await self.install_commands(caller)
            await self.run_automatic(caller)
        except Exception as e:
            log_exception(logger, e, "on_load", caller=caller)
            return False
        logger.info("extension loaded")
        return True

    async def on_unload(self, caller: str = "onunload") -> bool:
        """Deregister commands. In-flight runs are left to finish."""
        try:
            await self.uninstall_commands(caller)
        except Exception as e:
            log_exception(logger, e, "on_unload", caller=caller)
            return False
        logger.info("extension unloaded")
        return True
