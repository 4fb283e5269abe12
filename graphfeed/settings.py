"""
Settings Reconciliation
=======================

Turns raw, user-edited setting values into the typed Settings object that the
resolver and content pipeline read.

GUARANTEES:
- Every Settings field always holds a valid typed value
- Invalid or missing raw input is replaced by the documented default and the
  rendered default is written back to the raw store exactly once
- Write-backs never re-trigger reconciliation (suppression flag)
- UI edits are debounced per key; only the last value in a window is applied
- Nothing here raises past reconcile_one / reconcile_all
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Pattern, Tuple
import asyncio
import inspect
import logging
import math
import re

from .config import GraphFeedConfig
from .contracts import ParseError, Reconciliation, ReconcileStatus
from .host import SettingsBackend

logger = logging.getLogger(__name__)


# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_SOURCES: Tuple[str, ...] = ("lifeprotips",)
DEFAULT_AUTO_RUN_ENABLED = True
DEFAULT_GROUP_UNDER_ANCHOR = True
DEFAULT_HASHTAG = "#graphfeed"
DEFAULT_ITEMS_PER_RUN = 1
DEFAULT_TITLE_ONLY = False
DEFAULT_BLOCKED_PHRASES: Tuple[str, ...] = ()
DEFAULT_MINIMUM_SCORE = 0
DEFAULT_SORT = "top"


def compile_blocked_phrases(phrases: Tuple[str, ...]) -> Tuple[Pattern, ...]:
    """One case-insensitive word-boundary matcher per phrase, in order."""
    return tuple(re.compile(rf"\b{re.escape(p)}\b", re.IGNORECASE) for p in phrases)


@dataclass
class Settings:
    """
    Typed user settings.

    One mutable instance lives from extension load to unload. All mutation
    goes through SettingsStore.reconcile_one.
    """
    sources: Tuple[str, ...] = DEFAULT_SOURCES
    auto_run_enabled: bool = DEFAULT_AUTO_RUN_ENABLED
    group_under_anchor: bool = DEFAULT_GROUP_UNDER_ANCHOR
    hashtag: Optional[str] = DEFAULT_HASHTAG
    items_per_run: int = DEFAULT_ITEMS_PER_RUN
    title_only: bool = DEFAULT_TITLE_ONLY
    blocked_phrases: Tuple[str, ...] = DEFAULT_BLOCKED_PHRASES
    blocked_phrase_matchers: Tuple[Pattern, ...] = field(
        default_factory=lambda: compile_blocked_phrases(DEFAULT_BLOCKED_PHRASES)
    )
    minimum_score: int = DEFAULT_MINIMUM_SCORE
    sort: str = DEFAULT_SORT


# =============================================================================
# PARSERS (raise ParseError on invalid input)
# =============================================================================

def _require(raw: Any) -> Any:
    if raw is None:
        raise ParseError("missing value")
    return raw


def parse_string(raw: Any) -> str:
    value = str(_require(raw)).strip()
    if not value:
        raise ParseError("empty string")
    return value


def parse_lowercase_string(raw: Any) -> str:
    return parse_string(raw).lower()


def parse_string_list(raw: Any) -> Tuple[str, ...]:
    """Comma-separated list; segments trimmed, empties and repeats dropped."""
    if isinstance(raw, (list, tuple)):
        raw = ",".join(str(v) for v in raw)
    segments = [s.strip() for s in str(_require(raw)).split(",")]
    values = tuple(dict.fromkeys(s for s in segments if s))
    if not values:
        raise ParseError(f"no values in list: {raw!r}")
    return values


def parse_optional_string_list(raw: Any) -> Tuple[str, ...]:
    """Like parse_string_list, but an empty list is a valid value."""
    _require(raw)
    try:
        return parse_string_list(raw)
    except ParseError:
        return ()


def parse_hashtag(raw: Any) -> Optional[str]:
    """
    Normalize to a single leading '#'.

    'tag', '#tag' and '##tag' all become '#tag'. An empty result is the valid
    value "no hashtag" and is returned as None.
    """
    value = str(_require(raw)).strip().lstrip("#")
    return f"#{value}" if value else None


def parse_non_negative_int(raw: Any) -> int:
    """A blank string counts as 0, like an emptied number field."""
    raw = _require(raw)
    if isinstance(raw, str) and not raw.strip():
        return 0
    if isinstance(raw, bool):
        return int(raw)
    try:
        number = float(raw)
    except (TypeError, ValueError, OverflowError):
        raise ParseError(f"not a number: {raw!r}")
    if math.isnan(number) or math.isinf(number) or not number.is_integer():
        raise ParseError(f"not an integer: {raw!r}")
    if number < 0:
        raise ParseError(f"negative number: {raw!r}")
    return int(number)


def parse_boolean(raw: Any) -> bool:
    raw = _require(raw)
    text = str(raw).strip().lower()
    if text == "on":
        return True
    if text == "off":
        return False
    return bool(raw)


def render_setting_value(value: Any) -> Any:
    """Render a typed value back into the raw store's representation."""
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    if value is None:
        return ""
    return value


# =============================================================================
# FIELD REGISTRY
# =============================================================================

@dataclass(frozen=True)
class FieldSpec:
    """How one raw key maps onto a Settings field."""
    raw_key: str
    field_name: str
    parser: Callable[[Any], Any]
    default: Any
    name: str
    control: str  # "switch" | "input"
    description: str = ""


SETTING_SOURCES = "sources"
SETTING_AUTO_RUN_ENABLED = "auto-run-enabled"
SETTING_GROUP_UNDER_ANCHOR = "group-under-anchor"
SETTING_HASHTAG = "hashtag"
SETTING_ITEMS_PER_RUN = "items-per-run"
SETTING_TITLE_ONLY = "title-only"
SETTING_BLOCKED_PHRASES = "blocked-phrases"
SETTING_MINIMUM_SCORE = "minimum-score"
SETTING_SORT = "sort"

FIELD_SPECS: Tuple[FieldSpec, ...] = (
    FieldSpec(SETTING_AUTO_RUN_ENABLED, "auto_run_enabled", parse_boolean,
              DEFAULT_AUTO_RUN_ENABLED, "Auto", "switch",
              "Automatically run once daily on today's page"),
    FieldSpec(SETTING_SOURCES, "sources", parse_string_list,
              DEFAULT_SOURCES, "Sources", "input",
              "Comma-separated list of sources"),
    FieldSpec(SETTING_SORT, "sort", parse_lowercase_string,
              DEFAULT_SORT, "Sort", "input",
              "Top, Rising, New, Random, etc."),
    FieldSpec(SETTING_ITEMS_PER_RUN, "items_per_run", parse_non_negative_int,
              DEFAULT_ITEMS_PER_RUN, "Number of items", "input"),
    FieldSpec(SETTING_HASHTAG, "hashtag", parse_hashtag,
              DEFAULT_HASHTAG, "Hash tag", "input",
              "Leave blank if none desired"),
    FieldSpec(SETTING_GROUP_UNDER_ANCHOR, "group_under_anchor", parse_boolean,
              DEFAULT_GROUP_UNDER_ANCHOR, "Group", "switch",
              "Group multiple items under a single parent node"),
    FieldSpec(SETTING_TITLE_ONLY, "title_only", parse_boolean,
              DEFAULT_TITLE_ONLY, "Title only", "switch",
              "If true, excludes the body of the item"),
    FieldSpec(SETTING_BLOCKED_PHRASES, "blocked_phrases", parse_optional_string_list,
              DEFAULT_BLOCKED_PHRASES, "Blocked phrases", "input",
              "Comma-separated list of words or phrases used to filter items"),
    FieldSpec(SETTING_MINIMUM_SCORE, "minimum_score", parse_non_negative_int,
              DEFAULT_MINIMUM_SCORE, "Minimum score", "input"),
)

ALL_SETTING_KEYS: Tuple[str, ...] = tuple(s.raw_key for s in FIELD_SPECS)
_SPECS_BY_FIELD: Dict[str, FieldSpec] = {s.field_name: s for s in FIELD_SPECS}


def raw_key_to_field_name(raw_key: Any) -> str:
    """
    Translate a hyphen-delimited raw key to a Settings field name.

    E.g. 'blocked-phrases' -> 'blocked_phrases'. The first segment is kept as
    is and every following segment is appended as its own word.

    Raises ParseError if the key cannot be mapped at all, including keys
    already spelled with underscores.
    """
    if not isinstance(raw_key, str):
        raise ParseError(f"setting key is not a string: {raw_key!r}")
    first, *rest = raw_key.split("-")
    if "_" in raw_key or not first or any(not word for word in rest):
        raise ParseError(f"malformed setting key: {raw_key!r}")
    return "_".join([first, *rest])


# =============================================================================
# STORE
# =============================================================================

class SettingsStore:
    """
    Single source of truth for Settings.

    Reconciles Settings against the host's raw persisted key/value store and
    against live UI edits.
    """

    def __init__(
        self,
        settings: Settings,
        backend: SettingsBackend,
        on_sources_changed: Optional[Callable[[], Any]] = None,
        config: Optional[GraphFeedConfig] = None
    ):
        self._settings = settings
        self._backend = backend
        self._on_sources_changed = on_sources_changed
        self._config = config or GraphFeedConfig()
        self._suppress_updates = False
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._pending: Dict[str, Any] = {}
        self._background: set = set()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def suppressed(self) -> bool:
        return self._suppress_updates

    def pending_keys(self) -> List[str]:
        return list(self._timers)

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile_all(
        self,
        raw_entries: Optional[Mapping[str, Any]],
        refresh_commands: bool = False
    ) -> Tuple[Reconciliation, ...]:
        """
        Reconcile every recognized key plus every raw entry.

        Keys missing from raw_entries are reconciled first (in key-list order)
        with a missing value so they take their defaults; then every raw entry
        in mapping order.
        """
        raw_entries = dict(raw_entries or {})
        logger.debug("reconcile_all: %d raw entries", len(raw_entries))
        entries = [(k, None) for k in ALL_SETTING_KEYS if k not in raw_entries]
        entries.extend(raw_entries.items())
        results = tuple(
            self.reconcile_one(raw_key, raw_value, refresh_commands=refresh_commands)
            for raw_key, raw_value in entries
        )
        logger.debug("reconcile_all: finished: %s", self._settings)
        return results

    def reconcile_one(self, raw_key: Any, raw_value: Any, refresh_commands: bool = True) -> Reconciliation:
        """Reconcile a single raw setting into Settings. Never raises."""
        try:
            return self._reconcile(raw_key, raw_value, refresh_commands)
        except Exception as e:
            logger.error("reconcile_one: failed: raw_key=%r, raw_value=%r", raw_key, raw_value, exc_info=e)
            return Reconciliation(raw_key=raw_key, status=ReconcileStatus.FAILED, error_message=str(e))

    def _reconcile(self, raw_key: Any, raw_value: Any, refresh_commands: bool) -> Reconciliation:
        if isinstance(raw_key, str):
            self._clear_timer(raw_key)

        try:
            field_name = raw_key_to_field_name(raw_key)
        except ParseError as e:
            logger.warning("reconcile_one: tolerated malformed key: %s", e)
            return Reconciliation(raw_key=raw_key, status=ReconcileStatus.MALFORMED_KEY, error_message=str(e))

        spec = _SPECS_BY_FIELD.get(field_name)
        if spec is None:
            logger.debug("reconcile_one: unrecognized setting %r, ignored", raw_key)
            return Reconciliation(raw_key=raw_key, status=ReconcileStatus.UNRECOGNIZED, field_name=field_name)

        used_default = False
        try:
            value = spec.parser(raw_value)
        except ParseError as e:
            logger.debug("reconcile_one: %s=%r rejected (%s), using default", raw_key, raw_value, e)
            value = spec.default
            used_default = True

        setattr(self._settings, spec.field_name, value)

        if spec.field_name == "blocked_phrases":
            self._settings.blocked_phrase_matchers = compile_blocked_phrases(value)

        if spec.field_name == "sources":
            if refresh_commands:
                self._signal_sources_changed()
            else:
                logger.debug("reconcile_one: command refresh suppressed, skipped")

        if used_default:
            self._write_back(spec.raw_key, value)

        logger.debug("reconcile_one: %s=%r -> %s=%r (default=%s)",
                     raw_key, raw_value, field_name, value, used_default)
        return Reconciliation(
            raw_key=raw_key,
            status=ReconcileStatus.DEFAULTED if used_default else ReconcileStatus.APPLIED,
            field_name=field_name,
            value=value
        )

    def _write_back(self, raw_key: str, value: Any) -> None:
        rendered = render_setting_value(value)
        self._suppress_updates = True
        try:
            self._backend.set_raw(raw_key, rendered)
        finally:
            self._suppress_updates = False
        logger.debug("reconcile_one: overwrote %s with default %r", raw_key, rendered)

    def _signal_sources_changed(self) -> None:
        """Fire-and-forget notification; the update never waits on it."""
        if self._on_sources_changed is None:
            return
        try:
            outcome = self._on_sources_changed()
        except Exception as e:
            logger.error("sources-changed callback failed", exc_info=e)
            return
        if not inspect.isawaitable(outcome):
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("sources changed with no running event loop; command refresh skipped")
            if inspect.iscoroutine(outcome):
                outcome.close()
            return
        task = asyncio.ensure_future(outcome)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Future) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("background settings task failed", exc_info=task.exception())

    # -------------------------------------------------------------------------
    # UI edits
    # -------------------------------------------------------------------------

    def on_control_changed(self, raw_key: str, raw_value: Any) -> None:
        """
        Debounced change notification from a settings control.

        Must be called from the event loop thread. Changes observed while a
        write-back is in progress are ignored.
        """
        if self._suppress_updates:
            return
        loop = asyncio.get_running_loop()
        existing = self._timers.pop(raw_key, None)
        if existing is not None:
            existing.cancel()
        self._pending[raw_key] = raw_value
        self._timers[raw_key] = loop.call_later(
            self._config.debounce_seconds, self._flush_debounced, raw_key
        )

    def _flush_debounced(self, raw_key: str) -> None:
        raw_value = self._pending.pop(raw_key, None)
        self.reconcile_one(raw_key, raw_value)
        self._clear_timer(raw_key)

    def _clear_timer(self, raw_key: str) -> None:
        handle = self._timers.pop(raw_key, None)
        if handle is not None:
            handle.cancel()
            self._pending.pop(raw_key, None)

    # -------------------------------------------------------------------------
    # Panel
    # -------------------------------------------------------------------------

    @staticmethod
    def panel_descriptors() -> List[Dict[str, Any]]:
        """Descriptors for rendering one control per recognized setting."""
        return [
            {
                'id': spec.raw_key,
                'name': spec.name,
                'description': spec.description,
                'control': spec.control,
                'placeholder': render_setting_value(spec.default),
            }
            for spec in FIELD_SPECS
        ]

