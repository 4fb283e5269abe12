"""
Settings Store Tests

AXIOMS UNDER TEST:
==================
- Invalid or missing input takes the default and is written back exactly once
- Write-backs never re-enter reconciliation
- UI edits are debounced per key
"""

import asyncio

import pytest

from graphfeed.config import GraphFeedConfig
from graphfeed.contracts import ReconcileStatus
from graphfeed.memory import InMemorySettingsBackend
from graphfeed.settings import ALL_SETTING_KEYS, Settings, SettingsStore


def create_store(initial=None, on_sources_changed=None, debounce_seconds=0.5):
    backend = InMemorySettingsBackend(initial)
    store = SettingsStore(
        Settings(),
        backend,
        on_sources_changed=on_sources_changed,
        config=GraphFeedConfig(debounce_seconds=debounce_seconds)
    )
    backend.subscribe(store.on_control_changed)
    return store, backend


# =============================================================================
# RECONCILE ALL
# =============================================================================

class TestReconcileAll:

    def test_empty_store_writes_every_default(self):
        store, backend = create_store()

        results = store.reconcile_all(backend.get_all_raw())

        assert [r.raw_key for r in results] == list(ALL_SETTING_KEYS)
        assert all(r.status == ReconcileStatus.DEFAULTED for r in results)
        assert dict(backend.writes) == {
            "auto-run-enabled": True,
            "sources": "lifeprotips",
            "sort": "top",
            "items-per-run": 1,
            "hashtag": "#graphfeed",
            "group-under-anchor": True,
            "title-only": False,
            "blocked-phrases": "",
            "minimum-score": 0,
        }
        assert len(backend.writes) == len(ALL_SETTING_KEYS)

    def test_present_values_applied_without_write_back(self):
        initial = {key: None for key in ALL_SETTING_KEYS}
        initial.update({
            "sources": "a,b",
            "auto-run-enabled": "off",
            "group-under-anchor": True,
            "hashtag": "daily",
            "items-per-run": "2",
            "title-only": "on",
            "blocked-phrases": "foo",
            "minimum-score": 10,
            "sort": "New",
        })
        store, backend = create_store(initial)

        store.reconcile_all(backend.get_all_raw())

        settings = store.settings
        assert settings.sources == ("a", "b")
        assert settings.auto_run_enabled is False
        assert settings.hashtag == "#daily"
        assert settings.items_per_run == 2
        assert settings.title_only is True
        assert settings.blocked_phrases == ("foo",)
        assert settings.minimum_score == 10
        assert settings.sort == "new"
        assert backend.writes == []

    def test_unknown_entries_tolerated(self):
        store, backend = create_store({"legacy-option": 1, "": "x"})

        results = store.reconcile_all(backend.get_all_raw())

        statuses = {r.raw_key: r.status for r in results}
        assert statuses["legacy-option"] == ReconcileStatus.UNRECOGNIZED
        assert statuses[""] == ReconcileStatus.MALFORMED_KEY
        assert not any(key == "legacy-option" for key, _ in backend.writes)

    def test_written_defaults_reload_without_write_back(self):
        first, backend = create_store()
        first.reconcile_all(backend.get_all_raw())

        second, reloaded = create_store(backend.get_all_raw())
        results = second.reconcile_all(reloaded.get_all_raw())

        assert all(r.status == ReconcileStatus.APPLIED for r in results)
        assert reloaded.writes == []


# =============================================================================
# RECONCILE ONE
# =============================================================================

class TestReconcileOne:

    def test_valid_value_applied(self):
        store, backend = create_store()

        result = store.reconcile_one("hashtag", "##news")

        assert result.status == ReconcileStatus.APPLIED
        assert result.field_name == "hashtag"
        assert store.settings.hashtag == "#news"
        assert backend.writes == []

    def test_rejected_value_defaults_and_writes_back_once(self):
        store, backend = create_store()
        store.settings.items_per_run = 5

        result = store.reconcile_one("items-per-run", "abc")

        assert result.used_default
        assert result.success
        assert store.settings.items_per_run == 1
        assert backend.writes == [("items-per-run", 1)]

    def test_write_back_does_not_reenter(self):
        store, backend = create_store()

        store.reconcile_one("sources", " , ")

        # the backend notified the store during the write; it was suppressed
        assert store.pending_keys() == []
        assert not store.suppressed
        assert backend.writes == [("sources", "lifeprotips")]

    def test_empty_hashtag_is_valid_none(self):
        store, backend = create_store()

        result = store.reconcile_one("hashtag", "")

        assert result.status == ReconcileStatus.APPLIED
        assert store.settings.hashtag is None
        assert backend.writes == []

    def test_empty_blocked_phrases_is_valid(self):
        store, backend = create_store()
        store.reconcile_one("blocked-phrases", "foo")

        result = store.reconcile_one("blocked-phrases", "")

        assert result.status == ReconcileStatus.APPLIED
        assert store.settings.blocked_phrases == ()
        assert store.settings.blocked_phrase_matchers == ()
        assert backend.writes == []

    def test_blank_integer_is_zero(self):
        store, backend = create_store()

        result = store.reconcile_one("items-per-run", "")

        assert result.status == ReconcileStatus.APPLIED
        assert store.settings.items_per_run == 0
        assert backend.writes == []

    def test_underscore_key_is_not_an_alias(self):
        store, backend = create_store()

        result = store.reconcile_one("blocked_phrases", "foo")

        assert result.status == ReconcileStatus.MALFORMED_KEY
        assert store.settings.blocked_phrases == ()
        assert backend.writes == []

    def test_unrecognized_key_leaves_settings_untouched(self):
        store, _ = create_store()
        before = Settings()

        result = store.reconcile_one("does-not-exist", 5)

        assert result.status == ReconcileStatus.UNRECOGNIZED
        assert not result.success
        assert store.settings == before

    @pytest.mark.parametrize("raw_key", [None, 12, "-x", "a--b"])
    def test_malformed_key_never_raises(self, raw_key):
        store, _ = create_store()

        result = store.reconcile_one(raw_key, "value")

        assert result.status == ReconcileStatus.MALFORMED_KEY

    def test_blocked_phrases_regenerate_matchers(self):
        store, _ = create_store()

        store.reconcile_one("blocked-phrases", "foo bar, baz, foo bar")

        assert store.settings.blocked_phrases == ("foo bar", "baz")
        assert len(store.settings.blocked_phrase_matchers) == 2

    def test_other_fields_leave_matchers_alone(self):
        store, _ = create_store()
        store.reconcile_one("blocked-phrases", "foo")
        matchers = store.settings.blocked_phrase_matchers

        store.reconcile_one("sort", "new")

        assert store.settings.blocked_phrase_matchers is matchers

    def test_sources_change_signals_callback(self):
        calls = []
        store, _ = create_store(on_sources_changed=lambda: calls.append(1))

        store.reconcile_one("sources", "a")
        store.reconcile_one("sort", "new")

        assert calls == [1]

    def test_sources_signal_can_be_suppressed(self):
        calls = []
        store, _ = create_store(on_sources_changed=lambda: calls.append(1))

        store.reconcile_one("sources", "a", refresh_commands=False)

        assert calls == []

    def test_failing_backend_reported_not_raised(self):
        class BrokenBackend(InMemorySettingsBackend):
            def set_raw(self, raw_key, value):
                raise OSError("disk full")

        store = SettingsStore(Settings(), BrokenBackend())

        result = store.reconcile_one("sort", "")

        assert result.status == ReconcileStatus.FAILED
        assert "disk full" in result.error_message
        assert not store.suppressed

    @pytest.mark.asyncio
    async def test_async_sources_callback_runs_in_background(self):
        done = asyncio.Event()

        async def refresh():
            done.set()

        store, _ = create_store(on_sources_changed=refresh)

        store.reconcile_one("sources", "a,b")

        await asyncio.wait_for(done.wait(), timeout=1)

    def test_async_sources_callback_without_loop_is_skipped(self):
        async def refresh():
            raise AssertionError("must not run")

        store, _ = create_store(on_sources_changed=refresh)

        result = store.reconcile_one("sources", "a,b")

        assert result.status == ReconcileStatus.APPLIED


# =============================================================================
# DEBOUNCE
# =============================================================================

class TestDebounce:

    @pytest.mark.asyncio
    async def test_burst_of_edits_applies_last_value_once(self):
        store, backend = create_store(debounce_seconds=0.05)

        backend.simulate_edit("items-per-run", "2")
        backend.simulate_edit("items-per-run", "3")
        backend.simulate_edit("items-per-run", "4")

        assert store.pending_keys() == ["items-per-run"]
        assert store.settings.items_per_run == 1

        await asyncio.sleep(0.2)

        assert store.settings.items_per_run == 4
        assert store.pending_keys() == []
        assert backend.writes == []

    @pytest.mark.asyncio
    async def test_keys_debounced_independently(self):
        store, backend = create_store(debounce_seconds=0.05)

        backend.simulate_edit("sort", "new")
        backend.simulate_edit("minimum-score", "7")

        assert sorted(store.pending_keys()) == ["minimum-score", "sort"]

        await asyncio.sleep(0.2)

        assert store.settings.sort == "new"
        assert store.settings.minimum_score == 7

    @pytest.mark.asyncio
    async def test_invalid_edit_defaults_without_rescheduling(self):
        store, backend = create_store(debounce_seconds=0.05)

        backend.simulate_edit("minimum-score", "-5")
        await asyncio.sleep(0.2)

        assert store.settings.minimum_score == 0
        assert backend.writes == [("minimum-score", 0)]
        assert store.pending_keys() == []

    @pytest.mark.asyncio
    async def test_direct_reconcile_clears_pending_timer(self):
        store, backend = create_store(debounce_seconds=0.05)

        backend.simulate_edit("sort", "rising")
        store.reconcile_one("sort", "new")
        await asyncio.sleep(0.2)

        assert store.settings.sort == "new"
        assert store.pending_keys() == []


class TestPanel:

    def test_one_descriptor_per_key(self):
        descriptors = SettingsStore.panel_descriptors()

        assert [d['id'] for d in descriptors] == list(ALL_SETTING_KEYS)
        assert {d['control'] for d in descriptors} == {"switch", "input"}

    def test_placeholders_are_rendered_defaults(self):
        by_id = {d['id']: d for d in SettingsStore.panel_descriptors()}

        assert by_id["sources"]['placeholder'] == "lifeprotips"
        assert by_id["blocked-phrases"]['placeholder'] == ""
