"""
In-Memory Host Tests
"""

from datetime import date

import pytest

from graphfeed.contracts import ContentItem, FetchError
from graphfeed.memory import (
    InMemoryCommandPalette,
    InMemoryDocumentGraph,
    InMemorySettingsBackend,
    StaticContentSource,
)

TODAY = date(2026, 10, 19)


class TestDocumentGraph:

    def test_day_page(self):
        graph = InMemoryDocumentGraph(today=lambda: TODAY)

        day = graph.add_day_page()

        assert day.key == "10-19-2026"
        assert graph.text(day.key) == "October 19, 2026"

    def test_children_in_creation_order(self):
        graph = InMemoryDocumentGraph()
        page = graph.add_page("Page")
        a = graph.add_child(page.key, "a")
        b = graph.add_child(page.key, "b")

        assert graph.children(page.key) == [a, b]
        assert graph.node_count == 3

    def test_unknown_parent(self):
        graph = InMemoryDocumentGraph()

        with pytest.raises(KeyError):
            graph.add_child("missing", "text")

    def test_duplicate_key(self):
        graph = InMemoryDocumentGraph()
        graph.add_page("Page", key="p")

        with pytest.raises(ValueError):
            graph.add_page("Other", key="p")

    def test_render_outline(self):
        graph = InMemoryDocumentGraph()
        page = graph.add_page("Page")
        child = graph.add_child(page.key, "line one\nline two")
        graph.add_child(child.key, "leaf")

        assert graph.render_outline(page.key) == (
            "- Page\n"
            "  - line one\n"
            "    line two\n"
            "    - leaf"
        )

    @pytest.mark.asyncio
    async def test_descendant_query_is_strict(self):
        graph = InMemoryDocumentGraph()
        page = graph.add_page("#graphfeed")

        assert await graph.query_descendant_by_text(page.node_id, "#graphfeed") is None

    @pytest.mark.asyncio
    async def test_descendant_query_is_transitive(self):
        graph = InMemoryDocumentGraph()
        page = graph.add_page("Page")
        middle = graph.add_child(page.key, "middle")
        deep = graph.add_child(middle.key, "target")

        assert await graph.query_descendant_by_text(page.node_id, "target") == deep
        assert await graph.query_descendant_by_text(page.node_id, "targe") is None
        assert await graph.query_descendant_by_text(999, "target") is None

    @pytest.mark.asyncio
    async def test_create_child_node(self):
        graph = InMemoryDocumentGraph()
        page = graph.add_page("Page")

        result = await graph.create_child_node(page.key, "new")

        assert result is None
        assert [graph.text(c.key) for c in graph.children(page.key)] == ["new"]
        assert graph.creation_log == [(page.key, "new")]

    @pytest.mark.asyncio
    async def test_create_child_node_rejects_other_positions(self):
        graph = InMemoryDocumentGraph()
        page = graph.add_page("Page")

        with pytest.raises(ValueError):
            await graph.create_child_node(page.key, "new", position="first")

    @pytest.mark.asyncio
    async def test_expand_key(self):
        graph = InMemoryDocumentGraph()
        page = graph.add_page("Page")

        assert await graph.expand_key_to_node(page.key) == page
        assert await graph.expand_key_to_node("dangling") is None


class TestSettingsBackend:

    def test_set_raw_records_and_notifies(self):
        seen = []
        backend = InMemorySettingsBackend({"sort": "top"})
        backend.subscribe(lambda key, value: seen.append((key, value)))

        backend.set_raw("sort", "new")

        assert backend.get_all_raw() == {"sort": "new"}
        assert backend.writes == [("sort", "new")]
        assert seen == [("sort", "new")]

    def test_simulated_edit_is_not_a_write(self):
        seen = []
        backend = InMemorySettingsBackend()
        backend.subscribe(lambda key, value: seen.append(key))

        backend.simulate_edit("hashtag", "x")

        assert backend.writes == []
        assert seen == ["hashtag"]
        assert backend.get_all_raw() == {"hashtag": "x"}


class TestCommandPalette:

    @pytest.mark.asyncio
    async def test_add_invoke_remove(self):
        palette = InMemoryCommandPalette()

        async def callback():
            return "ran"

        await palette.add_command("Do it", callback)
        assert palette.labels == ["Do it"]
        assert await palette.invoke("Do it") == "ran"

        await palette.remove_command("Do it")
        await palette.remove_command("Do it")
        assert palette.labels == []


class TestStaticContentSource:

    @pytest.mark.asyncio
    async def test_items_and_failures(self):
        item = ContentItem("t", "", "a", "https://x/1", 1)
        source = StaticContentSource({"ok": [item], "down": ConnectionError("refused")})

        assert await source.fetch_ranked_items("ok") == (item,)
        with pytest.raises(FetchError, match="refused"):
            await source.fetch_ranked_items("down")
        with pytest.raises(FetchError, match="404 Not Found: missing"):
            await source.fetch_ranked_items("missing")
        assert source.calls == ["ok", "down", "missing"]
