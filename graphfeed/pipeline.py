"""
Content Pipeline

Selects which fetched items are inserted and renders them as node text.
Reads the shared Settings at call time; holds no other state except the
random generator used for selection.
"""

from __future__ import annotations
from typing import List, Optional, Sequence
import logging
import random

from .contracts import ContentItem
from .settings import Settings

logger = logging.getLogger(__name__)


class ContentPipeline:
    """
    Filter, sample and format content items.

    Selection order:
    1. Drop items whose title matches a blocked phrase (word boundaries)
    2. Drop items scoring below minimum_score
    3. Shuffle the survivors
    4. Keep the first items_per_run
    """

    def __init__(self, settings: Settings, rng: Optional[random.Random] = None):
        self._settings = settings
        self._rng = rng or random.Random()

    def select(self, items: Sequence[ContentItem]) -> List[ContentItem]:
        matchers = self._settings.blocked_phrase_matchers
        kept = [i for i in items if not any(m.search(i.title) for m in matchers)]
        kept = [i for i in kept if i.score >= self._settings.minimum_score]
        self._rng.shuffle(kept)
        selected = kept[:self._settings.items_per_run]
        logger.debug("select: %d items -> %d selected", len(items), len(selected))
        return selected

    def format_item(self, item: ContentItem) -> str:
        signature = f"by {item.author} on [{item.source}]({item.source_ref})"
        if self._settings.title_only or not item.body:
            text = f"{item.title}\n\n__- {signature}__"
        else:
            text = f"{item.title}\n\n__{item.body}\n\n- {signature}__"
        text = f"{text} ({item.score} upvotes)"
        if self._settings.hashtag:
            text = f"{text} {self._settings.hashtag}"
        return text

    def format_notice(self, text: str, prefix: str = "NOTE") -> str:
        if self._settings.hashtag:
            return f"{prefix}: {text} {self._settings.hashtag}"
        return f"{prefix}: {text}"
