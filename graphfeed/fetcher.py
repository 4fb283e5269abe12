"""
Listing Fetcher

Fetches ranked listings from Reddit's public JSON endpoints and decodes them
into ContentItems.

PRINCIPLES:
===========
1. Failed fetches are first-class results (fetch never raises)
2. fetch_ranked_items is the ContentSource boundary and raises FetchError
3. Decode with maximum tolerance: unknown shapes yield no items, not errors
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple
import logging

import httpx

from .config import GraphFeedConfig
from .contracts import ContentItem, FetchError, FetchResult, FetchStatus
from .host import ContentSource
from .settings import Settings

logger = logging.getLogger(__name__)

POST_KIND = "t3"


class RedditFetcher(ContentSource):
    """
    Fetches and decodes subreddit listings.

    The listing order comes from settings.sort at call time, so edits to the
    sort setting apply to the next fetch.
    """

    def __init__(
        self,
        settings: Settings,
        config: Optional[GraphFeedConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._settings = settings
        self._config = config or GraphFeedConfig()
        self._transport = transport

    def build_url(self, source_id: str) -> str:
        url = f"{self._config.base_url}/r/{source_id}/{self._settings.sort}/.json?limit={self._config.listing_limit}"
        logger.debug("build_url: %s", url)
        return url

    async def fetch(self, source_id: str) -> FetchResult:
        """Fetch a listing. Always returns a FetchResult."""
        url = self.build_url(source_id)
        attempted_at = datetime.now(timezone.utc)

        try:
            async with httpx.AsyncClient(
                timeout=self._config.fetch_timeout_seconds,
                transport=self._transport
            ) as client:
                response = await client.get(
                    url,
                    headers={'User-Agent': self._config.user_agent},
                    follow_redirects=True
                )
        except httpx.TimeoutException:
            return self._failure(source_id, url, attempted_at, FetchStatus.TIMEOUT,
                                 f"timed out after {self._config.fetch_timeout_seconds}s")
        except httpx.HTTPError as e:
            return self._failure(source_id, url, attempted_at, FetchStatus.NETWORK_ERROR, str(e))

        if response.status_code != 200:
            return self._failure(source_id, url, attempted_at, FetchStatus.HTTP_ERROR,
                                 f"{response.status_code} {response.reason_phrase}",
                                 http_status=response.status_code)

        try:
            items = extract_items(response.json(), self._config.base_url)
        except (TypeError, AttributeError, ValueError) as e:
            return self._failure(source_id, url, attempted_at, FetchStatus.PARSE_ERROR,
                                 f"invalid listing body: {e}", http_status=response.status_code)

        logger.debug("fetch: %s returned %d items", source_id, len(items))
        return FetchResult(
            source_id=source_id,
            url=url,
            attempted_at=attempted_at,
            completed_at=datetime.now(timezone.utc),
            status=FetchStatus.SUCCESS,
            items=items,
            http_status=response.status_code
        )

    async def fetch_ranked_items(self, source_id: str) -> Tuple[ContentItem, ...]:
        result = await self.fetch(source_id)
        if not result.success:
            raise FetchError(result.error_message or result.status.value,
                             source_id=source_id, status=result.status)
        return result.items

    def _failure(
        self,
        source_id: str,
        url: str,
        attempted_at: datetime,
        status: FetchStatus,
        message: str,
        http_status: Optional[int] = None
    ) -> FetchResult:
        logger.error("fetch: failed: url=%s, status=%s, error=%s", url, status.value, message)
        return FetchResult(
            source_id=source_id,
            url=url,
            attempted_at=attempted_at,
            completed_at=datetime.now(timezone.utc),
            status=status,
            http_status=http_status,
            error_message=message
        )


def extract_items(body: Any, base_url: str = "https://www.reddit.com") -> Tuple[ContentItem, ...]:
    """
    Decode a listing body.

    The body is a single listing object or a list of them (comment pages).
    Only post children become items; entries that are not objects are skipped.

    Raises TypeError or ValueError when a post field has an unusable type.
    """
    if not body:
        logger.warning("extract_items: empty response body")
        return ()

    listings = body if isinstance(body, list) else [body]
    items: List[ContentItem] = []

    for listing in listings:
        if not isinstance(listing, dict):
            continue
        listing_data = listing.get('data')
        if not isinstance(listing_data, dict):
            continue
        children = listing_data.get('children') or []
        if not isinstance(children, list):
            continue
        for child in children:
            if not isinstance(child, dict) or child.get('kind') != POST_KIND:
                continue
            data = child.get('data')
            if not isinstance(data, dict):
                continue
            items.append(ContentItem(
                title=str(data.get('title') or ""),
                body=str(data.get('selftext') or ""),
                author=str(data.get('author') or ""),
                source_ref=f"{base_url}{data.get('permalink') or ''}",
                score=int(data.get('ups') or 0),
                source=f"r/{data.get('subreddit') or ''}"
            ))

    return tuple(items)
