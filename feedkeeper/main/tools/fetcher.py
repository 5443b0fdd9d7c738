"""Background refresh of subscribed feeds.

``refresh_all`` snapshots the subscribed URLs, re-parses every feed
concurrently and appends items whose titles have not been seen before.  The
parser is always called outside the store lock; new items are committed via
``SubscriptionStore.mutate`` which re-checks titles against the current record,
so a concurrent ``markRead`` or a second refresh never loses state.

``run_refresher`` repeats ``refresh_all`` on a fixed period until cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

import httpx

from feedkeeper.config import REFRESH_INTERVAL
from feedkeeper.main.models import Feed, FeedItem
from feedkeeper.main.store import SubscriptionStore, feed_store
from feedkeeper.main.tools.rss_feed_parser import RSSFeedError, parse_feed_url

logger = logging.getLogger(__name__)


async def refresh_feed(
    url: str,
    existing_titles: Iterable[str],
    store: SubscriptionStore = feed_store,
    client: Optional[httpx.AsyncClient] = None,
) -> int:
    """Fetch *url* and append items not yet present.  Returns the number added.

    Raises ``RSSFeedError`` if the feed cannot be fetched or parsed; the store
    is left untouched in that case.
    """
    parsed = await parse_feed_url(url, client=client)

    seen = set(existing_titles)
    candidates: List[FeedItem] = []
    for entry in parsed.items:
        if entry.title in seen:
            continue
        seen.add(entry.title)
        candidates.append(FeedItem(title=entry.title, link=entry.link, read=False))
    if not candidates:
        return 0

    added = 0

    def _append(feed: Feed) -> None:
        nonlocal added
        if feed.items is None:
            feed.items = []
        current = feed.titles()
        for item in candidates:
            if item.title not in current:
                feed.items.append(item)
                current.add(item.title)
                added += 1

    if store.mutate(url, _append) is None:
        logger.info("Feed %s was removed during refresh; dropping %d items", url, len(candidates))
        return 0
    return added


async def _refresh_one(
    url: str,
    titles: Iterable[str],
    store: SubscriptionStore,
    client: Optional[httpx.AsyncClient],
) -> Optional[int]:
    try:
        added = await refresh_feed(url, titles, store=store, client=client)
    except RSSFeedError as exc:
        logger.error("Error refreshing feed %s: %s", url, exc)
        return None
    if added:
        logger.info("Added %d new items to %s", added, url)
    return added


async def refresh_all(
    store: SubscriptionStore = feed_store,
    client: Optional[httpx.AsyncClient] = None,
) -> Tuple[int, int]:
    """Refresh every subscribed feed concurrently.

    Returns a ``(feeds_processed, total_items_added)`` tuple.  A feed that
    fails to fetch or parse is logged and counts as processed with nothing
    added.
    """
    targets = [(feed.url, feed.titles()) for feed in store.snapshot()]
    tasks = [_refresh_one(url, titles, store, client) for url, titles in targets]
    results = await asyncio.gather(*tasks)
    total_added = sum(r for r in results if r)
    failed = sum(1 for r in results if r is None)
    logger.info(
        "Refresh cycle finished: %d feeds, %d new items, %d failures",
        len(targets), total_added, failed,
    )
    return len(targets), total_added


async def run_refresher(
    interval: float = REFRESH_INTERVAL,
    store: SubscriptionStore = feed_store,
) -> None:
    """Run ``refresh_all`` every *interval* seconds until cancelled."""
    logger.info("Feed refresher started (interval %.0fs)", interval)
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                await refresh_all(store)
            except Exception:
                logger.exception("Unexpected error during feed refresh")
    except asyncio.CancelledError:
        logger.info("Feed refresher stopped")
        raise
