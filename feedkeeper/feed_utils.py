"""Shared workflows for feedkeeper.

The HTTP handlers in ``feedkeeper/app_server.py`` stay thin: they decode the
request body and hand off to the functions below, which talk to the parser
adapter and the subscription store.  Every client-visible failure is raised as
``ClientInputError`` carrying the plain-text message returned with the 400.
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from feedkeeper.main.models import Feed, RefreshResult
from feedkeeper.main.store import SubscriptionStore, feed_store
from feedkeeper.main.tools.fetcher import refresh_all, refresh_feed
from feedkeeper.main.tools.rss_feed_parser import RSSFeedError, parse_feed_url, to_feed_items

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ClientInputError(Exception):
    """A request the client has to fix; rendered as HTTP 400 text/plain."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


_json_decoder = json.JSONDecoder()


def decode_body(body: bytes, model: Type[ModelT], allow_empty: bool = False) -> ModelT:
    """Decode the first JSON value of a request body into *model*.

    Anything after that value is ignored, and a JSON ``null`` yields the
    model's defaults.  Raises ``ClientInputError("Invalid JSON")`` if the body
    does not start with a JSON value or the value does not fit the model.
    With *allow_empty* a blank body also yields the defaults.
    """
    if allow_empty and not body.strip():
        return model()
    try:
        data, _ = _json_decoder.raw_decode(body.decode("utf-8").lstrip())
        if data is None:
            return model()
        return model.model_validate(data)
    except (ValueError, ValidationError) as exc:
        logger.debug("Rejected request body for %s: %s", model.__name__, exc)
        raise ClientInputError("Invalid JSON") from exc


async def subscribe_feed(url: str, store: SubscriptionStore = feed_store) -> Feed:
    """Parse *url* and store it as a fresh subscription.

    An existing subscription for the same URL is replaced outright, including
    its read flags.
    """
    try:
        parsed = await parse_feed_url(url)
    except RSSFeedError as exc:
        logger.warning("Subscription to %s rejected: %s", url, exc)
        raise ClientInputError("Invalid RSS URL") from exc

    feed = Feed(url=url, read=False, items=to_feed_items(parsed))
    replaced = url in store
    store.put(feed)
    logger.info(
        "%s feed %s with %d items",
        "Replaced" if replaced else "Subscribed to", url, len(feed.items),
    )
    return feed


def delete_feed(url: str, store: SubscriptionStore = feed_store) -> Feed:
    """Unsubscribe *url*; returns the empty feed used as the success marker."""
    store.remove(url)
    logger.info("Removed feed %s", url)
    return Feed()


def mark_item_read(url: str, title: str, read: bool, store: SubscriptionStore = feed_store) -> Feed:
    """Set the read flag of the first item titled *title* in feed *url*.

    An unknown title leaves the feed unchanged.
    """

    def _flip(feed: Feed) -> None:
        for item in feed.items or []:
            if item.title == title:
                item.read = read
                break

    updated = store.mutate(url, _flip)
    if updated is None:
        raise ClientInputError("Feed not found")
    return updated


async def refresh_feeds(url: Optional[str] = None, store: SubscriptionStore = feed_store) -> RefreshResult:
    """Run a refresh now, for one subscription or for all of them."""
    if url is None:
        processed, added = await refresh_all(store)
        return RefreshResult(processed_feeds=processed, added_entries=added)

    feed = store.get(url)
    if feed is None:
        raise ClientInputError("Feed not found")
    try:
        added = await refresh_feed(url, feed.titles(), store=store)
    except RSSFeedError as exc:
        logger.error("Error refreshing feed %s: %s", url, exc)
        added = 0
    return RefreshResult(processed_feeds=1, added_entries=added)
