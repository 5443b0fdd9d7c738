"""Fetch a feed URL and normalise it to an ordered list of (title, link) items.

The download goes through a shared ``httpx.AsyncClient`` with a bounded
timeout; decoding (RSS 0.9x/2.0, Atom, RDF) is left to ``feedparser``.
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import List, Mapping, Optional

import feedparser
import httpx
from feedparser import FeedParserDict

from feedkeeper.config import FETCH_TIMEOUT, USER_AGENT
from feedkeeper.main.models import FeedItem

logger = logging.getLogger(__name__)


class RSSFeedError(Exception):
    """Base exception for feed retrieval failures."""
    pass


class FeedFetchError(RSSFeedError):
    """The feed could not be downloaded (bad URL, network error, non-2xx)."""
    pass


class FeedParseError(RSSFeedError):
    """The response body is not a recognisable RSS/Atom/RDF document."""
    pass


class ParsedItem:
    """A single normalised entry."""

    def __init__(self, title: str, link: str):
        self.title = title
        self.link = link

    def __repr__(self) -> str:
        return f"ParsedItem(title={self.title!r}, link={self.link!r})"


class ParsedFeed:
    """Normalised view of a ``feedparser`` result."""

    def __init__(self, data: FeedParserDict):
        self.items = [
            ParsedItem(entry.get("title", "") or "", entry.get("link", "") or "")
            for entry in data.get("entries", [])
        ]


# Reusable async HTTP client for all feed fetches
_http_client: httpx.AsyncClient | None = None


async def get_http_client() -> httpx.AsyncClient:
    """Get or create the shared async HTTP client."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(follow_redirects=True)
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def decode_feed(content: bytes, url: str = "", headers: Optional[Mapping[str, str]] = None) -> ParsedFeed:
    """Decode raw feed bytes.

    The body is always handed to ``feedparser`` as a stream so it is never
    taken for a file name or URL.  *headers* are the HTTP response headers;
    their charset feeds the encoding detection.

    Raises:
        FeedParseError: If ``feedparser`` finds neither a feed format nor any
            entries, or flags the document as malformed and finds no entries.
    """
    data = feedparser.parse(io.BytesIO(content), response_headers=dict(headers or {}))
    if not data.get("entries"):
        if data.get("bozo", False):
            raise FeedParseError(
                f"Failed to parse feed {url}: {data.get('bozo_exception', 'Unknown error')}"
            )
        if not data.get("version"):
            raise FeedParseError(f"No RSS/Atom feed found at {url}")
    return ParsedFeed(data)


async def parse_feed_url(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = FETCH_TIMEOUT,
) -> ParsedFeed:
    """Download *url* and return its parsed items in document order.

    Decoding runs in a worker thread so a large document does not hold up the
    event loop.

    Raises:
        FeedFetchError: The URL is malformed, the request failed or timed out,
            or the server answered with an error status.
        FeedParseError: The body could not be decoded as a feed.
    """
    if client is None:
        client = await get_http_client()
    try:
        response = await client.get(url, timeout=timeout, headers={"User-Agent": USER_AGENT})
        response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise FeedFetchError(f"Error fetching feed {url}: {exc}") from exc

    parsed = await asyncio.to_thread(decode_feed, response.content, url, response.headers)
    logger.debug("Parsed %d items from %s", len(parsed.items), url)
    return parsed


def to_feed_items(parsed: ParsedFeed) -> List[FeedItem]:
    """Unread ``FeedItem``s for *parsed*, first occurrence of each title only."""
    seen: set[str] = set()
    items: List[FeedItem] = []
    for entry in parsed.items:
        if entry.title in seen:
            continue
        seen.add(entry.title)
        items.append(FeedItem(title=entry.title, link=entry.link, read=False))
    return items
