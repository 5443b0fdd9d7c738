"""In-memory subscription store.

Every subscription lives in a single ``url -> Feed`` table owned by this
module.  All access goes through one readers-writer lock: ``snapshot`` and
``get`` take it shared, ``put``, ``remove`` and ``mutate`` take it exclusive.
Nothing here performs I/O, so the lock is only ever held for the length of a
dictionary operation or a short callback.

Callers always receive deep copies; the objects stored in the table are never
handed out.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from feedkeeper.main.models import Feed


class ReadWriteLock:
    """Many readers or one writer.

    Writers are preferred: once a writer is waiting, new readers queue behind
    it so a steady flow of ``/list`` calls cannot starve a refresh commit.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SubscriptionStore:
    """Process-wide table of subscribed feeds keyed by URL."""

    def __init__(self) -> None:
        self._feeds: Dict[str, Feed] = {}
        self._lock = ReadWriteLock()

    def put(self, feed: Feed) -> None:
        """Insert *feed*, replacing any record with the same URL."""
        stored = feed.model_copy(deep=True)
        with self._lock.write_locked():
            self._feeds[stored.url] = stored

    def remove(self, url: str) -> None:
        """Drop the record for *url*; a missing URL is not an error."""
        with self._lock.write_locked():
            self._feeds.pop(url, None)

    def snapshot(self) -> List[Feed]:
        """Return a point-in-time copy of every feed (unordered)."""
        with self._lock.read_locked():
            return [feed.model_copy(deep=True) for feed in self._feeds.values()]

    def get(self, url: str) -> Optional[Feed]:
        with self._lock.read_locked():
            feed = self._feeds.get(url)
            return feed.model_copy(deep=True) if feed is not None else None

    def mutate(self, url: str, fn: Callable[[Feed], None]) -> Optional[Feed]:
        """Apply *fn* to the stored feed for *url* under the writer lock.

        *fn* edits the feed in place and must not block.  Returns a copy of the
        updated feed, or ``None`` when *url* is not subscribed (``fn`` is not
        called in that case).
        """
        with self._lock.write_locked():
            feed = self._feeds.get(url)
            if feed is None:
                return None
            fn(feed)
            return feed.model_copy(deep=True)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._feeds)

    def __contains__(self, url: object) -> bool:
        with self._lock.read_locked():
            return url in self._feeds


# Shared by the HTTP handlers and the background refresher.
feed_store = SubscriptionStore()
