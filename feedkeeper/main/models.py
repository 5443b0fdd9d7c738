"""Pydantic shapes shared by the store, the refresher and the HTTP layer."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, StrictBool, StrictStr


class FeedItem(BaseModel):
    """One entry of a feed; ``title`` identifies it within the feed."""

    title: str
    link: str
    read: bool = False


class Feed(BaseModel):
    """A subscription and every item seen at its URL so far.

    ``read`` is a feed-level flag kept for the wire format only.  ``items`` is
    ``None`` only on the empty feed returned by ``/delete``.
    """

    url: str = ""
    read: bool = False
    items: Optional[List[FeedItem]] = None

    def titles(self) -> set[str]:
        return {item.title for item in self.items or []}


# Request payloads.  Missing fields fall back to their zero value; a field of
# the wrong JSON type is rejected.

class SubscribeRequest(BaseModel):
    url: StrictStr = ""


class DeleteRequest(BaseModel):
    url: StrictStr = ""


class MarkReadRequest(BaseModel):
    url: StrictStr = ""
    title: StrictStr = ""
    read: StrictBool = False


class RefreshRequest(BaseModel):
    url: Optional[StrictStr] = None


class RefreshResult(BaseModel):
    processed_feeds: int
    added_entries: int
