import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Iterable, List

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from feedkeeper.config import HOST, LOG_FORMAT, LOG_LEVEL, PORT, REFRESH_INTERVAL
from feedkeeper.feed_utils import (
    ClientInputError,
    decode_body,
    delete_feed,
    mark_item_read,
    refresh_feeds,
    subscribe_feed,
)
from feedkeeper.main.models import (
    DeleteRequest,
    Feed,
    MarkReadRequest,
    RefreshRequest,
    RefreshResult,
    SubscribeRequest,
)
from feedkeeper.main.store import feed_store
from feedkeeper.main.tools.fetcher import run_refresher
from feedkeeper.main.tools.rss_feed_parser import close_http_client

logger = logging.getLogger(__name__)

# Endpoints do not filter on method; any verb reaches the handler.
ANY_METHOD = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"]
FEED_PATHS = {"/subscribe", "/list", "/delete", "/markRead", "/refresh"}


class AnyMethodMiddleware:
    """Route requests with a verb outside ``ANY_METHOD`` on the feed paths as POST.

    Routing needs a fixed method list, so extension verbs (``PROPFIND``,
    ``PURGE``, ...) would otherwise end in a 405.
    """

    def __init__(self, app: ASGIApp, paths: Iterable[str] = FEED_PATHS):
        self.app = app
        self.paths = frozenset(paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] == "http"
            and scope["path"] in self.paths
            and scope["method"] not in ANY_METHOD
        ):
            scope = dict(scope, method="POST")
        await self.app(scope, receive, send)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the background refresher and stop it on shutdown."""
    refresher = asyncio.create_task(run_refresher(REFRESH_INTERVAL))
    yield
    refresher.cancel()
    try:
        await refresher
    except asyncio.CancelledError:
        pass
    await close_http_client()


app = FastAPI(
    title="feedkeeper",
    description="Minimal personal RSS/Atom aggregator.",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(AnyMethodMiddleware)


@app.exception_handler(ClientInputError)
async def client_input_error_handler(request: Request, exc: ClientInputError) -> PlainTextResponse:
    return PlainTextResponse(exc.message, status_code=400)


@app.api_route("/subscribe", methods=ANY_METHOD, response_model=Feed, tags=["Feed"],
               summary="Subscribe to a feed URL")
async def subscribe(request: Request) -> Feed:
    payload = decode_body(await request.body(), SubscribeRequest)
    return await subscribe_feed(payload.url)


@app.api_route("/list", methods=ANY_METHOD, response_model=List[Feed], tags=["Feed"],
               summary="List subscribed feeds")
async def list_feeds() -> List[Feed]:
    return feed_store.snapshot()


@app.api_route("/delete", methods=ANY_METHOD, response_model=Feed, tags=["Feed"],
               summary="Unsubscribe a feed URL")
async def delete(request: Request) -> Feed:
    payload = decode_body(await request.body(), DeleteRequest)
    return delete_feed(payload.url)


@app.api_route("/markRead", methods=ANY_METHOD, response_model=Feed, tags=["Feed"],
               summary="Mark an item read or unread")
async def mark_read(request: Request) -> Feed:
    payload = decode_body(await request.body(), MarkReadRequest)
    return mark_item_read(payload.url, payload.title, payload.read)


@app.api_route(
    "/refresh",
    methods=ANY_METHOD,
    response_model=RefreshResult,
    tags=["Feed"],
    summary="Refresh feeds now",
    description=(
        "Re-fetch a single subscription (if ``url`` is supplied) or every "
        "subscription, appending newly seen items."
    ),
)
async def refresh(request: Request) -> RefreshResult:
    payload = decode_body(await request.body(), RefreshRequest, allow_empty=True)
    return await refresh_feeds(payload.url)


def main():
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    main()
