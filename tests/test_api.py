"""Tests for the HTTP endpoints.

The parser adapter is patched with ``AsyncMock`` so no request leaves the
process; the shared ``feed_store`` is emptied before every test.
"""

import asyncio
from unittest import TestCase, mock

from fastapi.testclient import TestClient

from feedkeeper.app_server import app
from feedkeeper.main.models import Feed, FeedItem
from feedkeeper.main.store import feed_store
from feedkeeper.main.tools.rss_feed_parser import FeedFetchError, FeedParseError, ParsedFeed

FEED_URL = "https://example.com/feed"


def parsed(*titles: str) -> ParsedFeed:
    return ParsedFeed({
        "version": "rss20",
        "entries": [{"title": t, "link": f"https://example.com/{t}"} for t in titles],
    })


def clear_store() -> None:
    for feed in feed_store.snapshot():
        feed_store.remove(feed.url)


class TestAPI(TestCase):
    def setUp(self) -> None:
        clear_store()
        self.client = TestClient(app)
        self.parser = mock.AsyncMock(return_value=parsed("A", "B"))
        patcher = mock.patch("feedkeeper.feed_utils.parse_feed_url", self.parser)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(clear_store)

    def test_routes_present(self) -> None:
        paths = {route.path for route in app.routes}
        for path in ("/subscribe", "/list", "/delete", "/markRead", "/refresh"):
            self.assertIn(path, paths)

    def test_subscribe_invalid_url_is_rejected(self) -> None:
        self.parser.side_effect = FeedFetchError("missing protocol")
        resp = self.client.post("/subscribe", json={"url": "invalid_rss_url"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.text, "Invalid RSS URL")
        self.assertTrue(resp.headers["content-type"].startswith("text/plain"))
        self.assertEqual(self.client.post("/list").json(), [])

    def test_subscribe_unparseable_feed_is_rejected(self) -> None:
        self.parser.side_effect = FeedParseError("not a feed")
        resp = self.client.post("/subscribe", json={"url": FEED_URL})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.text, "Invalid RSS URL")
        self.assertNotIn(FEED_URL, feed_store)

    def test_subscribe_returns_feed_and_lists_it(self) -> None:
        resp = self.client.post("/subscribe", json={"url": FEED_URL})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.headers["content-type"].startswith("application/json"))
        expected = {
            "url": FEED_URL,
            "read": False,
            "items": [
                {"title": "A", "link": "https://example.com/A", "read": False},
                {"title": "B", "link": "https://example.com/B", "read": False},
            ],
        }
        self.assertEqual(resp.json(), expected)
        self.parser.assert_awaited_once_with(FEED_URL)
        self.assertEqual(self.client.get("/list").json(), [expected])

    def test_subscribe_empty_feed_has_empty_items(self) -> None:
        self.parser.return_value = parsed()
        resp = self.client.post("/subscribe", json={"url": FEED_URL})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["items"], [])

    def test_subscribe_malformed_json(self) -> None:
        for body in (b"", b"not json", b"[1, 2]", b'{"url": 5}'):
            resp = self.client.post("/subscribe", content=body)
            self.assertEqual(resp.status_code, 400, body)
            self.assertEqual(resp.text, "Invalid JSON")
        self.parser.assert_not_awaited()

    def test_null_body_decodes_to_zero_values(self) -> None:
        resp = self.client.post("/delete", content=b"null")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"url": "", "read": False, "items": None})

        resp = self.client.post("/markRead", content=b" null ")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.text, "Feed not found")

    def test_trailing_bytes_after_json_are_ignored(self) -> None:
        resp = self.client.post("/subscribe", content=b'  {"url": "%s"} trailing' % FEED_URL.encode())
        self.assertEqual(resp.status_code, 200)
        self.parser.assert_awaited_once_with(FEED_URL)

        resp = self.client.post("/delete", content=b'{"url": "%s"}{"url": "other"}' % FEED_URL.encode())
        self.assertEqual(resp.status_code, 200)
        self.assertNotIn(FEED_URL, feed_store)

    def test_resubscribe_replaces_read_state(self) -> None:
        self.client.post("/subscribe", json={"url": FEED_URL})
        self.client.post("/markRead", json={"url": FEED_URL, "title": "A", "read": True})
        resp = self.client.post("/subscribe", json={"url": FEED_URL})
        self.assertEqual([i["read"] for i in resp.json()["items"]], [False, False])
        self.assertEqual(len(self.client.post("/list").json()), 1)

    def test_delete_returns_empty_feed(self) -> None:
        self.client.post("/subscribe", json={"url": FEED_URL})
        resp = self.client.post("/delete", json={"url": FEED_URL})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"url": "", "read": False, "items": None})
        self.assertEqual(self.client.post("/list").json(), [])

    def test_delete_unknown_url_is_not_an_error(self) -> None:
        resp = self.client.post("/delete", json={"url": "https://nowhere.example/rss"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["url"], "")

    def test_delete_malformed_json(self) -> None:
        resp = self.client.post("/delete", content=b"{")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.text, "Invalid JSON")

    def test_mark_read_flips_first_matching_item(self) -> None:
        self.client.post("/subscribe", json={"url": FEED_URL})
        resp = self.client.post("/markRead", json={"url": FEED_URL, "title": "A", "read": True})
        self.assertEqual(resp.status_code, 200)
        items = resp.json()["items"]
        self.assertEqual([(i["title"], i["read"]) for i in items], [("A", True), ("B", False)])
        stored = feed_store.get(FEED_URL)
        self.assertTrue(stored.items[0].read)
        self.assertFalse(stored.items[1].read)

        resp = self.client.post("/markRead", json={"url": FEED_URL, "title": "A", "read": False})
        self.assertFalse(resp.json()["items"][0]["read"])

    def test_mark_read_unknown_title_is_noop(self) -> None:
        self.client.post("/subscribe", json={"url": FEED_URL})
        before = feed_store.get(FEED_URL)
        resp = self.client.post("/markRead", json={"url": FEED_URL, "title": "Z", "read": True})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Feed.model_validate(resp.json()), before)

    def test_mark_read_unknown_feed(self) -> None:
        resp = self.client.post("/markRead", json={"url": FEED_URL, "title": "A", "read": True})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.text, "Feed not found")

    def test_mark_read_wrong_type(self) -> None:
        resp = self.client.post("/markRead", json={"url": FEED_URL, "title": "A", "read": "yes"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.text, "Invalid JSON")

    def test_any_method_is_accepted(self) -> None:
        self.client.request("PUT", "/subscribe", json={"url": FEED_URL})
        resp = self.client.request("DELETE", "/list")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(resp.json()), 1)

        for method in ("GET", "HEAD", "OPTIONS", "TRACE", "PROPFIND", "PURGE"):
            resp = self.client.request(method, "/list")
            self.assertEqual(resp.status_code, 200, method)

    def test_extension_method_reaches_mutating_handler(self) -> None:
        self.client.request("PROPFIND", "/subscribe", json={"url": FEED_URL})
        resp = self.client.request(
            "REPORT", "/markRead", json={"url": FEED_URL, "title": "B", "read": True},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([i["read"] for i in resp.json()["items"]], [False, True])
        resp = self.client.request("PURGE", "/delete", json={"url": FEED_URL})
        self.assertEqual(resp.json(), {"url": "", "read": False, "items": None})
        self.assertNotIn(FEED_URL, feed_store)

    def test_unknown_path_still_404(self) -> None:
        self.assertEqual(self.client.request("PROPFIND", "/other").status_code, 404)


class TestRefreshEndpoint(TestCase):
    def setUp(self) -> None:
        clear_store()
        self.addCleanup(clear_store)
        self.client = TestClient(app)
        feed_store.put(Feed(url=FEED_URL, items=[
            FeedItem(title="A", link="https://example.com/A", read=True),
        ]))

    def test_refresh_all(self) -> None:
        with mock.patch(
            "feedkeeper.main.tools.fetcher.parse_feed_url",
            mock.AsyncMock(return_value=parsed("A", "B")),
        ):
            resp = self.client.post("/refresh")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"processed_feeds": 1, "added_entries": 1})
        items = feed_store.get(FEED_URL).items
        self.assertEqual([(i.title, i.read) for i in items], [("A", True), ("B", False)])

    def test_refresh_single_feed(self) -> None:
        with mock.patch(
            "feedkeeper.main.tools.fetcher.parse_feed_url",
            mock.AsyncMock(return_value=parsed("A", "B", "C")),
        ):
            resp = self.client.post("/refresh", json={"url": FEED_URL})
        self.assertEqual(resp.json(), {"processed_feeds": 1, "added_entries": 2})

    def test_refresh_single_feed_failure_adds_nothing(self) -> None:
        with mock.patch(
            "feedkeeper.main.tools.fetcher.parse_feed_url",
            mock.AsyncMock(side_effect=FeedFetchError("boom")),
        ):
            resp = self.client.post("/refresh", json={"url": FEED_URL})
        self.assertEqual(resp.json(), {"processed_feeds": 1, "added_entries": 0})
        self.assertEqual(len(feed_store.get(FEED_URL).items), 1)

    def test_refresh_unknown_feed(self) -> None:
        resp = self.client.post("/refresh", json={"url": "https://nowhere.example/rss"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.text, "Feed not found")

    def test_refresh_malformed_json(self) -> None:
        resp = self.client.post("/refresh", content=b"nope")
        self.assertEqual(resp.status_code, 400)


class TestLifespan(TestCase):
    def test_refresher_starts_and_stops_with_app(self) -> None:
        run_refresher = mock.AsyncMock(side_effect=_wait_forever)
        with mock.patch("feedkeeper.app_server.run_refresher", run_refresher), \
                mock.patch("feedkeeper.app_server.close_http_client") as close_client:
            with TestClient(app) as client:
                self.assertEqual(client.post("/list").status_code, 200)
            run_refresher.assert_awaited_once()
            close_client.assert_awaited_once()


async def _wait_forever(interval: float) -> None:
    await asyncio.Event().wait()
