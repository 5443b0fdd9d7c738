from xml.etree import ElementTree
import logging
import sys
from typing import Dict, List, Optional

import httpx

from feedkeeper.config import FETCH_TIMEOUT, LOG_FORMAT, LOG_LEVEL, PORT

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = f"http://127.0.0.1:{PORT}"


def parse_opml(file_path: str) -> list[dict[str, str]]:
    """Parse an OPML file and extract feed information.

    Parameters
    ----------
    file_path:
        Path to the OPML file.
    Returns
    -------
    list[dict[str, str]]:
    One dictionary per ``<outline>`` with ``text``, ``type``, ``xmlUrl`` and
    ``htmlUrl`` keys (empty string when absent)."""
    feeds = []
    with open(file_path, "rt", encoding="utf-8") as f:
        tree = ElementTree.parse(f)
    for outline in tree.findall(".//outline"):
        feed_info = {
            "text": outline.attrib.get("text", ""),
            "type": outline.attrib.get("type", ""),
            "xmlUrl": outline.attrib.get("xmlUrl", ""),
            "htmlUrl": outline.attrib.get("htmlUrl", "")
        }
        feeds.append(feed_info)

    return feeds


def import_opml(
    file_path: str,
    base_url: str = DEFAULT_BASE_URL,
    client: Optional[httpx.Client] = None,
) -> Dict[str, List[str]]:
    """Subscribe every ``xmlUrl`` in *file_path* on a running feedkeeper server.

    Outlines without an ``xmlUrl`` (folders) are skipped.  A rejected or
    unreachable subscription is recorded under ``failed`` and the import
    carries on.
    """
    result: Dict[str, List[str]] = {"subscribed": [], "failed": []}
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=FETCH_TIMEOUT)
    try:
        for feed in parse_opml(file_path):
            url = feed.get("xmlUrl", "")
            if not url:
                continue
            try:
                resp = client.post(f"{base_url.rstrip('/')}/subscribe", json={"url": url})
                resp.raise_for_status()
            except httpx.HTTPError as exc:
                logger.error("Failed to subscribe %s: %s", url, exc)
                result["failed"].append(url)
                continue
            result["subscribed"].append(url)
    finally:
        if owns_client:
            client.close()
    return result


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) not in (1, 2):
        print("Usage: feedkeeper-opml <path_to_opml_file> [server_base_url]")
        return 1

    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    base_url = argv[1] if len(argv) == 2 else DEFAULT_BASE_URL
    result = import_opml(argv[0], base_url)
    for url in result["subscribed"]:
        print(f"Feed subscribed: {url}")
    for url in result["failed"]:
        print(f"Feed rejected: {url}")
    return 0 if not result["failed"] else 2


if __name__ == "__main__":
    sys.exit(main())
