"""Feed download and parsing helpers."""

from __future__ import annotations

import calendar
import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

import feedparser
import requests

from .errors import FetchFailure, FetchTimeout
from .models import FeedItem

logger = logging.getLogger(__name__)

USER_AGENT = "rss-news/0.1"
CHUNK_SIZE = 64 * 1024


def to_datetime(value: Optional[time.struct_time]) -> datetime:
    """Convert feedparser UTC struct_time values to aware datetimes."""
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)


def _read_body(response: requests.Response, deadline: float) -> Optional[bytes]:
    """Read the streamed body, or return None once ``deadline`` passes."""
    chunks = []
    for chunk in response.iter_content(CHUNK_SIZE):
        chunks.append(chunk)
        if time.monotonic() > deadline:
            return None
    return b"".join(chunks)


def fetch_feed(url: str, timeout: float = 10.0) -> List[FeedItem]:
    """Fetch and parse a single feed.

    ``timeout`` bounds the whole download, not just each socket read, so a
    server trickling bytes is cut off too. Raises ``FetchTimeout`` when it
    is exceeded and ``FetchFailure`` for any other network, HTTP or parse
    error.
    """
    logger.debug("Fetching feed %s", url)
    deadline = time.monotonic() + timeout
    try:
        response = requests.get(
            url, timeout=timeout, headers={"User-Agent": USER_AGENT}, stream=True
        )
        try:
            response.raise_for_status()
            content = _read_body(response, deadline)
        finally:
            response.close()
    except requests.Timeout as exc:
        raise FetchTimeout(f"timeout after {timeout}s fetching {url}") from exc
    except requests.RequestException as exc:
        raise FetchFailure(f"failed to fetch {url}: {exc}") from exc
    if content is None:
        raise FetchTimeout(f"timeout after {timeout}s fetching {url}")

    parsed = feedparser.parse(content)
    raw_entries = getattr(parsed, "entries", None) or []
    if getattr(parsed, "bozo", False) and not raw_entries:
        reason = getattr(parsed, "bozo_exception", None) or "malformed feed"
        raise FetchFailure(f"failed to parse {url}: {reason}")

    items: List[FeedItem] = []
    for entry in raw_entries:
        link = getattr(entry, "link", None)
        title = getattr(entry, "title", None)

        if not link or not title:
            logger.debug("Skipping entry without link or title in feed '%s'", url)
            continue

        description = getattr(entry, "summary", None)
        if not description:
            content_list = getattr(entry, "content", None)
            if content_list:
                try:
                    description = content_list[0].get("value")
                except (TypeError, KeyError, IndexError, AttributeError):
                    description = None

        published = None
        for attr in ("published_parsed", "updated_parsed", "created_parsed"):
            published = getattr(entry, attr, None)
            if published:
                break

        items.append(
            FeedItem(
                title=title,
                link=link,
                description=description or "",
                published=to_datetime(published),
            )
        )

    logger.info("Collected %d items from feed %s", len(items), url)
    return items
