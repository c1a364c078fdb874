"""Shared data models for rss_news."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class FeedConfig:
    """A registered feed: unique name and source URL."""

    name: str
    url: str


@dataclass(frozen=True)
class FeedItem:
    """Single item as returned by the feed fetcher."""

    title: str
    link: str
    description: str
    published: datetime


@dataclass(frozen=True)
class Article:
    """Feed item prepared for rendering, tagged with the feed it came from."""

    title: str
    description: str
    link: str
    published: datetime
    category: str
