"""Merge per-feed results into one rendered snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

from .models import Article, FeedItem
from .renderers import build_news_html
from .sanitize import DEFAULT_RULES, Rule, apply_rules

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Section:
    name: str
    articles: Tuple[Article, ...]


@dataclass(frozen=True)
class Snapshot:
    """Immutable rendered artifact served until the next publish."""

    sections: Tuple[Section, ...]
    headlines: Tuple[Article, ...]
    html: bytes
    generated_at: datetime

    @classmethod
    def from_html(cls, html: bytes, generated_at: datetime) -> "Snapshot":
        """Wrap previously persisted bytes, e.g. when warm-starting."""
        return cls(sections=(), headlines=(), html=html, generated_at=generated_at)


def order_headlines(headlines: Sequence[Article]) -> Tuple[Article, ...]:
    """Most recent first; equal timestamps fall back to feed name."""
    by_name = sorted(headlines, key=lambda article: article.category)
    return tuple(sorted(by_name, key=lambda article: article.published, reverse=True))


class SnapshotBuilder:
    """Turn per-feed items into a ``Snapshot``."""

    def __init__(
        self,
        rules: Sequence[Rule] = DEFAULT_RULES,
        title: str = "News",
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.rules = tuple(rules)
        self.title = title
        self._clock = clock

    def _to_article(self, name: str, item: FeedItem) -> Article:
        return Article(
            title=item.title,
            description=apply_rules(item.description, self.rules),
            link=item.link,
            published=item.published,
            category=name,
        )

    def build(
        self,
        per_feed_items: Mapping[str, Sequence[FeedItem]],
        headline_candidates: Mapping[str, FeedItem],
        prices: Optional[Dict[str, str]] = None,
    ) -> Optional[Snapshot]:
        """Render a snapshot, or return None if no feed contributed an item."""
        if not any(per_feed_items.values()):
            logger.info("No feed contributed items; nothing to publish")
            return None

        sections = tuple(
            Section(
                name=name,
                articles=tuple(
                    self._to_article(name, item) for item in per_feed_items[name]
                ),
            )
            for name in sorted(per_feed_items)
        )
        headlines = order_headlines(
            [
                self._to_article(name, item)
                for name, item in headline_candidates.items()
            ]
        )

        generated_at = self._clock()
        html = build_news_html(
            title=self.title,
            sections=sections,
            headlines=headlines,
            prices=prices,
            generated_at=generated_at,
        )
        logger.info(
            "Built snapshot with %d sections and %d headlines",
            len(sections),
            len(headlines),
        )
        return Snapshot(
            sections=sections,
            headlines=headlines,
            html=html.encode("utf-8"),
            generated_at=generated_at,
        )
