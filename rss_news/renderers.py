"""Rendering helpers for the news page and the feed list."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Dict, Mapping, Optional, Sequence

from .models import Article
from .templating import get_environment

if TYPE_CHECKING:
    from .snapshot import Section


def build_news_html(
    title: str,
    sections: Sequence["Section"],
    headlines: Sequence[Article],
    prices: Optional[Dict[str, str]] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """Render the news page using the Jinja2 template."""
    env = get_environment()
    template = env.get_template("news.html.j2")
    return template.render(
        title=title,
        sections=sections,
        headlines=headlines,
        prices=prices or {},
        generated_at=generated_at,
    )


def build_feeds_html(feeds: Mapping[str, str], title: str = "Feeds") -> str:
    """Render the list of registered feeds."""
    env = get_environment()
    template = env.get_template("feeds.html.j2")
    return template.render(title=title, feeds=sorted(feeds.items()))
