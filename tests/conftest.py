from datetime import datetime, timedelta, timezone

import pytest

from rss_news.models import FeedItem


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


def make_item(title, published, link=None, description="Summary"):
    return FeedItem(
        title=title,
        link=link or f"https://example.com/{title.replace(' ', '-').lower()}",
        description=description,
        published=published,
    )


@pytest.fixture
def item_factory():
    return make_item
