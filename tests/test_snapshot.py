from datetime import datetime, timedelta, timezone

from rss_news.models import Article
from rss_news.snapshot import SnapshotBuilder, order_headlines

from conftest import make_item

T1 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
T2 = T1 - timedelta(hours=1)
T3 = T1 - timedelta(hours=2)


def _builder():
    return SnapshotBuilder(clock=lambda: T1)


def test_headlines_sorted_most_recent_first():
    builder = _builder()
    per_feed = {
        "b": [make_item("second", T2)],
        "a": [make_item("third", T3)],
        "c": [make_item("first", T1)],
    }
    headlines = {name: items[0] for name, items in per_feed.items()}

    snapshot = builder.build(per_feed, headlines)

    assert [article.title for article in snapshot.headlines] == [
        "first",
        "second",
        "third",
    ]


def test_headline_ties_break_by_feed_name():
    articles = [
        Article("x", "", "l1", T1, "zeta"),
        Article("y", "", "l2", T1, "alpha"),
        Article("z", "", "l3", T2, "beta"),
    ]

    ordered = order_headlines(articles)

    assert [article.category for article in ordered] == ["alpha", "zeta", "beta"]


def test_sections_are_ordered_by_name_and_keep_item_order():
    builder = _builder()
    per_feed = {
        "World": [make_item("w1", T3), make_item("w2", T1)],
        "Dev": [make_item("d1", T2)],
    }

    snapshot = builder.build(per_feed, {})

    assert [section.name for section in snapshot.sections] == ["Dev", "World"]
    assert [a.title for a in snapshot.sections[1].articles] == ["w1", "w2"]
    assert all(a.category == "World" for a in snapshot.sections[1].articles)


def test_build_returns_none_without_items():
    builder = _builder()

    assert builder.build({}, {}) is None
    assert builder.build({"a": [], "b": []}, {}) is None


def test_descriptions_are_sanitised_in_sections_and_headlines():
    builder = _builder()
    item = make_item(
        "story",
        T1,
        description='Intro <img src="https://x/y.png"> text © 2024 TechCrunch. All rights reserved. For personal use only.',
    )

    snapshot = builder.build({"Tech": [item]}, {"Tech": item})

    section_description = snapshot.sections[0].articles[0].description
    assert "<img" not in section_description
    assert "TechCrunch" not in section_description
    assert snapshot.headlines[0].description == section_description
    assert b"<img" not in snapshot.html


def test_custom_rules_apply_in_order():
    builder = SnapshotBuilder(
        rules=[lambda v: v + "!", lambda v: v.upper()], clock=lambda: T1
    )
    item = make_item("story", T1, description="hi")

    snapshot = builder.build({"a": [item]}, {})

    assert snapshot.sections[0].articles[0].description == "HI!"


def test_rendered_html_contains_sections_headlines_and_title():
    builder = SnapshotBuilder(title="Morning News", clock=lambda: T1)
    item = make_item("Big <Story>", T1, link="https://example.com/big")

    snapshot = builder.build({"World": [item]}, {"World": item})
    html = snapshot.html.decode("utf-8")

    assert "<title>Morning News</title>" in html
    assert '<a href="#World" class="head">World</a>' in html
    assert '<hr id="World" class="anchor">' in html
    assert "Big &lt;Story&gt;" in html
    assert 'href="https://example.com/big"' in html
    assert snapshot.generated_at == T1
