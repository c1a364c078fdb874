import logging
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from rss_news import store
from rss_news.backoff import BackoffPolicy
from rss_news.errors import FetchFailure, FetchTimeout
from rss_news.models import FeedConfig
from rss_news.registry import FeedRegistry
from rss_news.scheduler import RefreshScheduler, SchedulerConfig
from rss_news.snapshot import Snapshot, SnapshotBuilder
from rss_news.state import NewsState

from conftest import make_item

BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _items(prefix, count):
    return [
        make_item(f"{prefix} {index}", BASE - timedelta(hours=index))
        for index in range(count)
    ]


def _scheduler(feeds, fetcher, clock, **kwargs):
    state = NewsState(FeedRegistry([FeedConfig(n, u) for n, u in feeds.items()]))
    config = kwargs.pop(
        "config", SchedulerConfig(policy=BackoffPolicy(base_seconds=60, max_seconds=600))
    )
    return RefreshScheduler(
        state,
        builder=SnapshotBuilder(clock=clock),
        fetcher=fetcher,
        config=config,
        clock=clock,
        **kwargs,
    )


def test_failing_feed_backs_off_while_healthy_feed_refreshes(clock):
    calls = []

    def fetcher(url, timeout):
        calls.append(url)
        if url == "urlB":
            raise FetchTimeout("timed out")
        return _items("A", 3)

    scheduler = _scheduler({"A": "urlA", "B": "urlB"}, fetcher, clock)

    first = scheduler.run_cycle()

    assert first.attempted == ["A", "B"]
    assert first.failed == {"B": "timed out"}
    assert first.published
    snapshot = scheduler.state.current_snapshot()
    assert [section.name for section in snapshot.sections] == ["A"]
    assert len(snapshot.sections[0].articles) == 3
    assert scheduler.state.retry_state("A").attempts == 0
    b_state = scheduler.state.retry_state("B")
    assert b_state.attempts == 1
    assert b_state.next_eligible_at == clock.now + timedelta(seconds=60)

    clock.advance(30)
    calls.clear()
    second = scheduler.run_cycle()

    assert calls == ["urlA"]
    assert second.skipped == ["B"]
    assert scheduler.state.retry_state("B").attempts == 1
    refreshed = scheduler.state.current_snapshot()
    assert refreshed is not snapshot
    assert [section.name for section in refreshed.sections] == ["A"]
    assert b"<h1>B</h1>" not in refreshed.html


def test_feed_is_retried_once_backoff_expires(clock):
    outcomes = [FetchFailure("down"), _items("A", 1)]

    def fetcher(url, timeout):
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    scheduler = _scheduler({"A": "urlA"}, fetcher, clock)
    scheduler.run_cycle()
    assert scheduler.state.retry_state("A").attempts == 1

    clock.advance(60)
    result = scheduler.run_cycle()

    assert result.attempted == ["A"]
    assert scheduler.state.retry_state("A").attempts == 0
    assert scheduler.state.retry_state("A").last_error is None


def test_all_failing_cycle_keeps_previous_snapshot(clock):
    healthy = {"value": True}

    def fetcher(url, timeout):
        if healthy["value"]:
            return _items(url, 2)
        raise FetchFailure("offline")

    scheduler = _scheduler({"A": "urlA", "B": "urlB"}, fetcher, clock)
    scheduler.run_cycle()
    before = scheduler.state.current_snapshot()
    html_before = bytes(before.html)

    healthy["value"] = False
    clock.advance(5)
    result = scheduler.run_cycle()

    assert not result.published
    after = scheduler.state.current_snapshot()
    assert after is before
    assert after.html == html_before
    assert scheduler.state.retry_state("A").attempts == 1
    assert scheduler.state.retry_state("B").attempts == 1


def test_zero_item_success_resets_attempts(clock):
    responses = {"A": [FetchFailure("bad gateway"), []], "B": [_items("B", 1)] * 2}

    def fetcher(url, timeout):
        outcome = responses[url].pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    scheduler = _scheduler({"A": "A", "B": "B"}, fetcher, clock)
    scheduler.run_cycle()
    assert scheduler.state.retry_state("A").attempts == 1

    clock.advance(120)
    result = scheduler.run_cycle()

    assert "A" not in result.failed
    assert scheduler.state.retry_state("A").attempts == 0
    snapshot = scheduler.state.current_snapshot()
    sections = {section.name: section for section in snapshot.sections}
    assert sections["A"].articles == ()
    assert [headline.category for headline in snapshot.headlines] == ["B"]


def test_only_zero_item_feeds_does_not_publish(clock):
    scheduler = _scheduler({"A": "urlA"}, lambda url, timeout: [], clock)

    result = scheduler.run_cycle()

    assert not result.published
    assert scheduler.state.current_snapshot() is None
    assert scheduler.state.retry_state("A").attempts == 0


def test_unexpected_fetcher_error_is_recorded_as_failure(clock):
    def fetcher(url, timeout):
        if url == "urlA":
            raise KeyError("missing")
        return _items("B", 1)

    scheduler = _scheduler({"A": "urlA", "B": "urlB"}, fetcher, clock)

    result = scheduler.run_cycle()

    assert "KeyError" in result.failed["A"]
    assert result.published
    assert scheduler.state.retry_state("A").attempts == 1


def test_sections_are_capped_and_headline_is_most_recent(clock):
    items = _items("A", 15)
    items.reverse()

    scheduler = _scheduler(
        {"A": "urlA"},
        lambda url, timeout: items,
        clock,
        config=SchedulerConfig(max_items=10),
    )
    scheduler.run_cycle()

    snapshot = scheduler.state.current_snapshot()
    assert len(snapshot.sections[0].articles) == 10
    assert snapshot.headlines[0].title == "A 0"


def test_fetch_timeout_is_passed_to_fetcher(clock):
    seen = []

    def fetcher(url, timeout):
        seen.append(timeout)
        return _items("A", 1)

    scheduler = _scheduler(
        {"A": "urlA"}, fetcher, clock, config=SchedulerConfig(fetch_timeout=2.5)
    )
    scheduler.run_cycle()

    assert seen == [2.5]


def test_sections_sorted_independent_of_registration_order(clock):
    feeds = {"zeta": "z", "alpha": "a", "Mid": "m"}
    scheduler = _scheduler(feeds, lambda url, timeout: _items(url, 1), clock)

    scheduler.run_cycle()

    names = [s.name for s in scheduler.state.current_snapshot().sections]
    assert names == ["Mid", "alpha", "zeta"]


def test_concurrent_fetches_run_in_parallel(clock):
    delay = 0.3
    feeds = {f"feed-{index}": f"url-{index}" for index in range(5)}

    def slow_fetcher(url, timeout):
        time.sleep(delay)
        return _items(url, 1)

    scheduler = _scheduler(
        feeds, slow_fetcher, clock, config=SchedulerConfig(concurrency=5)
    )

    start = time.time()
    result = scheduler.run_cycle()
    duration = time.time() - start

    assert result.published
    assert duration < delay * len(feeds) / 2
    names = [s.name for s in scheduler.state.current_snapshot().sections]
    assert names == sorted(feeds)


def test_registered_feed_is_picked_up_next_cycle(clock):
    scheduler = _scheduler({"A": "urlA"}, lambda url, timeout: _items(url, 1), clock)
    scheduler.run_cycle()

    scheduler.state.register("B", "urlB")
    result = scheduler.run_cycle()

    assert result.attempted == ["A", "B"]

def test_readers_and_registrations_proceed_during_fetch(clock):
    started = threading.Event()
    release = threading.Event()

    def blocking_fetcher(url, timeout):
        started.set()
        release.wait(5)
        return _items(url, 1)

    scheduler = _scheduler({"A": "urlA"}, blocking_fetcher, clock)
    cycle = threading.Thread(target=scheduler.run_cycle, daemon=True)
    cycle.start()
    observed = {}
    done = threading.Event()

    def use_state():
        observed["feeds"] = scheduler.state.list_feeds()
        observed["snapshot"] = scheduler.state.current_snapshot()
        scheduler.state.register("C", "urlC")
        done.set()

    try:
        assert started.wait(5)
        threading.Thread(target=use_state, daemon=True).start()
        assert done.wait(1)
        assert not release.is_set()
    finally:
        release.set()
        cycle.join(5)

    assert observed == {"feeds": {"A": "urlA"}, "snapshot": None}
    assert not cycle.is_alive()
    assert "C" in scheduler.state.list_feeds()
    assert scheduler.run_cycle().attempted == ["A", "C"]


def test_cycle_logs_feed_status_at_debug(clock, caplog):
    def fetcher(url, timeout):
        raise FetchFailure("refused")

    scheduler = _scheduler({"A": "urlA"}, fetcher, clock)

    with caplog.at_level(logging.DEBUG, logger="rss_news.scheduler"):
        scheduler.run_cycle()

    messages = [r.getMessage() for r in caplog.records if "Feed status" in r.getMessage()]
    assert len(messages) == 1
    assert '"attempts": 1' in messages[0]
    assert '"last_error": "refused"' in messages[0]



def test_prices_are_rendered_when_available(clock):
    scheduler = _scheduler(
        {"A": "urlA"},
        lambda url, timeout: _items("A", 1),
        clock,
        price_source=lambda: {"BTC": "42000.5"},
    )

    scheduler.run_cycle()

    assert b"btc $42000.5" in scheduler.state.current_snapshot().html


def test_price_source_error_does_not_block_publish(clock):
    def broken_prices():
        raise RuntimeError("no prices")

    scheduler = _scheduler(
        {"A": "urlA"},
        lambda url, timeout: _items("A", 1),
        clock,
        price_source=broken_prices,
    )

    result = scheduler.run_cycle()

    assert result.published


@pytest.fixture
def session_factory(tmp_path):
    engine = store.init_engine(f"sqlite:///{tmp_path / 'news.db'}")
    return store.get_session_factory(engine)


def test_published_snapshot_is_persisted(clock, session_factory):
    scheduler = _scheduler(
        {"A": "urlA"},
        lambda url, timeout: _items("A", 1),
        clock,
        session_factory=session_factory,
    )

    scheduler.run_cycle()

    with session_factory() as session:
        stored = store.load_snapshot(session)
    assert stored.html == scheduler.state.current_snapshot().html
    assert stored.created_at == clock.now


def test_warm_start_serves_cached_snapshot_and_waits_remaining(clock, session_factory):
    with session_factory() as session:
        store.save_snapshot(session, b"<p>cached</p>", clock.now - timedelta(seconds=100))

    scheduler = _scheduler(
        {"A": "urlA"},
        lambda url, timeout: [],
        clock,
        config=SchedulerConfig(interval=300),
        session_factory=session_factory,
    )

    delay = scheduler.warm_start()

    assert delay == pytest.approx(200)
    assert scheduler.state.current_snapshot().html == b"<p>cached</p>"


def test_warm_start_with_stale_snapshot_refreshes_immediately(clock, session_factory):
    with session_factory() as session:
        store.save_snapshot(session, b"old", clock.now - timedelta(hours=1))

    scheduler = _scheduler(
        {"A": "urlA"},
        lambda url, timeout: [],
        clock,
        config=SchedulerConfig(interval=300),
        session_factory=session_factory,
    )

    assert scheduler.warm_start() == 0.0
    assert isinstance(scheduler.state.current_snapshot(), Snapshot)


def test_start_and_stop_background_loop():
    ran = threading.Event()

    def fetcher(url, timeout):
        ran.set()
        return _items("A", 1)

    state = NewsState(FeedRegistry([FeedConfig("A", "urlA")]))
    scheduler = RefreshScheduler(
        state, fetcher=fetcher, config=SchedulerConfig(interval=60)
    )

    thread = scheduler.start()
    try:
        assert ran.wait(5)
    finally:
        scheduler.stop(timeout=5)

    assert not thread.is_alive()
    assert state.current_snapshot() is not None
