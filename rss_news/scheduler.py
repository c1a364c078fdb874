"""Background refresh loop for the registered feeds."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session, sessionmaker

from . import store
from .backoff import BackoffPolicy, RetryState, on_failure, on_success, should_attempt
from .errors import FetchFailure
from .feeds import fetch_feed
from .models import FeedItem
from .snapshot import Snapshot, SnapshotBuilder
from .state import NewsState
from .status import export_status, status_to_json

logger = logging.getLogger(__name__)

Fetcher = Callable[[str, float], List[FeedItem]]
PriceSource = Callable[[], Optional[Dict[str, str]]]
Outcome = Tuple[Optional[List[FeedItem]], Optional[str]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SchedulerConfig:
    """Runtime knobs of the refresh loop."""

    interval: float = 300.0
    fetch_timeout: float = 10.0
    max_items: int = 10
    concurrency: int = 1
    policy: BackoffPolicy = field(default_factory=BackoffPolicy)


@dataclass
class CycleResult:
    """What happened during one pass over the registry."""

    attempted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    published: bool = False


class RefreshScheduler:
    """Drive fetch cycles over every registered feed.

    Each cycle copies its inputs under the read lock, fetches without holding
    any lock, then commits retry updates and the new snapshot under the write
    lock. A cycle in which no feed produced items leaves the published
    snapshot untouched.
    """

    def __init__(
        self,
        state: NewsState,
        builder: Optional[SnapshotBuilder] = None,
        fetcher: Fetcher = fetch_feed,
        config: Optional[SchedulerConfig] = None,
        session_factory: Optional[sessionmaker[Session]] = None,
        price_source: Optional[PriceSource] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.state = state
        self.config = config or SchedulerConfig()
        self.builder = builder or SnapshotBuilder(clock=clock)
        self._fetcher = fetcher
        self._session_factory = session_factory
        self._price_source = price_source
        self._clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _fetch_one(self, name: str, url: str) -> Outcome:
        try:
            return self._fetcher(url, self.config.fetch_timeout), None
        except FetchFailure as exc:
            return None, str(exc)
        except Exception as exc:  # noqa: BLE001 - one feed must not abort the cycle
            logger.exception("Unexpected error fetching feed %s (%s)", name, url)
            return None, f"{type(exc).__name__}: {exc}"

    def _fetch_all(self, targets: Sequence[Tuple[str, str]]) -> Dict[str, Outcome]:
        if self.config.concurrency <= 1 or len(targets) <= 1:
            return {name: self._fetch_one(name, url) for name, url in targets}

        outcomes: Dict[str, Outcome] = {}
        workers = min(self.config.concurrency, len(targets))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_name = {
                executor.submit(self._fetch_one, name, url): name
                for name, url in targets
            }
            for future in concurrent.futures.as_completed(future_to_name):
                outcomes[future_to_name[future]] = future.result()
        return outcomes

    def run_cycle(self) -> CycleResult:
        """Run one pass over the registry and publish if anything arrived."""
        result = CycleResult()
        self.state.sync_registry()
        feeds, retry = self.state.cycle_inputs()
        now = self._clock()

        targets = []
        for name in sorted(feeds):
            current = retry.get(name, RetryState())
            if not should_attempt(current, now):
                logger.debug(
                    "Skipping %s until %s", name, current.next_eligible_at
                )
                result.skipped.append(name)
                continue
            if current.attempts:
                logger.info("Reattempting pull of %s (%s)", name, feeds[name])
            targets.append((name, feeds[name]))
            result.attempted.append(name)

        outcomes = self._fetch_all(targets)

        updates: Dict[str, RetryState] = {}
        per_feed: Dict[str, List[FeedItem]] = {}
        headlines: Dict[str, FeedItem] = {}
        for name, url in targets:
            items, error = outcomes[name]
            current = retry.get(name, RetryState())
            if error is not None:
                updated = on_failure(current, self._clock(), error, self.config.policy)
                updates[name] = updated
                result.failed[name] = error
                logger.warning(
                    "Error fetching %s (%s): %s, attempt %d, backoff until %s",
                    name,
                    url,
                    error,
                    updated.attempts,
                    updated.next_eligible_at,
                )
                continue

            updates[name] = on_success(current)
            per_feed[name] = list(items[: self.config.max_items])
            if items:
                headlines[name] = max(items, key=lambda item: item.published)

        snapshot = self._build(per_feed, headlines)
        self.state.commit(updates, snapshot)

        if snapshot is not None:
            result.published = True
            self._persist(snapshot)

        logger.info(
            "Cycle finished: %d attempted, %d skipped, %d failed, published=%s",
            len(result.attempted),
            len(result.skipped),
            len(result.failed),
            result.published,
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Feed status:\n%s", status_to_json(export_status(self.state)))
        return result

    def _build(
        self,
        per_feed: Dict[str, List[FeedItem]],
        headlines: Dict[str, FeedItem],
    ) -> Optional[Snapshot]:
        if not any(per_feed.values()):
            logger.info("No feed produced items this cycle; keeping current snapshot")
            return None

        prices = None
        if self._price_source is not None:
            try:
                prices = self._price_source()
            except Exception:  # noqa: BLE001
                logger.exception("Price lookup failed")

        try:
            return self.builder.build(per_feed, headlines, prices=prices)
        except Exception:  # noqa: BLE001 - keep serving the previous snapshot
            logger.exception("Failed to build snapshot")
            return None

    def _persist(self, snapshot: Snapshot) -> None:
        if self._session_factory is None:
            return
        try:
            with self._session_factory() as session:
                store.save_snapshot(session, snapshot.html, snapshot.generated_at)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist snapshot")

    def warm_start(self) -> float:
        """Serve the last persisted snapshot and return seconds to wait.

        When the stored snapshot is younger than the interval, the first
        cycle is delayed by the remainder so restarts do not refetch.
        """
        if self._session_factory is None:
            return 0.0
        try:
            with self._session_factory() as session:
                stored = store.load_snapshot(session)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to load cached snapshot")
            return 0.0

        if stored is None:
            return 0.0

        logger.info("Serving cached snapshot from %s", stored.created_at)
        self.state.warm_start(Snapshot.from_html(stored.html, stored.created_at))

        age = (self._clock() - stored.created_at).total_seconds()
        remaining = self.config.interval - age
        if remaining > 0:
            logger.info("Cached snapshot is fresh; first refresh in %.0fs", remaining)
            return remaining
        return 0.0

    def run_forever(self) -> None:
        """Loop until ``stop`` is called."""
        delay = self.warm_start()
        if delay and self._stop.wait(delay):
            return

        while not self._stop.is_set():
            try:
                self.run_cycle()
            except Exception:  # noqa: BLE001
                logger.exception("Refresh cycle failed")
            if self._stop.wait(self.config.interval):
                break
        logger.info("Refresh loop stopped")

    def start(self) -> threading.Thread:
        """Run the loop on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run_forever, name="rss-news-refresh", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
