"""Name -> URL registry of the feeds to refresh."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional

from sqlalchemy.orm import Session, sessionmaker

from . import store
from .models import FeedConfig

logger = logging.getLogger(__name__)


class FeedRegistry:
    """Mapping of feed name to source URL.

    Names are immutable identifiers: ``put`` never replaces an existing URL.
    The registry does no locking of its own; ``NewsState`` serialises access.
    """

    def __init__(
        self,
        feeds: Optional[Iterable[FeedConfig]] = None,
        session_factory: Optional[sessionmaker[Session]] = None,
    ):
        self._feeds: Dict[str, str] = {}
        self._session_factory = session_factory
        for feed in feeds or ():
            self._feeds.setdefault(feed.name, feed.url)

    @classmethod
    def load(
        cls,
        defaults: Iterable[FeedConfig],
        session_factory: Optional[sessionmaker[Session]] = None,
    ) -> "FeedRegistry":
        """Build a registry from bundled defaults overlaid with stored feeds.

        Bundled names take precedence over stored ones with the same name.
        """
        registry = cls(defaults, session_factory=session_factory)
        registry.merge(registry.stored())
        logger.info("Registry holds %d feeds", len(registry._feeds))
        return registry

    @property
    def has_store(self) -> bool:
        return self._session_factory is not None

    def stored(self) -> Dict[str, str]:
        """Read the registrations persisted in the store."""
        if self._session_factory is None:
            return {}
        with self._session_factory() as session:
            return store.get_feed_overrides(session)

    def merge(self, overrides: Mapping[str, str]) -> List[str]:
        """Add stored feeds whose names are not registered yet.

        Returns the names that were added.
        """
        added = []
        for name, url in sorted(overrides.items()):
            if name in self._feeds:
                continue
            logger.info("Loading stored feed %s (%s)", name, url)
            self._feeds[name] = url
            added.append(name)
        return added

    def get(self) -> Dict[str, str]:
        """Return a copy of the current mapping."""
        return dict(self._feeds)

    def url_for(self, name: str) -> Optional[str]:
        return self._feeds.get(name)

    def put(self, name: str, url: str) -> bool:
        """Register a new feed. Returns False if ``name`` already exists."""
        if name in self._feeds:
            return False
        self._feeds[name] = url
        return True

    def persist(self, name: str, url: str) -> None:
        """Store a runtime registration so it survives restarts."""
        if self._session_factory is None:
            return
        with self._session_factory() as session:
            if not store.put_feed_override(session, name, url):
                logger.debug("Feed %s already stored", name)

    def __contains__(self, name: object) -> bool:
        return name in self._feeds

    def __len__(self) -> int:
        return len(self._feeds)
