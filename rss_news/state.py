"""Shared state read by serving code and written by the refresh loop."""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from .backoff import RetryState
from .errors import RegistrationConflict
from .locks import ReadWriteLock
from .registry import FeedRegistry
from .snapshot import Snapshot

logger = logging.getLogger(__name__)


class NewsState:
    """Registry, retry table and current snapshot behind one RW lock.

    Readers (listing feeds, serving the snapshot, exporting status) share the
    read lock. Registrations and cycle commits take the write lock briefly;
    no network I/O happens while it is held.
    """

    def __init__(
        self,
        registry: Optional[FeedRegistry] = None,
        snapshot: Optional[Snapshot] = None,
    ):
        self.lock = ReadWriteLock()
        self._registry = registry if registry is not None else FeedRegistry()
        self._retry: Dict[str, RetryState] = {}
        self._snapshot = snapshot

    def list_feeds(self) -> Dict[str, str]:
        with self.lock.read():
            return self._registry.get()

    def register(self, name: str, url: str) -> None:
        """Add a feed, raising ``RegistrationConflict`` if the name is taken."""
        with self.lock.write():
            if not self._registry.put(name, url):
                raise RegistrationConflict(name, self._registry.url_for(name))
        logger.info("Registered feed %s (%s)", name, url)
        self._registry.persist(name, url)

    def sync_registry(self) -> List[str]:
        """Pick up feeds registered in the store by other processes.

        The store is read before the write lock is taken. Names already
        registered keep their URL. Returns the names that were added.
        """
        if not self._registry.has_store:
            return []
        try:
            stored = self._registry.stored()
        except SQLAlchemyError:
            logger.exception("Failed to read stored feeds")
            return []
        with self.lock.write():
            return self._registry.merge(stored)

    def current_snapshot(self) -> Optional[Snapshot]:
        with self.lock.read():
            return self._snapshot

    def retry_state(self, name: str) -> RetryState:
        with self.lock.read():
            return self._retry.get(name, RetryState())

    def cycle_inputs(self) -> Tuple[Dict[str, str], Dict[str, RetryState]]:
        """Copy the registry and retry table for one refresh cycle."""
        with self.lock.read():
            return self._registry.get(), dict(self._retry)

    def commit(
        self,
        updates: Mapping[str, RetryState],
        snapshot: Optional[Snapshot] = None,
    ) -> None:
        """Apply retry updates and publish ``snapshot`` if given."""
        with self.lock.write():
            self._retry.update(updates)
            stale = [name for name in self._retry if name not in self._registry]
            for name in stale:
                del self._retry[name]
            if snapshot is not None:
                self._snapshot = snapshot
        if stale:
            logger.debug("Dropped retry state for unregistered feeds: %s", stale)

    def warm_start(self, snapshot: Snapshot) -> bool:
        """Install a persisted snapshot unless one is already being served."""
        with self.lock.write():
            if self._snapshot is not None:
                return False
            self._snapshot = snapshot
            return True
