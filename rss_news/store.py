"""Database layer persisting registered feeds and the last rendered snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    LargeBinary,
    String,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

logger = logging.getLogger(__name__)

SNAPSHOT_ROW_ID = 1


class Base(DeclarativeBase):
    pass


class FeedOverrideModel(Base):
    """Feed registered at runtime on top of the bundled defaults."""

    __tablename__ = "feeds"

    name = Column(String, primary_key=True)
    url = Column(String, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class SnapshotModel(Base):
    """Most recently published rendering."""

    __tablename__ = "snapshots"

    id = Column(Integer, primary_key=True)
    html = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime, nullable=False)


@dataclass(frozen=True)
class StoredSnapshot:
    html: bytes
    created_at: datetime


def init_engine(connection_string: Optional[str]) -> Optional[Engine]:
    """Initialize the database engine."""
    if not connection_string:
        return None

    logger.info("Initializing database connection: %s", connection_string)
    engine = create_engine(connection_string)
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory for the given engine."""
    return sessionmaker(bind=engine)


def get_feed_overrides(session: Session) -> Dict[str, str]:
    """Return every persisted name -> url registration."""
    rows = session.execute(select(FeedOverrideModel)).scalars().all()
    return {row.name: row.url for row in rows}


def put_feed_override(session: Session, name: str, url: str) -> bool:
    """Persist a registration. Returns False if the name is already stored."""
    existing = session.get(FeedOverrideModel, name)
    if existing is not None:
        return False

    session.add(
        FeedOverrideModel(name=name, url=url, created_at=datetime.now(timezone.utc))
    )
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise
    return True


def save_snapshot(
    session: Session, html: bytes, created_at: Optional[datetime] = None
) -> None:
    """Replace the stored snapshot with ``html``."""
    timestamp = created_at or datetime.now(timezone.utc)
    existing = session.get(SnapshotModel, SNAPSHOT_ROW_ID)
    if existing:
        existing.html = html
        existing.created_at = timestamp
    else:
        session.add(SnapshotModel(id=SNAPSHOT_ROW_ID, html=html, created_at=timestamp))

    try:
        session.commit()
    except Exception:
        session.rollback()
        raise


def load_snapshot(session: Session) -> Optional[StoredSnapshot]:
    """Return the last saved snapshot, if any."""
    row = session.get(SnapshotModel, SNAPSHOT_ROW_ID)
    if row is None or not row.html:
        return None

    created_at = row.created_at
    # SQLite drops tzinfo on the way back
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return StoredSnapshot(html=bytes(row.html), created_at=created_at)
