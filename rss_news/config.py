"""Configuration loading for rss_news."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from xml.etree import ElementTree as ET

from .models import FeedConfig
from .tickers import DEFAULT_TICKERS

logger = logging.getLogger(__name__)

DEFAULT_CONNECTION_STRING = "sqlite:///rss_news.db"


def default_feeds_path() -> str:
    """Path of the OPML file bundled with the package."""
    return str(resources.files(__package__) / "feeds.xml")


@dataclass
class BackoffConfig:
    base_seconds: float = 60.0
    max_seconds: float = 3600.0


@dataclass
class TickerConfig:
    enabled: bool = False
    symbols: Tuple[str, ...] = DEFAULT_TICKERS


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class DatabaseConfig:
    connection_string: Optional[str] = DEFAULT_CONNECTION_STRING


@dataclass
class AppConfig:
    feeds_file: str = field(default_factory=default_feeds_path)
    env_file: Optional[str] = None
    title: str = "News"
    interval_seconds: float = 300.0
    fetch_timeout_seconds: float = 10.0
    max_items: int = 10
    concurrency: int = 1
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    tickers: TickerConfig = field(default_factory=TickerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def parse_feeds_config(path: str) -> List[FeedConfig]:
    """Parse an OPML file into feed definitions.

    Every ``type="rss"`` outline with an ``xmlUrl`` becomes a feed named by
    its ``title`` (or ``text``). Grouping outlines are flattened. The first
    occurrence of a name wins.
    """
    logger.info("Loading feed configuration from %s", path)
    tree = ET.parse(path)
    root = tree.getroot()
    body = root.find("body")
    if body is None:
        raise ValueError(f"{path} is missing the <body> section.")

    feeds: List[FeedConfig] = []
    seen = set()

    def walk(outline: ET.Element) -> None:
        title = outline.attrib.get("title") or outline.attrib.get("text")
        feed_url = outline.attrib.get("xmlUrl")
        if outline.attrib.get("type") == "rss" and feed_url:
            name = title or feed_url
            if name in seen:
                logger.warning("Duplicate feed name '%s' in %s; ignoring", name, path)
                return
            seen.add(name)
            feeds.append(FeedConfig(name=name, url=feed_url))
            logger.debug("Registered feed '%s' (%s)", name, feed_url)
            return

        for child in outline.findall("outline"):
            walk(child)

    for outline in body.findall("outline"):
        walk(outline)

    logger.info("Loaded %d feed endpoints from configuration", len(feeds))
    return feeds


def _resolve_path(base_path: Path, target_path: str) -> str:
    """Resolve a path relative to the base config file if it's not absolute."""
    target = Path(target_path)
    if target.is_absolute():
        return str(target)
    return str((base_path.parent / target).resolve())


def parse_env_config(path: str) -> Dict[str, str]:
    """Parse environment variables from XML."""
    env_vars = {}
    if not path:
        return env_vars

    logger.info("Loading environment configuration from %s", path)
    try:
        tree = ET.parse(path)
        root = tree.getroot()
        for var in root.findall("variable"):
            name = var.attrib.get("name")
            value = var.text
            if name and value:
                env_vars[name] = value.strip()
    except Exception as exc:
        logger.warning("Failed to load environment config: %s", exc)
        raise

    return env_vars


def _positive(value: float, element: str) -> float:
    if value <= 0:
        raise ValueError(f"<{element}> must be positive")
    return value


def parse_app_config(path: str) -> AppConfig:
    """Parse the main application configuration XML."""
    config_path = Path(path).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    logger.info("Loading application configuration from %s", config_path)
    tree = ET.parse(config_path)
    root = tree.getroot()
    config = AppConfig()

    # Feeds
    feeds_text = root.findtext("feeds")
    if feeds_text and feeds_text.strip():
        config.feeds_file = _resolve_path(config_path, feeds_text.strip())

    # Env
    env_text = root.findtext("env")
    if env_text and env_text.strip():
        config.env_file = _resolve_path(config_path, env_text.strip())

    # Simple values
    config.title = root.findtext("title", config.title).strip() or config.title
    config.interval_seconds = _positive(
        float(root.findtext("interval-seconds", "300")), "interval-seconds"
    )
    config.fetch_timeout_seconds = _positive(
        float(root.findtext("fetch-timeout-seconds", "10")), "fetch-timeout-seconds"
    )
    config.max_items = _positive(int(root.findtext("max-items", "10")), "max-items")
    config.concurrency = _positive(int(root.findtext("concurrency", "1")), "concurrency")

    # Backoff
    backoff_node = root.find("backoff")
    if backoff_node is not None:
        config.backoff.base_seconds = _positive(
            float(backoff_node.findtext("base-seconds", "60")), "base-seconds"
        )
        config.backoff.max_seconds = _positive(
            float(backoff_node.findtext("max-seconds", "3600")), "max-seconds"
        )

    # Tickers
    tickers_node = root.find("tickers")
    if tickers_node is not None:
        config.tickers.enabled = (
            tickers_node.attrib.get("enabled", "true").lower() == "true"
        )
        symbols = tuple(
            symbol.text.strip().upper()
            for symbol in tickers_node.findall("symbol")
            if symbol.text and symbol.text.strip()
        )
        if symbols:
            config.tickers.symbols = symbols

    # Logging
    log_node = root.find("logging")
    if log_node is not None:
        config.logging.level = log_node.findtext("level", "INFO")
        log_file = log_node.findtext("file")
        if log_file:
            config.logging.file = _resolve_path(config_path, log_file)

    # Database
    db_node = root.find("database")
    if db_node is not None:
        connection_string = db_node.findtext("connection-string")
        config.database.connection_string = (
            connection_string.strip() if connection_string else None
        )

    return config
