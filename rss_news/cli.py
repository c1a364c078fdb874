"""Command-line interface for the rss_news application."""

from __future__ import annotations

import argparse
import dataclasses
import functools
import logging
import os
import pprint
import sys
from pathlib import Path
from typing import List, Optional

from . import store
from .backoff import BackoffPolicy
from .config import AppConfig, parse_app_config, parse_env_config, parse_feeds_config
from .errors import RegistrationConflict
from .feeds import fetch_feed
from .registry import FeedRegistry
from .renderers import build_feeds_html
from .scheduler import Fetcher, RefreshScheduler, SchedulerConfig
from .snapshot import SnapshotBuilder
from .state import NewsState
from .status import export_status, status_to_json
from .tickers import get_prices

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "config.xml"
PRICE_API_KEY_ENV = "CRYPTOCOMPARE_API_KEY"


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Periodically refresh RSS feeds into a single news page."
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to the main configuration XML file (default: {DEFAULT_CONFIG} if present).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO, WARNING). Overrides config.",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional path to a log file. Overrides config.",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run the refresh loop.")
    run.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle, print feed status as JSON and exit.",
    )

    add = commands.add_parser("add", help="Register a new feed.")
    add.add_argument("name", help="Unique feed name.")
    add.add_argument("url", help="Feed URL.")

    feeds = commands.add_parser("feeds", help="List registered feeds.")
    feeds.add_argument("--html", action="store_true", help="Render as HTML.")

    commands.add_parser("snapshot", help="Print the last published news page.")

    return parser


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    """Initialise logging according to options."""
    log_level = getattr(logging, level_name.upper(), None)
    if not isinstance(log_level, int):
        raise ValueError(f"Unsupported log level: {level_name}")

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(log_level)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        if log_path.parent and not log_path.parent.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        logger.debug(
            "Logger initialised with level %s and file output to %s",
            level_name.upper(),
            log_path,
        )
    else:
        logger.debug(
            "Logger initialised with console output at level %s", level_name.upper()
        )


def load_config(path: Optional[str]) -> AppConfig:
    """Load the XML config; the implicit default path may be absent."""
    if path is None:
        if not Path(DEFAULT_CONFIG).exists():
            return AppConfig()
        path = DEFAULT_CONFIG
    return parse_app_config(path)


def build_scheduler(
    app_config: AppConfig, fetcher: Fetcher = fetch_feed
) -> RefreshScheduler:
    """Wire registry, state, store and scheduler from configuration."""
    session_factory = None
    engine = store.init_engine(app_config.database.connection_string)
    if engine is not None:
        session_factory = store.get_session_factory(engine)

    defaults = parse_feeds_config(app_config.feeds_file)
    registry = FeedRegistry.load(defaults, session_factory=session_factory)
    state = NewsState(registry)

    price_source = None
    if app_config.tickers.enabled:
        price_source = functools.partial(
            get_prices,
            app_config.tickers.symbols,
            os.environ.get(PRICE_API_KEY_ENV),
            app_config.fetch_timeout_seconds,
        )

    scheduler_config = SchedulerConfig(
        interval=app_config.interval_seconds,
        fetch_timeout=app_config.fetch_timeout_seconds,
        max_items=app_config.max_items,
        concurrency=app_config.concurrency,
        policy=BackoffPolicy(
            base_seconds=app_config.backoff.base_seconds,
            max_seconds=app_config.backoff.max_seconds,
        ),
    )
    return RefreshScheduler(
        state,
        builder=SnapshotBuilder(title=app_config.title),
        fetcher=fetcher,
        config=scheduler_config,
        session_factory=session_factory,
        price_source=price_source,
    )


def _run(scheduler: RefreshScheduler, once: bool) -> int:
    if once:
        scheduler.run_cycle()
        print(status_to_json(export_status(scheduler.state)))
        return 0

    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
        scheduler.stop()
    return 0


def _add(scheduler: RefreshScheduler, name: str, url: str) -> int:
    if not name.strip() or not url.strip():
        raise ValueError("missing name or feed")
    try:
        scheduler.state.register(name.strip(), url.strip())
    except RegistrationConflict as exc:
        logger.error("%s (%s)", exc, exc.existing_url)
        return 1
    print(f"Registered {name.strip()}")
    return 0


def _feeds(scheduler: RefreshScheduler, as_html: bool) -> int:
    feeds = scheduler.state.list_feeds()
    if as_html:
        print(build_feeds_html(feeds))
        return 0
    for name in sorted(feeds):
        print(f"{name}\t{feeds[name]}")
    return 0


def _snapshot(scheduler: RefreshScheduler) -> int:
    scheduler.warm_start()
    snapshot = scheduler.state.current_snapshot()
    if snapshot is None:
        logger.error("No snapshot has been published yet.")
        return 1
    sys.stdout.write(snapshot.html.decode("utf-8"))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        app_config = load_config(args.config)

        if app_config.env_file:
            env_vars = parse_env_config(app_config.env_file)
            os.environ.update(env_vars)

        # CLI overrides config
        log_level = args.log_level or app_config.logging.level
        log_file = args.log_file or app_config.logging.file

        configure_logging(log_level, log_file)

        config_dict = dataclasses.asdict(app_config)
        if config_dict["database"].get("connection_string"):
            config_dict["database"]["connection_string"] = "***MASKED***"
        logger.debug("Active Configuration:\n%s", pprint.pformat(config_dict))

        scheduler = build_scheduler(app_config)

        if args.command == "run":
            return _run(scheduler, args.once)
        if args.command == "add":
            return _add(scheduler, args.name, args.url)
        if args.command == "feeds":
            return _feeds(scheduler, args.html)
        return _snapshot(scheduler)
    except ValueError as exc:
        parser.error(str(exc))
    except (RuntimeError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected error during execution.")
        return 1
