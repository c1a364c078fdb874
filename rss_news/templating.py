"""Jinja2 environment for rss_news templates."""

from __future__ import annotations

from datetime import datetime
from importlib import resources

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

_ENV: Environment | None = None


def _description(value: str | None) -> Markup:
    """Mark an already-sanitised description as safe markup."""
    if not value:
        return Markup("")
    return Markup(value)


def _timestamp(value: datetime | None) -> str:
    if value is None or value.year <= 1:
        return ""
    return value.strftime("%Y-%m-%d %H:%M UTC")


def get_environment() -> Environment:
    """Return a cached Jinja environment configured for package templates."""
    global _ENV
    if _ENV is None:
        template_dir = resources.files(__package__) / "templates"
        loader = FileSystemLoader(str(template_dir))
        _ENV = Environment(
            loader=loader,
            autoescape=select_autoescape(["html", "xml", "j2"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        _ENV.filters["description"] = _description
        _ENV.filters["timestamp"] = _timestamp
    return _ENV
