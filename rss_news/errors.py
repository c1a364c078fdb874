"""Exceptions raised by rss_news components."""

from __future__ import annotations


class RegistrationConflict(ValueError):
    """Raised when a feed name is already registered."""

    def __init__(self, name: str, existing_url: str):
        super().__init__(f"feed exists with name {name}")
        self.name = name
        self.existing_url = existing_url


class FetchFailure(RuntimeError):
    """Raised when a feed cannot be fetched or parsed."""


class FetchTimeout(FetchFailure):
    """Raised when fetching a feed exceeds its timeout."""
