"""Rewrite rules applied to item descriptions before rendering."""

from __future__ import annotations

from typing import Callable, Iterable, Sequence

from bs4 import BeautifulSoup

Rule = Callable[[str], str]

BOILERPLATE = (
    "© 2024 TechCrunch. All rights reserved. For personal use only.",
    "© 2025 TechCrunch. All rights reserved. For personal use only.",
)


def strip_boilerplate(value: str) -> str:
    """Remove known copyright footers."""
    for text in BOILERPLATE:
        value = value.replace(text, "")
    return value


def _drop_tags(value: str, *names: str) -> str:
    if "<" not in value:
        return value
    soup = BeautifulSoup(value, "html.parser")
    found = soup.find_all(list(names))
    if not found:
        return value
    for tag in found:
        tag.decompose()
    return str(soup)


def strip_images(value: str) -> str:
    """Remove embedded <img> markup."""
    return _drop_tags(value, "img")


def strip_scripts(value: str) -> str:
    return _drop_tags(value, "script", "style", "iframe")


DEFAULT_RULES: Sequence[Rule] = (strip_boilerplate, strip_images, strip_scripts)


def apply_rules(value: str, rules: Iterable[Rule] = DEFAULT_RULES) -> str:
    """Run ``value`` through each rule in order."""
    for rule in rules:
        value = rule(value)
    return value.strip()
