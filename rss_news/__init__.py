"""Periodic RSS refresh into a single rendered news page."""
