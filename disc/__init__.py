"""Disc: music discovery API (accounts, reviews, events, recommendations)."""

__version__ = "0.4.0"
