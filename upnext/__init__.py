"""Incremental sync of shows, episodes and watched progress from Trakt."""

__version__ = "0.1.0"
