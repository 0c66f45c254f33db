"""Keeps a stable folder of links and bookmarks for a GSConnect-mounted phone."""

__version__ = "0.1.0"
