"""Offline-first sync and revision history for a poem notebook."""

__version__ = "0.1.0"
