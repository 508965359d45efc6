"""Poem content management."""

from .manager import PoemManager, SaveResult

__all__ = ["PoemManager", "SaveResult"]
