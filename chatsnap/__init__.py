"""
Command-line interface for turning Markdown conversation transcripts into
shareable image cards.

This package exposes a :func:`main` function which orchestrates argument parsing
and delegates parsing, pagination and rendering to :mod:`chatcards`. The
PDF bundle and the single-page HTML export live beside it.
"""

from .cli import main

__all__ = ["main"]
