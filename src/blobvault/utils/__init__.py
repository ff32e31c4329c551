"""Shared helpers: logging setup and crash-safe file writes."""

from .fileio import atomic_write_chunks, atomic_write_text
from .logging import mask_secret, setup_logging

__all__ = [
    "atomic_write_chunks",
    "atomic_write_text",
    "mask_secret",
    "setup_logging",
]
