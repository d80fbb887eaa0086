"""Build projects inside containers and extract their artifacts."""
from __future__ import annotations

from .cli import main

__all__ = ["main"]
