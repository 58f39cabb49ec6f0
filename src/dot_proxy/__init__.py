"""dot: a main repository plus hidden directories, versioned as one unit."""

from .cli import main

__all__ = ["main"]
