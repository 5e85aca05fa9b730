"""Connection registry for tracking open connections."""

from .connections import ConnectionRegistry

__all__ = [
    "ConnectionRegistry",
]
