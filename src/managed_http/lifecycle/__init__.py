"""Start/stop lifecycle components."""

from .startable import Startable, State

__all__ = [
    "Startable",
    "State",
]
