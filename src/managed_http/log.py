"""Logger contract and the package's named default logger."""

from __future__ import annotations

import logging
from typing import Any, Protocol


class LoggerLike(Protocol):
    """Anything with ``info`` and ``error``; ``logging.Logger`` qualifies."""

    def info(self, msg: Any, *args: Any, **kwargs: Any) -> None: ...

    def error(self, msg: Any, *args: Any, **kwargs: Any) -> None: ...


LOGGER_NAME = "managed_http"

# Handlers and formatting are left to the application.
DEFAULT_LOGGER: logging.Logger = logging.getLogger(LOGGER_NAME)
