"""Error taxonomy for managed HTTP servers."""

from __future__ import annotations

from typing import Any, Mapping


class HttpServerError(Exception):
    """
    Base error carrying structured context and the wrapped source error.

    Attributes:
        context: structured data describing the failed operation
        source: the originating error, also chained as ``__cause__``
    """

    def __init__(
        self,
        message: str,
        context: Mapping[str, Any] | None = None,
        source: BaseException | None = None,
    ):
        super().__init__(message)
        self.context: dict[str, Any] = dict(context or {})
        self.source = source
        if source is not None:
            self.__cause__ = source

    @classmethod
    def wrap(
        cls,
        source: BaseException,
        message: str,
        context: Mapping[str, Any] | None = None,
    ) -> "HttpServerError":
        """Wrap ``source`` into an instance of this class."""
        return cls(message, context, source)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({str(self)!r})"


class HttpServerStartError(HttpServerError):
    """Raised when the listening socket could not be bound."""
    pass


class HttpServerStopError(HttpServerError):
    """Raised when the listening socket could not be released."""
    pass


class LifecycleError(RuntimeError):
    """Raised when a server object is used outside its lifecycle contract."""
    pass
