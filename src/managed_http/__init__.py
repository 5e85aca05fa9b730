"""Managed HTTP server base with start/stop lifecycle and connection-aware shutdown."""

from .config import DEFAULT_PORT, ListenOptions, ServerOptions, resolve_listen_options
from .errors import HttpServerError, HttpServerStartError, HttpServerStopError, LifecycleError
from .lifecycle.startable import Startable, State
from .registry.connections import ConnectionRegistry
from .http.connection import Connection
from .http.protocol import HttpRequest, HttpResponse
from .http.server import ManagedHttpServer, RequestHandler
from .log import DEFAULT_LOGGER, LoggerLike

__all__ = [
    # Lifecycle
    "Startable",
    "State",
    # Server
    "ManagedHttpServer",
    "RequestHandler",
    "HttpRequest",
    "HttpResponse",
    "Connection",
    "ConnectionRegistry",
    # Configuration
    "DEFAULT_PORT",
    "ListenOptions",
    "ServerOptions",
    "resolve_listen_options",
    # Logging
    "DEFAULT_LOGGER",
    "LoggerLike",
    # Errors
    "HttpServerError",
    "HttpServerStartError",
    "HttpServerStopError",
    "LifecycleError",
]
