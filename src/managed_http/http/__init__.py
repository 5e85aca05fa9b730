"""HTTP components: the managed server, its wire layer and connection handles."""

from .connection import Connection
from .protocol import HttpRequest, HttpResponse, RequestError
from .server import ManagedHttpServer, RequestHandler

__all__ = [
    "Connection",
    "HttpRequest",
    "HttpResponse",
    "ManagedHttpServer",
    "RequestError",
    "RequestHandler",
]
