"""Listen and server configuration.

Listen options are resolved at start time. For the port the precedence is:
explicit start argument, then the instance default, then the
``HTTP_SERVER_PORT`` environment variable, then ``DEFAULT_PORT``.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Mapping

DEFAULT_PORT = 3000
DEFAULT_BACKLOG = 65536
PORT_ENV_VAR = "HTTP_SERVER_PORT"
MAX_HEADER_BYTES_ENV_VAR = "HTTP_SERVER_MAX_HEADER_BYTES"
MAX_BODY_BYTES_ENV_VAR = "HTTP_SERVER_MAX_BODY_BYTES"


def _env_int(name: str, default: int | None, environ: Mapping[str, str] | None = None) -> int | None:
    environ = os.environ if environ is None else environ
    value = environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


@dataclass(frozen=True, slots=True)
class ListenOptions:
    """
    Where and how to listen.

    Attributes:
        host: interface to bind; None binds all interfaces
        port: TCP port; 0 lets the OS choose
        path: UNIX socket path; when set, host and port are ignored
        backlog: maximum queued connections
        reuse_port: set SO_REUSEPORT on the listening socket
        mode: permissions for the UNIX socket file
    """
    host: str | None = None
    port: int | None = None
    path: str | None = None
    backlog: int | None = None
    reuse_port: bool | None = None
    mode: int | None = None

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> "ListenOptions":
        if not mapping:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = set(mapping) - known
        if unknown:
            raise TypeError(f"unknown listen options: {', '.join(sorted(unknown))}")
        return cls(**dict(mapping))

    def merged(self, **overrides: Any) -> "ListenOptions":
        """Copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def as_dict(self) -> dict[str, Any]:
        """Only the fields that are set, for logs and error context."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @property
    def is_unix(self) -> bool:
        return self.path is not None


def resolve_listen_options(
    call_opts: ListenOptions,
    defaults: ListenOptions,
    environ: Mapping[str, str] | None = None,
) -> ListenOptions:
    """Merge start-call options over instance defaults and fill the port."""
    resolved = defaults.merged(**asdict(call_opts))
    if resolved.backlog is None:
        resolved = replace(resolved, backlog=DEFAULT_BACKLOG)
    if resolved.is_unix:
        return resolved
    if resolved.reuse_port is None:
        resolved = replace(resolved, reuse_port=False)
    if resolved.port is None:
        resolved = replace(resolved, port=_env_int(PORT_ENV_VAR, DEFAULT_PORT, environ))
    return resolved


@dataclass(frozen=True, slots=True)
class ServerOptions:
    """Per-request limits enforced before a request reaches the handler."""
    max_header_bytes: int = 64 * 1024
    max_body_bytes: int = 1 * 1024 * 1024

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ServerOptions":
        base = cls()
        return cls(
            max_header_bytes=_env_int(MAX_HEADER_BYTES_ENV_VAR, base.max_header_bytes, environ),
            max_body_bytes=_env_int(MAX_BODY_BYTES_ENV_VAR, base.max_body_bytes, environ),
        )
