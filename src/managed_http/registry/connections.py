"""Registry of the connections currently open on one server."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from ..http.connection import Connection
    from ..log import LoggerLike


class ConnectionRegistry:
    """
    Set of open connections, keyed by identity.

    Membership is driven by the connections themselves: ``track()`` adds a
    connection and arranges for its own close signal to remove it. All
    access happens on the event loop thread, so no locking is needed.
    """

    def __init__(self):
        self._connections: set[Connection] = set()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection: object) -> bool:
        return connection in self._connections

    def __iter__(self) -> Iterator[Connection]:
        return iter(self.snapshot())

    def snapshot(self) -> list[Connection]:
        """Return the open connections as a list."""
        return list(self._connections)

    def track(self, connection: Connection) -> None:
        """
        Register a freshly accepted connection.

        Raises ValueError if the connection is already tracked or closed.
        """
        if connection in self._connections:
            raise ValueError(f"{connection!r} is already tracked")
        if connection.closed:
            raise ValueError(f"{connection!r} is already closed")
        self._connections.add(connection)
        connection.on_close(self.remove)

    def remove(self, connection: Connection) -> None:
        """
        Drop a connection. Called once, from its close signal.

        Raises KeyError if it is not tracked.
        """
        self._connections.remove(connection)

    def destroy_all(self, logger: LoggerLike | None = None) -> int:
        """
        Destroy every open connection.

        Entries leave the registry through their own close signal. Returns the
        number of connections destroyed.
        """
        destroyed = 0
        for connection in self.snapshot():
            try:
                connection.destroy()
            except Exception as e:
                if logger is not None:
                    logger.error(
                        "http server: connection destroy errored",
                        extra={"connection": repr(connection), "exception": e},
                    )
                continue
            destroyed += 1
        return destroyed
