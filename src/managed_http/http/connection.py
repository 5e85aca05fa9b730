"""Connection handle: one accepted client stream."""

from __future__ import annotations

from typing import Any, Callable

import anyio
from anyio.abc import ByteStream, SocketAttribute


CloseCallback = Callable[["Connection"], Any]


class Connection:
    """
    An accepted client connection.

    Everything the server runs for the connection lives inside
    ``cancel_scope``, so ``destroy()`` interrupts it wherever it is blocked.
    Close callbacks fire exactly once, after the stream is closed, whether
    it closed naturally or was destroyed.
    """

    def __init__(self, stream: ByteStream):
        self.stream = stream
        self.cancel_scope = anyio.CancelScope()
        self._close_callbacks: list[CloseCallback] = []
        self._closed = False
        self._destroyed = False
        try:
            self._remote_address = stream.extra(SocketAttribute.remote_address, None)
        except OSError:
            # Peer already gone.
            self._remote_address = None

    def __repr__(self) -> str:
        return f"<Connection {self.remote_address!r} closed={self._closed}>"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def remote_address(self) -> Any:
        return self._remote_address

    def on_close(self, callback: CloseCallback) -> None:
        """Register a one-shot callback fired after the stream closes."""
        self._close_callbacks.append(callback)

    def destroy(self) -> None:
        """Abort the connection without flushing pending output."""
        if self._closed or self._destroyed:
            return
        self._destroyed = True
        self.cancel_scope.cancel()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._destroyed:
                await anyio.aclose_forcefully(self.stream)
            else:
                with anyio.CancelScope(shield=True):
                    await self.stream.aclose()
        finally:
            callbacks, self._close_callbacks = self._close_callbacks, []
            for callback in callbacks:
                callback(self)
