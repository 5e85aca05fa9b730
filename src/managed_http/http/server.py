"""Managed HTTP server with a start/stop lifecycle and connection-aware shutdown.

- start() binds the listener and only returns once it is accepting; bind
  failures surface as HttpServerStartError
- Every accepted connection is tracked until its own close signal
- stop() always closes the listener and drains open connections;
  stop(force=True) also destroys them so the drain finishes promptly, and
  escalates a graceful stop that is still draining
- A failed accept loop is reported by the next stop()
- Fully AnyIO (no asyncio.create_task); background work runs in the
  caller-supplied TaskGroup
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable

import anyio
from anyio.abc import ByteStream, Listener, SocketAttribute, TaskGroup, TaskStatus
from typing_extensions import override

from ..config import ListenOptions, ServerOptions, resolve_listen_options
from ..errors import HttpServerStartError, HttpServerStopError, LifecycleError
from ..lifecycle.startable import Startable
from ..log import DEFAULT_LOGGER, LoggerLike
from ..registry.connections import ConnectionRegistry
from .connection import Connection
from .protocol import HttpRequest, HttpResponse, RequestError, read_request


RequestHandler = Callable[[HttpRequest, HttpResponse], "Awaitable[None] | None"]


class ManagedHttpServer(Startable):
    """
    Base HTTP server. Subclass and override ``handle_request``, or pass
    ``handler=``.

    Construction only stores configuration. ``attach()`` then resolves the
    request handler and the task group once; ``start()`` attaches on demand.

    Example:
        class HelloServer(ManagedHttpServer):
            def handle_request(self, request, response):
                response.end("hello world!")

        async with anyio.create_task_group() as tg:
            server = HelloServer(task_group=tg)
            await server.start(port=8080)
            ...
            await server.stop()
    """

    def __init__(
        self,
        *,
        task_group: TaskGroup | None = None,
        handler: RequestHandler | None = None,
        logger: LoggerLike | None = None,
        host: str | None = None,
        port: int | None = None,
        path: str | None = None,
        backlog: int | None = None,
        reuse_port: bool | None = None,
        mode: int | None = None,
        options: ServerOptions | None = None,
    ):
        super().__init__()
        self._task_group = task_group
        self._handler_override = handler
        self._logger: LoggerLike = logger if logger is not None else DEFAULT_LOGGER
        self._defaults = ListenOptions(
            host=host,
            port=port,
            path=path,
            backlog=backlog,
            reuse_port=reuse_port,
            mode=mode,
        )
        self._server_options = options
        self._options = ServerOptions()
        self._connections = ConnectionRegistry()
        self._handler: RequestHandler | None = None
        self._attached = False
        # Per start/stop cycle.
        self._listener: Listener[Any] | None = None
        self._listen_options: ListenOptions | None = None
        self._accept_scope: anyio.CancelScope | None = None
        self._serving_done: anyio.Event | None = None
        self._close_error: Exception | None = None
        self._accept_error: Exception | None = None
        self._force_closing = False

    @property
    def connections(self) -> ConnectionRegistry:
        return self._connections

    @property
    def listen_options(self) -> ListenOptions | None:
        """Options resolved by the most recent start."""
        return self._listen_options

    @property
    def addresses(self) -> list[Any]:
        """Local addresses of the listener; empty when not listening."""
        listener = self._listener
        if listener is None:
            return []
        # anyio.create_tcp_listener() may return a MultiListener.
        listeners = getattr(listener, "listeners", [listener])
        return [item.extra(SocketAttribute.local_address, None) for item in listeners]

    @property
    def port(self) -> int | None:
        for address in self.addresses:
            if isinstance(address, tuple):
                return address[1]
        return None

    def attach(self, task_group: TaskGroup | None = None) -> None:
        """Resolve the request handler and task group. Runs once."""
        if self._attached:
            if task_group is not None and task_group is not self._task_group:
                raise LifecycleError("server is already attached to another task group")
            return
        if task_group is not None:
            self._task_group = task_group
        if self._task_group is None:
            raise LifecycleError("ManagedHttpServer requires a task_group (structured concurrency)")
        self._handler = self._handler_override if self._handler_override is not None else self.handle_request
        self._attached = True

    def handle_request(self, request: HttpRequest, response: HttpResponse) -> Awaitable[None] | None:  # pyright: ignore[reportUnusedParameter]
        """
        Respond to one request. Default: 404 with an empty body.

        May respond synchronously or be a coroutine. Either way the response
        must eventually be ended; an open response keeps its connection
        registered and delays a graceful stop.
        """
        response.status = 404
        response.end()
        return None

    async def _create_listener(self, options: ListenOptions) -> Listener[Any]:
        if options.is_unix:
            assert options.path is not None
            return await anyio.create_unix_listener(
                options.path,
                mode=options.mode,
                backlog=options.backlog,
            )
        return await anyio.create_tcp_listener(
            local_host=options.host,
            local_port=options.port,
            backlog=options.backlog,
            reuse_port=bool(options.reuse_port),
        )

    @override
    async def on_start(self, opts: dict[str, Any]) -> None:
        self.attach()
        assert self._task_group is not None

        context: dict[str, Any] = dict(opts)
        self._logger.info("http server: starting...", extra={"opts": context})
        try:
            options = resolve_listen_options(ListenOptions.from_mapping(opts), self._defaults)
            context = options.as_dict()
            # Re-read on every start.
            self._options = self._server_options if self._server_options is not None else ServerOptions.from_env()
            listener = await self._create_listener(options)
        except (OSError, TypeError, ValueError) as e:
            err = HttpServerStartError.wrap(e, "error starting http server", {"opts": context})
            self._logger.error("http server: start errored", extra={"err": err, "opts": context})
            raise err from e

        self._listener = listener
        self._listen_options = options
        self._close_error = None
        self._accept_error = None
        self._force_closing = False
        self._accept_scope = anyio.CancelScope()
        self._serving_done = anyio.Event()
        try:
            await self._task_group.start(self._serve, listener)
        except BaseException:
            self._listener = None
            with anyio.CancelScope(shield=True):
                await anyio.aclose_forcefully(listener)
            raise
        self._logger.info("http server: started", extra={"opts": context, "addresses": self.addresses})

    @override
    async def on_stop(self, opts: dict[str, Any]) -> None:
        force = bool(opts.get("force", False))
        context: dict[str, Any] = dict(opts)
        self._logger.info(
            "http server: stopping...",
            extra={"opts": context, "connections": len(self._connections)},
        )

        done = self._serving_done
        if self._accept_scope is not None:
            self._accept_scope.cancel()
        if force:
            self._force_closing = True
            self._connections.destroy_all(self._logger)
        if done is not None:
            await done.wait()

        error = self._close_error or self._accept_error
        self._close_error = self._accept_error = None
        if error is not None:
            err = HttpServerStopError.wrap(error, "error stopping http server", {"opts": context})
            self._logger.error("http server: stop errored", extra={"err": err, "opts": context})
            raise err
        self._logger.info("http server: stopped", extra={"opts": context})

    @override
    async def stop_joined(self, opts: dict[str, Any]) -> None:
        """A forced stop escalates a graceful stop already draining."""
        if not opts.get("force") or self._force_closing:
            return
        self._logger.info(
            "http server: forcing stop",
            extra={"opts": dict(opts), "connections": len(self._connections)},
        )
        self._force_closing = True
        self._connections.destroy_all(self._logger)

    async def _serve(self, listener: Listener[Any], *, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED) -> None:
        """
        Accept until the accept scope is cancelled, release the listener, then
        wait for every connection task to finish.
        """
        assert self._accept_scope is not None and self._serving_done is not None
        accept_scope = self._accept_scope
        done = self._serving_done
        try:
            async with anyio.create_task_group() as connections:
                try:
                    with accept_scope:
                        task_status.started()
                        await listener.serve(self._serve_connection, task_group=connections)
                except Exception as e:
                    # Reported by on_stop().
                    self._accept_error = e
                    self._logger.error("http server: accept errored", extra={"exception": e}, exc_info=e)
                finally:
                    await self._close_listener(listener)
        finally:
            self._listener = None
            done.set()

    async def _close_listener(self, listener: Listener[Any]) -> None:
        self._listener = None
        with anyio.CancelScope(shield=True):
            try:
                await listener.aclose()
            except Exception as e:
                # Reported by on_stop().
                self._close_error = e

    async def _serve_connection(self, stream: ByteStream) -> None:
        connection = Connection(stream)
        self._connections.track(connection)
        if self._force_closing:
            connection.destroy()
        try:
            with connection.cancel_scope:
                await self._exchange(connection)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError) as e:
            self._logger.info(
                "http server: connection lost",
                extra={"client": connection.remote_address, "exception": e},
            )
        except Exception as e:
            self._logger.error(
                "http server: connection errored",
                extra={"client": connection.remote_address, "exception": e},
            )
        finally:
            await connection.close()

    async def _exchange(self, connection: Connection) -> None:
        stream = connection.stream
        try:
            request = await read_request(stream, self._options, client=connection.remote_address)
        except RequestError as e:
            response = HttpResponse()
            response.status = e.status
            response.set_header("content-type", "text/plain; charset=utf-8")
            response.end(str(e))
            await response.transmit(stream)
            return
        if request is None:
            return

        response = HttpResponse(version="HTTP/1.1")
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._dispatch, request, response)
                await response.transmit(stream)
                # The handler's work is bound to its connection.
                tg.cancel_scope.cancel()
        finally:
            response.abandon()

    async def _dispatch(self, request: HttpRequest, response: HttpResponse) -> None:
        assert self._handler is not None
        try:
            result = self._handler(request, response)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._logger.error(
                "http server: request handler errored",
                extra={"method": request.method, "path": request.path, "exception": e},
            )
            if not response.headers_sent:
                response.status = 500
                response.headers.clear()
            response.end()
