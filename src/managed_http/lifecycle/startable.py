"""
Startable - single-flight start/stop state machine.

Subclasses implement two hooks:
  - on_start(opts) → brings the resource up, raises on failure
  - on_stop(opts)  → brings the resource down, raises on failure

Callers only use start() and stop(). Concurrent calls are coalesced:
  - start() while starting joins the in-flight start
  - stop() while stopping joins the in-flight stop
  - start() while stopping waits for the stop, then starts
  - stop() while starting waits for the start, then stops
  - stop() while idle or stopped is a no-op

A stop whose caller is cancelled leaves the state STARTED, so a later stop()
runs the hook again. A stop() that joins one in flight first calls
stop_joined(opts), letting stronger options escalate it.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Any

import anyio

from ..errors import LifecycleError


class State(Enum):
    """Lifecycle states."""
    IDLE = auto()
    STARTING = auto()
    STARTED = auto()
    STOPPING = auto()
    STOPPED = auto()


class _Operation:
    """One in-flight start or stop, shared by every caller that joins it."""

    def __init__(self, name: str):
        self.name = name
        self.done = anyio.Event()
        self.error: BaseException | None = None
        self.cancelled = False

    async def join(self) -> None:
        await self.done.wait()
        if self.error is not None:
            raise self.error


class Startable:
    """
    Base class for anything with a start/stop lifecycle.

    The state is owned here; hooks never touch it.
    """

    def __init__(self):
        self._state = State.IDLE
        self._start_op: _Operation | None = None
        self._stop_op: _Operation | None = None

    @property
    def state(self) -> State:
        return self._state

    @property
    def is_started(self) -> bool:
        return self._state is State.STARTED

    async def start(self, **opts: Any) -> None:
        """Start, or join a start already in flight."""
        while True:
            match self._state:
                case State.STARTED:
                    return
                case State.STARTING:
                    assert self._start_op is not None
                    await self._start_op.join()
                    return
                case State.STOPPING:
                    assert self._stop_op is not None
                    # Its outcome belongs to the stop() caller.
                    await self._stop_op.done.wait()
                    continue
                case _:
                    break

        op = self._start_op = _Operation("start")
        self._state = State.STARTING
        await self._run(op, self.on_start, opts, success=State.STARTED, failure=State.STOPPED, cancelled=State.STOPPED)

    async def stop(self, **opts: Any) -> None:
        """Stop, or join a stop already in flight. A no-op when not running."""
        while True:
            match self._state:
                case State.IDLE | State.STOPPED:
                    return
                case State.STOPPING:
                    op = self._stop_op
                    assert op is not None
                    await self.stop_joined(opts)
                    await op.done.wait()
                    if op.cancelled:
                        continue
                    if op.error is not None:
                        raise op.error
                    return
                case State.STARTING:
                    assert self._start_op is not None
                    await self._start_op.done.wait()
                    continue
                case _:
                    break

        op = self._stop_op = _Operation("stop")
        self._state = State.STOPPING
        await self._run(op, self.on_stop, opts, success=State.STOPPED, failure=State.STOPPED, cancelled=State.STARTED)

    async def _run(self, op: _Operation, hook, opts: dict[str, Any], *, success: State, failure: State, cancelled: State) -> None:
        try:
            await hook(opts)
        except anyio.get_cancelled_exc_class():
            self._state = cancelled
            op.cancelled = True
            op.error = LifecycleError(f"{op.name} was cancelled")
            raise
        except Exception as e:
            self._state = failure
            op.error = e
            raise
        else:
            self._state = success
        finally:
            op.done.set()

    # --- Override these ---

    async def on_start(self, opts: dict[str, Any]) -> None:  # pyright: ignore[reportUnusedParameter]
        """Bring the resource up. Raise to fail the start."""
        raise NotImplementedError(f"{self.__class__.__name__}.on_start not implemented")

    async def on_stop(self, opts: dict[str, Any]) -> None:  # pyright: ignore[reportUnusedParameter]
        """Bring the resource down. Raise to fail the stop."""
        raise NotImplementedError(f"{self.__class__.__name__}.on_stop not implemented")

    async def stop_joined(self, opts: dict[str, Any]) -> None:  # pyright: ignore[reportUnusedParameter]
        """Called when stop(**opts) joins a stop already in flight."""
        return None
