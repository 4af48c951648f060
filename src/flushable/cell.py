"""Flushable cells — promises that can be settled on demand.

A Cell wraps an asyncio.Future. It settles the usual push-based way, when
some code calls resolve() or reject(), or it can be forced with flush():
flush walks back through the cells it was derived from until it reaches a
root holding a producer, and resolves that root with the producer's value.
The reactions then() already registered carry the value forward.

Source links only ever point backwards and are only read by flush. Normal
settlement never looks at them.

Thread safety: call set_default_loop() once from the loop's thread if cells
are created outside a running loop. resolve()/reject() from any other thread
is auto-marshaled onto the cell's loop while it runs; calls on the loop
thread settle synchronously. While the loop is idle, settlement is applied
directly, so only the thread that will run the loop may settle its cells
before it starts.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Callable, Generator, Generic, TypeVar

from flushable.errors import NoEventLoop, Rejection, unwrap_reason, wrap_reason

T = TypeVar("T")

Reaction = Callable[[bool, Any], None]

logger = logging.getLogger("flushable.cell")

# ─── Default loop ────────────────────────────────────────────────────────────
_default_loop: asyncio.AbstractEventLoop | None = None


def set_default_loop(loop: asyncio.AbstractEventLoop | None) -> None:
    """Set the loop cells bind to when none is running.

    Call once from the thread that will run the loop:
        loop = asyncio.new_event_loop()
        flushable.set_default_loop(loop)

    Inside a running loop the running loop always wins. Pass None to clear.
    """
    global _default_loop
    _default_loop = loop


def _pick_loop(loop: asyncio.AbstractEventLoop | None) -> asyncio.AbstractEventLoop:
    if loop is not None:
        return loop
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        pass
    if _default_loop is not None:
        return _default_loop
    raise NoEventLoop(
        "no running event loop: pass loop= or call set_default_loop() first"
    )


def _outcome(future: asyncio.Future) -> tuple[bool, Any]:
    """(fulfilled, value-or-unwrapped-reason) of a done future."""
    if future.cancelled():
        return False, asyncio.CancelledError()
    exc = future.exception()
    if exc is not None:
        return False, unwrap_reason(exc)
    return True, future.result()


class CellState(enum.Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


class Cell(Generic[T]):
    """A promise-like value that can be pulled to completion with flush().

    Usage:
        root = Cell(lambda: 32)
        doubled = root.then(lambda x: x * 2)

        doubled.flush()    # runs the producer, root is fulfilled with 32
        await doubled      # 64

    A cell built with a producer is a flush root. A cell built without one
    can only be settled by calling resolve()/reject(), or by the reactions
    that derived it.
    """

    __slots__ = ("_loop", "_future", "_producer", "_sources", "_flushed")

    def __init__(
        self,
        producer: Callable[[], T] | None = None,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._loop = _pick_loop(loop)
        self._future: asyncio.Future = self._loop.create_future()
        self._producer = producer
        self._sources: list[Cell] = []
        self._flushed = False

    # --- Settlement ---

    def resolve(self, value: T) -> None:
        """Fulfill with value. No-op once settled. Cells are not unwrapped."""
        self._call_on_loop(self._set_value, value)

    def reject(self, reason: object) -> None:
        """Reject with reason (any value). No-op once settled."""
        self._call_on_loop(self._set_reason, reason)

    def _call_on_loop(self, fn: Callable[[Any], None], arg: Any) -> None:
        # An idle loop cannot tell its own thread apart; see the module docstring.
        if self._loop.is_running() and not self._on_loop_thread():
            logger.debug("Marshaling settlement of %r onto its loop", self)
            self._loop.call_soon_threadsafe(fn, arg)
        else:
            fn(arg)

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _set_value(self, value: T) -> None:
        if not self._future.done():
            self._future.set_result(value)

    def _set_reason(self, reason: object) -> None:
        if not self._future.done():
            self._future.set_exception(wrap_reason(reason))

    # --- Introspection ---

    @property
    def state(self) -> CellState:
        if not self._future.done():
            return CellState.PENDING
        fulfilled, _ = _outcome(self._future)
        return CellState.FULFILLED if fulfilled else CellState.REJECTED

    def done(self) -> bool:
        return self._future.done()

    def result(self) -> T:
        """The value. Raises the stored exception, or InvalidStateError if pending."""
        return self._future.result()

    def reason(self) -> object:
        """The unwrapped rejection reason, or None if pending or fulfilled."""
        if not self._future.done():
            return None
        fulfilled, outcome = _outcome(self._future)
        return None if fulfilled else outcome

    @property
    def producer(self) -> Callable[[], T] | None:
        return self._producer

    @property
    def sources(self) -> tuple[Cell, ...]:
        return tuple(self._sources)

    @property
    def future(self) -> asyncio.Future:
        """The wrapped future. Settle through the cell, not through this."""
        return self._future

    def __await__(self) -> Generator[Any, None, T]:
        # Shielded: cancelling an awaiting task must not settle the cell.
        return asyncio.shield(self._future).__await__()

    # --- Source links ---

    def _link(self, *sources: Cell) -> None:
        self._sources.extend(sources)

    def _add_reaction(self, reaction: Reaction) -> None:
        """Call reaction(fulfilled, outcome) once settled, via the loop."""
        self._future.add_done_callback(lambda future: reaction(*_outcome(future)))

    def _adopt(self, other: Cell) -> None:
        """Settle like other, whenever other settles."""

        def _copy(fulfilled: bool, outcome: Any) -> None:
            if fulfilled:
                self.resolve(outcome)
            else:
                self.reject(outcome)

        other._add_reaction(_copy)

    # --- Chaining ---

    def then(
        self,
        on_fulfilled: Callable[[T], Any] | None = None,
        on_rejected: Callable[[Any], Any] | None = None,
    ) -> Cell:
        """Derive a cell settled from this one's outcome.

        A handler that is missing (or not callable) passes the outcome
        through. An exception raised by a handler rejects the derived cell.

        When a handler returns a Cell, that cell is linked in both
        directions for flush, force-settled with this cell's outcome, and
        the derived cell follows it.
        """
        derived: Cell = Cell(loop=self._loop)
        derived._link(self)

        def _react(fulfilled: bool, outcome: Any) -> None:
            handler = on_fulfilled if fulfilled else on_rejected
            if not callable(handler):
                if fulfilled:
                    derived.resolve(outcome)
                else:
                    derived.reject(outcome)
                return

            try:
                returned = handler(outcome)
            except Exception as exc:
                derived.reject(exc)
                return

            if isinstance(returned, Cell):
                returned._link(self)
                derived._link(returned)
                if fulfilled:
                    returned.resolve(outcome)
                else:
                    returned.reject(outcome)
                derived._adopt(returned)
            else:
                derived.resolve(returned)

        self._add_reaction(_react)
        return derived

    def catch(self, on_rejected: Callable[[Any], Any]) -> Cell:
        """then() with only a rejection handler. Values pass through."""
        return self.then(None, on_rejected)

    def finally_(self, on_finally: Callable[[], Any]) -> Cell:
        """Run on_finally once settled; the outcome passes through unchanged.

        Also reachable as getattr(cell, "finally").
        """
        if not callable(on_finally):
            return self.then(on_finally, on_finally)

        def _after_value(value: Any) -> Cell:
            return resolved(on_finally(), loop=self._loop).then(lambda _: value)

        def _after_reason(reason: Any) -> Cell:
            def _reraise(_: Any) -> None:
                raise reason if isinstance(reason, Exception) else Rejection(reason)

            return resolved(on_finally(), loop=self._loop).then(_reraise)

        return self.then(_after_value, _after_reason)

    # --- Flush ---

    def flush(self) -> None:
        """Force settlement by running the producers this cell derives from.

        Walks source links depth-first in link order. Each cell is visited
        once, so diamonds do not re-run anything. A root that has already
        settled is left alone; a root whose producer raises is rejected with
        the error. Values reach this cell through the existing reactions,
        i.e. once the loop runs.
        """
        stack: list[Cell] = [self]
        seen: set[Cell] = set()
        while stack:
            cell = stack.pop()
            if cell in seen:
                continue
            seen.add(cell)
            if cell._producer is not None:
                cell._run_producer()
            else:
                stack.extend(reversed(cell._sources))

    def _run_producer(self) -> None:
        # A resolve queued from a worker thread is not visible through done() yet.
        if self._flushed or self._future.done():
            return
        self._flushed = True
        logger.debug("Flushing %r from its producer", self)
        try:
            value = self._producer()
        except Exception as exc:
            logger.debug("Producer of %r raised %r", self, exc, exc_info=True)
            self.reject(exc)
            return
        self.resolve(value)

    def __repr__(self) -> str:
        state = self.state
        if state is CellState.FULFILLED:
            detail = f"fulfilled={self._future.result()!r}"
        elif state is CellState.REJECTED:
            detail = f"rejected={self.reason()!r}"
        else:
            detail = "pending"
        kind = "root" if self._producer is not None else f"{len(self._sources)} sources"
        return f"Cell({detail}, {kind})"


# `finally` is a keyword, so it can only be attached after the class body.
setattr(Cell, "finally", Cell.finally_)


def resolved(value: Any, *, loop: asyncio.AbstractEventLoop | None = None) -> Cell:
    """A cell already fulfilled with value. Cells are returned unchanged.

    Usage:
        resolved(5).then(print)
        cell = Cell()
        assert resolved(cell) is cell
    """
    if isinstance(value, Cell):
        return value
    cell: Cell = Cell(loop=loop)
    # Nothing else holds this cell yet, so it is safe to settle from any thread.
    cell._set_value(value)
    return cell


def rejected(reason: object, *, loop: asyncio.AbstractEventLoop | None = None) -> Cell:
    """A cell already rejected with reason."""
    cell: Cell = Cell(loop=loop)
    cell._set_reason(reason)
    return cell
