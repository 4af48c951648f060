"""Flushable error hierarchy.

All flushable-specific errors inherit from FlushableError for easy catching.
"""

from __future__ import annotations


class FlushableError(Exception):
    """Base error for all flushable operations."""


class Rejection(FlushableError):
    """A rejection reason that is not itself an exception.

    asyncio futures can only hold exceptions, so ``cell.reject("nope")``
    stores ``Rejection("nope")``. Reactions and ``Cell.reason()`` see the
    original value; only ``await`` and ``result()`` raise the wrapper.
    """

    def __init__(self, reason: object) -> None:
        super().__init__(reason)
        self.reason = reason

    def __repr__(self) -> str:
        return f"Rejection({self.reason!r})"


class AggregateRejection(FlushableError):
    """Every input of any_of() rejected. Reasons are kept in arrival order."""

    def __init__(self, reasons: list[object]) -> None:
        super().__init__(f"all {len(reasons)} cells rejected")
        self.reasons = list(reasons)


class NoEventLoop(FlushableError, RuntimeError):
    """A cell was created with no loop given, none running, and no default set."""


def wrap_reason(reason: object) -> BaseException:
    """Turn an arbitrary rejection reason into something a Future can hold."""
    if isinstance(reason, BaseException) and not isinstance(reason, StopIteration):
        return reason
    return Rejection(reason)


def unwrap_reason(exc: BaseException) -> object:
    """Inverse of wrap_reason()."""
    if isinstance(exc, Rejection):
        return exc.reason
    return exc
