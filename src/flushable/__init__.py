"""Flushable: promises whose results can be pulled out on demand."""

from importlib.metadata import version as _version

__version__ = _version("flushable")

from flushable.errors import AggregateRejection, FlushableError, NoEventLoop, Rejection
from flushable.cell import Cell, CellState, rejected, resolved, set_default_loop
from flushable.combinators import all_of, any_of, race
# textual NOT auto-imported — opt-in only

__all__ = [
    "Cell",
    "CellState",
    "resolved",
    "rejected",
    "all_of",
    "any_of",
    "race",
    "set_default_loop",
    "FlushableError",
    "Rejection",
    "AggregateRejection",
    "NoEventLoop",
]
