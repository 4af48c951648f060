"""Combinators — one cell settled from many.

Each combinator links the new cell to all of its inputs, so flushing the
combined cell flushes every input. Inputs are never cancelled: once the
combined cell has settled, later outcomes are simply ignored.
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable

from flushable.cell import Cell, Reaction
from flushable.errors import AggregateRejection


def _combine(
    cells: Iterable[Cell], loop: asyncio.AbstractEventLoop | None
) -> tuple[list[Cell], Cell]:
    inputs = list(cells)
    if loop is None and inputs:
        loop = inputs[0]._loop
    combined: Cell = Cell(loop=loop)
    combined._link(*inputs)
    return inputs, combined


def all_of(cells: Iterable[Cell], *, loop: asyncio.AbstractEventLoop | None = None) -> Cell:
    """Fulfill with every input's value, in input order; reject on the first rejection.

    Usage:
        a, b = Cell(), Cell()
        both = all_of([a, b])
        b.resolve("nei")
        a.resolve("hei")
        await both  # ["hei", "nei"]
    """
    inputs, combined = _combine(cells, loop)
    if not inputs:
        combined.resolve([])
        return combined

    results: list[Any] = [None] * len(inputs)
    remaining = len(inputs)

    def _collect(index: int) -> Reaction:
        def _react(fulfilled: bool, outcome: Any) -> None:
            nonlocal remaining
            if not fulfilled:
                combined.reject(outcome)
                return
            results[index] = outcome
            remaining -= 1
            if remaining == 0:
                combined.resolve(list(results))

        return _react

    for index, cell in enumerate(inputs):
        cell._add_reaction(_collect(index))
    return combined


def race(cells: Iterable[Cell], *, loop: asyncio.AbstractEventLoop | None = None) -> Cell:
    """Settle like whichever input settles first. Stays pending if there are none."""
    inputs, combined = _combine(cells, loop)

    def _react(fulfilled: bool, outcome: Any) -> None:
        if fulfilled:
            combined.resolve(outcome)
        else:
            combined.reject(outcome)

    for cell in inputs:
        cell._add_reaction(_react)
    return combined


def any_of(cells: Iterable[Cell], *, loop: asyncio.AbstractEventLoop | None = None) -> Cell:
    """Fulfill with the first value; reject with AggregateRejection if all inputs reject.

    The aggregate lists reasons in the order the rejections arrived.
    """
    inputs, combined = _combine(cells, loop)
    reasons: list[Any] = []
    if not inputs:
        combined.reject(AggregateRejection(reasons))
        return combined

    def _react(fulfilled: bool, outcome: Any) -> None:
        if fulfilled:
            combined.resolve(outcome)
            return
        reasons.append(outcome)
        if len(reasons) == len(inputs):
            combined.reject(AggregateRejection(reasons))

    for cell in inputs:
        cell._add_reaction(_react)
    return combined
