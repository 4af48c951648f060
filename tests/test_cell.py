"""Tests for Cell settlement, introspection and loop binding."""

import asyncio
import threading

import pytest

from flushable import Cell, CellState, NoEventLoop, Rejection, rejected, resolved, set_default_loop


async def _wait(cell):
    return await cell


class TestSettlement:
    @pytest.mark.asyncio
    async def test_resolve(self):
        c = Cell()
        c.resolve(5)
        assert await c == 5
        assert c.state is CellState.FULFILLED

    @pytest.mark.asyncio
    async def test_reject_with_exception(self):
        c = Cell()
        c.reject(ValueError("bad"))
        with pytest.raises(ValueError, match="bad"):
            await c
        assert c.state is CellState.REJECTED

    @pytest.mark.asyncio
    async def test_resolve_is_idempotent(self):
        c = Cell()
        c.resolve(1)
        c.resolve(2)
        c.reject(ValueError("late"))
        assert await c == 1
        assert c.state is CellState.FULFILLED

    @pytest.mark.asyncio
    async def test_reject_is_idempotent(self):
        c = Cell()
        err = KeyError("first")
        c.reject(err)
        c.reject(KeyError("second"))
        c.resolve(3)
        assert c.reason() is err

    @pytest.mark.asyncio
    async def test_resolve_does_not_unwrap_cells(self):
        inner = Cell()
        outer = Cell()
        outer.resolve(inner)
        assert await outer is inner
        assert not inner.done()

    @pytest.mark.asyncio
    async def test_handles_can_be_passed_around(self):
        c = Cell()
        settle = c.resolve
        asyncio.get_running_loop().call_soon(settle, "later")
        assert await c == "later"


class TestNonExceptionReasons:
    @pytest.mark.asyncio
    async def test_reason_is_unwrapped(self):
        c = Cell()
        c.reject("nope")
        assert c.reason() == "nope"

    @pytest.mark.asyncio
    async def test_await_raises_rejection_wrapper(self):
        c = Cell()
        c.reject({"code": 7})
        with pytest.raises(Rejection) as info:
            await c
        assert info.value.reason == {"code": 7}

    @pytest.mark.asyncio
    async def test_reactions_see_original_reason(self):
        c = Cell()
        caught = c.catch(lambda r: ("caught", r))
        c.reject(42)
        assert await caught == ("caught", 42)


class TestIntrospection:
    @pytest.mark.asyncio
    async def test_pending(self):
        c = Cell()
        assert c.state is CellState.PENDING
        assert not c.done()
        assert c.reason() is None
        with pytest.raises(asyncio.InvalidStateError):
            c.result()

    @pytest.mark.asyncio
    async def test_fulfilled_has_no_reason(self):
        c = resolved(3)
        assert c.result() == 3
        assert c.reason() is None

    @pytest.mark.asyncio
    async def test_producer_and_sources(self):
        fn = lambda: 1  # noqa: E731
        root = Cell(fn)
        child = root.then(lambda x: x)
        assert root.producer is fn
        assert root.sources == ()
        assert child.producer is None
        assert child.sources == (root,)

    @pytest.mark.asyncio
    async def test_future_is_exposed(self):
        c = Cell()
        assert isinstance(c.future, asyncio.Future)
        c.resolve("x")
        assert c.future.result() == "x"

    @pytest.mark.asyncio
    async def test_repr(self):
        assert repr(Cell(lambda: 1)) == "Cell(pending, root)"
        assert repr(resolved(2)) == "Cell(fulfilled=2, 0 sources)"
        assert repr(rejected("no")) == "Cell(rejected='no', 0 sources)"
        assert repr(resolved(1).then(lambda x: x)) == "Cell(pending, 1 sources)"


class TestFactories:
    @pytest.mark.asyncio
    async def test_resolved_wraps_plain_values(self):
        assert await resolved("v") == "v"

    @pytest.mark.asyncio
    async def test_resolved_returns_cells_unchanged(self):
        c = Cell()
        assert resolved(c) is c

    @pytest.mark.asyncio
    async def test_rejected(self):
        c = rejected(ValueError("x"))
        assert c.state is CellState.REJECTED
        with pytest.raises(ValueError):
            await c

    @pytest.mark.asyncio
    async def test_factories_settle_immediately_from_worker_thread(self):
        loop = asyncio.get_running_loop()
        made = []

        def _bg():
            made.append(resolved(5, loop=loop))
            made.append(rejected("no", loop=loop))

        worker = threading.Thread(target=_bg)
        worker.start()
        worker.join()
        ok, failed = made
        assert ok.state is CellState.FULFILLED
        assert ok.result() == 5
        assert failed.state is CellState.REJECTED
        assert failed.reason() == "no"


class TestAwait:
    @pytest.mark.asyncio
    async def test_cancelling_awaiter_leaves_cell_pending(self):
        c = Cell()
        task = asyncio.ensure_future(_wait(c))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert c.state is CellState.PENDING
        c.resolve(1)
        assert await c == 1


class TestLoopBinding:
    def test_no_loop_raises(self):
        with pytest.raises(NoEventLoop):
            Cell()

    def test_no_loop_is_a_runtime_error(self):
        with pytest.raises(RuntimeError):
            Cell()

    def test_explicit_loop(self):
        loop = asyncio.new_event_loop()
        try:
            c = Cell(loop=loop)
            c.resolve(4)
            assert loop.run_until_complete(_wait(c)) == 4
        finally:
            loop.close()

    def test_default_loop(self):
        loop = asyncio.new_event_loop()
        try:
            set_default_loop(loop)
            root = Cell(lambda: 32)
            doubled = root.then(lambda x: x * 2)
            doubled.flush()
            # Loop idle: settlement is synchronous, reactions wait for the loop.
            assert root.result() == 32
            assert not doubled.done()
            assert loop.run_until_complete(_wait(doubled)) == 64
        finally:
            loop.close()

    def test_clearing_default_loop(self):
        loop = asyncio.new_event_loop()
        try:
            set_default_loop(loop)
            set_default_loop(None)
            with pytest.raises(NoEventLoop):
                Cell()
        finally:
            loop.close()

    @pytest.mark.asyncio
    async def test_running_loop_beats_default(self):
        other = asyncio.new_event_loop()
        try:
            set_default_loop(other)
            c = Cell()
            assert c.future.get_loop() is asyncio.get_running_loop()
        finally:
            other.close()


class TestThreadMarshaling:
    @pytest.mark.asyncio
    async def test_resolve_from_worker_thread(self):
        c = Cell()
        seen = c.then(lambda v: (v, threading.get_ident()))
        worker = threading.Thread(target=c.resolve, args=(5,))
        worker.start()
        worker.join()
        # Queued on the loop, not applied from the worker.
        assert not c.done()
        assert await seen == (5, threading.get_ident())

    @pytest.mark.asyncio
    async def test_reject_from_worker_thread(self):
        c = Cell()
        worker = threading.Thread(target=c.reject, args=("boom",))
        worker.start()
        worker.join()
        with pytest.raises(Rejection):
            await c
        assert c.reason() == "boom"

    @pytest.mark.asyncio
    async def test_flush_from_worker_thread(self):
        root = Cell(lambda: "pulled")
        tail = root.then(str.upper)
        worker = threading.Thread(target=tail.flush)
        worker.start()
        worker.join()
        assert await tail == "PULLED"
