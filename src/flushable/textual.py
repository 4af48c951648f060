"""Textual integration for flushable. Opt-in — requires textual.

Routes a cell's outcome into widget updates. The pause guard, NoMatches
handling and thread marshaling are enforced here, not at callsites, so the
core package stays free of any Textual coupling.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from flushable.cell import Cell
from flushable.errors import Rejection

# Module-owned pause state — keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend bridged callbacks during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def on_settled(app, cell: Cell, on_fulfilled, on_rejected=None) -> Cell:
    """cell.then() that safely bridges to Textual widgets.

    Skips the callback while the app is paused or not running, letting the
    outcome pass through unchanged. Swallows NoMatches from widget queries,
    and goes through call_from_thread when the reaction fires on another
    thread than the one that called this.
    Without on_rejected, a rejection passes through to the returned cell.
    """
    _main = threading.get_ident()

    def _guard(fn, fulfilled):
        if fn is None:
            return None

        def _guarded(outcome):
            if not is_safe(app):
                if fulfilled:
                    return outcome
                raise outcome if isinstance(outcome, Exception) else Rejection(outcome)
            if threading.get_ident() != _main:
                app.call_from_thread(_safe, outcome)
            else:
                _safe(outcome)

        def _safe(outcome):
            try:
                fn(outcome)
            except NoMatches:
                pass

        return _guarded

    return cell.then(_guard(on_fulfilled, True), _guard(on_rejected, False))
