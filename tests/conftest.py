"""Shared fixtures for flushable tests."""

import pytest

import flushable.cell as _cell_mod


@pytest.fixture(autouse=True)
def _reset_default_loop():
    """Each test starts without a default loop."""
    _cell_mod._default_loop = None
    yield
    _cell_mod._default_loop = None
