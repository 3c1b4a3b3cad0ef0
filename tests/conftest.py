from __future__ import annotations

from typing import Iterable

import pytest

from factor_core import GameState, Tile, create_state


def make_state(size: int, tiles: Iterable[tuple[int, int, int, int]], **kwargs) -> GameState:
    """Build a state from (id, value, row, col) tuples."""
    return create_state(
        size,
        tiles=[Tile(id=tile_id, value=value, position=(row, col)) for tile_id, value, row, col in tiles],
        **kwargs,
    )


@pytest.fixture()
def state_factory():
    return make_state
