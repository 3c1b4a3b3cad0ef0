from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

import factor_core as core
from factor_api import app


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


def _tile(tile_id: int, value: int, row: int, col: int) -> dict:
    return {"id": tile_id, "value": value, "row": row, "col": col}


def test_new_game_defaults(client: TestClient) -> None:
    resp = client.post("/game/new", json={})
    assert resp.status_code == 200
    data = resp.json()

    assert data["board_size"] == 4
    assert len(data["board"]) == 4
    assert len(data["tiles"]) == 2
    assert data["score"] == 0
    assert data["move_count"] == 0
    assert data["mode"] == "free"
    assert data["progress"] == core.GameProgressState.IN_PROGRESS.value
    assert data["next_tile_id"] == 3
    for t in data["tiles"]:
        assert data["board"][t["row"]][t["col"]] == t["value"]


def test_new_game_is_reproducible_with_seed(client: TestClient) -> None:
    body = {"board_size": 5, "initial_tiles": 6, "seed": 99}
    first = client.post("/game/new", json=body).json()
    second = client.post("/game/new", json=body).json()
    assert first["tiles"] == second["tiles"]


def test_new_challenge_game(client: TestClient) -> None:
    data = client.post("/game/new", json={"mode": "challenge", "seed": 1}).json()
    assert data["current_level"] == 2
    assert data["target_score"] == 16


def test_new_game_rejects_bad_settings(client: TestClient) -> None:
    resp = client.post("/game/new", json={"board_size": 12})
    assert resp.status_code == 422


def test_move_resolves_chain(client: TestClient) -> None:
    body = {
        "tiles": [_tile(1, 6, 0, 0), _tile(2, 2, 0, 1)],
        "next_tile_id": 3,
        "params": {"board_size": 3, "spawn_interval": 3},
        "direction": core.DIRECTION.LEFT.value,
        "seed": 5,
    }
    resp = client.post("/game/move", json=body)
    assert resp.status_code == 200
    data = resp.json()

    assert data["move_was_effective"] is True
    assert data["move_count"] == 1
    assert data["score"] == 8
    assert data["chain_score"] == 8
    assert len(data["chain"]) == 1
    step = data["chain"][0]
    assert step["removed_tile_ids"] == [2]
    assert step["changed_tiles"] == {"1": 3}
    assert step["reacting_pairs"] == [[2, 1]]
    assert data["spawned_tile"]["id"] == 3
    assert {t["id"] for t in data["tiles"]} == {1, 3}


def test_blocked_single_tile_move(client: TestClient) -> None:
    body = {
        "tiles": [_tile(1, 6, 0, 0)],
        "move_count": 4,
        "params": {"board_size": 3},
        "direction": core.DIRECTION.UP.value,
        "tile_id": 1,
    }
    data = client.post("/game/move", json=body).json()
    assert data["move_was_effective"] is False
    assert data["move_count"] == 4
    assert data["chain"] == []
    assert data["message"]


def test_move_rejects_overlapping_tiles(client: TestClient) -> None:
    body = {
        "tiles": [_tile(1, 6, 0, 0), _tile(2, 5, 0, 0)],
        "params": {"board_size": 3},
        "direction": core.DIRECTION.UP.value,
    }
    resp = client.post("/game/move", json=body)
    assert resp.status_code == 400


def test_move_rejects_tile_off_board(client: TestClient) -> None:
    body = {
        "tiles": [_tile(1, 6, 3, 0)],
        "params": {"board_size": 3},
        "direction": core.DIRECTION.UP.value,
    }
    assert client.post("/game/move", json=body).status_code == 400


def test_move_reports_game_over(client: TestClient) -> None:
    tiles = [
        _tile(1, 2, 0, 0), _tile(2, 3, 0, 1), _tile(3, 5, 0, 2),
        _tile(4, 7, 1, 0), _tile(5, 11, 1, 1), _tile(6, 13, 1, 2),
        _tile(7, 17, 2, 0), _tile(8, 19, 2, 1), _tile(9, 23, 2, 2),
    ]
    body = {"tiles": tiles, "params": {"board_size": 3}, "direction": core.DIRECTION.DOWN.value}
    data = client.post("/game/move", json=body).json()
    assert data["progress"] == core.GameProgressState.GAME_OVER.value
    assert data["spawned_tile"] is None
    assert data["message"].startswith("Game Over")


def test_tap_places_prime_tile(client: TestClient) -> None:
    body = {"tiles": [_tile(1, 6, 0, 0)], "params": {"board_size": 3, "max_prime": 3}, "row": 2, "col": 2, "seed": 0}
    data = client.post("/game/tap", json=body).json()
    assert data["tap_was_effective"] is True
    assert data["spawned_tile"]["value"] in (2, 3)
    assert data["board"][2][2] == data["spawned_tile"]["value"]
    assert data["move_count"] == 0


def test_tap_on_occupied_cell(client: TestClient) -> None:
    body = {"tiles": [_tile(1, 6, 0, 0)], "params": {"board_size": 3}, "row": 0, "col": 0}
    data = client.post("/game/tap", json=body).json()
    assert data["tap_was_effective"] is False
    assert data["spawned_tile"] is None


@pytest.mark.parametrize(
    "challenge",
    [
        {"mode": "challenge", "current_level": 4, "target_score": 7},
        {"mode": "challenge", "current_level": 4, "target_score": 256},
        {"mode": "challenge", "current_level": 3, "target_score": 7},
        {"mode": "challenge"},
    ],
)
def test_move_rejects_inconsistent_challenge_state(client: TestClient, challenge: dict) -> None:
    body = {
        "tiles": [_tile(1, 8, 0, 0), _tile(2, 8, 0, 1)],
        "params": {"board_size": 3},
        "direction": core.DIRECTION.UP.value,
        **challenge,
    }
    resp = client.post("/game/move", json=body)
    assert resp.status_code == 400


def test_move_accepts_consistent_challenge_state(client: TestClient) -> None:
    body = {
        "tiles": [_tile(1, 8, 0, 0), _tile(2, 8, 0, 1)],
        "params": {"board_size": 3},
        "direction": core.DIRECTION.UP.value,
        "mode": "challenge",
        "current_level": 2,
        "target_score": 16,
        "seed": 3,
    }
    data = client.post("/game/move", json=body).json()
    assert data["score"] == 16
    assert data["current_level"] == 3
    assert data["target_score"] == 81
    assert data["levels_gained"] == 1


def test_spawn_places_generated_tile(client: TestClient) -> None:
    body = {"tiles": [_tile(1, 6, 0, 0)], "next_tile_id": 2, "params": {"board_size": 3}, "seed": 4}
    data = client.post("/game/spawn", json=body).json()

    assert data["spawn_was_effective"] is True
    spawned = data["spawned_tile"]
    assert spawned["id"] == 2
    assert data["board"][spawned["row"]][spawned["col"]] == spawned["value"]
    assert data["next_tile_id"] == 3
    assert data["move_count"] == 0


def test_spawn_on_full_board(client: TestClient) -> None:
    tiles = [
        _tile(1, 2, 0, 0), _tile(2, 3, 0, 1), _tile(3, 5, 0, 2),
        _tile(4, 7, 1, 0), _tile(5, 11, 1, 1), _tile(6, 13, 1, 2),
        _tile(7, 17, 2, 0), _tile(8, 19, 2, 1), _tile(9, 23, 2, 2),
    ]
    data = client.post("/game/spawn", json={"tiles": tiles, "params": {"board_size": 3}}).json()
    assert data["spawn_was_effective"] is False
    assert data["spawned_tile"] is None
    assert data["progress"] == core.GameProgressState.GAME_OVER.value
