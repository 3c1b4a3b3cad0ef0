from __future__ import annotations

import pytest

import factor_cli
from factor_core import DIRECTION, MoveAll, MoveSingle
from factor_session import GameParams


def test_parse_command() -> None:
    assert factor_cli.parse_command("w") == MoveAll(DIRECTION.UP)
    assert factor_cli.parse_command("M 3 d") == MoveSingle(3, DIRECTION.RIGHT)
    assert factor_cli.parse_command("t 1 2") == (1, 2)
    assert factor_cli.parse_command("q") == "QUIT"
    assert factor_cli.parse_command("n") == "SPAWN"
    assert factor_cli.parse_command("") is None
    assert factor_cli.parse_command("M x d") is None
    assert factor_cli.parse_command("X") is None


def test_main_plays_until_quit(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    commands = iter(["nonsense", "a", "t 0 0", "q"])
    monkeypatch.setattr("builtins.input", lambda _prompt: next(commands))

    factor_cli.main(GameParams(board_size=3, initial_tiles=1))
    out = capsys.readouterr().out

    assert "Invalid input." in out
    assert "Moves: 1" in out
    assert "Quitting game." in out
    assert "Final Board State" in out


def test_main_spawns_on_request(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    commands = iter(["n", "q"])
    monkeypatch.setattr("builtins.input", lambda _prompt: next(commands))

    factor_cli.main(GameParams(board_size=3, initial_tiles=1))
    out = capsys.readouterr().out

    assert "New tile" in out
    assert "Moves: 0" in out
    assert "Quitting game." in out
