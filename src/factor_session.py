# factor_session.py
# Headless orchestration of a game session: setup, the move -> chain -> spawn pipeline,
# and challenge mode levels. Runs with zero delay; pacing belongs to the client.

import logging
import random
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

import factor_core as core
from factor_math import is_prime, next_prime, random_prime_value

logger = logging.getLogger(__name__)

CHALLENGE_START_LEVEL = 2

class GameParams(BaseModel):
    """Tunable parameters of a session."""
    board_size: int = Field(default=4, ge=3, le=8, description="Dimension n of the n x n board.")
    initial_tiles: int = Field(default=2, ge=1, le=10, description="Tiles placed when the game starts.")
    spawn_interval: int = Field(default=3, ge=1, le=10, description="Accepted moves between automatic spawns.")
    max_prime: int = Field(default=7, ge=2, le=19, description="Largest prime used for new tiles in free mode.")

@dataclass
class TurnResult:
    """Everything a client needs to present one player action."""
    state: core.GameState
    accepted: bool
    chain: Optional[core.ChainResult] = None
    spawned: Optional[core.Tile] = None
    levels_gained: int = 0
    progress: core.GameProgressState = core.GameProgressState.IN_PROGRESS
    new_tile_ids: List[int] = field(default_factory=list)

def challenge_target(level: int) -> int:
    return level ** 4

def effective_max_prime(state: core.GameState, params: GameParams) -> int:
    """The level is the active max prime in challenge mode; free mode uses the configured one."""
    if state.mode == core.GameMode.CHALLENGE and state.current_level is not None:
        return state.current_level
    return params.max_prime

def check_challenge_state(state: core.GameState) -> None:
    """
    Checks the challenge fields of a state handed in from outside.
    Raises:
        ValueError: If a challenge game has no level, the level is not prime,
                    or the target is not level ** 4.
    """
    if state.current_level is None:
        if state.mode == core.GameMode.CHALLENGE:
            raise ValueError("Challenge mode requires a current level.")
        return
    if not is_prime(state.current_level):
        raise ValueError(f"Challenge level must be prime, got {state.current_level}.")
    expected = challenge_target(state.current_level)
    if state.target_score != expected:
        raise ValueError(f"Target score for level {state.current_level} must be {expected}, got {state.target_score}.")

def create_game(params: GameParams,
                mode: core.GameMode = core.GameMode.FREE,
                rng: Optional[random.Random] = None) -> core.GameState:
    """
    Initializes a new game with params.initial_tiles random tiles.
    Args:
        params (GameParams): Session parameters.
        mode (core.GameMode): Free or challenge mode.
        rng (Optional[random.Random]): Source of randomness.
    Returns:
        core.GameState: A fresh state with score 0 and move_count 0.
    """
    rng = rng or random.Random()
    if mode == core.GameMode.CHALLENGE:
        state = core.create_state(params.board_size, mode=mode,
                                  current_level=CHALLENGE_START_LEVEL,
                                  target_score=challenge_target(CHALLENGE_START_LEVEL))
    else:
        state = core.create_state(params.board_size, mode=mode)

    max_prime = effective_max_prime(state, params)
    for _ in range(params.initial_tiles):
        state, tile = core.spawn_tile(state, max_prime, rng)
        if tile is None:
            break
    logger.debug("New %s game on a %dx%d board with %d tiles",
                 mode.value, params.board_size, params.board_size, len(state.tiles))
    return state

def advance_challenge_level(state: core.GameState) -> Tuple[core.GameState, int]:
    """
    Raises the level to the next prime for every target the score has reached.
    Args:
        state (core.GameState): The state after a chain.
    Returns:
        Tuple[core.GameState, int]: The (possibly) updated state and the number of levels gained.
    """
    if state.mode != core.GameMode.CHALLENGE or state.current_level is None:
        return state, 0

    level = state.current_level
    target = state.target_score if state.target_score is not None else challenge_target(level)
    gained = 0
    while state.score >= target:
        level = next_prime(level)
        target = challenge_target(level)
        gained += 1

    if not gained:
        return state, 0
    logger.info("Challenge level %d -> %d (next target %d)", state.current_level, level, target)
    return replace(state, current_level=level, target_score=target), gained

def play_move(state: core.GameState,
              action: core.MoveAction,
              params: GameParams,
              rng: Optional[random.Random] = None) -> TurnResult:
    """
    Plays one swipe: move, resolve the whole chain, level up, maybe spawn, check game over.
    Args:
        state (core.GameState): The current game state.
        action (core.MoveAction): MoveAll or MoveSingle.
        params (GameParams): Session parameters.
        rng (Optional[random.Random]): Source of randomness for the spawn.
    Returns:
        TurnResult: accepted=False (and the input state) if the move was rejected.
    """
    moved = core.apply_move(state, action)
    if moved.move_count == state.move_count:
        return TurnResult(state=state, accepted=False, progress=core.determine_game_status(state))

    chain = core.resolve_chain(moved)
    current, levels_gained = advance_challenge_level(chain.state)

    spawned = None
    if core.should_spawn(current, params.spawn_interval, chain):
        current, spawned = core.spawn_tile(current, effective_max_prime(current, params), rng)
        if spawned is None:
            logger.debug("No room to spawn after move %d", current.move_count)

    progress = core.determine_game_status(current)
    if progress == core.GameProgressState.GAME_OVER:
        logger.info("Game over after %d moves with score %d", current.move_count, current.score)

    return TurnResult(
        state=current,
        accepted=True,
        chain=chain,
        spawned=spawned,
        levels_gained=levels_gained,
        progress=progress,
        new_tile_ids=[spawned.id] if spawned is not None else [],
    )

def tap_cell(state: core.GameState,
             position: core.Position,
             params: GameParams,
             rng: Optional[random.Random] = None) -> TurnResult:
    """
    Places a random prime tile on a tapped empty cell. Tapping is not a move.
    Returns:
        TurnResult: accepted=False if the cell is occupied or off the board.
    """
    value = random_prime_value(effective_max_prime(state, params), rng)
    current, spawned = core.spawn_tile_at(state, position, value)
    if spawned is None:
        return TurnResult(state=state, accepted=False, progress=core.determine_game_status(state))
    return TurnResult(
        state=current,
        accepted=True,
        spawned=spawned,
        progress=core.determine_game_status(current),
        new_tile_ids=[spawned.id],
    )

def spawn_random(state: core.GameState,
                 params: GameParams,
                 rng: Optional[random.Random] = None) -> TurnResult:
    """
    Places a generated tile on a random empty cell on request. Spawning is not a move.
    Returns:
        TurnResult: accepted=False if the board is full.
    """
    current, spawned = core.spawn_tile(state, effective_max_prime(state, params), rng)
    if spawned is None:
        return TurnResult(state=state, accepted=False, progress=core.determine_game_status(state))
    return TurnResult(
        state=current,
        accepted=True,
        spawned=spawned,
        progress=core.determine_game_status(current),
        new_tile_ids=[spawned.id],
    )
