import logging
import random
from typing import Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

import factor_core as core
import factor_session as session

logger = logging.getLogger(__name__)

# Initialize the rate limiter
limiter = Limiter(key_func=get_remote_address)
app = FastAPI(
    title="Factor Merge Game API",
    description="A stateless API for playing the factor merge game. "\
                "Manage your game state (tiles, score, counters, params) on the client side.",
    version="1.0.0"
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Pydantic Models for API requests and responses ---

class TileData(BaseModel):
    """A single tile as seen by the client."""
    id: int = Field(..., gt=0, description="Unique tile id within the session.")
    value: int = Field(..., ge=1, description="Positive integer carried by the tile.")
    row: int = Field(..., ge=0)
    col: int = Field(..., ge=0)

class NewGameSettings(session.GameParams):
    """Settings for creating a new game."""
    mode: core.GameMode = Field(default=core.GameMode.FREE, description="free or challenge.")
    seed: Optional[int] = Field(default=None, description="Seed for reproducible tile spawns.")

class ClientStateData(BaseModel):
    """The part of the game state the client keeps between requests."""
    tiles: List[TileData] = Field(default_factory=list, description="Authoritative list of tiles.")
    score: int = Field(default=0, ge=0)
    move_count: int = Field(default=0, ge=0)
    mode: core.GameMode = Field(default=core.GameMode.FREE)
    current_level: Optional[int] = Field(default=None, ge=2, description="Active max prime (challenge only).")
    target_score: Optional[int] = Field(default=None, ge=0, description="Score needed for the next level.")
    next_tile_id: int = Field(default=1, gt=0, description="Id the next spawned tile will get.")
    params: session.GameParams = Field(default_factory=session.GameParams)

class GameStateData(ClientStateData):
    """Represents the complete state of a game instance."""
    board: List[List[int]] = Field(..., description="N x N grid of tile values, 0 for an empty cell.")
    board_size: int = Field(..., gt=0, description="The dimension N of the N x N board.")
    progress: core.GameProgressState = Field(
        ...,
        description="Current progress state of the game (IN_PROGRESS, GAME_OVER)."
    )

class MergeStepData(BaseModel):
    """One round of a chain reaction."""
    chain_number: int
    multiplier: int
    removed_tile_ids: List[int]
    changed_tiles: Dict[int, int] = Field(..., description="Tile id -> new value.")
    reacting_pairs: List[Tuple[int, int]]
    score: int

class MoveRequestData(ClientStateData):
    """Data required to make a move."""
    direction: core.DIRECTION = Field(
        ...,
        description="Direction of the move (UP, DOWN, LEFT, RIGHT)."
    )
    tile_id: Optional[int] = Field(
        default=None,
        description="Move only this tile by one cell. Omit to slide every tile."
    )
    seed: Optional[int] = None

class MoveResponseData(GameStateData):
    """Response after a move, including the new game state and the chain that followed."""
    move_was_effective: bool = Field(
        ...,
        description="True if the move was accepted, False if it was blocked."
    )
    chain: List[MergeStepData] = Field(default_factory=list)
    chain_score: int = 0
    spawned_tile: Optional[TileData] = None
    levels_gained: int = 0
    message: Optional[str] = Field(
        default=None,
        description="An optional message, e.g., if a move was blocked or the game ended."
    )

class TapRequestData(ClientStateData):
    """Data required to tap a cell."""
    row: int = Field(..., ge=0)
    col: int = Field(..., ge=0)
    seed: Optional[int] = None

class TapResponseData(GameStateData):
    tap_was_effective: bool
    spawned_tile: Optional[TileData] = None
    message: Optional[str] = None

class SpawnRequestData(ClientStateData):
    """Data required to spawn a tile on a random empty cell."""
    seed: Optional[int] = None

class SpawnResponseData(GameStateData):
    spawn_was_effective: bool
    spawned_tile: Optional[TileData] = None
    message: Optional[str] = None

# --- Conversions ---

def _tile_data(tile: core.Tile) -> TileData:
    return TileData(id=tile.id, value=tile.value, row=tile.position[0], col=tile.position[1])

def _to_engine_state(data: ClientStateData) -> core.GameState:
    """
    Rebuilds an engine state from client data.
    Raises InvariantViolation on a bad layout and ValueError on inconsistent challenge fields.
    """
    tiles = [core.Tile(id=t.id, value=t.value, position=(t.row, t.col)) for t in data.tiles]
    state = core.create_state(
        data.params.board_size,
        tiles=tiles,
        score=data.score,
        move_count=data.move_count,
        mode=data.mode,
        current_level=data.current_level,
        target_score=data.target_score,
        next_tile_id=data.next_tile_id,
    )
    session.check_challenge_state(state)
    return state

def _state_fields(state: core.GameState, params: session.GameParams) -> dict:
    board = [[cell.value if cell is not None else 0 for cell in row] for row in state.board]
    return dict(
        tiles=[_tile_data(t) for t in state.tiles],
        score=state.score,
        move_count=state.move_count,
        mode=state.mode,
        current_level=state.current_level,
        target_score=state.target_score,
        next_tile_id=state.next_tile_id,
        params=params,
        board=board,
        board_size=core.get_board_size(state.board),
        progress=core.determine_game_status(state),
    )

def _step_data(step: core.MergeStep) -> MergeStepData:
    return MergeStepData(
        chain_number=step.chain_number,
        multiplier=step.multiplier,
        removed_tile_ids=step.removed_tile_ids,
        changed_tiles=step.changed_tiles,
        reacting_pairs=step.reacting_pairs,
        score=step.score,
    )

# --- API Endpoints ---

@app.post("/game/new", response_model=GameStateData, summary="Start a New Game")
@limiter.limit("100/minute")
async def start_new_game(request: Request, settings: NewGameSettings):
    """
    Initializes a new game based on the provided settings.

    - **board_size**: Dimension of the N x N board (3-8). Default is 4.
    - **initial_tiles**: Number of tiles on the starting board. Default is 2.
    - **spawn_interval**: Accepted moves between automatic spawns. Default is 3.
    - **max_prime**: Largest prime factor of new tiles in free mode. Default is 7.
    - **mode**: `free` or `challenge` (starts at level 2, target 2^4).

    Returns the initial game state.
    """
    try:
        params = session.GameParams(
            board_size=settings.board_size,
            initial_tiles=settings.initial_tiles,
            spawn_interval=settings.spawn_interval,
            max_prime=settings.max_prime,
        )
        state = session.create_game(params, settings.mode, random.Random(settings.seed))
        return GameStateData(**_state_fields(state, params))
    except (ValueError, core.FactorGameError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error in /game/new: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"An unexpected error occurred during game creation: {str(e)}")


@app.post("/game/move", response_model=MoveResponseData, summary="Make a Move in the Game")
@limiter.limit("100/minute")
async def make_move(request: Request, request_data: MoveRequestData):
    """
    Processes a player's move in the game.

    Requires the current client state plus the `direction` of the move and, for a
    single-tile move, the `tile_id`.

    The API will:
    1. Slide every tile as far as possible, or move the chosen tile by one cell.
    2. Resolve chain reactions round by round (round k scores with multiplier 2^(k-1)).
    3. Spawn a tile every `spawn_interval` moves, after any removal, or when only primes remain.
    4. Determine the new game status (IN_PROGRESS, GAME_OVER).
    """
    try:
        state = _to_engine_state(request_data)
    except (ValueError, core.FactorGameError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid game state in request: {str(e)}")

    if request_data.tile_id is not None:
        action = core.MoveSingle(tile_id=request_data.tile_id, direction=request_data.direction)
    else:
        action = core.MoveAll(direction=request_data.direction)

    try:
        turn = session.play_move(state, action, request_data.params, random.Random(request_data.seed))

        message_for_client: Optional[str] = None
        if not turn.accepted:
            message_for_client = "Move was not effective; the tile is blocked."
        elif turn.levels_gained:
            message_for_client = f"Level up! Now using primes up to {turn.state.current_level}."
        if turn.progress == core.GameProgressState.GAME_OVER:
            message_for_client = "Game Over. No more reactions possible."

        chain = turn.chain.steps if turn.chain is not None else []
        return MoveResponseData(
            **_state_fields(turn.state, request_data.params),
            move_was_effective=turn.accepted,
            chain=[_step_data(step) for step in chain],
            chain_score=sum(step.score for step in chain),
            spawned_tile=_tile_data(turn.spawned) if turn.spawned is not None else None,
            levels_gained=turn.levels_gained,
            message=message_for_client,
        )
    except (ValueError, core.FactorGameError) as e:
        raise HTTPException(status_code=400, detail=f"Error processing move: {str(e)}")
    except Exception as e:
        logger.error(f"Unexpected error in /game/move: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"An unexpected server error occurred while processing the move: {str(e)}")


@app.post("/game/tap", response_model=TapResponseData, summary="Tap a Cell to Add a Prime Tile")
@limiter.limit("100/minute")
async def tap(request: Request, request_data: TapRequestData):
    """
    Places a random prime tile on an empty cell. Tapping does not count as a move.
    """
    try:
        state = _to_engine_state(request_data)
    except (ValueError, core.FactorGameError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid game state in request: {str(e)}")

    try:
        turn = session.tap_cell(
            state, (request_data.row, request_data.col), request_data.params, random.Random(request_data.seed)
        )
        return TapResponseData(
            **_state_fields(turn.state, request_data.params),
            tap_was_effective=turn.accepted,
            spawned_tile=_tile_data(turn.spawned) if turn.spawned is not None else None,
            message=None if turn.accepted else "Cell is not empty.",
        )
    except (ValueError, core.FactorGameError) as e:
        raise HTTPException(status_code=400, detail=f"Error processing tap: {str(e)}")
    except Exception as e:
        logger.error(f"Unexpected error in /game/tap: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"An unexpected server error occurred while processing the tap: {str(e)}")


@app.post("/game/spawn", response_model=SpawnResponseData, summary="Spawn a Tile on a Random Empty Cell")
@limiter.limit("100/minute")
async def spawn(request: Request, request_data: SpawnRequestData):
    """
    Places a generated tile on a random empty cell. Spawning does not count as a move.
    """
    try:
        state = _to_engine_state(request_data)
    except (ValueError, core.FactorGameError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid game state in request: {str(e)}")

    try:
        turn = session.spawn_random(state, request_data.params, random.Random(request_data.seed))

        message_for_client: Optional[str] = None
        if not turn.accepted:
            message_for_client = "The board is full."
        if turn.progress == core.GameProgressState.GAME_OVER:
            message_for_client = "Game Over. No more reactions possible."

        return SpawnResponseData(
            **_state_fields(turn.state, request_data.params),
            spawn_was_effective=turn.accepted,
            spawned_tile=_tile_data(turn.spawned) if turn.spawned is not None else None,
            message=message_for_client,
        )
    except (ValueError, core.FactorGameError) as e:
        raise HTTPException(status_code=400, detail=f"Error processing spawn: {str(e)}")
    except Exception as e:
        logger.error(f"Unexpected error in /game/spawn: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"An unexpected server error occurred while spawning a tile: {str(e)}")
