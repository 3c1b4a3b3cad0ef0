# factor_core.py
# This file is the stateless core logic for the factor merge game.
# Every public function takes a GameState and returns a new one; inputs are never mutated.

import logging
import random
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from factor_math import MAX_TILE_VALUE, generate_tile_value, is_divisor, is_prime

logger = logging.getLogger(__name__)

Position = Tuple[int, int]

class GameProgressState(Enum):
    """Represents the current progress state of the game."""
    IN_PROGRESS = 1
    GAME_OVER = 2

class DIRECTION(Enum):
    """Represents the possible move directions."""
    UP = 1
    DOWN = 2
    LEFT = 3
    RIGHT = 4

class GameMode(str, Enum):
    """Session variants. Challenge mode raises the usable prime as the score grows."""
    FREE = "free"
    CHALLENGE = "challenge"

_OFFSETS: Dict[DIRECTION, Position] = {
    DIRECTION.UP: (-1, 0),
    DIRECTION.DOWN: (1, 0),
    DIRECTION.LEFT: (0, -1),
    DIRECTION.RIGHT: (0, 1),
}

# Neighbour scan order for reactions: up, down, left, right
_NEIGHBOUR_OFFSETS: Tuple[Position, ...] = ((-1, 0), (1, 0), (0, -1), (0, 1))

# --- Errors ---

class FactorGameError(Exception):
    """Base class for engine errors."""

class OutOfBoundsMove(FactorGameError):
    """A step would leave the grid."""

class CellOccupiedError(FactorGameError):
    """The destination cell already holds a tile."""

class NoEmptyCell(FactorGameError):
    """A spawn was requested on a full board."""

class InvariantViolation(FactorGameError):
    """Board and tile list disagree. Always a programming error."""

# --- Model ---

@dataclass(frozen=True)
class Tile:
    id: int
    value: int
    position: Position

    def __post_init__(self):
        if self.value < 1:
            raise ValueError(f"Tile {self.id} must carry a positive value, got {self.value}.")

Board = List[List[Optional[Tile]]]

@dataclass
class GameState:
    """
    The authoritative game state: the board and the flat tile list are two views of
    the same tiles and are rebuilt together after every change.
    """
    board: Board
    tiles: List[Tile]
    score: int = 0
    move_count: int = 0
    mode: GameMode = GameMode.FREE
    current_level: Optional[int] = None
    target_score: Optional[int] = None
    next_tile_id: int = 1

@dataclass(frozen=True)
class MoveAll:
    direction: DIRECTION

@dataclass(frozen=True)
class MoveSingle:
    tile_id: int
    direction: DIRECTION

MoveAction = Union[MoveAll, MoveSingle]

@dataclass(frozen=True)
class MergeStep:
    """What happened in one chain round."""
    chain_number: int
    multiplier: int
    removed_tile_ids: List[int]
    changed_tiles: Dict[int, int]
    reacting_pairs: List[Tuple[int, int]]
    score: int

@dataclass(frozen=True)
class RoundResult:
    merged: bool
    state: GameState
    step: Optional[MergeStep] = None

@dataclass
class ChainResult:
    """Every round executed for one swipe, in order."""
    state: GameState
    steps: List[MergeStep] = field(default_factory=list)

    @property
    def merged(self) -> bool:
        return bool(self.steps)

    @property
    def chain_count(self) -> int:
        return len(self.steps)

    @property
    def score(self) -> int:
        return sum(step.score for step in self.steps)

    @property
    def removed_tile_ids(self) -> List[int]:
        return [tile_id for step in self.steps for tile_id in step.removed_tile_ids]

    @property
    def changed_tiles(self) -> Dict[int, int]:
        """Last value each tile was given during the chain, including tiles removed in a later round."""
        changed: Dict[int, int] = {}
        for step in self.steps:
            changed.update(step.changed_tiles)
        return changed

# --- Board Helper Functions ---

def create_empty_board(size: int) -> Board:
    """
    Creates an empty size x size board.
    Args:
        size (int): The dimension of the board.
    Returns:
        Board: A grid of None cells.
    Raises:
        ValueError: If size is not a positive integer.
    """
    if not isinstance(size, int) or size <= 0:
        raise ValueError("Board size must be a positive integer.")
    return [[None] * size for _ in range(size)]

def get_board_size(board: Board) -> int:
    """
    Gets the size (N) of an N x N board.
    Args:
        board (Board): The game board.
    Returns:
        int: The dimension of the board.
    Raises:
        ValueError: If the board is not square or empty.
    """
    if not board or not all(len(row) == len(board) for row in board):
        raise ValueError("Board must be a non-empty square matrix.")
    return len(board)

def _in_bounds(position: Position, size: int) -> bool:
    row, col = position
    return 0 <= row < size and 0 <= col < size

def get_empty_cells(board: Board) -> List[Position]:
    """
    Get coordinates of empty cells in the given board.
    Args:
        board (Board): The board to check.
    Returns:
        List[Position]: (row, col) tuples for empty cells, in row-major order.
    """
    n = get_board_size(board)
    return [(row, col) for row in range(n) for col in range(n) if board[row][col] is None]

def place_tile(board: Board, tile: Tile) -> Board:
    """
    Places a tile on a copy of the board at the tile's own position.
    Args:
        board (Board): The current board.
        tile (Tile): The tile to place.
    Returns:
        Board: A new board containing the tile.
    Raises:
        ValueError: If the tile's position is off the board.
        CellOccupiedError: If the target cell already holds a tile.
    """
    n = get_board_size(board)
    if not _in_bounds(tile.position, n):
        raise ValueError(f"Position {tile.position} is outside a {n}x{n} board.")
    row, col = tile.position
    if board[row][col] is not None:
        raise CellOccupiedError(f"Cell {tile.position} already holds tile {board[row][col].id}.")
    new_board = [list(r) for r in board]
    new_board[row][col] = tile
    return new_board

def remove_tile(board: Board, tile_id: int) -> Board:
    """Returns a copy of the board without the given tile (unchanged copy if absent)."""
    return [[None if cell is not None and cell.id == tile_id else cell for cell in row] for row in board]

def build_board(tiles: List[Tile], size: int) -> Board:
    """
    Rebuilds a board from a tile list. This is the canonical way to resync the two views.
    Args:
        tiles (List[Tile]): The tiles to lay out.
        size (int): The board dimension.
    Returns:
        Board: A new board holding every tile at its position.
    Raises:
        InvariantViolation: If two tiles share an id or a cell, or a tile lies off the board.
    """
    board = create_empty_board(size)
    seen_ids = set()
    for tile in tiles:
        if tile.id in seen_ids:
            raise InvariantViolation(f"Tile id {tile.id} appears twice.")
        seen_ids.add(tile.id)
        if not _in_bounds(tile.position, size):
            raise InvariantViolation(f"Tile {tile.id} at {tile.position} is off the board.")
        row, col = tile.position
        if board[row][col] is not None:
            raise InvariantViolation(
                f"Tiles {board[row][col].id} and {tile.id} both claim cell {tile.position}."
            )
        board[row][col] = tile
    return board

def verify_state(state: GameState) -> None:
    """
    Checks that the board and the tile list describe the same tiles.
    Raises:
        InvariantViolation: On any mismatch between the two views.
    """
    try:
        n = get_board_size(state.board)
    except ValueError as e:
        raise InvariantViolation(str(e)) from e

    by_id = {}
    for tile in state.tiles:
        if tile.id in by_id:
            raise InvariantViolation(f"Tile id {tile.id} appears twice.")
        by_id[tile.id] = tile
        if not _in_bounds(tile.position, n):
            raise InvariantViolation(f"Tile {tile.id} at {tile.position} is off the board.")
        row, col = tile.position
        if state.board[row][col] != tile:
            raise InvariantViolation(f"Tile {tile.id} has no matching cell at {tile.position}.")

    occupied = 0
    for row in range(n):
        for col in range(n):
            cell = state.board[row][col]
            if cell is None:
                continue
            occupied += 1
            if by_id.get(cell.id) != cell:
                raise InvariantViolation(f"Cell {(row, col)} holds tile {cell.id} missing from the tile list.")
    if occupied != len(state.tiles):
        raise InvariantViolation("Board and tile list hold a different number of tiles.")

def create_state(size: int, tiles: Optional[List[Tile]] = None, **kwargs) -> GameState:
    """
    Creates a consistent GameState from a tile list.
    Args:
        size (int): The board dimension.
        tiles (Optional[List[Tile]]): Tiles to place, none by default.
        **kwargs: Any other GameState field (score, move_count, mode, ...).
    Returns:
        GameState: The new state. next_tile_id is moved past the largest tile id.
    """
    tiles = list(tiles or [])
    board = build_board(tiles, size)
    highest_id = max((tile.id for tile in tiles), default=0)
    kwargs["next_tile_id"] = max(kwargs.get("next_tile_id", 1), highest_id + 1)
    return GameState(board=board, tiles=tiles, **kwargs)

def find_tile(state: GameState, tile_id: int) -> Optional[Tile]:
    for tile in state.tiles:
        if tile.id == tile_id:
            return tile
    return None

def _with_tiles(state: GameState, tiles: List[Tile], **changes) -> GameState:
    new_state = replace(state, tiles=tiles, board=build_board(tiles, get_board_size(state.board)), **changes)
    verify_state(new_state)
    return new_state

# --- Movement ---

def _step(position: Position, direction: DIRECTION, board: Board) -> Position:
    """
    Computes the cell one step away in the given direction.
    Raises:
        OutOfBoundsMove: If the step leaves the grid.
        CellOccupiedError: If the destination holds a tile.
    """
    d_row, d_col = _OFFSETS[direction]
    destination = (position[0] + d_row, position[1] + d_col)
    if not _in_bounds(destination, len(board)):
        raise OutOfBoundsMove(f"{position} -> {destination}")
    if board[destination[0]][destination[1]] is not None:
        raise CellOccupiedError(f"{position} -> {destination}")
    return destination

def _slide(position: Position, direction: DIRECTION, board: Board) -> Position:
    while True:
        try:
            position = _step(position, direction, board)
        except (OutOfBoundsMove, CellOccupiedError):
            return position

def _leading_edge_order(tiles: List[Tile], direction: DIRECTION) -> List[Tile]:
    # Tiles closest to the target edge move first so nothing overtakes
    if direction == DIRECTION.UP:
        return sorted(tiles, key=lambda t: t.position[0])
    if direction == DIRECTION.DOWN:
        return sorted(tiles, key=lambda t: -t.position[0])
    if direction == DIRECTION.LEFT:
        return sorted(tiles, key=lambda t: t.position[1])
    if direction == DIRECTION.RIGHT:
        return sorted(tiles, key=lambda t: -t.position[1])
    raise ValueError("Invalid direction specified for move_all_tiles.")

def move_all_tiles(state: GameState, direction: DIRECTION) -> GameState:
    """
    Slides every tile as far as it can go in the given direction.
    Args:
        state (GameState): The current game state.
        direction (DIRECTION): The direction to move.
    Returns:
        GameState: A new state; move_count is incremented even if nothing moved.
    Raises:
        ValueError: If an invalid direction is specified.
    """
    n = get_board_size(state.board)
    settled = create_empty_board(n)
    final_positions: Dict[int, Position] = {}

    for tile in _leading_edge_order(state.tiles, direction):
        destination = _slide(tile.position, direction, settled)
        settled[destination[0]][destination[1]] = tile
        final_positions[tile.id] = destination

    # Keep the tile list order stable; only positions change
    moved_tiles = [replace(tile, position=final_positions[tile.id]) for tile in state.tiles]
    return _with_tiles(state, moved_tiles, move_count=state.move_count + 1)

def move_single_tile(state: GameState, tile_id: int, direction: DIRECTION) -> GameState:
    """
    Moves one tile by exactly one cell.
    Args:
        state (GameState): The current game state.
        tile_id (int): The tile to move.
        direction (DIRECTION): The direction to move.
    Returns:
        GameState: A new state with the tile moved and move_count incremented, or the
                   input state itself when the step is blocked, leaves the board, or
                   the tile does not exist.
    """
    tile = find_tile(state, tile_id)
    if tile is None:
        return state
    try:
        destination = _step(tile.position, direction, state.board)
    except (OutOfBoundsMove, CellOccupiedError) as e:
        logger.debug("Single-tile move of %s rejected: %s", tile_id, e)
        return state

    moved_tiles = [replace(t, position=destination) if t.id == tile_id else t for t in state.tiles]
    return _with_tiles(state, moved_tiles, move_count=state.move_count + 1)

def apply_move(state: GameState, action: MoveAction) -> GameState:
    """
    Resolves a move action against the state.
    Raises:
        ValueError: If the action is not a MoveAll or MoveSingle.
    """
    if isinstance(action, MoveAll):
        return move_all_tiles(state, action.direction)
    if isinstance(action, MoveSingle):
        return move_single_tile(state, action.tile_id, action.direction)
    raise ValueError(f"Unsupported move action: {action!r}")

# --- Chain Reactions ---

def chain_multiplier(chain_number: int) -> int:
    """Score multiplier of the given 1-indexed chain round: 1, 2, 4, 8, ..."""
    if chain_number < 1:
        raise ValueError("Chain rounds are numbered from 1.")
    return 2 ** (chain_number - 1)

def _adjacent_tiles(tile: Tile, board: Board) -> List[Tile]:
    n = len(board)
    row, col = tile.position
    adjacent = []
    for d_row, d_col in _NEIGHBOUR_OFFSETS:
        neighbour_pos = (row + d_row, col + d_col)
        if _in_bounds(neighbour_pos, n):
            neighbour = board[neighbour_pos[0]][neighbour_pos[1]]
            if neighbour is not None:
                adjacent.append(neighbour)
    return adjacent

def process_merge_round(state: GameState, chain_number: int) -> RoundResult:
    """
    Resolves one round of reactions between adjacent tiles.

    Tiles are scanned from the smallest value up (stable for equal values). Each tile
    reacts with the first neighbour (up, down, left, right) that has the same value or
    stands in a divisor relation with it. A tile that has already been marked for
    removal or for a new value this round is skipped, both as the scanning tile and as
    a partner, so no tile reacts twice in one round.

    - Equal values: both tiles vanish, scoring (a + b) * multiplier.
    - Divisor: the smaller tile vanishes and the larger one is divided by it, scoring
      (smaller + larger) * multiplier. A quotient of 1 removes the larger tile too.

    Args:
        state (GameState): The state to scan. It is not modified.
        chain_number (int): 1-indexed round number; the multiplier is 2 ** (chain_number - 1).
    Returns:
        RoundResult: merged=False with the input state if nothing reacted, otherwise
                     the new state (score included) and the round's MergeStep.
    """
    multiplier = chain_multiplier(chain_number)
    removed: List[int] = []
    changed: Dict[int, int] = {}
    pairs: List[Tuple[int, int]] = []
    round_score = 0

    def is_marked(t: Tile) -> bool:
        return t.id in changed or t.id in removed

    for tile in sorted(state.tiles, key=lambda t: t.value):
        if is_marked(tile):
            continue

        for neighbour in _adjacent_tiles(tile, state.board):
            if is_marked(neighbour):
                continue

            if tile.value == neighbour.value:
                removed.extend([tile.id, neighbour.id])
                round_score += (tile.value + neighbour.value) * multiplier
                pairs.append((tile.id, neighbour.id))
                break

            smaller, larger = (tile, neighbour) if tile.value < neighbour.value else (neighbour, tile)
            if is_divisor(smaller.value, larger.value):
                quotient = larger.value // smaller.value
                removed.append(smaller.id)
                if quotient == 1:
                    removed.append(larger.id)
                else:
                    changed[larger.id] = quotient
                round_score += (smaller.value + larger.value) * multiplier
                pairs.append((tile.id, neighbour.id))
                break

    if not pairs:
        return RoundResult(merged=False, state=state)

    removed_set = set(removed)
    surviving = [
        replace(t, value=changed[t.id]) if t.id in changed else t
        for t in state.tiles
        if t.id not in removed_set
    ]
    new_state = _with_tiles(state, surviving, score=state.score + round_score)
    step = MergeStep(
        chain_number=chain_number,
        multiplier=multiplier,
        removed_tile_ids=removed,
        changed_tiles=changed,
        reacting_pairs=pairs,
        score=round_score,
    )
    logger.debug("Chain %d (x%d): %d pairs, +%d", chain_number, multiplier, len(pairs), round_score)
    return RoundResult(merged=True, state=new_state, step=step)

def resolve_chain(state: GameState) -> ChainResult:
    """
    Runs reaction rounds until one of them produces no reaction.
    Args:
        state (GameState): The state right after a move.
    Returns:
        ChainResult: The final state and every executed round; round k was scored with
                     multiplier 2 ** (k - 1).
    """
    result = ChainResult(state=state)
    chain_number = 1
    while True:
        round_result = process_merge_round(result.state, chain_number)
        if not round_result.merged:
            break
        result.state = round_result.state
        result.steps.append(round_result.step)
        chain_number += 1
    return result

# --- Spawning ---

def spawn_tile_at(state: GameState, position: Position, value: int) -> Tuple[GameState, Optional[Tile]]:
    """
    Adds a tile with the given value at a specific cell.
    Args:
        state (GameState): The current game state.
        position (Position): Target (row, col).
        value (int): The value of the new tile.
    Returns:
        Tuple[GameState, Optional[Tile]]: The new state and the tile, or the input state
                                          and None if the cell is occupied or off the board.
    """
    tile = Tile(id=state.next_tile_id, value=value, position=position)
    try:
        place_tile(state.board, tile)
    except (ValueError, CellOccupiedError) as e:
        logger.debug("Cannot place tile at %s: %s", position, e)
        return state, None
    new_state = _with_tiles(state, state.tiles + [tile], next_tile_id=state.next_tile_id + 1)
    return new_state, tile

def _choose_empty_cell(board: Board, rng: random.Random) -> Position:
    empty_cells = get_empty_cells(board)
    if not empty_cells:
        raise NoEmptyCell("The board is full.")
    return rng.choice(empty_cells)

def spawn_tile(state: GameState,
               max_prime: int,
               rng: Optional[random.Random] = None,
               max_tile_value: int = MAX_TILE_VALUE) -> Tuple[GameState, Optional[Tile]]:
    """
    Adds a tile with a generated value to a random empty cell.
    Args:
        state (GameState): The current game state.
        max_prime (int): Largest prime factor the new value may contain.
        rng (Optional[random.Random]): Source of randomness.
        max_tile_value (int): Ceiling for the generated value.
    Returns:
        Tuple[GameState, Optional[Tile]]: The new state and the new tile.
                                          If the board is full, the input state and None.
    """
    rng = rng or random.Random()
    try:
        position = _choose_empty_cell(state.board, rng)
    except NoEmptyCell:
        return state, None
    value = generate_tile_value(max_prime, max_tile_value, rng)
    return spawn_tile_at(state, position, value)

def should_spawn(state: GameState, spawn_interval: int, chain: Optional[ChainResult] = None) -> bool:
    """
    Decides whether a tile should appear after a move.
    A tile spawns every spawn_interval accepted moves, after any chain that removed
    tiles, and whenever only prime tiles are left on the board.
    """
    if spawn_interval > 0 and state.move_count % spawn_interval == 0:
        return True
    if chain is not None and chain.removed_tile_ids:
        return True
    return all(is_prime(tile.value) for tile in state.tiles)

# --- Game State Checks ---

def _reacts(a: Tile, b: Tile) -> bool:
    if a.value == b.value:
        return True
    smaller, larger = sorted((a.value, b.value))
    return is_divisor(smaller, larger)

def has_possible_reaction(board: Board) -> bool:
    """
    Checks whether any two orthogonally adjacent tiles would react.
    Args:
        board (Board): The game board.
    Returns:
        bool: True if an equal or divisor pair is adjacent somewhere.
    """
    n = get_board_size(board)
    for row in range(n):
        for col in range(n):
            tile = board[row][col]
            if tile is None:
                continue
            for neighbour in _adjacent_tiles(tile, board):
                if _reacts(tile, neighbour):
                    return True
    return False

def check_game_over(state: GameState) -> bool:
    """
    The game is over once the board is full and no adjacent pair can react.
    Any empty cell means the game goes on.
    """
    if get_empty_cells(state.board):
        return False
    return not has_possible_reaction(state.board)

def determine_game_status(state: GameState) -> GameProgressState:
    """
    Determines the current progress state of the game.
    Args:
        state (GameState): The current game state.
    Returns:
        GameProgressState: IN_PROGRESS or GAME_OVER.
    """
    if check_game_over(state):
        return GameProgressState.GAME_OVER
    return GameProgressState.IN_PROGRESS
