# factor_cli.py
# This file is intended to be run to play or test the factor merge game on the CLI

import logging
from typing import Optional, Union

from factor_core import (
    DIRECTION,
    GameMode,
    GameProgressState,
    GameState,
    MoveAction,
    MoveAll,
    MoveSingle,
    Position,
)
from factor_session import GameParams, TurnResult, create_game, play_move, spawn_random, tap_cell

DIRECTION_KEYS = {'W': DIRECTION.UP, 'A': DIRECTION.LEFT, 'S': DIRECTION.DOWN, 'D': DIRECTION.RIGHT}

def parse_command(text: str) -> Optional[Union[MoveAction, Position, str]]:
    """
    Turns one line of input into an action.
    Accepted forms: "W" (move all tiles), "M <id> W" (move one tile), "T <row> <col>" (tap),
    "N" (new tile on a random empty cell).
    Returns:
        A MoveAll, a MoveSingle, a (row, col) tap tuple, "QUIT", "SPAWN", or None if the input is invalid.
    """
    parts = text.strip().upper().split()
    if not parts:
        return None
    if parts == ['N']:
        return "SPAWN"
    if parts == ['Q']:
        return "QUIT"
    if len(parts) == 1 and parts[0] in DIRECTION_KEYS:
        return MoveAll(DIRECTION_KEYS[parts[0]])
    try:
        if parts[0] == 'M' and len(parts) == 3 and parts[2] in DIRECTION_KEYS:
            return MoveSingle(int(parts[1]), DIRECTION_KEYS[parts[2]])
        if parts[0] == 'T' and len(parts) == 3:
            return (int(parts[1]), int(parts[2]))
    except ValueError:
        return None
    return None

def main(params: Optional[GameParams] = None, mode: GameMode = GameMode.FREE):
    params = params or GameParams()

    # 1. Initialize game
    state = create_game(params, mode)
    progress = GameProgressState.IN_PROGRESS
    display_board_state(state, progress)

    # 2. Game Loop
    while progress == GameProgressState.IN_PROGRESS:
        command = parse_command(input("Move (W/A/S/D), one tile (M <id> W), tap (T <row> <col>), new tile (N), Q to quit: "))

        if command == "QUIT":
            print("Quitting game.")
            break
        if command is None:
            print("Invalid input.")
            continue

        # 3. Process the action
        if command == "SPAWN":
            turn = spawn_random(state, params)
            if not turn.accepted:
                print("The board is full.")
        elif isinstance(command, tuple):
            turn = tap_cell(state, command, params)
            if not turn.accepted:
                print("That cell is not empty.")
        else:
            action: MoveAction = command
            turn = play_move(state, action, params)
            if not turn.accepted:
                print("That tile cannot move there. Try a different direction.")

        state = turn.state
        progress = turn.progress
        display_turn(turn)
        display_board_state(state, progress)

    # 4. Game Ended
    print("\n--- Final Board State ---")
    display_board_state(state, progress)
    if progress == GameProgressState.GAME_OVER:
        print("No more reactions possible. Better luck next time!")


# --- Display Functions ---
def display_turn(turn: TurnResult):
    """Prints the chain breakdown of a turn."""
    if turn.chain is not None:
        for step in turn.chain.steps:
            print(f"Chain {step.chain_number} (x{step.multiplier}): +{step.score}")
    if turn.levels_gained:
        print(f"Level up! Primes up to {turn.state.current_level} are now in play.")
    if turn.spawned is not None:
        print(f"New tile {turn.spawned.value} at {turn.spawned.position}")

def display_board_state(state: GameState, progress: GameProgressState):
    """Prints the board, score, and game status to the console."""
    print(f"\nScore: {state.score}  Moves: {state.move_count}")
    if state.mode == GameMode.CHALLENGE:
        print(f"Level: {state.current_level}  Target: {state.target_score}")
    print("GAME OVER!" if progress == GameProgressState.GAME_OVER else f"Status: {progress.name}")

    for row in state.board:
        print("\t".join(f"{cell.value}#{cell.id}" if cell is not None else "." for cell in row))
    print("-" * (len(state.board) * 6))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
