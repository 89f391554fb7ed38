"""Hot-seat command-line driver: two people, one terminal, masked views only."""

from __future__ import annotations

import argparse
import random
from typing import Callable

from opentelemetry.instrumentation.logging import LoggingInstrumentor

from broadside.engine.board import Board, CellStatus, random_layout
from broadside.engine.errors import GameError
from broadside.engine.game import GamePhase, PlayerRole
from broadside.engine.ship import Coordinate, Orientation, ShipType
from broadside.server.broker import NotificationBroker
from broadside.server.service import GameService
from broadside.server.store import InMemoryGameStore
from broadside.settings import load_settings
from broadside.telemetry import init_telemetry

ROW_LABELS = "ABCDEFGHIJ"

_SYMBOLS = {
    CellStatus.EMPTY: ".",
    CellStatus.SHIP: "S",
    CellStatus.HIT: "X",
    CellStatus.MISS: "o",
    CellStatus.SUNK: "#",
}

InputFn = Callable[[str], str]
OutputFn = Callable[[str], None]


def _coordinate_from_input(text: str) -> Coordinate:
    cleaned = text.strip().upper()
    if not cleaned:
        raise ValueError("Empty coordinate.")
    if cleaned[0].isalpha():
        if cleaned[0] not in ROW_LABELS:
            raise ValueError("Row must be between A and J.")
        row = ROW_LABELS.index(cleaned[0])
        try:
            col = int(cleaned[1:]) - 1
        except ValueError as exc:
            raise ValueError("Column must be a number between 1 and 10.") from exc
    else:
        parts = cleaned.split()
        if len(parts) != 2:
            raise ValueError("Use formats like A5 or '3 7'.")
        row, col = map(int, parts)
    if row not in range(10) or col not in range(10):
        raise ValueError("Coordinates must be within the 10x10 board.")
    return Coordinate(row, col)


def _label(row: int, col: int) -> str:
    return f"{ROW_LABELS[row]}{col + 1}"


def format_board(board: Board) -> str:
    """Render a (masked) board; what is hidden was already removed upstream."""
    header = "    " + " ".join(f"{col + 1:>2}" for col in range(board.size))
    rows = [header]
    for row in board.cells:
        symbols = " ".join(f"{_SYMBOLS[cell.status]:>2}" for cell in row)
        rows.append(f"{ROW_LABELS[row[0].row]} |{symbols}")
    return "\n".join(rows)


def _prompt_orientation(ship_type: ShipType, ask: InputFn, say: OutputFn) -> Orientation:
    while True:
        raw = (
            ask(f"Place your {ship_type.value.title()} (length {ship_type.length}). Orientation [H/V]: ")
            .strip()
            .upper()
        )
        if raw in {"H", "HOR", "HORIZONTAL"}:
            return Orientation.HORIZONTAL
        if raw in {"V", "VER", "VERTICAL"}:
            return Orientation.VERTICAL
        say("Please enter H for horizontal or V for vertical.")


def _manual_ship_placement(
    service: GameService, game_id: str, role: PlayerRole, ask: InputFn, say: OutputFn
) -> None:
    for ship_type in ShipType:
        while True:
            view = service.get_view(game_id, role)
            say("\nCurrent layout:")
            say(format_board(view.boards[role]))
            orientation = _prompt_orientation(ship_type, ask, say)
            try:
                start = _coordinate_from_input(ask("Enter starting coordinate (e.g., A1): "))
            except ValueError as exc:
                say(f"Invalid coordinate: {exc}")
                continue
            try:
                service.place_ship(
                    game_id,
                    role,
                    ship_type,
                    start.row,
                    start.col,
                    orientation is Orientation.HORIZONTAL,
                )
            except GameError as exc:
                say(f"Ship cannot be placed there: {exc.message}. Try again.")
                continue
            break


def _auto_placement(service: GameService, game_id: str, role: PlayerRole, rng: random.Random) -> None:
    for ship_type, row, col, horizontal in random_layout(rng):
        service.place_ship(game_id, role, ship_type, row, col, horizontal)


def _prompt_for_target(ask: InputFn, say: OutputFn) -> Coordinate:
    while True:
        raw = ask("Enter target coordinate (e.g., A5) or 'q' to quit: ").strip()
        if raw.lower() == "q":
            raise SystemExit("Goodbye!")
        try:
            return _coordinate_from_input(raw)
        except ValueError as exc:
            say(f"Invalid input: {exc}")


def _describe_shot(role: PlayerRole, coord: Coordinate, hit: bool, sunk: bool, ship_type: ShipType | None) -> str:
    outcome = "hit" if hit else "miss"
    if sunk and ship_type is not None:
        outcome = f"sank the opponent's {ship_type.value}!"
    return f"{role.name} fired at {_label(coord.row, coord.col)}: {outcome}"


def play_game(
    seed: int | None = None,
    auto_deploy: bool = False,
    ask: InputFn = input,
    say: OutputFn = print,
    service: GameService | None = None,
) -> PlayerRole | None:
    """Run one hot-seat match and return the winner."""
    say("Welcome to Broadside!\n")
    rng = random.Random(seed)
    if service is None:
        settings = load_settings()
        service = GameService(
            InMemoryGameStore(), NotificationBroker(settings.subscriber_queue_size), settings
        )

    seat = service.create_game()
    service.join_game(seat.game_id)
    game_id = seat.game_id

    for role in PlayerRole:
        say(f"\n{role.name}, deploy your fleet.")
        if auto_deploy:
            _auto_placement(service, game_id, role, rng)
            say("Your ships have been positioned automatically.")
        else:
            _manual_ship_placement(service, game_id, role, ask, say)

    view = service.get_view(game_id, PlayerRole.PLAYER1)
    while view.phase is GamePhase.PLAYING:
        role = view.current_turn
        view = service.get_view(game_id, role)
        say(f"\n=== {role.name} to fire ===")
        say("\nYour waters:")
        say(format_board(view.boards[role]))
        say("\nEnemy waters:")
        say(format_board(view.boards[role.opponent()]))

        coord = _prompt_for_target(ask, say)
        try:
            report = service.attack(game_id, role, coord.row, coord.col)
        except GameError as exc:
            say(f"Shot rejected: {exc.message}")
            continue
        outcome = report.outcome
        say(_describe_shot(role, coord, outcome.hit, outcome.sunk, outcome.ship_type))
        view = report.view

    if view.winner is not None:
        say(f"\n{view.winner.name} wins the battle!")
    return view.winner


def main() -> None:
    parser = argparse.ArgumentParser(description="Play Broadside hot-seat in the terminal.")
    parser.add_argument(
        "--seed", type=int, default=None, help="Optional RNG seed for reproducibility."
    )
    parser.add_argument(
        "--auto-deploy", action="store_true", help="Place both fleets randomly."
    )
    args = parser.parse_args()
    config = init_telemetry()
    if config.enable_tracing:
        LoggingInstrumentor().instrument()
    play_game(seed=args.seed, auto_deploy=args.auto_deploy)


if __name__ == "__main__":
    main()
