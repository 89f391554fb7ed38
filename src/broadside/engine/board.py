"""Board model, placement validation and attack resolution."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterator

from broadside.telemetry import get_meter, get_tracer

from .errors import InvalidAttack
from .ship import Coordinate, Fleet, Orientation, Ship, ShipType, footprint

logger = logging.getLogger(__name__)
tracer = get_tracer("broadside.engine.board")
meter = get_meter("broadside.engine.board")

BOARD_SIZE = 10

PLACEMENT_COUNTER = meter.create_counter(
    "broadside_engine_placements",
    unit="1",
    description="Number of attempted ship placements",
)

ATTACK_COUNTER = meter.create_counter(
    "broadside_engine_attacks",
    unit="1",
    description="Shots resolved against a board",
)


class CellStatus(Enum):
    """State of a single board cell."""

    EMPTY = "empty"
    SHIP = "ship"
    HIT = "hit"
    MISS = "miss"
    SUNK = "sunk"

    @property
    def attacked(self) -> bool:
        return self in (CellStatus.HIT, CellStatus.MISS, CellStatus.SUNK)


@dataclass(frozen=True)
class Cell:
    row: int
    col: int
    status: CellStatus = CellStatus.EMPTY
    ship_type: ShipType | None = None


@dataclass(frozen=True)
class Board:
    """Immutable 10×10 grid of cells owned by one player."""

    cells: tuple[tuple[Cell, ...], ...]

    @property
    def size(self) -> int:
        return len(self.cells)

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.size and 0 <= col < self.size

    def cell(self, row: int, col: int) -> Cell:
        if not self.in_bounds(row, col):
            raise IndexError(f"({row}, {col}) is outside the board")
        return self.cells[row][col]

    def __iter__(self) -> Iterator[Cell]:
        for row in self.cells:
            yield from row

    def count(self, status: CellStatus) -> int:
        return sum(1 for cell in self if cell.status is status)

    def with_cells(self, updates: dict[Coordinate, Cell]) -> Board:
        """Return a copy of the board with the given cells replaced."""
        if not updates:
            return self
        rows = []
        for r, row in enumerate(self.cells):
            if any(coord.row == r for coord in updates):
                row = tuple(updates.get(Coordinate(r, c), cell) for c, cell in enumerate(row))
            rows.append(row)
        return Board(tuple(rows))

    def map_cells(self, fn) -> Board:
        return Board(tuple(tuple(fn(cell) for cell in row) for row in self.cells))


def create_empty_board(size: int = BOARD_SIZE) -> Board:
    """Return a grid of empty cells with coordinates stamped into each cell."""
    return Board(tuple(tuple(Cell(row, col) for col in range(size)) for row in range(size)))


@dataclass(frozen=True)
class Placement:
    board: Board
    ship: Ship


@dataclass(frozen=True)
class AttackOutcome:
    hit: bool
    sunk: bool = False
    ship_type: ShipType | None = None


@dataclass(frozen=True)
class AttackResult:
    board: Board
    fleet: Fleet
    outcome: AttackOutcome


def is_valid_placement(
    board: Board,
    ship_type: ShipType,
    start_row: int,
    start_col: int,
    horizontal: bool,
) -> bool:
    """Check that the footprint stays on the board and covers only empty cells."""
    coords = footprint(ship_type, Coordinate(start_row, start_col), Orientation.from_flag(horizontal))
    for coord in coords:
        if not board.in_bounds(coord.row, coord.col):
            return False
        if board.cells[coord.row][coord.col].status is not CellStatus.EMPTY:
            return False
    return True


def place_ship(
    board: Board,
    fleet: Fleet,
    ship_type: ShipType,
    start_row: int,
    start_col: int,
    horizontal: bool,
) -> Placement | None:
    """Lay a ship onto a copy of the board.

    Returns ``None`` when the placement is invalid. One-ship-per-type and
    fleet size are enforced by the game, not here.
    """
    with tracer.start_as_current_span("board.place_ship") as span:
        span.set_attribute("ship.type", ship_type.value)
        span.set_attribute("ship.length", ship_type.length)
        span.set_attribute("ship.start.row", start_row)
        span.set_attribute("ship.start.col", start_col)
        span.set_attribute("ship.horizontal", horizontal)
        span.set_attribute("fleet.size", len(fleet))
        if not is_valid_placement(board, ship_type, start_row, start_col, horizontal):
            PLACEMENT_COUNTER.add(1, attributes={"result": "rejected"})
            logger.warning(
                "ship_placement_rejected",
                extra={
                    "ship_type": ship_type.value,
                    "row": start_row,
                    "col": start_col,
                    "horizontal": horizontal,
                },
            )
            return None

        ship = Ship.from_placement(
            ship_type, Coordinate(start_row, start_col), Orientation.from_flag(horizontal)
        )
        updated = board.with_cells(
            {
                coord: Cell(coord.row, coord.col, CellStatus.SHIP, ship_type)
                for coord in ship.positions
            }
        )
        PLACEMENT_COUNTER.add(1, attributes={"result": "success"})
        logger.info(
            "ship_placed",
            extra={
                "ship_type": ship_type.value,
                "row": start_row,
                "col": start_col,
                "horizontal": horizontal,
            },
        )
        return Placement(board=updated, ship=ship)


def attack(board: Board, fleet: Fleet, row: int, col: int) -> AttackResult:
    """Resolve a single shot and return the new board, fleet and outcome."""
    with tracer.start_as_current_span("board.attack") as span:
        span.set_attribute("shot.row", row)
        span.set_attribute("shot.col", col)
        if not board.in_bounds(row, col):
            logger.warning("attack_out_of_bounds", extra={"row": row, "col": col})
            raise InvalidAttack("Invalid cell coordinates", row=row, col=col)
        cell = board.cells[row][col]
        if cell.status.attacked:
            logger.warning(
                "attack_duplicate",
                extra={"row": row, "col": col, "status": cell.status.value},
            )
            raise InvalidAttack("Cell already attacked", row=row, col=col)

        if cell.status is CellStatus.EMPTY:
            updated = board.with_cells({Coordinate(row, col): replace(cell, status=CellStatus.MISS)})
            span.set_attribute("shot.outcome", "miss")
            ATTACK_COUNTER.add(1, attributes={"outcome": "miss"})
            logger.info("attack_miss", extra={"row": row, "col": col})
            return AttackResult(updated, fleet, AttackOutcome(hit=False))

        target = Coordinate(row, col)
        updated = board.with_cells({target: replace(cell, status=CellStatus.HIT)})
        ship = fleet.owner_of(target)
        if ship is None:
            # Ship cell with no matching fleet entry; record the hit only.
            logger.warning("attack_hit_unowned_cell", extra={"row": row, "col": col})
            ATTACK_COUNTER.add(1, attributes={"outcome": "hit"})
            return AttackResult(updated, fleet, AttackOutcome(hit=True, ship_type=cell.ship_type))

        all_hit = all(updated.cells[p.row][p.col].status is CellStatus.HIT for p in ship.positions)
        if not all_hit:
            span.set_attribute("shot.outcome", "hit")
            ATTACK_COUNTER.add(1, attributes={"outcome": "hit"})
            logger.info(
                "attack_hit",
                extra={"row": row, "col": col, "ship_type": ship.ship_type.value},
            )
            return AttackResult(updated, fleet, AttackOutcome(hit=True, ship_type=ship.ship_type))

        updated = updated.with_cells(
            {
                p: replace(updated.cells[p.row][p.col], status=CellStatus.SUNK)
                for p in ship.positions
            }
        )
        fleet = fleet.replacing(ship, ship.sunk())
        span.set_attribute("shot.outcome", "sunk")
        ATTACK_COUNTER.add(1, attributes={"outcome": "sunk"})
        logger.info(
            "attack_sunk",
            extra={"row": row, "col": col, "ship_type": ship.ship_type.value},
        )
        return AttackResult(updated, fleet, AttackOutcome(hit=True, sunk=True, ship_type=ship.ship_type))


def fleet_destroyed(fleet: Fleet) -> bool:
    """Check whether the player has no surviving ships."""
    return fleet.all_sunk()


def random_layout(rng: random.Random, size: int = BOARD_SIZE) -> list[tuple[ShipType, int, int, bool]]:
    """Pick one valid placement per ship type on an otherwise empty board."""
    with tracer.start_as_current_span("board.random_layout"):
        board = create_empty_board(size)
        fleet = Fleet()
        layout: list[tuple[ShipType, int, int, bool]] = []
        for ship_type in ShipType:
            attempts = 0
            while True:
                attempts += 1
                horizontal = rng.choice((True, False))
                row = rng.randrange(size)
                col = rng.randrange(size)
                if is_valid_placement(board, ship_type, row, col, horizontal):
                    break
            placement = place_ship(board, fleet, ship_type, row, col, horizontal)
            assert placement is not None
            board = placement.board
            fleet = fleet.with_ship(placement.ship)
            layout.append((ship_type, row, col, horizontal))
            logger.debug(
                "random_ship_placed",
                extra={"ship_type": ship_type.value, "attempts": attempts},
            )
        return layout
