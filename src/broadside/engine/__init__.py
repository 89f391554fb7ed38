"""Authoritative game-state engine."""

from .board import (
    BOARD_SIZE,
    AttackOutcome,
    Board,
    Cell,
    CellStatus,
    attack,
    create_empty_board,
    fleet_destroyed,
    is_valid_placement,
    place_ship,
    random_layout,
)
from .errors import (
    GameError,
    GameFull,
    InvalidAttack,
    InvalidPhase,
    InvalidPlacement,
    NotFound,
    NotYourTurn,
    PreconditionFailed,
)
from .game import Game, GamePhase, PlayerRole
from .masking import view_for
from .ship import Coordinate, Fleet, Orientation, Ship, ShipType

__all__ = [
    "BOARD_SIZE",
    "AttackOutcome",
    "Board",
    "Cell",
    "CellStatus",
    "Coordinate",
    "Fleet",
    "Game",
    "GameError",
    "GameFull",
    "GamePhase",
    "InvalidAttack",
    "InvalidPhase",
    "InvalidPlacement",
    "NotFound",
    "NotYourTurn",
    "Orientation",
    "PlayerRole",
    "PreconditionFailed",
    "Ship",
    "ShipType",
    "attack",
    "create_empty_board",
    "fleet_destroyed",
    "is_valid_placement",
    "place_ship",
    "random_layout",
    "view_for",
]
