"""Per-viewer projections of a game that never reveal unhit enemy ships.

Both rules are pure: they read the authoritative ``Game`` and return a
derived copy. Every outbound path (direct response, poll, push) goes
through :func:`view_for`.
"""

from __future__ import annotations

from dataclasses import replace
from types import MappingProxyType

from .board import Board, Cell, CellStatus
from .game import Game, GamePhase, PlayerRole
from .ship import Fleet

_OWN_BOARD_HIDDEN_PHASES = (GamePhase.PLAYING, GamePhase.FINISHED)


def _hide_ship_cell(cell: Cell) -> Cell:
    if cell.status is CellStatus.SHIP:
        return replace(cell, status=CellStatus.EMPTY, ship_type=None)
    return cell


def mask_board_for_opponent(board: Board) -> Board:
    """Show only hit/miss/sunk history; unhit ship cells read as empty."""
    return board.map_cells(_hide_ship_cell)


def mask_fleet_for_opponent(fleet: Fleet) -> Fleet:
    """Keep ship types and sunk flags, withhold positions."""
    return Fleet(tuple(ship.without_positions() for ship in fleet))


def opponent_view(game: Game, role: PlayerRole) -> Game:
    """Hide the layout of the board ``role`` is attacking."""
    opponent = role.opponent()
    boards = dict(game.boards)
    fleets = dict(game.fleets)
    boards[opponent] = mask_board_for_opponent(game.boards[opponent])
    fleets[opponent] = mask_fleet_for_opponent(game.fleets[opponent])
    return replace(game, boards=MappingProxyType(boards), fleets=MappingProxyType(fleets))


def player_view(game: Game, role: PlayerRole) -> Game:
    """Hide the viewer's own unhit ships once play has begun.

    During placement the own board is returned as-is so it can be drawn.
    """
    if game.phase not in _OWN_BOARD_HIDDEN_PHASES:
        return game
    boards = dict(game.boards)
    boards[role] = mask_board_for_opponent(game.boards[role])
    return replace(game, boards=MappingProxyType(boards))


def view_for(game: Game, role: PlayerRole) -> Game:
    """The only projection that may leave the process for ``role``."""
    return player_view(opponent_view(game, role), role)
