"""Wire payloads: request validation and JSON projections of masked views."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from broadside.engine.board import AttackOutcome, Board
from broadside.engine.game import Game, GamePhase, PlayerRole
from broadside.engine.ship import Fleet, ShipType

from .broker import GameEvent


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class PlaceShipRequest(_Payload):
    player_role: PlayerRole
    ship_type: ShipType
    row: int
    col: int
    is_horizontal: bool = False


class AttackRequest(_Payload):
    player_role: PlayerRole
    row: int
    col: int


class PositionModel(_Payload):
    row: int
    col: int


class CellModel(_Payload):
    row: int
    col: int
    status: str
    ship_id: ShipType | None = None


class ShipModel(_Payload):
    type: ShipType
    length: int
    positions: list[PositionModel]
    is_sunk: bool


class GameViewModel(_Payload):
    """JSON shape of a game as seen by one player."""

    id: str
    player1_id: str
    player2_id: str | None = None
    current_turn: PlayerRole
    status: GamePhase
    player1_board: list[list[CellModel]]
    player2_board: list[list[CellModel]]
    player1_ships: list[ShipModel]
    player2_ships: list[ShipModel]
    player1_ready: bool
    player2_ready: bool
    winner: PlayerRole | None = None
    rematch_of: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_view(cls, view: Game) -> "GameViewModel":
        """Serialise a game that has already been passed through masking."""
        p1, p2 = PlayerRole.PLAYER1, PlayerRole.PLAYER2
        return cls(
            id=view.game_id,
            player1_id=view.player1_id,
            player2_id=view.player2_id,
            current_turn=view.current_turn,
            status=view.phase,
            player1_board=_board_rows(view.boards[p1]),
            player2_board=_board_rows(view.boards[p2]),
            player1_ships=_ships(view.fleets[p1]),
            player2_ships=_ships(view.fleets[p2]),
            player1_ready=view.ready[p1],
            player2_ready=view.ready[p2],
            winner=view.winner,
            rematch_of=view.rematch_of,
            version=view.version,
            created_at=view.created_at,
            updated_at=view.updated_at,
        )


class AttackResultModel(_Payload):
    hit: bool
    sunk: bool
    ship_type: ShipType | None = None
    game_status: GamePhase
    winner: PlayerRole | None = None

    @classmethod
    def from_outcome(cls, outcome: AttackOutcome, game: Game) -> "AttackResultModel":
        return cls(
            hit=outcome.hit,
            sunk=outcome.sunk,
            ship_type=outcome.ship_type,
            game_status=game.phase,
            winner=game.winner,
        )


class GameEventModel(_Payload):
    type: str
    game_id: str
    player_role: PlayerRole
    game: GameViewModel | None = None
    rematch_game_id: str | None = None

    @classmethod
    def from_event(cls, event: GameEvent) -> "GameEventModel":
        return cls(
            type=event.type,
            game_id=event.game_id,
            player_role=event.role,
            game=GameViewModel.from_view(event.view) if event.view is not None else None,
            rematch_game_id=event.rematch_game_id,
        )


def encode_sse(event: GameEvent) -> bytes:
    """Frame an event for a text/event-stream response."""
    body = GameEventModel.from_event(event).model_dump_json(by_alias=True, exclude_none=True)
    return f"data: {body}\n\n".encode("utf-8")


def _board_rows(board: Board) -> list[list[CellModel]]:
    return [
        [
            CellModel(row=cell.row, col=cell.col, status=cell.status.value, ship_id=cell.ship_type)
            for cell in row
        ]
        for row in board.cells
    ]


def _ships(fleet: Fleet) -> list[ShipModel]:
    return [
        ShipModel(
            type=ship.ship_type,
            length=ship.length,
            positions=[PositionModel(row=p.row, col=p.col) for p in ship.positions],
            is_sunk=ship.is_sunk,
        )
        for ship in fleet
    ]
