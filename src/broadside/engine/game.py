"""Two-player game aggregate and its phase/turn state machine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from broadside.telemetry import get_meter, get_tracer

from .board import AttackOutcome, Board, attack, create_empty_board, fleet_destroyed, place_ship
from .errors import GameFull, InvalidPhase, InvalidPlacement, NotYourTurn
from .ship import Fleet, ShipType

logger = logging.getLogger(__name__)
tracer = get_tracer("broadside.engine.game")
meter = get_meter("broadside.engine.game")

TRANSITION_COUNTER = meter.create_counter(
    "broadside_engine_transitions",
    unit="1",
    description="Phase transitions applied to games",
)


class GamePhase(Enum):
    """High-level lifecycle of a match."""

    WAITING = "waiting"
    PLACING = "placing"
    PLAYING = "playing"
    FINISHED = "finished"


class PlayerRole(Enum):
    PLAYER1 = "player1"
    PLAYER2 = "player2"

    def opponent(self) -> PlayerRole:
        """Return the opposing role."""
        return PlayerRole.PLAYER2 if self is PlayerRole.PLAYER1 else PlayerRole.PLAYER1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _per_role(player1, player2) -> Mapping[PlayerRole, object]:
    return MappingProxyType({PlayerRole.PLAYER1: player1, PlayerRole.PLAYER2: player2})


@dataclass(frozen=True)
class Game:
    """Authoritative state of one match.

    Every operation returns a new ``Game``; a rejected operation raises and
    leaves the original value untouched.
    """

    game_id: str
    player1_id: str
    player2_id: str | None = None
    phase: GamePhase = GamePhase.WAITING
    current_turn: PlayerRole = PlayerRole.PLAYER1
    first_turn: PlayerRole = PlayerRole.PLAYER1
    boards: Mapping[PlayerRole, Board] = field(
        default_factory=lambda: _per_role(create_empty_board(), create_empty_board())
    )
    fleets: Mapping[PlayerRole, Fleet] = field(default_factory=lambda: _per_role(Fleet(), Fleet()))
    ready: Mapping[PlayerRole, bool] = field(default_factory=lambda: _per_role(False, False))
    winner: PlayerRole | None = None
    rematch_of: str | None = None
    rematch_id: str | None = None
    version: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def create(cls, game_id: str, player1_id: str, now: datetime | None = None) -> Game:
        stamp = now or _utcnow()
        return cls(game_id=game_id, player1_id=player1_id, created_at=stamp, updated_at=stamp)

    @property
    def awaiting_opponent(self) -> bool:
        """``waiting`` and ``placing`` without a second player are the same state."""
        return self.player2_id is None and self.phase in (GamePhase.WAITING, GamePhase.PLACING)

    def board_for(self, role: PlayerRole) -> Board:
        return self.boards[role]

    def fleet_for(self, role: PlayerRole) -> Fleet:
        return self.fleets[role]

    def player_id(self, role: PlayerRole) -> str | None:
        return self.player1_id if role is PlayerRole.PLAYER1 else self.player2_id

    def role_of(self, player_id: str) -> PlayerRole | None:
        """Return the role held by an identity, if it takes part in this game."""
        if player_id == self.player1_id:
            return PlayerRole.PLAYER1
        if self.player2_id is not None and player_id == self.player2_id:
            return PlayerRole.PLAYER2
        return None

    def _with_role(self, mapping: Mapping[PlayerRole, object], role: PlayerRole, value) -> Mapping:
        updated = dict(mapping)
        updated[role] = value
        return MappingProxyType(updated)

    def join(self, player2_id: str) -> Game:
        """Seat the second player and open ship placement for both sides."""
        with tracer.start_as_current_span("game.join") as span:
            span.set_attribute("game.id", self.game_id)
            if self.player2_id is not None:
                logger.warning("join_rejected_game_full", extra={"game_id": self.game_id})
                raise GameFull("Game is full", game_id=self.game_id)
            if not self.awaiting_opponent:
                logger.warning(
                    "join_rejected_phase",
                    extra={"game_id": self.game_id, "phase": self.phase.value},
                )
                raise InvalidPhase("Game is not accepting players", phase=self.phase.value)
            TRANSITION_COUNTER.add(1, attributes={"to": GamePhase.PLACING.value})
            logger.info("player_joined", extra={"game_id": self.game_id})
            return replace(self, player2_id=player2_id, phase=GamePhase.PLACING)

    def place_ship(
        self,
        role: PlayerRole,
        ship_type: ShipType,
        row: int,
        col: int,
        horizontal: bool,
    ) -> Game:
        """Place one ship for ``role`` and start play once both fleets are ready."""
        with tracer.start_as_current_span("game.place_ship") as span:
            span.set_attribute("game.id", self.game_id)
            span.set_attribute("player", role.value)
            span.set_attribute("ship.type", ship_type.value)
            self.check_placement(role, ship_type)

            fleet = self.fleets[role]
            placement = place_ship(self.boards[role], fleet, ship_type, row, col, horizontal)
            if placement is None:
                raise InvalidPlacement(
                    "Invalid ship placement",
                    ship_type=ship_type.value,
                    row=row,
                    col=col,
                    horizontal=horizontal,
                )

            fleet = fleet.with_ship(placement.ship)
            ready = self._with_role(self.ready, role, fleet.is_ready())
            game = replace(
                self,
                boards=self._with_role(self.boards, role, placement.board),
                fleets=self._with_role(self.fleets, role, fleet),
                ready=ready,
            )
            if ready[role]:
                logger.info("fleet_ready", extra={"game_id": self.game_id, "player": role.value})

            if all(ready.values()) and game.player2_id is not None:
                game = replace(game, phase=GamePhase.PLAYING, current_turn=game.first_turn)
                TRANSITION_COUNTER.add(1, attributes={"to": GamePhase.PLAYING.value})
                span.set_attribute("game.phase", GamePhase.PLAYING.value)
                logger.info(
                    "game_started",
                    extra={"game_id": self.game_id, "first_turn": game.first_turn.value},
                )
            return game

    def check_placement(self, role: PlayerRole, ship_type: ShipType) -> None:
        """Raise if ``role`` may not place ``ship_type`` right now; never mutates."""
        allowed = self.phase is GamePhase.PLACING or (
            # Player one may lay out a fleet while the second seat is still empty.
            self.phase is GamePhase.WAITING and role is PlayerRole.PLAYER1
        )
        if not allowed:
            logger.warning(
                "placement_rejected_phase",
                extra={"game_id": self.game_id, "player": role.value, "phase": self.phase.value},
            )
            raise InvalidPhase("Game is not in placing phase", phase=self.phase.value)
        if self.ready[role]:
            raise InvalidPlacement("Fleet is already complete", player=role.value)
        if self.fleets[role].has(ship_type):
            raise InvalidPlacement(
                f"{ship_type.value} has already been placed",
                player=role.value,
                ship_type=ship_type.value,
            )

    def check_attack(self, role: PlayerRole) -> None:
        """Raise unless ``role`` may fire now; never mutates."""
        if self.phase is not GamePhase.PLAYING:
            logger.warning(
                "attack_rejected_phase",
                extra={"game_id": self.game_id, "player": role.value, "phase": self.phase.value},
            )
            raise InvalidPhase("Game is not in playing phase", phase=self.phase.value)
        if role is not self.current_turn:
            logger.warning(
                "attack_rejected_turn",
                extra={
                    "game_id": self.game_id,
                    "player": role.value,
                    "current": self.current_turn.value,
                },
            )
            raise NotYourTurn("Not your turn", current_turn=self.current_turn.value)

    def attack(self, role: PlayerRole, row: int, col: int) -> tuple[Game, AttackOutcome]:
        """Fire at the opponent's board, enforcing turn order and win conditions."""
        with tracer.start_as_current_span("game.attack") as span:
            span.set_attribute("game.id", self.game_id)
            span.set_attribute("player", role.value)
            span.set_attribute("row", row)
            span.set_attribute("col", col)
            self.check_attack(role)

            defender = role.opponent()
            result = attack(self.boards[defender], self.fleets[defender], row, col)
            game = replace(
                self,
                boards=self._with_role(self.boards, defender, result.board),
                fleets=self._with_role(self.fleets, defender, result.fleet),
            )

            if fleet_destroyed(result.fleet):
                game = replace(game, phase=GamePhase.FINISHED, winner=role)
                TRANSITION_COUNTER.add(1, attributes={"to": GamePhase.FINISHED.value})
                span.set_attribute("game.winner", role.value)
                logger.info("game_finished", extra={"game_id": self.game_id, "winner": role.value})
            elif not result.outcome.hit:
                game = replace(game, current_turn=defender)
            # A hit keeps the turn with the attacker.
            span.set_attribute("next_player", game.current_turn.value)
            return game, result.outcome

    def rematch(self, new_game_id: str, now: datetime | None = None) -> Game:
        """Start a fresh game between the same players; the previous loser moves first."""
        if self.phase is not GamePhase.FINISHED:
            raise InvalidPhase("Game is not finished", phase=self.phase.value)
        loser = self.winner.opponent() if self.winner is not None else self.first_turn
        stamp = now or _utcnow()
        logger.info(
            "rematch_created",
            extra={"game_id": self.game_id, "rematch_id": new_game_id, "first_turn": loser.value},
        )
        return Game(
            game_id=new_game_id,
            player1_id=self.player1_id,
            player2_id=self.player2_id,
            phase=GamePhase.PLACING,
            current_turn=loser,
            first_turn=loser,
            rematch_of=self.game_id,
            created_at=stamp,
            updated_at=stamp,
        )

    def link_rematch(self, rematch_id: str) -> Game:
        """Record the follow-up game; a finished game links to at most one rematch."""
        if self.phase is not GamePhase.FINISHED:
            raise InvalidPhase("Game is not finished", phase=self.phase.value)
        if self.rematch_id is not None:
            raise InvalidPhase("Rematch already created", rematch_id=self.rematch_id)
        return replace(self, rematch_id=rematch_id)
