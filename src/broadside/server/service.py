"""Transport-independent operations on games.

Handlers for HTTP, push streams or a terminal all call into
:class:`GameService`; every game it hands back has been masked for the
requesting role.
"""

from __future__ import annotations

import logging
import secrets
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator

from opentelemetry.trace import Status, StatusCode

from broadside.engine.board import AttackOutcome
from broadside.engine.errors import GameError, GameFull, NotFound, PreconditionFailed
from broadside.engine.game import Game, GamePhase, PlayerRole
from broadside.engine.masking import view_for
from broadside.engine.ship import ShipType
from broadside.settings import GameServerSettings, load_settings
from broadside.telemetry import get_meter, get_tracer, record_duration, record_game_metric

from .broker import GameEvent, NotificationBroker
from .store import GameStore

logger = logging.getLogger(__name__)
tracer = get_tracer("broadside.server.service")
meter = get_meter("broadside.server.service")

OPERATION_COUNTER = meter.create_counter(
    "broadside_service_operations",
    unit="1",
    description="Service operations by name and result",
)


def new_player_id() -> str:
    """Opaque identity for a player who has not signed in."""
    return f"player-{int(time.time() * 1000)}-{secrets.token_hex(5)}"


def new_game_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Seat:
    """A player's place in a game, returned when a game is created or joined."""

    game_id: str
    role: PlayerRole
    player_id: str | None
    view: Game
    created: bool = False


@dataclass(frozen=True)
class AttackReport:
    view: Game
    outcome: AttackOutcome

    @property
    def game_status(self) -> GamePhase:
        return self.view.phase

    @property
    def winner(self) -> PlayerRole | None:
        return self.view.winner


@dataclass(frozen=True)
class PollResult:
    view: Game
    updated: bool


@dataclass(frozen=True)
class OpenGame:
    game_id: str
    created_at: datetime


class GameService:
    def __init__(
        self,
        store: GameStore,
        broker: NotificationBroker,
        settings: GameServerSettings | None = None,
        player_ids: Callable[[], str] = new_player_id,
        game_ids: Callable[[], str] = new_game_id,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._broker = broker
        self._settings = settings or load_settings()
        self._player_ids = player_ids
        self._game_ids = game_ids
        self._monotonic = monotonic
        self._sleep = sleep

    @contextmanager
    def _operation(self, name: str, game_id: str | None = None, **attrs: str | int | bool) -> Iterator:
        started = self._monotonic()
        with tracer.start_as_current_span(f"service.{name}") as span:
            if game_id is not None:
                span.set_attribute("game.id", game_id)
            for key, value in attrs.items():
                span.set_attribute(key, value)
            try:
                yield span
            except GameError as exc:
                span.record_exception(exc)
                span.set_attribute("error.code", exc.code)
                OPERATION_COUNTER.add(1, attributes={"operation": name, "result": exc.code})
                logger.warning(
                    "operation_rejected",
                    extra={"operation": name, "game_id": game_id, "code": exc.code, "reason": exc.message},
                )
                raise
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR))
                OPERATION_COUNTER.add(1, attributes={"operation": name, "result": "error"})
                logger.exception("operation_failed", extra={"operation": name, "game_id": game_id})
                raise
            else:
                OPERATION_COUNTER.add(1, attributes={"operation": name, "result": "ok"})
            finally:
                record_duration(
                    "broadside_service_operation_seconds",
                    self._monotonic() - started,
                    {"operation": name},
                )

    def _notify(self, game: Game, rematch_game_id: str | None = None) -> None:
        """Push the committed game to subscribers; never fails the caller."""
        try:
            self._broker.publish(game.game_id, game, rematch_game_id=rematch_game_id)
        except Exception:
            logger.exception("publish_failed", extra={"game_id": game.game_id})

    def create_game(self, player1_id: str | None = None) -> Seat:
        with self._operation("create_game") as span:
            player_id = player1_id or self._player_ids()
            game = self._store.create(Game.create(self._game_ids(), player_id))
            span.set_attribute("game.id", game.game_id)
            return Seat(game.game_id, PlayerRole.PLAYER1, player_id, view_for(game, PlayerRole.PLAYER1), created=True)

    def join_game(self, game_id: str, player2_id: str | None = None) -> Seat:
        """Take the second seat; exactly one of several racing callers wins."""
        with self._operation("join_game", game_id):
            player_id = player2_id or self._player_ids()
            current = self._store.get(game_id)
            if current.player2_id is not None:
                raise GameFull("Game is full", game_id=game_id)
            try:
                game = self._store.conditional_update(
                    game_id,
                    lambda stored: stored.player2_id is None,
                    lambda stored: stored.join(player_id),
                )
            except PreconditionFailed as exc:
                raise GameFull("Game is full", game_id=game_id) from exc
            self._notify(game)
            return Seat(game_id, PlayerRole.PLAYER2, player_id, view_for(game, PlayerRole.PLAYER2))

    def find_match(self, player_id: str | None = None) -> Seat:
        """Join the oldest open game, or open a new one when none is waiting.

        Losing the race for the chosen game raises ``PreconditionFailed`` so
        the caller can simply try again.
        """
        with self._operation("find_match") as span:
            player_id = player_id or self._player_ids()
            candidates = [
                game
                for game in self._store.open_games(self._settings.open_game_scan_limit)
                if game.player1_id != player_id
            ]
            if not candidates:
                span.set_attribute("match.created", True)
                return self.create_game(player_id)
            target = candidates[0]
            span.set_attribute("game.id", target.game_id)
            try:
                return self.join_game(target.game_id, player_id)
            except GameFull as exc:
                raise PreconditionFailed(
                    "Game was already taken, please try again", game_id=target.game_id
                ) from exc

    def list_open_games(self) -> list[OpenGame]:
        games = self._store.open_games(self._settings.open_game_scan_limit)
        return [OpenGame(game.game_id, game.created_at) for game in games]

    def place_ship(
        self,
        game_id: str,
        role: PlayerRole,
        ship_type: ShipType,
        row: int,
        col: int,
        horizontal: bool,
    ) -> Game:
        with self._operation("place_ship", game_id, player=role.value, ship_type=ship_type.value):
            current = self._store.get(game_id)
            current.check_placement(role, ship_type)
            game = self._store.conditional_update(
                game_id,
                # The patch re-checks phase and footprint; only this role's fleet must be unchanged.
                lambda stored: stored.fleets[role] == current.fleets[role],
                lambda stored: stored.place_ship(role, ship_type, row, col, horizontal),
            )
            self._notify(game)
            return view_for(game, role)

    def attack(self, game_id: str, role: PlayerRole, row: int, col: int) -> AttackReport:
        with self._operation("attack", game_id, player=role.value, row=row, col=col) as span:
            self._store.get(game_id).check_attack(role)
            outcomes: list[AttackOutcome] = []

            def apply(stored: Game) -> Game:
                updated, outcome = stored.attack(role, row, col)
                outcomes.append(outcome)
                return updated

            game = self._store.conditional_update(
                game_id,
                lambda stored: stored.phase is GamePhase.PLAYING and stored.current_turn is role,
                apply,
            )
            outcome = outcomes[-1]
            span.set_attribute("attack.hit", outcome.hit)
            span.set_attribute("attack.sunk", outcome.sunk)
            if game.phase is GamePhase.FINISHED:
                record_game_metric(
                    "broadside_games_completed_total", 1, {"winner": role.value}
                )
            self._notify(game)
            return AttackReport(view_for(game, role), outcome)

    def get_view(self, game_id: str, role: PlayerRole) -> Game:
        with self._operation("get_view", game_id, player=role.value):
            return view_for(self._store.get(game_id), role)

    def poll(
        self,
        game_id: str,
        role: PlayerRole,
        since: datetime | None = None,
        timeout: float | None = None,
    ) -> PollResult:
        """Wait until the game changes after ``since`` or the wait expires.

        Checks every ``poll_interval`` seconds for at most ``poll_timeout``
        seconds, then returns the latest state with ``updated=False``.
        """
        limit = self._settings.poll_timeout if timeout is None else timeout
        interval = self._settings.poll_interval
        with self._operation("poll", game_id, player=role.value) as span:
            deadline = self._monotonic() + limit
            while True:
                game = self._store.get(game_id)
                if since is None or game.updated_at > since:
                    span.set_attribute("poll.updated", True)
                    return PollResult(view_for(game, role), True)
                remaining = deadline - self._monotonic()
                if remaining <= 0:
                    break
                self._sleep(min(interval, remaining))
            span.set_attribute("poll.updated", False)
            return PollResult(view_for(self._store.get(game_id), role), False)

    def stream(self, game_id: str, role: PlayerRole) -> Iterator[GameEvent]:
        """Yield the connection event, the current view, then every update.

        Closing the generator removes the subscription. The stream ends on
        its own once the broker closes the subscription and its queue is
        drained.
        """
        subscription = self._broker.subscribe(game_id, role)
        try:
            game = self._store.get(game_id)
            last_version = game.version
            backlog = subscription.pending()
            yield from (event for event in backlog if event.type == "connected")
            yield GameEvent("game", game_id, role, view_for(game, role))
            pending = iter([event for event in backlog if event.type != "connected"])
            while True:
                event = next(pending, None)
                if event is None:
                    if subscription.closed and subscription.events.empty():
                        logger.info("stream_closed", extra={"game_id": game_id, "player": role.value})
                        return
                    event = subscription.get(timeout=self._settings.poll_timeout)
                if event is None or event.view is None:
                    continue
                # Updates committed before the snapshot above are already reflected in it.
                if event.view.version <= last_version:
                    continue
                last_version = event.view.version
                yield event
        finally:
            self._broker.unsubscribe(subscription)

    def rematch(self, game_id: str, role: PlayerRole) -> Seat:
        """Open a fresh game for the same two players, at most once per finished game."""
        with self._operation("rematch", game_id, player=role.value):
            current = self._store.get(game_id)
            new_id = self._game_ids()
            fresh = current.rematch(new_id)
            try:
                self._store.conditional_update(
                    game_id,
                    lambda stored: stored.rematch_id is None,
                    lambda stored: stored.link_rematch(new_id),
                )
            except PreconditionFailed:
                existing = self._store.get(game_id).rematch_id
                try:
                    game = self._store.get(existing) if existing else None
                except NotFound:
                    game = None
                if game is None:
                    raise PreconditionFailed("Rematch is being created, please try again", game_id=game_id)
                return Seat(game.game_id, role, game.player_id(role), view_for(game, role))

            game = self._store.create(fresh)
            self._notify(self._store.get(game_id), rematch_game_id=game.game_id)
            return Seat(game.game_id, role, game.player_id(role), view_for(game, role), created=True)
