"""Game storage contract and an in-process implementation with compare-and-set updates."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from broadside.engine.errors import NotFound, PreconditionFailed
from broadside.engine.game import Game
from broadside.telemetry import get_meter

logger = logging.getLogger(__name__)
meter = get_meter("broadside.server.store")

CONFLICT_COUNTER = meter.create_counter(
    "broadside_store_conflicts",
    unit="1",
    description="Conditional updates rejected because their precondition no longer held",
)

Predicate = Callable[[Game], bool]
Patch = Callable[[Game], Game]


class GameStore(Protocol):
    """What the service needs from persistence."""

    def get(self, game_id: str) -> Game: ...

    def create(self, game: Game) -> Game: ...

    def conditional_update(self, game_id: str, predicate: Predicate, patch: Patch) -> Game: ...

    def open_games(self, limit: int = 10) -> list[Game]: ...


class InMemoryGameStore:
    """Thread-safe dictionary of games.

    Every write happens under one short-lived lock, so a predicate checked in
    :meth:`conditional_update` still holds when the patched game is committed.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._games: dict[str, Game] = {}
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def __len__(self) -> int:
        with self._lock:
            return len(self._games)

    def get(self, game_id: str) -> Game:
        with self._lock:
            game = self._games.get(game_id)
        if game is None:
            raise NotFound("Game not found", game_id=game_id)
        return game

    def create(self, game: Game) -> Game:
        with self._lock:
            if game.game_id in self._games:
                raise PreconditionFailed("Game id already exists", game_id=game.game_id)
            self._games[game.game_id] = game
        logger.info("game_created", extra={"game_id": game.game_id, "phase": game.phase.value})
        return game

    def conditional_update(self, game_id: str, predicate: Predicate, patch: Patch) -> Game:
        """Apply ``patch`` only if ``predicate`` holds for the stored game.

        Errors raised by ``patch`` propagate and nothing is written.
        """
        with self._lock:
            current = self._games.get(game_id)
            if current is None:
                raise NotFound("Game not found", game_id=game_id)
            if not predicate(current):
                CONFLICT_COUNTER.add(1)
                logger.warning(
                    "conditional_update_conflict",
                    extra={"game_id": game_id, "version": current.version},
                )
                raise PreconditionFailed(
                    "Game changed concurrently, please try again",
                    game_id=game_id,
                )
            updated = patch(current)
            committed = replace(
                updated,
                version=current.version + 1,
                updated_at=self._next_timestamp(current.updated_at),
            )
            self._games[game_id] = committed
        return committed

    def open_games(self, limit: int = 10) -> list[Game]:
        """Games still waiting for a second player, oldest first."""
        with self._lock:
            candidates = [game for game in self._games.values() if game.awaiting_opponent]
        candidates.sort(key=lambda game: game.created_at)
        return candidates[:limit]

    def _next_timestamp(self, previous: datetime) -> datetime:
        # Strictly increasing so pollers comparing against `updated_at` never miss a write.
        now = self._clock()
        if now <= previous:
            now = previous + timedelta(microseconds=1)
        return now
