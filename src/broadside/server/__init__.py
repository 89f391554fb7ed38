"""Collaborators around the engine: storage, push fan-out and the operation surface."""

from .broker import GameEvent, NotificationBroker, Subscription
from .service import AttackReport, GameService, OpenGame, PollResult, Seat, new_player_id
from .store import GameStore, InMemoryGameStore

__all__ = [
    "AttackReport",
    "GameEvent",
    "GameService",
    "GameStore",
    "InMemoryGameStore",
    "NotificationBroker",
    "OpenGame",
    "PollResult",
    "Seat",
    "Subscription",
    "new_player_id",
]
