"""In-memory store: compare-and-set updates and open-game discovery."""

from datetime import datetime, timedelta, timezone

import pytest

from broadside.engine.errors import InvalidPhase, NotFound, PreconditionFailed
from broadside.engine.game import Game, GamePhase
from broadside.server.store import InMemoryGameStore

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def frozen_clock():
    return EPOCH


def test_get_unknown_game_raises_not_found() -> None:
    with pytest.raises(NotFound) as excinfo:
        InMemoryGameStore().get("missing")
    assert excinfo.value.details == {"game_id": "missing"}


def test_create_rejects_duplicate_ids() -> None:
    store = InMemoryGameStore()
    store.create(Game.create("g-1", "alice"))
    with pytest.raises(PreconditionFailed):
        store.create(Game.create("g-1", "bob"))
    assert len(store) == 1
    assert store.get("g-1").player1_id == "alice"


def test_conditional_update_bumps_version_and_timestamp() -> None:
    store = InMemoryGameStore(clock=frozen_clock)
    created = store.create(Game.create("g-1", "alice", now=EPOCH))
    first = store.conditional_update("g-1", lambda g: g.player2_id is None, lambda g: g.join("bob"))
    assert first.version == created.version + 1
    assert first.updated_at > created.updated_at
    assert store.get("g-1") == first

    # A clock that stands still still yields strictly increasing stamps.
    second = store.conditional_update("g-1", lambda g: True, lambda g: g)
    assert second.version == first.version + 1
    assert second.updated_at == first.updated_at + timedelta(microseconds=1)


def test_failed_predicate_writes_nothing() -> None:
    store = InMemoryGameStore()
    store.create(Game.create("g-1", "alice"))
    with pytest.raises(PreconditionFailed):
        store.conditional_update("g-1", lambda g: g.player2_id is not None, lambda g: g.join("bob"))
    game = store.get("g-1")
    assert game.version == 0
    assert game.player2_id is None


def test_failing_patch_propagates_and_writes_nothing() -> None:
    store = InMemoryGameStore()
    store.create(Game.create("g-1", "alice").join("bob"))
    with pytest.raises(InvalidPhase):
        store.conditional_update("g-1", lambda g: True, lambda g: g.rematch("g-2"))
    assert store.get("g-1").version == 0


def test_conditional_update_on_missing_game() -> None:
    with pytest.raises(NotFound):
        InMemoryGameStore().conditional_update("nope", lambda g: True, lambda g: g)


def test_open_games_oldest_first_and_limited() -> None:
    store = InMemoryGameStore()
    for minute, game_id in [(3, "c"), (1, "a"), (2, "b")]:
        store.create(Game.create(game_id, f"owner-{game_id}", now=EPOCH + timedelta(minutes=minute)))
    store.create(Game.create("full", "x", now=EPOCH).join("y"))

    assert [g.game_id for g in store.open_games()] == ["a", "b", "c"]
    assert [g.game_id for g in store.open_games(limit=2)] == ["a", "b"]
    assert all(g.phase is GamePhase.WAITING for g in store.open_games())
