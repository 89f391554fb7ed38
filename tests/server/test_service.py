"""End-to-end behaviour of GameService over the in-memory store and broker."""

import itertools
import logging
import threading
from unittest.mock import MagicMock

import pytest

from broadside.engine.board import CellStatus
from broadside.engine.errors import (
    GameFull,
    InvalidPhase,
    InvalidPlacement,
    NotFound,
    NotYourTurn,
    PreconditionFailed,
)
from broadside.engine.game import GamePhase, PlayerRole
from broadside.engine.ship import ShipType
from broadside.server.broker import NotificationBroker
from broadside.server.service import GameService, new_player_id
from broadside.server.store import InMemoryGameStore
from broadside.settings import GameServerSettings

P1, P2 = PlayerRole.PLAYER1, PlayerRole.PLAYER2

LAYOUT = [
    (ShipType.CARRIER, 0, 0, True),
    (ShipType.BATTLESHIP, 1, 0, True),
    (ShipType.CRUISER, 2, 0, True),
    (ShipType.SUBMARINE, 3, 0, True),
    (ShipType.DESTROYER, 4, 0, True),
]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self.on_sleep = None

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep()


class InterleavingStore(InMemoryGameStore):
    """Runs ``on_get`` once, right after the next read returns."""

    def __init__(self) -> None:
        super().__init__()
        self.on_get = None

    def get(self, game_id: str):
        game = super().get(game_id)
        hook, self.on_get = self.on_get, None
        if hook is not None:
            hook()
        return game


def make_service(broker=None, clock: FakeClock | None = None, store=None, **settings) -> GameService:
    clock = clock or FakeClock()
    ids = itertools.count(1)
    return GameService(
        store if store is not None else InMemoryGameStore(),
        broker or NotificationBroker(),
        GameServerSettings(**{"poll_timeout": 2.0, "poll_interval": 0.5, **settings}),
        game_ids=lambda: f"g-{next(ids)}",
        monotonic=clock.monotonic,
        sleep=clock.sleep,
    )


def deploy(service: GameService, game_id: str, role: PlayerRole) -> None:
    for ship_type, row, col, horizontal in LAYOUT:
        service.place_ship(game_id, role, ship_type, row, col, horizontal)


def started_game(service: GameService) -> str:
    seat = service.create_game("alice")
    service.join_game(seat.game_id, "bob")
    deploy(service, seat.game_id, P1)
    deploy(service, seat.game_id, P2)
    return seat.game_id


def finish_game(service: GameService, game_id: str, winner: PlayerRole = P1):
    report = None
    for ship_type, row, _, _ in LAYOUT:
        for col in range(ship_type.length):
            report = service.attack(game_id, winner, row, col)
    return report


def test_new_player_id_format() -> None:
    first, second = new_player_id(), new_player_id()
    assert first.startswith("player-")
    assert first != second


def test_create_game_seats_player_one() -> None:
    service = make_service()
    seat = service.create_game("alice")
    assert (seat.game_id, seat.role, seat.player_id, seat.created) == ("g-1", P1, "alice", True)
    assert seat.view.phase is GamePhase.WAITING


def test_create_game_generates_identity() -> None:
    seat = make_service().create_game()
    assert seat.player_id.startswith("player-")


def test_join_game_and_full_game() -> None:
    service = make_service()
    seat = service.create_game("alice")
    joined = service.join_game(seat.game_id, "bob")
    assert joined.role is P2
    assert joined.view.phase is GamePhase.PLACING
    with pytest.raises(GameFull):
        service.join_game(seat.game_id, "carol")


def test_join_unknown_game() -> None:
    with pytest.raises(NotFound):
        make_service().join_game("nope", "bob")


def test_concurrent_joins_have_exactly_one_winner() -> None:
    service = make_service()
    game_id = service.create_game("alice").game_id
    contenders = 8
    barrier = threading.Barrier(contenders)
    winners: list[str] = []
    losers: list[Exception] = []
    lock = threading.Lock()

    def contend(index: int) -> None:
        barrier.wait()
        try:
            seat = service.join_game(game_id, f"p-{index}")
        except GameFull as exc:
            with lock:
                losers.append(exc)
        else:
            with lock:
                winners.append(seat.player_id)

    threads = [threading.Thread(target=contend, args=(i,)) for i in range(contenders)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
    assert len(losers) == contenders - 1
    game = service.get_view(game_id, P1)
    assert game.player2_id == winners[0]
    assert game.version == 1


def test_find_match_creates_then_joins() -> None:
    service = make_service()
    first = service.find_match("alice")
    assert first.created and first.role is P1

    # The owner is never matched against their own game.
    again = service.find_match("alice")
    assert again.created and again.game_id != first.game_id

    second = service.find_match("bob")
    assert not second.created
    assert (second.game_id, second.role) == (first.game_id, P2)
    assert [g.game_id for g in service.list_open_games()] == [again.game_id]


def test_find_match_lost_race_asks_for_retry(monkeypatch: pytest.MonkeyPatch) -> None:
    service = make_service()
    service.create_game("alice")

    def taken(game_id, player_id=None):
        raise GameFull("Game is full", game_id=game_id)

    monkeypatch.setattr(service, "join_game", taken)
    with pytest.raises(PreconditionFailed):
        service.find_match("bob")


def test_placement_rules_enforced_through_service() -> None:
    service = make_service()
    game_id = service.create_game("alice").game_id
    with pytest.raises(InvalidPhase):
        service.place_ship(game_id, P2, ShipType.DESTROYER, 0, 0, True)

    view = service.place_ship(game_id, P1, ShipType.DESTROYER, 0, 0, True)
    assert view.boards[P1].cell(0, 1).status is CellStatus.SHIP
    with pytest.raises(InvalidPlacement):
        service.place_ship(game_id, P1, ShipType.DESTROYER, 5, 5, True)
    with pytest.raises(InvalidPlacement):
        service.place_ship(game_id, P1, ShipType.CRUISER, 0, 1, False)
    assert service.get_view(game_id, P1).version == 1


def test_placement_view_hides_opponent_fleet() -> None:
    service = make_service()
    game_id = service.create_game("alice").game_id
    service.join_game(game_id, "bob")
    deploy(service, game_id, P1)
    view = service.get_view(game_id, P2)
    assert view.boards[P1].count(CellStatus.SHIP) == 0
    assert view.ready[P1] and not view.ready[P2]


def test_attack_turns_and_rejections() -> None:
    service = make_service()
    game_id = started_game(service)
    version = service.get_view(game_id, P1).version

    with pytest.raises(NotYourTurn):
        service.attack(game_id, P2, 0, 0)
    assert service.get_view(game_id, P1).version == version

    hit = service.attack(game_id, P1, 0, 0)
    assert hit.outcome.hit and hit.view.current_turn is P1
    miss = service.attack(game_id, P1, 9, 9)
    assert not miss.outcome.hit and miss.view.current_turn is P2
    assert miss.game_status is GamePhase.PLAYING
    assert miss.winner is None


def test_finishing_attack_reports_winner() -> None:
    service = make_service()
    game_id = started_game(service)
    report = finish_game(service, game_id)
    assert report.outcome.sunk
    assert report.game_status is GamePhase.FINISHED
    assert report.winner is P1
    with pytest.raises(InvalidPhase):
        service.attack(game_id, P1, 9, 9)


def test_rejected_operation_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    service = make_service()
    game_id = started_game(service)
    with caplog.at_level(logging.WARNING, logger="broadside.server.service"):
        with pytest.raises(NotYourTurn):
            service.attack(game_id, P2, 0, 0)
    records = [r for r in caplog.records if r.getMessage() == "operation_rejected"]
    assert records and records[0].code == "not_your_turn"


def test_publish_failure_does_not_fail_operation() -> None:
    broker = MagicMock(spec=NotificationBroker)
    broker.publish.side_effect = RuntimeError("socket closed")
    service = make_service(broker=broker)
    seat = service.create_game("alice")
    joined = service.join_game(seat.game_id, "bob")
    assert joined.view.player2_id == "bob"
    broker.publish.assert_called_once()


def test_poll_without_since_returns_immediately() -> None:
    clock = FakeClock()
    service = make_service(clock=clock)
    game_id = service.create_game("alice").game_id
    result = service.poll(game_id, P1)
    assert result.updated
    assert clock.sleeps == []


def test_poll_times_out_without_changes() -> None:
    clock = FakeClock()
    service = make_service(clock=clock)
    game_id = service.create_game("alice").game_id
    since = service.get_view(game_id, P1).updated_at

    result = service.poll(game_id, P1, since=since)
    assert not result.updated
    assert clock.sleeps == [0.5, 0.5, 0.5, 0.5]
    assert result.view.game_id == game_id


def test_poll_returns_early_on_update() -> None:
    clock = FakeClock()
    service = make_service(clock=clock)
    game_id = service.create_game("alice").game_id
    since = service.get_view(game_id, P1).updated_at
    clock.on_sleep = lambda: service.join_game(game_id, "bob") if clock.sleeps == [0.5] else None

    result = service.poll(game_id, P2, since=since, timeout=10)
    assert result.updated
    assert result.view.player2_id == "bob"
    assert clock.sleeps == [0.5]


def test_poll_masks_for_requester() -> None:
    service = make_service()
    game_id = started_game(service)
    view = service.poll(game_id, P2).view
    assert view.boards[P1].count(CellStatus.SHIP) == 0
    assert view.boards[P2].count(CellStatus.SHIP) == 0


def test_stream_yields_connected_snapshot_then_updates() -> None:
    broker = NotificationBroker()
    service = make_service(broker=broker)
    game_id = started_game(service)
    stream = service.stream(game_id, P2)

    connected = next(stream)
    assert connected.type == "connected"
    snapshot = next(stream)
    assert snapshot.type == "game"
    assert snapshot.view.boards[P1].count(CellStatus.SHIP) == 0
    assert broker.connection_count(game_id) == 1

    # Already reflected in the snapshot, so the stream skips it.
    broker.publish(game_id, service._store.get(game_id))
    service.attack(game_id, P1, 9, 9)

    update = next(stream)
    assert update.view.version == snapshot.view.version + 1
    assert update.view.current_turn is P2
    assert update.view.boards[P1].count(CellStatus.SHIP) == 0

    stream.close()
    assert broker.connection_count(game_id) == 0


def test_rematch_created_once_and_announced() -> None:
    broker = NotificationBroker()
    service = make_service(broker=broker)
    game_id = started_game(service)
    finish_game(service, game_id)
    listener = broker.subscribe(game_id, P1)
    listener.pending()

    seat = service.rematch(game_id, P2)
    assert seat.created
    assert seat.player_id == "bob"
    assert seat.view.phase is GamePhase.PLACING
    assert seat.view.rematch_of == game_id
    assert seat.view.current_turn is P2

    (event,) = listener.pending()
    assert event.rematch_game_id == seat.game_id

    again = service.rematch(game_id, P1)
    assert not again.created
    assert again.game_id == seat.game_id
    assert again.player_id == "alice"


def test_rematch_requires_finished_game() -> None:
    service = make_service()
    game_id = started_game(service)
    with pytest.raises(InvalidPhase):
        service.rematch(game_id, P1)


def test_placement_survives_concurrent_join() -> None:
    store = InterleavingStore()
    service = make_service(store=store)
    game_id = service.create_game("alice").game_id
    store.on_get = lambda: store.conditional_update(
        game_id, lambda g: g.player2_id is None, lambda g: g.join("bob")
    )

    view = service.place_ship(game_id, P1, ShipType.DESTROYER, 0, 0, True)
    assert view.phase is GamePhase.PLACING
    assert view.player2_id == "bob"
    assert view.boards[P1].cell(0, 0).status is CellStatus.SHIP
    assert view.version == 2


def test_placement_conflicts_when_own_fleet_changed() -> None:
    store = InterleavingStore()
    service = make_service(store=store)
    game_id = service.create_game("alice").game_id
    store.on_get = lambda: store.conditional_update(
        game_id, lambda g: True, lambda g: g.place_ship(P1, ShipType.CRUISER, 5, 5, True)
    )

    with pytest.raises(PreconditionFailed):
        service.place_ship(game_id, P1, ShipType.DESTROYER, 0, 0, True)
    assert len(service.get_view(game_id, P1).fleets[P1]) == 1


def test_stream_ends_when_broker_closes() -> None:
    broker = NotificationBroker()
    service = make_service(broker=broker, poll_timeout=0.05)
    game_id = started_game(service)
    stream = service.stream(game_id, P1)
    assert next(stream).type == "connected"
    assert next(stream).type == "game"

    broker.close()
    assert next(stream, None) is None
    assert broker.connection_count(game_id) == 0


def test_stream_delivers_queued_update_before_ending() -> None:
    broker = NotificationBroker()
    service = make_service(broker=broker, poll_timeout=0.05)
    game_id = started_game(service)
    stream = service.stream(game_id, P2)
    next(stream), next(stream)

    service.attack(game_id, P1, 9, 9)
    broker.close()
    update = next(stream)
    assert update.view.current_turn is P2
    assert next(stream, None) is None
