"""Fan-out of masked game updates to subscribed clients."""

from __future__ import annotations

import logging
import queue
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from broadside.engine.game import Game, PlayerRole
from broadside.engine.masking import view_for
from broadside.telemetry import get_meter, get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer("broadside.server.broker")
meter = get_meter("broadside.server.broker")

DELIVERY_COUNTER = meter.create_counter(
    "broadside_broker_deliveries",
    unit="1",
    description="Events handed to subscriber queues",
)


@dataclass(frozen=True)
class GameEvent:
    """One message on a subscriber's stream.

    ``view`` is always already masked for the subscriber's role.
    """

    type: str
    game_id: str
    role: PlayerRole
    view: Game | None = None
    rematch_game_id: str | None = None


@dataclass(eq=False)
class Subscription:
    """Handle returned by :meth:`NotificationBroker.subscribe`."""

    game_id: str
    role: PlayerRole
    events: queue.Queue = field(repr=False)
    closed: bool = False

    def get(self, timeout: float | None = None) -> GameEvent | None:
        """Wait for the next event; ``None`` when the wait times out."""
        try:
            return self.events.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> list[GameEvent]:
        drained: list[GameEvent] = []
        while True:
            try:
                drained.append(self.events.get_nowait())
            except queue.Empty:
                return drained


class NotificationBroker:
    """Registry of subscribers keyed by game id.

    Created once per server process and handed to request handlers.
    Delivery is best effort: a slow subscriber loses its oldest event
    rather than blocking the publisher or other subscribers.
    """

    def __init__(self, queue_size: int = 64) -> None:
        self._queue_size = queue_size
        self._lock = threading.Lock()
        self._subscribers: dict[str, set[Subscription]] = {}

    def subscribe(self, game_id: str, role: PlayerRole) -> Subscription:
        subscription = Subscription(game_id, role, queue.Queue(maxsize=self._queue_size))
        with self._lock:
            self._subscribers.setdefault(game_id, set()).add(subscription)
        subscription.events.put_nowait(GameEvent("connected", game_id, role))
        logger.info("subscriber_added", extra={"game_id": game_id, "player": role.value})
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a registration; calling it twice is harmless."""
        with self._lock:
            subscribers = self._subscribers.get(subscription.game_id)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscribers[subscription.game_id]
            subscription.closed = True
        logger.info(
            "subscriber_removed",
            extra={"game_id": subscription.game_id, "player": subscription.role.value},
        )

    @contextmanager
    def subscription(self, game_id: str, role: PlayerRole) -> Iterator[Subscription]:
        handle = self.subscribe(game_id, role)
        try:
            yield handle
        finally:
            self.unsubscribe(handle)

    def publish(self, game_id: str, game: Game, rematch_game_id: str | None = None) -> int:
        """Send each subscriber the view of ``game`` for its own role.

        Returns the number of subscribers that received the event.
        """
        with tracer.start_as_current_span("broker.publish") as span:
            span.set_attribute("game.id", game_id)
            with self._lock:
                targets = list(self._subscribers.get(game_id, ()))
            views: dict[PlayerRole, Game] = {}
            delivered = 0
            for subscription in targets:
                role = subscription.role
                if role not in views:
                    views[role] = view_for(game, role)
                event = GameEvent("game", game_id, role, views[role], rematch_game_id)
                if self._deliver(subscription, event):
                    delivered += 1
            span.set_attribute("broker.subscribers", len(targets))
            span.set_attribute("broker.delivered", delivered)
            return delivered

    def _deliver(self, subscription: Subscription, event: GameEvent) -> bool:
        if subscription.closed:
            return False
        try:
            subscription.events.put_nowait(event)
        except queue.Full:
            try:
                subscription.events.get_nowait()
            except queue.Empty:
                pass
            try:
                subscription.events.put_nowait(event)
            except queue.Full:
                DELIVERY_COUNTER.add(1, attributes={"result": "dropped"})
                logger.warning(
                    "subscriber_event_dropped",
                    extra={"game_id": event.game_id, "player": subscription.role.value},
                )
                return False
            DELIVERY_COUNTER.add(1, attributes={"result": "overflow"})
            logger.warning(
                "subscriber_queue_overflow",
                extra={"game_id": event.game_id, "player": subscription.role.value},
            )
            return True
        DELIVERY_COUNTER.add(1, attributes={"result": "delivered"})
        return True

    def connection_count(self, game_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(game_id, ()))

    def close(self) -> None:
        """Drop every registration, e.g. on server shutdown."""
        with self._lock:
            subscriptions = [sub for subs in self._subscribers.values() for sub in subs]
            self._subscribers.clear()
            for subscription in subscriptions:
                subscription.closed = True
        logger.info("broker_closed", extra={"subscriptions": len(subscriptions)})
