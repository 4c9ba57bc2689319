"""Typed notification channel for award, streak and achievement events.

Award operations already return their outcome; the channel is for other
interested consumers (dashboards, websocket bridges) that want to hear about
it. Subscribers are called in subscription order; a failing subscriber is
logged and never affects the award that produced the event.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, ClassVar, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class XPAwarded:
    name: ClassVar[str] = "xp_awarded"

    user_id: int
    source: str
    source_id: str
    xp: int
    total_xp: int
    level: int
    leveled_up: bool
    award_date: date


@dataclass(frozen=True)
class StreakUpdated:
    name: ClassVar[str] = "streak_updated"

    user_id: int
    status: str
    current_streak: int
    longest_streak: int
    check_in_date: date


@dataclass(frozen=True)
class AchievementUnlocked:
    name: ClassVar[str] = "achievement_unlocked"

    user_id: int
    achievement_id: str
    tokens_awarded: int


@dataclass(frozen=True)
class WagerSettled:
    name: ClassVar[str] = "wager_settled"

    user_id: int
    won: bool
    amount: int
    tokens_delta: int
    power_tokens: int
    wager_date: date


EngineEvent = Union[XPAwarded, StreakUpdated, AchievementUnlocked, WagerSettled]
Subscriber = Callable[[EngineEvent], Union[Awaitable[None], None]]


def event_payload(event: EngineEvent) -> dict[str, Any]:
    """JSON-safe dict with the event name under ``event``."""
    data = asdict(event)
    for key, value in data.items():
        if isinstance(value, date):
            data[key] = value.isoformat()
    return {"event": event.name, "data": data}


class EventChannel:
    """Explicit subscribe/publish channel owned by whoever creates it."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[Subscriber, tuple[type, ...] | None]] = []

    def subscribe(
        self,
        callback: Subscriber,
        event_types: tuple[type, ...] | None = None,
    ) -> Callable[[], None]:
        """Register a callback, optionally filtered by event type. Returns an unsubscribe function."""
        entry = (callback, event_types)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: EngineEvent) -> None:
        for callback, event_types in list(self._subscribers):
            if event_types is not None and not isinstance(event, event_types):
                continue
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Subscriber failed handling %s", event.name, exc_info=True)


async def publish_all(channel: EventChannel | None, events: list[EngineEvent]) -> None:
    """Publish events in order; no-op without a channel."""
    if channel is None:
        return
    for event in events:
        await channel.publish(event)


class RedisEventForwarder:
    """Subscriber that republishes events on Redis ``pubsub:<event name>`` channels."""

    def __init__(self, redis: object) -> None:
        self._redis = redis

    async def __call__(self, event: EngineEvent) -> None:
        await self._redis.publish(  # type: ignore[attr-defined]
            f"pubsub:{event.name}",
            json.dumps(event_payload(event)),
        )
