"""Runtime settings for the game service."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, Field


class GameServerSettings(BaseModel):
    """Timing and capacity knobs used by :class:`broadside.server.service.GameService`."""

    poll_timeout: float = Field(default=30.0, gt=0)
    poll_interval: float = Field(default=0.5, gt=0)
    subscriber_queue_size: int = Field(default=64, ge=1)
    open_game_scan_limit: int = Field(default=10, ge=1)

    @classmethod
    def from_env(cls, **overrides: Any) -> "GameServerSettings":
        """Construct settings from `BROADSIDE_*` environment variables."""

        env_names = {
            "poll_timeout": "BROADSIDE_POLL_TIMEOUT",
            "poll_interval": "BROADSIDE_POLL_INTERVAL",
            "subscriber_queue_size": "BROADSIDE_SUBSCRIBER_QUEUE_SIZE",
            "open_game_scan_limit": "BROADSIDE_OPEN_GAME_SCAN_LIMIT",
        }
        data: dict[str, Any] = {}
        for field, env_name in env_names.items():
            value = os.getenv(env_name)
            if value is not None and value.strip():
                data[field] = value.strip()
        data.update(overrides)
        # pydantic coerces the string values and enforces the bounds.
        return cls(**data)


@lru_cache(maxsize=1)
def load_settings() -> GameServerSettings:
    """Load and cache settings from the environment."""

    return GameServerSettings.from_env()
