from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any

from ..recommendations.cache import RecommendationCache, RotationSet
from ..recommendations.config import DEFAULT_DISCOVERY_CONFIG, DiscoveryConfig


class InMemorySessionCache:
    """Key -> JSON map. Values are stored serialised, like browser session storage."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, default=str)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class RequestSuperseded(Exception):
    """The request was cancelled or a newer request replaced it."""


class CancellationToken:
    def __init__(
        self, gate: RequestGate | None = None, channel: str = "", generation: int = 0
    ) -> None:
        self._gate = gate
        self._channel = channel
        self._generation = generation
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._gate is not None and self._gate.generation(self._channel) != self._generation

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RequestSuperseded()


class RequestGate:
    """Generation counter per channel; beginning a request supersedes the previous one."""

    def __init__(self) -> None:
        self._generations: dict[str, int] = {}

    def begin(self, channel: str) -> CancellationToken:
        generation = self._generations.get(channel, 0) + 1
        self._generations[channel] = generation
        return CancellationToken(self, channel, generation)

    def generation(self, channel: str) -> int:
        return self._generations.get(channel, 0)


@dataclass
class DiscoverySession:
    """Everything shared across the requests of one session."""

    store: InMemorySessionCache = field(default_factory=InMemorySessionCache)
    config: DiscoveryConfig = DEFAULT_DISCOVERY_CONFIG
    cache: RecommendationCache = field(init=False)
    rotation: RotationSet = field(init=False)
    gate: RequestGate = field(default_factory=RequestGate)

    def __post_init__(self) -> None:
        self.cache = RecommendationCache(self.store, self.config.freshness_window_s)
        self.rotation = RotationSet(self.store, self.config.rotation_cap)


class SessionRegistry:
    def __init__(self, config: DiscoveryConfig = DEFAULT_DISCOVERY_CONFIG) -> None:
        self._config = config
        self._sessions: dict[str, DiscoverySession] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> DiscoverySession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = DiscoverySession(config=self._config)
                self._sessions[session_id] = session
            return session

    def drop(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
