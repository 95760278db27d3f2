"""Boundary interfaces consumed by the discovery core."""
from __future__ import annotations

from typing import Any, Iterable, Protocol, Sequence

from ..recommendations.models import (
    Coordinates,
    ParsedQuery,
    Place,
    PlaceList,
    ResolvedLocation,
    UserContext,
    UserPreferences,
    UserProfile,
)


class SourceUnavailable(Exception):
    """A candidate source failed or timed out; the request degrades to the other source."""

    def __init__(self, source: str, reason: str = "") -> None:
        super().__init__(f"{source} unavailable: {reason}" if reason else f"{source} unavailable")
        self.source = source
        self.reason = reason


class CatalogStore(Protocol):
    async def query_by_tags_and_location(
        self, tags: Iterable[str], near: Coordinates | None, limit: int
    ) -> list[Place]: ...

    async def query_by_text(self, tokens: Sequence[str], limit: int) -> list[Place]: ...

    async def query_lists_by_text(self, tokens: Sequence[str], limit: int) -> list[PlaceList]: ...

    async def query_users_by_text(self, tokens: Sequence[str], limit: int) -> list[UserProfile]: ...

    async def get_known_identity_keys(self, limit: int) -> set[str]: ...


class PlaceProvider(Protocol):
    async def find_nearby(
        self,
        origin: Coordinates,
        radius_km: float,
        interest_tags: Sequence[str],
        open_now: bool,
        limit: int,
    ) -> list[Place]: ...

    async def reverse_geocode(self, lat: float, lng: float) -> str | None: ...

    async def geocode(self, text: str) -> ResolvedLocation | None: ...


class PreferenceStore(Protocol):
    async def get_user_preferences(self, user_id: str) -> UserPreferences | None: ...


class SessionCache(Protocol):
    """Small key -> JSON map scoped to one session."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class DevicePositionProvider(Protocol):
    """Live device position. May block; callers bound the wait."""

    async def current_position(self) -> Coordinates | None: ...


class CandidateSource(Protocol):
    name: str

    async def fetch(self, context: UserContext, parsed: ParsedQuery, limit: int) -> list[Place]: ...
