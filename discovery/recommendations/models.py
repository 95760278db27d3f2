from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class SortMode(str, Enum):
    relevance = "relevance"
    popular = "popular"
    nearby = "nearby"
    recent = "recent"


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class ResolvedLocation(Coordinates):
    label: str | None = None


class Place(BaseModel):
    kind: Literal["place"] = "place"
    id: str | None = None
    name: str
    address: str = ""
    description: str = ""
    tags: set[str] = Field(default_factory=set)
    coordinates: Coordinates | None = None
    source: Literal["internal", "external"] = "internal"
    popularity: int = Field(default=0, ge=0)
    rating: float | None = None
    price_level: int | None = Field(default=None, ge=1, le=4)
    open_now: bool | None = None
    created_at: datetime | None = None


class PlaceList(BaseModel):
    kind: Literal["list"] = "list"
    id: str
    name: str
    description: str = ""
    tags: set[str] = Field(default_factory=set)
    owner_id: str
    place_refs: list[str] = Field(default_factory=list)
    like_count: int = Field(default=0, ge=0)
    visibility: Literal["public", "friends", "private"] = "public"


class UserProfile(BaseModel):
    kind: Literal["user"] = "user"
    id: str
    name: str
    username: str = ""
    bio: str = ""
    tags: set[str] = Field(default_factory=set)
    influences: int = Field(default=0, ge=0)


Candidate = Annotated[Union[Place, PlaceList, UserProfile], Field(discriminator="kind")]


class UserPreferences(BaseModel):
    tag_affinities: list[str] = Field(default_factory=list)
    nearby_radius_mi: float | None = Field(default=None, gt=0)
    open_now_only: bool = False
    profile_location: str | None = None


class UserContext(BaseModel):
    user_id: str
    tag_affinities: list[str] = Field(default_factory=list, max_length=8)
    resolved_location: ResolvedLocation | None = None
    origin_mode: Literal["custom", "current", "profile", "session"] | None = None
    radius_km: float = 80.0
    open_now_only: bool = False


class ParsedQuery(BaseModel):
    raw_text: str = ""
    tokens: list[str] = Field(default_factory=list)
    tag_filters: set[str] = Field(default_factory=set)
    sort_mode: SortMode = SortMode.relevance

    @property
    def text(self) -> str:
        """Normalised full query text used for substring matching."""
        return " ".join(self.tokens)

    @property
    def is_discovery(self) -> bool:
        return not self.tokens


@dataclass
class ScoredCandidate:
    """Ranking-internal wrapper; never serialised."""

    item: Candidate
    score: float = 0.0
    distance_km: float | None = None


class CacheEntry(BaseModel):
    key: str
    items: list[Candidate]
    stored_at: float


# ── Caller API ───────────────────────────────────────────────────────────


class SearchRequest(BaseModel):
    query: str = Field(default="", max_length=200)
    tags: list[str] = Field(default_factory=list)
    sort: SortMode = SortMode.relevance
    location: ResolvedLocation | None = Field(
        default=None, description="User-chosen location filter"
    )
    device: Coordinates | None = Field(
        default=None, description="Live device position reported by the client"
    )
    radius_km: float | None = Field(default=None, gt=0.0, le=500.0)
    open_now: bool | None = None
    recency: dict[str, float] = Field(
        default_factory=dict, description="Candidate id -> epoch seconds"
    )
    limit: int = Field(default=20, ge=1, le=50)


class DiscoverRequest(BaseModel):
    force_refresh: bool = False
    location: ResolvedLocation | None = None
    device: Coordinates | None = None
    radius_km: float | None = Field(default=None, gt=0.0, le=500.0)
    open_now: bool | None = None
    limit: int = Field(default=12, ge=1, le=50)


class RankedResult(BaseModel):
    item: Candidate
    score: float
    distance_km: float | None = None
    reason: str | None = None


class SearchResponse(BaseModel):
    status: Literal["ok", "unavailable", "superseded"] = "ok"
    results: list[RankedResult] = Field(default_factory=list)
    total_candidates: int = 0
    location_resolved: bool = False
    origin_mode: str | None = None
    failed_sources: list[str] = Field(default_factory=list)
    cache_hit: bool = False


class SessionRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
