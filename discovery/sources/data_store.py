from __future__ import annotations

from typing import Any, Iterable, Sequence

import pandas as pd

from ..recommendations.geo import distances_km
from ..recommendations.merge import composite_keys
from ..recommendations.models import Coordinates, Place, PlaceList, UserPreferences, UserProfile
from .config import DEFAULT_CATALOG_CONFIG, CatalogConfig


def _split(value: Any) -> list[str]:
    if not isinstance(value, str):
        return []
    return [v.strip().lower() for v in value.split(",") if v.strip()]


def _prepare_places(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    for col in ("id", "name", "address", "description", "tags"):
        if col not in df.columns:
            df[col] = ""
        df[col] = df[col].fillna("").astype(str)
    for col in ("lat", "lng", "rating", "price_level", "popularity"):
        if col not in df.columns:
            df[col] = float("nan")
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df["popularity"] = df["popularity"].fillna(0).astype(int)

    # Pre-parse tags into lists and lowercase text for matching
    df["tags_list"] = df["tags"].apply(_split)
    df["search_text"] = (
        df["name"] + " " + df["address"] + " " + df["description"] + " " + df["tags"]
    ).str.lower()
    return df


def _prepare_lists(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    for col in ("id", "name", "description", "tags", "owner_id", "place_refs", "visibility"):
        if col not in df.columns:
            df[col] = ""
        df[col] = df[col].fillna("").astype(str)
    if "like_count" not in df.columns:
        df["like_count"] = 0
    df["like_count"] = pd.to_numeric(df["like_count"], errors="coerce").fillna(0).astype(int)
    df["tags_list"] = df["tags"].apply(_split)
    df["search_text"] = (df["name"] + " " + df["description"] + " " + df["tags"]).str.lower()
    return df


def _prepare_users(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    for col in ("id", "name", "username", "bio", "tags"):
        if col not in df.columns:
            df[col] = ""
        df[col] = df[col].fillna("").astype(str)
    if "influences" not in df.columns:
        df["influences"] = 0
    df["influences"] = pd.to_numeric(df["influences"], errors="coerce").fillna(0).astype(int)
    df["tags_list"] = df["tags"].apply(_split)
    df["search_text"] = (
        df["name"] + " " + df["username"] + " " + df["bio"] + " " + df["tags"]
    ).str.lower()
    return df


def _row_to_place(row: pd.Series) -> Place:
    coordinates = None
    if pd.notna(row.get("lat")) and pd.notna(row.get("lng")):
        coordinates = Coordinates(lat=float(row["lat"]), lng=float(row["lng"]))

    open_now = row.get("open_now")
    created_at = row.get("created_at")
    return Place(
        id=row["id"] or None,
        name=row["name"],
        address=row["address"],
        description=row["description"],
        tags=set(row["tags_list"]),
        coordinates=coordinates,
        source="internal",
        popularity=int(row["popularity"]),
        rating=float(row["rating"]) if pd.notna(row.get("rating")) else None,
        price_level=int(row["price_level"]) if pd.notna(row.get("price_level")) else None,
        open_now=bool(open_now) if pd.notna(open_now) else None,
        created_at=pd.Timestamp(created_at).to_pydatetime() if pd.notna(created_at) else None,
    )


def _row_to_list(row: pd.Series) -> PlaceList:
    return PlaceList(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        tags=set(row["tags_list"]),
        owner_id=row["owner_id"],
        place_refs=[r.strip() for r in row["place_refs"].split(",") if r.strip()],
        like_count=int(row["like_count"]),
        visibility=row["visibility"] or "public",
    )


def _row_to_user(row: pd.Series) -> UserProfile:
    return UserProfile(
        id=row["id"],
        name=row["name"],
        username=row["username"],
        bio=row["bio"],
        tags=set(row["tags_list"]),
        influences=int(row["influences"]),
    )


def _text_matches(search_text: pd.Series, tokens: Sequence[str]) -> pd.Series:
    counts = pd.Series(0, index=search_text.index)
    for token in tokens:
        counts = counts + search_text.str.contains(token, regex=False).astype(int)
    return counts


class DataFrameCatalogStore:
    """Catalog backed by in-memory DataFrames, loaded from CSV on first use."""

    def __init__(
        self,
        places: pd.DataFrame | None = None,
        lists: pd.DataFrame | None = None,
        config: CatalogConfig = DEFAULT_CATALOG_CONFIG,
        users: pd.DataFrame | None = None,
    ) -> None:
        self._config = config
        self._places = _prepare_places(places) if places is not None else None
        self._lists = _prepare_lists(lists) if lists is not None else None
        self._users = _prepare_users(users) if users is not None else None

    @classmethod
    def from_records(
        cls,
        places: list[dict[str, Any]],
        lists: list[dict[str, Any]] | None = None,
        users: list[dict[str, Any]] | None = None,
    ) -> DataFrameCatalogStore:
        return cls(pd.DataFrame(places), pd.DataFrame(lists or []), users=pd.DataFrame(users or []))

    def places_frame(self) -> pd.DataFrame:
        if self._places is None:
            self._places = _prepare_places(pd.read_csv(self._config.places_path))
        return self._places

    def lists_frame(self) -> pd.DataFrame:
        if self._lists is None:
            self._lists = _prepare_lists(pd.read_csv(self._config.lists_path))
        return self._lists

    def users_frame(self) -> pd.DataFrame:
        if self._users is None:
            self._users = _prepare_users(pd.read_csv(self._config.users_path))
        return self._users

    async def query_by_tags_and_location(
        self, tags: Iterable[str], near: Coordinates | None, limit: int
    ) -> list[Place]:
        df = self.places_frame()
        if df.empty:
            return []
        wanted = {t.lower() for t in tags}
        frame = df.assign(_overlap=df["tags_list"].apply(lambda tl: len(wanted & set(tl))))

        sort_cols, ascending = ["_overlap"], [False]
        if near is not None:
            frame["_distance"] = distances_km(near, frame["lat"], frame["lng"])
            sort_cols.append("_distance")
            ascending.append(True)
        sort_cols.append("popularity")
        ascending.append(False)

        top = frame.sort_values(
            sort_cols, ascending=ascending, kind="mergesort", na_position="last"
        ).head(limit)
        return [_row_to_place(row) for _, row in top.iterrows()]

    async def query_by_text(self, tokens: Sequence[str], limit: int) -> list[Place]:
        df = self.places_frame()
        if df.empty or not tokens:
            return []
        frame = df.assign(_matches=_text_matches(df["search_text"], tokens))
        frame = frame[frame["_matches"] > 0]
        top = frame.sort_values(
            ["_matches", "popularity"], ascending=[False, False], kind="mergesort"
        ).head(limit)
        return [_row_to_place(row) for _, row in top.iterrows()]

    async def query_lists_by_text(self, tokens: Sequence[str], limit: int) -> list[PlaceList]:
        df = self.lists_frame()
        if df.empty or not tokens:
            return []
        frame = df.assign(_matches=_text_matches(df["search_text"], tokens))
        frame = frame[frame["_matches"] > 0]
        top = frame.sort_values(
            ["_matches", "like_count"], ascending=[False, False], kind="mergesort"
        ).head(limit)
        return [_row_to_list(row) for _, row in top.iterrows()]

    async def query_users_by_text(self, tokens: Sequence[str], limit: int) -> list[UserProfile]:
        df = self.users_frame()
        if df.empty or not tokens:
            return []
        frame = df.assign(_matches=_text_matches(df["search_text"], tokens))
        frame = frame[frame["_matches"] > 0]
        top = frame.sort_values(
            ["_matches", "influences"], ascending=[False, False], kind="mergesort"
        ).head(limit)
        return [_row_to_user(row) for _, row in top.iterrows()]

    async def get_known_identity_keys(self, limit: int) -> set[str]:
        keys: set[str] = set()
        for _, row in self.places_frame().head(limit).iterrows():
            keys.update(composite_keys(_row_to_place(row)))
        return keys


class CsvPreferenceStore:
    def __init__(
        self,
        frame: pd.DataFrame | None = None,
        config: CatalogConfig = DEFAULT_CATALOG_CONFIG,
    ) -> None:
        self._config = config
        self._df = frame

    def _frame(self) -> pd.DataFrame:
        if self._df is None:
            self._df = pd.read_csv(self._config.preferences_path, dtype={"user_id": str})
        return self._df

    async def get_user_preferences(self, user_id: str) -> UserPreferences | None:
        df = self._frame()
        match = df[df["user_id"].astype(str) == user_id]
        if match.empty:
            return None
        row = match.iloc[0]
        radius = row.get("nearby_radius_mi")
        location = row.get("profile_location")
        open_now = row.get("open_now_only")
        return UserPreferences(
            tag_affinities=_split(row.get("tags")),
            nearby_radius_mi=float(radius) if pd.notna(radius) else None,
            open_now_only=bool(open_now) if pd.notna(open_now) else False,
            profile_location=str(location) if pd.notna(location) and str(location).strip() else None,
        )
