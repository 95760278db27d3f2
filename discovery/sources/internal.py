from __future__ import annotations

from ..recommendations.models import ParsedQuery, Place, PlaceList, UserContext, UserProfile
from .base import CatalogStore


class InternalCatalog:
    """Candidates from the app's own catalog. Every result has a stable id."""

    name = "internal"

    def __init__(self, store: CatalogStore) -> None:
        self._store = store

    async def fetch(self, context: UserContext, parsed: ParsedQuery, limit: int) -> list[Place]:
        if parsed.tokens:
            places = await self._store.query_by_text(parsed.tokens, limit)
        else:
            tags = sorted(parsed.tag_filters) or context.tag_affinities
            places = await self._store.query_by_tags_and_location(
                tags, context.resolved_location, limit
            )

        return [p if p.source == "internal" else p.model_copy(update={"source": "internal"}) for p in places]

    async def fetch_lists(self, parsed: ParsedQuery, limit: int) -> list[PlaceList]:
        """Public lists matching the query text; none on the discovery path."""
        if not parsed.tokens:
            return []
        lists = await self._store.query_lists_by_text(parsed.tokens, limit)
        return [lst for lst in lists if lst.visibility == "public"]

    async def known_identity_keys(self, limit: int) -> set[str]:
        return await self._store.get_known_identity_keys(limit)

    async def fetch_users(self, parsed: ParsedQuery, limit: int) -> list[UserProfile]:
        """People matching the query text; none on the discovery path."""
        if not parsed.tokens:
            return []
        return await self._store.query_users_by_text(parsed.tokens, limit)
