from __future__ import annotations

import asyncio
import logging
import re
from datetime import date
from typing import Callable

from ..recommendations.models import ParsedQuery, Place, UserContext
from .base import PlaceProvider, SourceUnavailable
from .config import DEFAULT_PLACES_CONFIG

logger = logging.getLogger(__name__)

_REGION_RE = re.compile(r"\b[A-Z]{2}\b")
_POSTAL_RE = re.compile(r"\b\d{5}(?:-\d{4})?\b|\b[A-Z]\d[A-Z] ?\d[A-Z]\d\b")


def address_looks_incomplete(address: str | None) -> bool:
    """True when the address has neither a 2-letter region code nor a postal code."""
    if not address:
        return True
    return not (_REGION_RE.search(address) or _POSTAL_RE.search(address))


class CallBudget:
    """Daily ceiling on paid provider calls. Resets when the date rolls over."""

    def __init__(
        self,
        daily_ceiling: int = DEFAULT_PLACES_CONFIG.daily_ceiling,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._ceiling = daily_ceiling
        self._today = today
        self._day = today()
        self._count = 0

    def _roll(self) -> None:
        current = self._today()
        if current != self._day:
            self._day = current
            self._count = 0

    def try_acquire(self) -> bool:
        self._roll()
        if self._count >= self._ceiling:
            return False
        self._count += 1
        return True

    @property
    def used(self) -> int:
        self._roll()
        return self._count


class ExternalProvider:
    """Candidates from the third-party place service, address-enriched best effort."""

    name = "external"

    def __init__(self, provider: PlaceProvider, budget: CallBudget | None = None) -> None:
        self._provider = provider
        self._budget = budget or CallBudget()

    async def fetch(self, context: UserContext, parsed: ParsedQuery, limit: int) -> list[Place]:
        origin = context.resolved_location
        if origin is None:
            return []

        if not self._budget.try_acquire():
            logger.warning("Place provider daily ceiling reached, skipping external lookup")
            raise SourceUnavailable(self.name, "daily ceiling reached")

        interest_tags = list(dict.fromkeys([*sorted(parsed.tag_filters), *context.tag_affinities]))
        places = await self._provider.find_nearby(
            origin, context.radius_km, interest_tags, context.open_now_only, limit
        )
        places = [
            p if p.source == "external" else p.model_copy(update={"source": "external"})
            for p in places
        ]
        return list(await asyncio.gather(*(self.enrich(p) for p in places)))

    async def enrich(self, place: Place) -> Place:
        """Backfill an incomplete address from coordinates; keep the original on failure."""
        if place.coordinates is None or not address_looks_incomplete(place.address):
            return place
        try:
            address = await self._provider.reverse_geocode(
                place.coordinates.lat, place.coordinates.lng
            )
        except Exception:
            logger.warning("Reverse geocode failed for %r, keeping address", place.name, exc_info=True)
            return place
        if not address:
            return place
        return place.model_copy(update={"address": address})
