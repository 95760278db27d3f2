"""
Google Places (New) provider.

Only the three calls the discovery core needs: nearby search, forward
geocoding and reverse geocoding. Field masks keep responses to what the
candidate model carries. A disabled provider (no key or kill switch)
returns nothing and makes no calls.
"""
from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from ..recommendations.models import Coordinates, Place, ResolvedLocation
from .config import DEFAULT_PLACES_CONFIG, PlacesConfig

logger = logging.getLogger(__name__)

NEARBY_FIELD_MASK = ",".join([
    "places.id",
    "places.displayName",
    "places.formattedAddress",
    "places.location",
    "places.types",
    "places.rating",
    "places.priceLevel",
    "places.currentOpeningHours.openNow",
])

_MAX_RADIUS_M = 50_000.0

_PRICE_LEVELS = {
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}

# App tags that correspond to a Places "includedTypes" value
_TAG_TO_TYPE = {
    "coffee": "cafe",
    "cafe": "cafe",
    "bakery": "bakery",
    "bar": "bar",
    "bars": "bar",
    "restaurant": "restaurant",
    "food": "restaurant",
    "tacos": "mexican_restaurant",
    "mexican": "mexican_restaurant",
    "pizza": "pizza_restaurant",
    "sushi": "sushi_restaurant",
    "ramen": "ramen_restaurant",
    "park": "park",
    "parks": "park",
    "museum": "museum",
    "art": "art_gallery",
    "books": "book_store",
    "library": "library",
    "gym": "gym",
}


def included_types(interest_tags: Sequence[str]) -> list[str]:
    types = [_TAG_TO_TYPE[t.lower()] for t in interest_tags if t.lower() in _TAG_TO_TYPE]
    return list(dict.fromkeys(types))


def map_place(raw: dict[str, Any]) -> Place:
    location = raw.get("location") or {}
    coordinates = None
    if "latitude" in location and "longitude" in location:
        coordinates = Coordinates(lat=location["latitude"], lng=location["longitude"])

    return Place(
        id=raw.get("id") or None,
        name=(raw.get("displayName") or {}).get("text") or "",
        address=raw.get("formattedAddress") or "",
        tags=set(raw.get("types") or []),
        coordinates=coordinates,
        source="external",
        popularity=0,
        rating=raw.get("rating"),
        price_level=_PRICE_LEVELS.get(raw.get("priceLevel", "")),
        open_now=(raw.get("currentOpeningHours") or {}).get("openNow"),
    )


class GooglePlacesProvider:
    def __init__(
        self,
        config: PlacesConfig = DEFAULT_PLACES_CONFIG,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def find_nearby(
        self,
        origin: Coordinates,
        radius_km: float,
        interest_tags: Sequence[str],
        open_now: bool,
        limit: int,
    ) -> list[Place]:
        if not self._config.active:
            return []

        body: dict[str, Any] = {
            "maxResultCount": max(1, min(limit, self._config.max_results)),
            "locationRestriction": {
                "circle": {
                    "center": {"latitude": origin.lat, "longitude": origin.lng},
                    "radius": min(radius_km * 1000.0, _MAX_RADIUS_M),
                },
            },
        }
        types = included_types(interest_tags)
        if types:
            body["includedTypes"] = types

        logger.info("Places searchNearby (%.4f, %.4f) types=%s", origin.lat, origin.lng, types)
        resp = await self._client.post(
            f"{self._config.base_url}/places:searchNearby",
            json=body,
            headers={
                "Content-Type": "application/json",
                "X-Goog-Api-Key": self._config.api_key,
                "X-Goog-FieldMask": NEARBY_FIELD_MASK,
            },
        )
        resp.raise_for_status()

        places = [map_place(p) for p in resp.json().get("places", [])]
        places = [p for p in places if p.name]
        if open_now:
            places = [p for p in places if p.open_now is not False]
        return places

    async def _geocode_request(self, params: dict[str, str]) -> dict[str, Any] | None:
        resp = await self._client.get(
            self._config.geocode_url,
            params={**params, "key": self._config.api_key},
        )
        resp.raise_for_status()
        payload = resp.json()
        if payload.get("status") not in (None, "OK"):
            logger.debug("Geocode returned status %s", payload.get("status"))
            return None
        results = payload.get("results") or []
        return results[0] if results else None

    async def reverse_geocode(self, lat: float, lng: float) -> str | None:
        if not self._config.active:
            return None
        result = await self._geocode_request({"latlng": f"{lat},{lng}"})
        return result.get("formatted_address") if result else None

    async def geocode(self, text: str) -> ResolvedLocation | None:
        if not self._config.active or not text.strip():
            return None
        result = await self._geocode_request({"address": text})
        if not result:
            return None
        location = (result.get("geometry") or {}).get("location") or {}
        if "lat" not in location or "lng" not in location:
            return None
        return ResolvedLocation(
            lat=location["lat"],
            lng=location["lng"],
            label=result.get("formatted_address") or text,
        )
