"""
Per-request user context.

Location resolution is a strict fallback chain, stopping at the first hit:

1. an explicit override chosen by the caller ("custom")
2. the live device position, bounded by a timeout ("current")
3. the profile location, geocoded through the place provider ("profile")
4. the last location resolved earlier in this session ("session")

When all four fail the context carries no location and geo-bounded
features are skipped. No placeholder coordinate is ever substituted.
"""
from __future__ import annotations

import asyncio
import logging

from pydantic import ValidationError

from ..sources.base import DevicePositionProvider, PlaceProvider, PreferenceStore, SessionCache
from .config import DEFAULT_DISCOVERY_CONFIG, DiscoveryConfig
from .models import Coordinates, ResolvedLocation, UserContext, UserPreferences

logger = logging.getLogger(__name__)

LAST_LOCATION_KEY = "last_location"


class StaticDevicePosition:
    """Device position already reported by the client with the request."""

    def __init__(self, coordinates: Coordinates | None) -> None:
        self._coordinates = coordinates

    async def current_position(self) -> Coordinates | None:
        return self._coordinates


def resolve_radius_km(
    override_km: float | None,
    preferences: UserPreferences,
    config: DiscoveryConfig = DEFAULT_DISCOVERY_CONFIG,
) -> float:
    if override_km is not None:
        return override_km
    if preferences.nearby_radius_mi is not None:
        return preferences.nearby_radius_mi * config.miles_to_km
    return config.default_radius_km


class SearchContextBuilder:
    def __init__(
        self,
        preferences: PreferenceStore,
        provider: PlaceProvider | None = None,
        config: DiscoveryConfig = DEFAULT_DISCOVERY_CONFIG,
    ) -> None:
        self._preferences = preferences
        self._provider = provider
        self._config = config

    async def build(
        self,
        user_id: str,
        location_override: ResolvedLocation | None = None,
        device: DevicePositionProvider | None = None,
        session_store: SessionCache | None = None,
        radius_km: float | None = None,
        open_now: bool | None = None,
    ) -> UserContext:
        prefs = await self._load_preferences(user_id)
        location, origin_mode = await self.resolve_location(
            prefs, location_override, device, session_store
        )
        if location is not None and session_store is not None:
            session_store.set(LAST_LOCATION_KEY, location.model_dump())

        return UserContext(
            user_id=user_id,
            tag_affinities=prefs.tag_affinities[: self._config.max_tag_affinities],
            resolved_location=location,
            origin_mode=origin_mode,
            radius_km=resolve_radius_km(radius_km, prefs, self._config),
            open_now_only=prefs.open_now_only if open_now is None else open_now,
        )

    async def _load_preferences(self, user_id: str) -> UserPreferences:
        try:
            prefs = await self._preferences.get_user_preferences(user_id)
        except Exception:
            logger.warning("Preference lookup failed for %s, using defaults", user_id, exc_info=True)
            return UserPreferences()
        return prefs or UserPreferences()

    async def resolve_location(
        self,
        prefs: UserPreferences,
        location_override: ResolvedLocation | None = None,
        device: DevicePositionProvider | None = None,
        session_store: SessionCache | None = None,
    ) -> tuple[ResolvedLocation | None, str | None]:
        if location_override is not None:
            return location_override, "custom"

        position = await self._device_position(device)
        if position is not None:
            return ResolvedLocation(lat=position.lat, lng=position.lng, label="Current location"), "current"

        geocoded = await self._geocode_profile(prefs.profile_location)
        if geocoded is not None:
            return geocoded, "profile"

        cached = self._session_location(session_store)
        if cached is not None:
            return cached, "session"

        return None, None

    async def _device_position(self, device: DevicePositionProvider | None) -> Coordinates | None:
        if device is None:
            return None
        try:
            return await asyncio.wait_for(
                device.current_position(), timeout=self._config.device_position_timeout_s
            )
        except (asyncio.TimeoutError, PermissionError):
            logger.debug("Device position unavailable, falling through")
            return None
        except Exception:
            logger.warning("Device position lookup failed", exc_info=True)
            return None

    async def _geocode_profile(self, profile_location: str | None) -> ResolvedLocation | None:
        if not profile_location or self._provider is None:
            return None
        try:
            return await self._provider.geocode(profile_location)
        except Exception:
            logger.warning("Geocoding profile location %r failed", profile_location, exc_info=True)
            return None

    @staticmethod
    def _session_location(session_store: SessionCache | None) -> ResolvedLocation | None:
        if session_store is None:
            return None
        try:
            raw = session_store.get(LAST_LOCATION_KEY)
            return ResolvedLocation.model_validate(raw) if raw is not None else None
        except (ValidationError, ValueError):
            logger.warning("Discarding malformed session location", exc_info=True)
            return None
