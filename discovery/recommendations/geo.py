"""
Geo filtering.

Every distance in the package goes through this module: candidate radius
checks, nearby sorting, distance reasons and the catalog's vectorised
proximity ordering.
"""
from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from .models import Candidate, Coordinates, Place

EARTH_RADIUS_KM = 6371.0


def distance_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points (haversine, atan2 form)."""
    dlat = math.radians(b.lat - a.lat)
    dlng = math.radians(b.lng - a.lng)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(dlng / 2) ** 2
    )
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distances_km(origin: Coordinates, lats: Sequence[float], lngs: Sequence[float]) -> np.ndarray:
    """Vectorised ``distance_km`` from one origin to many points. NaN in, NaN out."""
    lat_arr = np.asarray(lats, dtype=float)
    lng_arr = np.asarray(lngs, dtype=float)
    dlat = np.radians(lat_arr - origin.lat)
    dlng = np.radians(lng_arr - origin.lng)
    h = (
        np.sin(dlat / 2) ** 2
        + math.cos(math.radians(origin.lat)) * np.cos(np.radians(lat_arr)) * np.sin(dlng / 2) ** 2
    )
    h = np.clip(h, 0.0, 1.0)
    return 2 * EARTH_RADIUS_KM * np.arctan2(np.sqrt(h), np.sqrt(1 - h))


def coordinates_of(candidate: Candidate) -> Coordinates | None:
    if isinstance(candidate, Place):
        return candidate.coordinates
    return None


def within_radius(candidate: Candidate, origin: Coordinates, radius_km: float) -> bool:
    """False when the candidate has no coordinates or lies beyond ``radius_km``."""
    coords = coordinates_of(candidate)
    if coords is None:
        return False
    return distance_km(coords, origin) <= radius_km


def filter_within_radius(
    candidates: Sequence[Place], origin: Coordinates, radius_km: float
) -> list[Place]:
    return [c for c in candidates if within_radius(c, origin, radius_km)]
