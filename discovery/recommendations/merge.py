from __future__ import annotations

from typing import Iterable, Sequence

from .models import Place


def name_address_key(place: Place) -> str | None:
    """``lower(name)|lower(address)``, or None when the place has no name."""
    name = (place.name or "").strip().lower()
    if not name:
        return None
    return f"{name}|{(place.address or '').strip().lower()}"


def coord_key(place: Place) -> str | None:
    """Coordinates rounded to 5 decimals (~1 m), or None without coordinates."""
    if place.coordinates is None:
        return None
    return f"{place.coordinates.lat:.5f},{place.coordinates.lng:.5f}"


def composite_keys(place: Place) -> list[str]:
    return [k for k in (name_address_key(place), coord_key(place)) if k is not None]


def identity_key(place: Place) -> str:
    """Stable identifier for places that may lack an id (external candidates)."""
    if place.id:
        return place.id
    keys = composite_keys(place)
    return keys[0] if keys else ""


def merge(
    primary: Sequence[Place],
    secondary: Sequence[Place],
    already_known: Iterable[str] = (),
) -> list[Place]:
    """Append the secondary candidates that do not duplicate anything seen.

    Primary is returned unchanged and in order. A secondary candidate is
    dropped if either of its composite keys collides with a key from
    ``primary``, ``already_known`` or an earlier accepted secondary
    candidate. First occurrence wins.
    """
    seen: set[str] = set(already_known)
    for place in primary:
        seen.update(composite_keys(place))

    merged = list(primary)
    for place in secondary:
        keys = composite_keys(place)
        if any(k in seen for k in keys):
            continue
        seen.update(keys)
        merged.append(place)
    return merged
