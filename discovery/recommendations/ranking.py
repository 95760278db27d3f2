"""
Ranking engine.

Responsibilities:
- Score candidates against a parsed query (text relevance, tag filters).
- Sort by relevance, popularity, proximity or recency with deterministic
  tie-breaks (stable sort over the input order).
- Attach each candidate's distance once, before sorting.
- Explain why a candidate was surfaced, using only real signals.
"""
from __future__ import annotations

from typing import Mapping, Sequence

from .config import DEFAULT_DISCOVERY_CONFIG, DiscoveryConfig
from .geo import coordinates_of, distance_km
from .models import (
    Candidate,
    ParsedQuery,
    Place,
    PlaceList,
    RankedResult,
    ScoredCandidate,
    SortMode,
    UserContext,
    UserProfile,
)

NAME_MATCH = 4.0
TEXT_MATCH = 2.0
TAG_TEXT_MATCH = 3.0
TAG_FILTER_MATCH = 5.0


def popularity_of(candidate: Candidate) -> int:
    if isinstance(candidate, PlaceList):
        return candidate.like_count
    if isinstance(candidate, UserProfile):
        return candidate.influences
    return candidate.popularity


def _name_fields(candidate: Candidate) -> list[str]:
    if isinstance(candidate, UserProfile):
        return [candidate.name, candidate.username]
    return [candidate.name]


def _text_fields(candidate: Candidate) -> list[str]:
    """Secondary text, matched field by field."""
    if isinstance(candidate, Place):
        return [candidate.description, candidate.address]
    if isinstance(candidate, UserProfile):
        return [candidate.bio]
    return [candidate.description]


def _contains(fields: list[str], text: str) -> bool:
    return any(text in field.lower() for field in fields)


def score_candidate(candidate: Candidate, parsed: ParsedQuery) -> float:
    """Compute the relevance score for a single candidate."""
    score = 0.0
    text = parsed.text
    tags_lower = [t.lower() for t in candidate.tags]

    if text:
        if _contains(_name_fields(candidate), text):
            score += NAME_MATCH
        if _contains(_text_fields(candidate), text):
            score += TEXT_MATCH
        if any(text in tag for tag in tags_lower):
            score += TAG_TEXT_MATCH

    for tag in parsed.tag_filters:
        if tag in candidate.tags:
            score += TAG_FILTER_MATCH

    return score


def _recency_of(candidate: Candidate, recency: Mapping[str, float]) -> float | None:
    if candidate.id and candidate.id in recency:
        return recency[candidate.id]
    if isinstance(candidate, Place) and candidate.created_at is not None:
        return candidate.created_at.timestamp()
    return None


def rank(
    candidates: Sequence[Candidate],
    parsed: ParsedQuery,
    context: UserContext | None = None,
    sort_mode: SortMode | None = None,
    recency: Mapping[str, float] | None = None,
) -> list[ScoredCandidate]:
    mode = sort_mode or parsed.sort_mode
    origin = context.resolved_location if context else None

    scored: list[ScoredCandidate] = []
    for candidate in candidates:
        coords = coordinates_of(candidate)
        distance = distance_km(coords, origin) if (origin and coords) else None
        scored.append(ScoredCandidate(item=candidate, distance_km=distance))

    if mode == SortMode.relevance:
        for sc in scored:
            sc.score = score_candidate(sc.item, parsed)
        return sorted(scored, key=lambda sc: (-sc.score, -popularity_of(sc.item)))

    if mode == SortMode.popular:
        return sorted(scored, key=lambda sc: -popularity_of(sc.item))

    if mode == SortMode.nearby:
        if origin is None:
            return scored
        return sorted(
            scored,
            key=lambda sc: (sc.distance_km is None, sc.distance_km or 0.0),
        )

    # recent
    stamps = recency or {}
    keyed = [(sc, _recency_of(sc.item, stamps)) for sc in scored]
    keyed.sort(key=lambda pair: (pair[1] is None, -(pair[1] or 0.0)))
    return [sc for sc, _ in keyed]


# ── Reasons ──────────────────────────────────────────────────────────────


def _format_tag(tag: str) -> str:
    return " ".join(word.capitalize() for word in tag.replace("_", " ").split())


def reason_for(
    scored: ScoredCandidate,
    context: UserContext | None,
    config: DiscoveryConfig = DEFAULT_DISCOVERY_CONFIG,
) -> str | None:
    """Truthful "why this?" line, or None when there is no strong signal."""
    if context is not None:
        matching = [t for t in context.tag_affinities if t in scored.item.tags]
        if len(matching) >= 2:
            return f"Because you like #{_format_tag(matching[0])} • #{_format_tag(matching[1])}"
        if matching:
            return f"Because you like #{_format_tag(matching[0])}"

    if scored.distance_km is not None and scored.distance_km <= config.nearby_reason_km:
        return "Nearby"

    return None


def to_results(
    scored: Sequence[ScoredCandidate],
    context: UserContext | None,
    config: DiscoveryConfig = DEFAULT_DISCOVERY_CONFIG,
) -> list[RankedResult]:
    return [
        RankedResult(
            item=sc.item,
            score=round(sc.score, 4),
            distance_km=round(sc.distance_km, 3) if sc.distance_km is not None else None,
            reason=reason_for(sc, context, config),
        )
        for sc in scored
    ]
