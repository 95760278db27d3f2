from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Sequence

from ..analytics.store import record_event
from ..session.store import CancellationToken, DiscoverySession, RequestSuperseded
from ..sources.base import CandidateSource, CatalogStore, PlaceProvider, PreferenceStore
from ..sources.config import DEFAULT_CATALOG_CONFIG
from ..sources.external import CallBudget, ExternalProvider
from ..sources.internal import InternalCatalog
from .cache import discover_key, make_key, select_fresh
from .config import DEFAULT_DISCOVERY_CONFIG, DiscoveryConfig
from .context import SearchContextBuilder, StaticDevicePosition
from .geo import filter_within_radius
from .merge import identity_key, merge
from .models import (
    Candidate,
    DiscoverRequest,
    ParsedQuery,
    Place,
    PlaceList,
    SearchRequest,
    SearchResponse,
    SortMode,
    UserContext,
    UserProfile,
)
from .query import parse
from .ranking import rank, to_results

logger = logging.getLogger(__name__)


class SourcesUnavailable(Exception):
    """Every candidate source that was attempted failed."""

    def __init__(self, failed: Sequence[str]) -> None:
        super().__init__(f"all sources failed: {', '.join(failed)}")
        self.failed = list(failed)


@dataclass
class _Collected:
    internal: list[Place] = field(default_factory=list)
    external: list[Place] = field(default_factory=list)
    lists: list[PlaceList] = field(default_factory=list)
    users: list[UserProfile] = field(default_factory=list)
    known_keys: set[str] = field(default_factory=set)
    failed: list[str] = field(default_factory=list)
    attempted: int = 0


class DiscoveryEngine:
    """Search and zero-query discovery over the internal catalog and the place provider."""

    def __init__(
        self,
        catalog: CatalogStore,
        provider: PlaceProvider,
        preferences: PreferenceStore,
        config: DiscoveryConfig = DEFAULT_DISCOVERY_CONFIG,
        budget: CallBudget | None = None,
    ) -> None:
        self._config = config
        self.internal = InternalCatalog(catalog)
        self.external = ExternalProvider(provider, budget)
        self.context_builder = SearchContextBuilder(preferences, provider, config)

    # ── Fan-out / fan-in ─────────────────────────────────────────────────

    async def _run_source(
        self,
        source: CandidateSource,
        context: UserContext,
        parsed: ParsedQuery,
        limit: int,
    ) -> list[Place] | None:
        try:
            return await asyncio.wait_for(
                source.fetch(context, parsed, limit), timeout=self._config.source_timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning("%s source timed out after %.1fs", source.name, self._config.source_timeout_s)
        except Exception:
            logger.warning("%s source failed, continuing without it", source.name, exc_info=True)
        return None

    async def _known_keys(self) -> set[str]:
        try:
            return await self.internal.known_identity_keys(DEFAULT_CATALOG_CONFIG.known_keys_limit)
        except Exception:
            logger.warning("Known identity keys unavailable, deduplicating against this page only", exc_info=True)
            return set()

    async def _lists(self, parsed: ParsedQuery, limit: int) -> list[PlaceList]:
        try:
            return await self.internal.fetch_lists(parsed, limit)
        except Exception:
            logger.warning("List search failed", exc_info=True)
            return []

    async def _users(self, parsed: ParsedQuery, limit: int) -> list[UserProfile]:
        try:
            return await self.internal.fetch_users(parsed, limit)
        except Exception:
            logger.warning("User search failed", exc_info=True)
            return []

    async def _collect(
        self,
        context: UserContext,
        parsed: ParsedQuery,
        limit: int,
        include_people: bool,
    ) -> _Collected:
        use_external = context.resolved_location is not None
        jobs = [
            self._run_source(self.internal, context, parsed, limit),
            self._run_source(self.external, context, parsed, limit) if use_external else _nothing(),
            self._known_keys(),
            self._lists(parsed, limit) if include_people else _nothing(),
            self._users(parsed, limit) if include_people else _nothing(),
        ]
        internal, external, known, lists, users = await asyncio.gather(*jobs)

        collected = _Collected(
            internal=internal or [],
            external=external or [],
            lists=lists or [],
            users=users or [],
            known_keys=known,
            attempted=2 if use_external else 1,
        )
        if internal is None:
            collected.failed.append(self.internal.name)
        if use_external and external is None:
            collected.failed.append(self.external.name)
        if len(collected.failed) == collected.attempted:
            raise SourcesUnavailable(collected.failed)
        return collected

    def _geo_bound(self, places: Sequence[Place], context: UserContext) -> list[Place]:
        """Radius cap and open-now filter. Skipped entirely without a location."""
        bounded = list(places)
        if context.open_now_only:
            bounded = [p for p in bounded if p.open_now is not False]
        if context.resolved_location is None:
            return bounded
        return filter_within_radius(bounded, context.resolved_location, context.radius_km)

    # ── Caller API ───────────────────────────────────────────────────────

    async def search(
        self,
        session: DiscoverySession,
        user_id: str,
        request: SearchRequest,
        token: CancellationToken | None = None,
    ) -> SearchResponse:
        start_time = time.time()
        token = token or session.gate.begin("search")
        parsed = parse(request.query, request.tags, request.sort)

        context = await self.context_builder.build(
            user_id,
            location_override=request.location,
            device=StaticDevicePosition(request.device) if request.device else None,
            session_store=session.store,
            radius_km=request.radius_km,
            open_now=request.open_now,
        )
        if token.cancelled:
            return self._superseded("search", parsed, start_time)

        location = context.resolved_location
        key = "search:" + make_key({
            "tokens": parsed.tokens,
            "tags": sorted(parsed.tag_filters),
            "origin": context.origin_mode,
            "lat": round(location.lat, 3) if location else None,
            "lng": round(location.lng, 3) if location else None,
            "radius_km": context.radius_km,
            "open_now": context.open_now_only,
            "affinities": context.tag_affinities,
            "limit": request.limit,
        })
        failed: list[str] = []

        async def compute() -> list[Candidate]:
            token.raise_if_cancelled()
            collected = await self._collect(context, parsed, request.limit, include_people=True)
            failed.extend(collected.failed)
            token.raise_if_cancelled()
            merged = merge(collected.internal, collected.external, collected.known_keys)
            return [*self._geo_bound(merged, context), *collected.lists, *collected.users]

        try:
            items, cache_hit = await session.cache.get_or_compute(
                key, compute, should_store=lambda: not token.cancelled
            )
        except RequestSuperseded:
            return self._superseded("search", parsed, start_time)
        except SourcesUnavailable as exc:
            return self._unavailable("search", parsed, context, exc.failed, start_time)

        if token.cancelled:
            return self._superseded("search", parsed, start_time)

        scored = rank(items, parsed, context, recency=request.recency)
        if parsed.tokens and parsed.sort_mode == SortMode.relevance:
            scored = [sc for sc in scored if sc.score > 0]

        response = SearchResponse(
            status="ok",
            results=to_results(scored[: request.limit], context, self._config),
            total_candidates=len(items),
            location_resolved=location is not None,
            origin_mode=context.origin_mode,
            failed_sources=failed,
            cache_hit=cache_hit,
        )
        self._record("search", parsed, response, start_time)
        return response

    async def discover(
        self,
        session: DiscoverySession,
        user_id: str,
        request: DiscoverRequest,
        token: CancellationToken | None = None,
    ) -> SearchResponse:
        start_time = time.time()
        token = token or session.gate.begin("discover")

        context = await self.context_builder.build(
            user_id,
            location_override=request.location,
            device=StaticDevicePosition(request.device) if request.device else None,
            session_store=session.store,
            radius_km=request.radius_km,
            open_now=request.open_now,
        )
        parsed = ParsedQuery(tag_filters=set(context.tag_affinities))
        if token.cancelled:
            return self._superseded("discover", parsed, start_time)

        key = discover_key(
            context.origin_mode,
            context.resolved_location,
            context.radius_km,
            context.open_now_only,
            request.limit,
            context.tag_affinities,
        )
        failed: list[str] = []

        async def compute() -> list[Candidate]:
            token.raise_if_cancelled()
            collected = await self._collect(context, parsed, request.limit, include_people=False)
            failed.extend(collected.failed)
            token.raise_if_cancelled()

            merged = merge(collected.internal, collected.external, collected.known_keys)
            new_external = merged[len(collected.internal):]
            internal = self._geo_bound(collected.internal, context)
            chosen = select_fresh(
                self._geo_bound(new_external, context),
                session.rotation.ids(),
                request.limit,
                self._config.min_unseen,
            )

            token.raise_if_cancelled()
            await session.rotation.add([identity_key(p) for p in chosen])
            return [*internal, *chosen]

        try:
            items, cache_hit = await session.cache.get_or_compute(
                key,
                compute,
                force_refresh=request.force_refresh,
                should_store=lambda: not token.cancelled,
            )
        except RequestSuperseded:
            return self._superseded("discover", parsed, start_time)
        except SourcesUnavailable as exc:
            return self._unavailable("discover", parsed, context, exc.failed, start_time)

        if token.cancelled:
            return self._superseded("discover", parsed, start_time)

        scored = rank(items, parsed, context)
        response = SearchResponse(
            status="ok",
            results=to_results(scored[: request.limit], context, self._config),
            total_candidates=len(items),
            location_resolved=context.resolved_location is not None,
            origin_mode=context.origin_mode,
            failed_sources=failed,
            cache_hit=cache_hit,
        )
        self._record("discover", parsed, response, start_time)
        return response

    # ── Responses & analytics ────────────────────────────────────────────

    def _superseded(self, kind: str, parsed: ParsedQuery, start_time: float) -> SearchResponse:
        logger.debug("Dropping superseded %s request %r", kind, parsed.raw_text)
        response = SearchResponse(status="superseded")
        self._record(kind, parsed, response, start_time)
        return response

    def _unavailable(
        self,
        kind: str,
        parsed: ParsedQuery,
        context: UserContext,
        failed: Sequence[str],
        start_time: float,
    ) -> SearchResponse:
        logger.warning("%s unavailable: every source failed (%s)", kind, ", ".join(failed))
        response = SearchResponse(
            status="unavailable",
            location_resolved=context.resolved_location is not None,
            origin_mode=context.origin_mode,
            failed_sources=list(failed),
        )
        self._record(kind, parsed, response, start_time)
        return response

    @staticmethod
    def _record(kind: str, parsed: ParsedQuery, response: SearchResponse, start_time: float) -> None:
        elapsed_ms = round((time.time() - start_time) * 1000, 1)
        record_event(kind, {
            "query": parsed.raw_text,
            "tags": sorted(parsed.tag_filters),
            "sort": parsed.sort_mode.value,
            "status": response.status,
            "cache_hit": response.cache_hit,
            "failed_sources": response.failed_sources,
            "location_resolved": response.location_resolved,
            "total_candidates": response.total_candidates,
            "results_returned": len(response.results),
            "response_time_ms": elapsed_ms,
        })


async def _nothing() -> None:
    return None
