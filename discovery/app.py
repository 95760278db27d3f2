from __future__ import annotations

import logging
import os
import uuid

from fastapi import Depends, FastAPI, Request
from starlette.middleware.sessions import SessionMiddleware

from .analytics.aggregator import compute_analytics
from .analytics.store import get_events
from .auth.dependencies import require_session_id, require_user
from .recommendations.models import (
    DiscoverRequest,
    SearchRequest,
    SearchResponse,
    SessionRequest,
)
from .recommendations.retrieval import DiscoveryEngine
from .session.store import DiscoverySession, SessionRegistry
from .sources.data_store import CsvPreferenceStore, DataFrameCatalogStore
from .sources.external import CallBudget
from .sources.google_places import GooglePlacesProvider

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Place Discovery API", version="1.0.0")
app.add_middleware(
    SessionMiddleware,
    secret_key=os.environ.get("SESSION_SECRET", "place-discovery-secret-change-in-production"),
)

sessions = SessionRegistry()
_engine: DiscoveryEngine | None = None


def get_engine() -> DiscoveryEngine:
    """Build the engine on first use so importing the app stays cheap."""
    global _engine
    if _engine is None:
        logger.info("Initialising discovery engine")
        _engine = DiscoveryEngine(
            catalog=DataFrameCatalogStore(),
            provider=GooglePlacesProvider(),
            preferences=CsvPreferenceStore(),
            budget=CallBudget(),
        )
    return _engine


def get_session(session_id: str = Depends(require_session_id)) -> DiscoverySession:
    return sessions.get(session_id)


# ── Public endpoints ─────────────────────────────────────────────────────


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# ── Session endpoints ────────────────────────────────────────────────────


@app.post("/session")
def start_session(body: SessionRequest, request: Request) -> dict:
    previous = request.session.get("sid")
    if previous:
        sessions.drop(previous)
    session_id = uuid.uuid4().hex
    request.session["user_id"] = body.user_id
    request.session["sid"] = session_id
    return {"status": "ok", "user_id": body.user_id}


@app.post("/session/end")
def end_session(request: Request) -> dict:
    session_id = request.session.get("sid")
    if session_id:
        sessions.drop(session_id)
    request.session.clear()
    return {"status": "ended"}


# ── Discovery endpoints ──────────────────────────────────────────────────


@app.post("/search", response_model=SearchResponse)
async def search(
    body: SearchRequest,
    user_id: str = Depends(require_user),
    session: DiscoverySession = Depends(get_session),
    engine: DiscoveryEngine = Depends(get_engine),
) -> SearchResponse:
    return await engine.search(session, user_id, body)


@app.post("/discover", response_model=SearchResponse)
async def discover(
    body: DiscoverRequest,
    user_id: str = Depends(require_user),
    session: DiscoverySession = Depends(get_session),
    engine: DiscoveryEngine = Depends(get_engine),
) -> SearchResponse:
    return await engine.discover(session, user_id, body)


# ── Stats endpoints ──────────────────────────────────────────────────────


@app.get("/cache/stats")
def cache_stats(session: DiscoverySession = Depends(get_session)) -> dict:
    return {**session.cache.stats(), "rotation_size": len(session.rotation)}


@app.get("/analytics")
def analytics(user_id: str = Depends(require_user)) -> dict:
    return compute_analytics(get_events())
