"""
Resolve endpoints: GET /resolve?slug=... (JSON) and GET /r/{slug} (302).

Flow:
  1. Rate limit per IP
  2. Fingerprint the requester (keyed hash, no raw IP/UA stored)
  3. AllocationEngine.resolve → link, live snapshot, first-fit, event
  4. Map the outcome:
       allocated            → 200 {destination, candidateId} / 302
       exhausted            → 503 {outcome: "exhausted"} + Retry-After
       unknown or inactive  → 404 (same body for both)
       storage unavailable  → 502
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.core.engine import (
    AllocationEngine,
    AllocationResult,
    LinkInactive,
    LinkNotFound,
    StorageUnavailable,
)
from app.core.fingerprint import build_request_meta
from app.middleware.rate_limit import get_client_ip, rate_limit_ip
from app.models.database import get_session_maker
from app.stores.sql import SqlAnalyticsRecorder, SqlCandidateStore

router = APIRouter(tags=["resolve"])


def get_engine(
    sessions: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> AllocationEngine:
    """FastAPI dependency: a fresh engine per request, backed by the database."""
    settings = get_settings()
    return AllocationEngine(
        store=SqlCandidateStore(sessions),
        recorder=SqlAnalyticsRecorder(sessions),
        destination_template=settings.destination_template,
        timeout_seconds=settings.store_timeout_seconds,
    )


async def _resolve(request: Request, slug: str | None, engine: AllocationEngine) -> AllocationResult:
    rate_limit_ip(request)

    slug = (slug or "").strip()
    if not slug:
        raise HTTPException(status_code=400, detail="slug is required")

    meta = build_request_meta(get_client_ip(request), request.headers.get("user-agent"))
    try:
        return await engine.resolve(slug, meta)
    except (LinkNotFound, LinkInactive):
        # Same answer for both, so slugs can't be probed
        raise HTTPException(status_code=404, detail="Not found")
    except StorageUnavailable:
        raise HTTPException(status_code=502, detail="Storage temporarily unavailable")


def _exhausted_response() -> JSONResponse:
    retry_after = get_settings().exhausted_retry_after_seconds
    return JSONResponse(
        status_code=503,
        content={
            "outcome": "exhausted",
            "message": "No free slots right now. Try again later.",
        },
        headers={"Retry-After": str(retry_after)},
    )


@router.get("/resolve")
async def resolve_link(
    request: Request,
    slug: str | None = None,
    engine: AllocationEngine = Depends(get_engine),
):
    result = await _resolve(request, slug, engine)
    if not result.allocated:
        return _exhausted_response()
    return {
        "destination": result.destination,
        "candidateId": result.candidate_id,
        "displayName": result.display_name,
        "availableSlots": result.available_slots,
    }


@router.get("/r/{slug}")
async def redirect_link(
    request: Request,
    slug: str,
    engine: AllocationEngine = Depends(get_engine),
):
    result = await _resolve(request, slug, engine)
    if not result.allocated:
        return _exhausted_response()
    return RedirectResponse(url=result.destination, status_code=302)
