"""
Link management API: create and manage capacity-aware redirect links.

A link is a public slug plus an ordered list of candidates. Order is fixed
here, at authoring time: explicit priorities first (ascending), ties and
unspecified priorities by list position. The resolve path never re-sorts.

Security:
  - Requires SECRET API key (sl_sec_...)
  - All queries scoped to the key's organization
  - Links are paused, never deleted (allocation events reference them)
"""

import datetime
import re
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.selector import CandidateRef, order_candidates
from app.models.database import get_db
from app.models.tables import AllocationEventRow, Candidate, RedirectLinkRow
from app.middleware.auth import AuthContext, require_secret_key
from app.stores.sql import snapshot_candidates

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/links", tags=["links"])

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


class CandidateEntry(BaseModel):
    candidate_id: UUID
    priority: int | None = None  # defaults to 1-based list position


class CreateLinkRequest(BaseModel):
    slug: str = Field(min_length=1, max_length=100)
    candidates: list[CandidateEntry] = Field(default_factory=list)


class ReplaceCandidatesRequest(BaseModel):
    candidates: list[CandidateEntry]


class LinkCandidate(BaseModel):
    candidate_id: str
    display_name: str
    priority: int


class LinkResponse(BaseModel):
    id: UUID
    slug: str
    wrapper_url: str
    is_active: bool
    total_clicks: int
    candidates: list[LinkCandidate]


def _to_response(link: RedirectLinkRow) -> LinkResponse:
    return LinkResponse(
        id=link.id,
        slug=link.slug,
        wrapper_url=f"{get_settings().base_url}/r/{link.slug}",
        is_active=link.is_active,
        total_clicks=link.total_clicks or 0,
        candidates=[LinkCandidate(**item) for item in (link.candidates or [])],
    )


async def _build_snapshot(db: AsyncSession, organization_id: UUID, entries: list[CandidateEntry]) -> list[dict]:
    """Validate candidate ids against the org and return the priority-sorted snapshot."""
    ids = [e.candidate_id for e in entries]
    if len(set(ids)) != len(ids):
        raise HTTPException(status_code=400, detail="Each candidate may appear only once per link")

    found: dict[UUID, Candidate] = {}
    if ids:
        result = await db.execute(
            select(Candidate).where(
                Candidate.id.in_(ids),
                Candidate.organization_id == organization_id,
            )
        )
        found = {c.id: c for c in result.scalars().all()}

    missing = [str(i) for i in ids if i not in found]
    if missing:
        raise HTTPException(status_code=400, detail=f"Unknown candidates: {', '.join(missing)}")

    refs = [
        CandidateRef(
            candidate_id=str(entry.candidate_id),
            display_name=found[entry.candidate_id].display_name,
            priority=entry.priority if entry.priority is not None else position,
        )
        for position, entry in enumerate(entries, start=1)
    ]
    return snapshot_candidates(order_candidates(refs))


async def _get_owned_link(db: AsyncSession, link_id: UUID, auth: AuthContext) -> RedirectLinkRow:
    stmt = select(RedirectLinkRow).where(
        RedirectLinkRow.id == link_id,
        RedirectLinkRow.organization_id == auth.organization_id,
    )
    result = await db.execute(stmt)
    link = result.scalar_one_or_none()
    if not link:
        raise HTTPException(status_code=404, detail="Link not found")
    return link


@router.post("", response_model=LinkResponse, status_code=201)
async def create_link(
    req: CreateLinkRequest,
    auth: AuthContext = Depends(require_secret_key),
    db: AsyncSession = Depends(get_db),
):
    if not SLUG_PATTERN.match(req.slug):
        raise HTTPException(status_code=400, detail="slug may only contain lowercase letters, numbers and hyphens")

    result = await db.execute(select(RedirectLinkRow).where(RedirectLinkRow.slug == req.slug))
    if result.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Link with this slug already exists")

    snapshot = await _build_snapshot(db, auth.organization_id, req.candidates)
    link = RedirectLinkRow(
        organization_id=auth.organization_id,
        slug=req.slug,
        candidates=snapshot,
    )
    db.add(link)
    await db.commit()
    await db.refresh(link)

    logger.info("link_created", link_id=str(link.id), slug=link.slug, candidates=len(snapshot))
    return _to_response(link)


@router.get("", response_model=list[LinkResponse])
async def list_links(
    auth: AuthContext = Depends(require_secret_key),
    db: AsyncSession = Depends(get_db),
):
    """List links: automatically scoped to the API key's organization."""
    stmt = (
        select(RedirectLinkRow)
        .where(RedirectLinkRow.organization_id == auth.organization_id)
        .order_by(RedirectLinkRow.created_at.desc())
    )
    result = await db.execute(stmt)
    return [_to_response(link) for link in result.scalars().all()]


@router.put("/{link_id}/candidates", response_model=LinkResponse)
async def replace_candidates(
    link_id: UUID,
    req: ReplaceCandidatesRequest,
    auth: AuthContext = Depends(require_secret_key),
    db: AsyncSession = Depends(get_db),
):
    """Swap in a new candidate selection / order. Counters are untouched."""
    link = await _get_owned_link(db, link_id, auth)
    link.candidates = await _build_snapshot(db, auth.organization_id, req.candidates)
    await db.commit()
    await db.refresh(link)

    logger.info("link_candidates_replaced", link_id=str(link.id), candidates=len(link.candidates))
    return _to_response(link)


@router.patch("/{link_id}/pause")
async def pause_link(
    link_id: UUID,
    auth: AuthContext = Depends(require_secret_key),
    db: AsyncSession = Depends(get_db),
):
    link = await _get_owned_link(db, link_id, auth)
    link.is_active = False
    await db.commit()
    logger.info("link_paused", link_id=str(link.id))
    return {"status": "paused"}


@router.patch("/{link_id}/activate")
async def activate_link(
    link_id: UUID,
    auth: AuthContext = Depends(require_secret_key),
    db: AsyncSession = Depends(get_db),
):
    link = await _get_owned_link(db, link_id, auth)
    link.is_active = True
    await db.commit()
    logger.info("link_activated", link_id=str(link.id))
    return {"status": "active"}


@router.get("/{link_id}/stats")
async def link_stats(
    link_id: UUID,
    auth: AuthContext = Depends(require_secret_key),
    db: AsyncSession = Depends(get_db),
    days: int = Query(30, ge=1, le=365),
):
    """Allocated vs exhausted decisions in the last N days, plus per-candidate allocations."""
    link = await _get_owned_link(db, link_id, auth)
    cutoff = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=days)
    in_window = (AllocationEventRow.link_id == link.id) & (AllocationEventRow.created_at >= cutoff)

    result = await db.execute(
        select(
            AllocationEventRow.outcome,
            AllocationEventRow.chosen_candidate_id,
            func.count(AllocationEventRow.id).label("events"),
        )
        .where(in_window)
        .group_by(AllocationEventRow.outcome, AllocationEventRow.chosen_candidate_id)
    )

    names = {item["candidate_id"]: item["display_name"] for item in (link.candidates or [])}
    allocated = exhausted = 0
    per_candidate = []
    for row in result.all():
        if row.outcome == "exhausted":
            exhausted += row.events
            continue
        allocated += row.events
        cid = str(row.chosen_candidate_id)
        per_candidate.append({"candidate_id": cid, "display_name": names.get(cid), "allocations": row.events})
    per_candidate.sort(key=lambda c: c["allocations"], reverse=True)

    unique_result = await db.execute(
        select(func.count(func.distinct(AllocationEventRow.requester_fingerprint))).where(in_window)
    )

    return {
        "link_id": str(link.id),
        "slug": link.slug,
        "total_clicks": link.total_clicks or 0,
        "allocated": allocated,
        "exhausted": exhausted,
        "unique_requesters": unique_result.scalar_one(),
        "candidates": per_candidate,
        "period_days": days,
    }
