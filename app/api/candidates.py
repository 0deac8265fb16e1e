"""
Candidate management API: register endpoints and sync their occupancy.

Occupancy is owned by the external messaging system. A sync job (or an
operator) pushes fresh counts here; the resolve path only ever reads them.

Security:
  - Requires SECRET API key (sl_sec_...)
  - All queries scoped to the key's organization
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database import get_db
from app.models.tables import Candidate
from app.middleware.auth import AuthContext, require_secret_key

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/candidates", tags=["candidates"])


class CreateCandidateRequest(BaseModel):
    external_ref: str = Field(min_length=1, max_length=255)
    display_name: str = Field(min_length=1, max_length=255)
    capacity: int = Field(ge=0)
    occupancy: int = Field(0, ge=0)


class UpdateCandidateRequest(BaseModel):
    display_name: str | None = Field(None, min_length=1, max_length=255)
    capacity: int | None = Field(None, ge=0)
    occupancy: int | None = Field(None, ge=0)  # may exceed capacity


class CandidateResponse(BaseModel):
    id: UUID
    external_ref: str
    display_name: str
    occupancy: int
    capacity: int
    available_slots: int


def _to_response(candidate: Candidate) -> CandidateResponse:
    return CandidateResponse(
        id=candidate.id,
        external_ref=candidate.external_ref,
        display_name=candidate.display_name,
        occupancy=candidate.occupancy,
        capacity=candidate.capacity,
        available_slots=max(candidate.capacity - candidate.occupancy, 0),
    )


@router.post("", response_model=CandidateResponse, status_code=201)
async def create_candidate(
    req: CreateCandidateRequest,
    auth: AuthContext = Depends(require_secret_key),
    db: AsyncSession = Depends(get_db),
):
    candidate = Candidate(
        organization_id=auth.organization_id,
        external_ref=req.external_ref,
        display_name=req.display_name,
        capacity=req.capacity,
        occupancy=req.occupancy,
    )
    db.add(candidate)
    await db.commit()
    await db.refresh(candidate)

    logger.info("candidate_created", candidate_id=str(candidate.id), capacity=candidate.capacity)
    return _to_response(candidate)


@router.get("", response_model=list[CandidateResponse])
async def list_candidates(
    auth: AuthContext = Depends(require_secret_key),
    db: AsyncSession = Depends(get_db),
):
    stmt = (
        select(Candidate)
        .where(Candidate.organization_id == auth.organization_id)
        .order_by(Candidate.display_name)
    )
    result = await db.execute(stmt)
    return [_to_response(c) for c in result.scalars().all()]


@router.patch("/{candidate_id}", response_model=CandidateResponse)
async def update_candidate(
    candidate_id: UUID,
    req: UpdateCandidateRequest,
    auth: AuthContext = Depends(require_secret_key),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Candidate).where(
        Candidate.id == candidate_id,
        Candidate.organization_id == auth.organization_id,
    )
    result = await db.execute(stmt)
    candidate = result.scalar_one_or_none()
    if not candidate:
        raise HTTPException(status_code=404, detail="Candidate not found")

    if req.display_name is not None:
        candidate.display_name = req.display_name
    if req.capacity is not None:
        candidate.capacity = req.capacity
    if req.occupancy is not None:
        candidate.occupancy = req.occupancy
    await db.commit()
    await db.refresh(candidate)

    if candidate.occupancy > candidate.capacity:
        logger.warning("candidate_over_capacity", candidate_id=str(candidate.id),
                       occupancy=candidate.occupancy, capacity=candidate.capacity)
    logger.info("candidate_synced", candidate_id=str(candidate.id),
                occupancy=candidate.occupancy, capacity=candidate.capacity)
    return _to_response(candidate)
