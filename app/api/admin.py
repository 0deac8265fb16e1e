"""
One-time admin bootstrap endpoint.
Handles retries gracefully: won't fail if org already exists.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.database import get_db
from app.models.tables import Organization
from app.middleware.auth import APIKey, generate_api_key

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/admin", tags=["admin"])


class BootstrapRequest(BaseModel):
    org_name: str
    setup_key: str


@router.post("/bootstrap")
async def bootstrap(
    body: BootstrapRequest,
    db: AsyncSession = Depends(get_db),
):
    settings = get_settings()

    if not settings.debug:
        raise HTTPException(status_code=404, detail="Not found")

    if body.setup_key != settings.admin_setup_key:
        raise HTTPException(status_code=403, detail="Invalid setup key")

    # Find or create org
    org_slug = body.org_name.lower().replace(" ", "-").replace("_", "-")
    stmt = select(Organization).where(Organization.slug == org_slug)
    result = await db.execute(stmt)
    org = result.scalar_one_or_none()

    if not org:
        org = Organization(name=body.org_name, slug=org_slug)
        db.add(org)
        await db.flush()

    stmt = select(APIKey).where(APIKey.organization_id == org.id)
    result = await db.execute(stmt)
    if result.scalars().first():
        return {
            "message": "Organization already has API keys. Create a new org name to get new keys.",
            "organization": {"id": str(org.id), "name": org.name, "slug": org_slug},
        }

    raw_secret, secret_hash = generate_api_key()
    db.add(APIKey(
        organization_id=org.id,
        key_hash=secret_hash,
        key_prefix=raw_secret[:12],
        name="Default Secret Key",
    ))
    await db.commit()

    logger.info("organization_bootstrapped", organization_id=str(org.id), slug=org_slug)

    return {
        "message": "SAVE THIS KEY: it won't be shown again.",
        "organization": {"id": str(org.id), "name": org.name, "slug": org_slug},
        "secret_key": raw_secret,
    }
