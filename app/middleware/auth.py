"""
API Key authentication for the admin surface (links, candidates, stats).

Key rules:
  - Every organization gets secret keys (sl_sec_...) for server-side use
  - Keys are scoped to a single organization
  - Keys are hashed (SHA-256) in the database: we never store plaintext
  - Rate limited per key

The public resolve endpoints (/resolve, /r/{slug}) need no key.
"""

import hashlib
import secrets
from dataclasses import dataclass
from uuid import UUID, uuid4

from fastapi import Depends, HTTPException, Security
from fastapi.security import APIKeyHeader
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Uuid, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.database import get_db
from app.models.tables import Base
from app.middleware.rate_limit import rate_limit_api_key

import structlog

logger = structlog.get_logger()

KEY_PREFIX = "sl_sec_"


# ─── Database model ────────────────────────────────────────────────

class APIKey(Base):
    """Hashed API keys scoped to an organization."""
    __tablename__ = "api_keys"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    key_hash = Column(String(64), nullable=False, unique=True, index=True)  # SHA-256 hex
    key_prefix = Column(String(12), nullable=False)  # e.g. "sl_sec_a3f8" for identification
    name = Column(String(255), nullable=True)  # human label ("Production", "Staging")
    is_active = Column(Boolean, default=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ─── Key generation ────────────────────────────────────────────────

def _hash_key(raw_key: str) -> str:
    """SHA-256 hash of the raw API key."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


def generate_api_key() -> tuple[str, str]:
    """Generate a new secret API key.

    Returns (raw_key, key_hash).
    The raw_key is shown to the user ONCE. We only store the hash.
    """
    raw_key = f"{KEY_PREFIX}{secrets.token_urlsafe(32)}"
    return raw_key, _hash_key(raw_key)


# ─── Auth dependency ───────────────────────────────────────────────

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


@dataclass
class AuthContext:
    """Resolved authentication context for the current request."""
    organization_id: UUID
    key_id: UUID


async def _resolve_key(raw_key: str | None, db: AsyncSession) -> AuthContext:
    """Look up and validate an API key."""
    if not raw_key:
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Include X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    stmt = select(APIKey).where(
        APIKey.key_hash == _hash_key(raw_key),
        APIKey.is_active == True,  # noqa: E712
    )
    result = await db.execute(stmt)
    api_key = result.scalar_one_or_none()

    if not api_key:
        logger.info("api_key_rejected", key_prefix=raw_key[:12])
        raise HTTPException(
            status_code=401,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    api_key.last_used_at = func.now()
    await db.commit()

    return AuthContext(organization_id=api_key.organization_id, key_id=api_key.id)


async def require_secret_key(
    api_key: str | None = Security(api_key_header),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Require a valid secret key in the X-API-Key header. Applies the per-key rate limit."""
    auth = await _resolve_key(api_key, db)
    rate_limit_api_key(str(auth.key_id))
    return auth
