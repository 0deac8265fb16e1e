"""
Database models.

Design principles:
  - allocation_events is append-only (no updates/deletes)
  - redirect_links are mutable (can be paused, re-prioritized) but never deleted
  - candidates.occupancy is synced from the external messaging system
  - total_clicks only moves through an atomic UPDATE ... + 1
"""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Entity tables
# ---------------------------------------------------------------------------

class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    links = relationship("RedirectLinkRow", back_populates="organization")


class Candidate(Base):
    """A routable endpoint with finite capacity (e.g. a messaging group)."""
    __tablename__ = "candidates"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    external_ref = Column(String(255), nullable=False)      # invite code / channel id on the external system
    display_name = Column(String(255), nullable=False)
    occupancy = Column(Integer, nullable=False, default=0)   # may transiently exceed capacity
    capacity = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class RedirectLinkRow(Base):
    __tablename__ = "redirect_links"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    slug = Column(String(100), nullable=False, unique=True, index=True)

    # Snapshot taken at authoring time, already sorted by priority:
    # [{"candidate_id": "...", "display_name": "...", "priority": 1}, ...]
    candidates = Column(JSON, nullable=False, default=list)

    is_active = Column(Boolean, nullable=False, default=True)
    total_clicks = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    organization = relationship("Organization", back_populates="links")


# ---------------------------------------------------------------------------
# Event tables (append-only)
# ---------------------------------------------------------------------------

class AllocationEventRow(Base):
    """One row per resolved request, allocated or exhausted."""
    __tablename__ = "allocation_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    link_id = Column(Uuid(as_uuid=True), ForeignKey("redirect_links.id"), nullable=False)
    chosen_candidate_id = Column(Uuid(as_uuid=True), nullable=True)  # NULL when exhausted
    outcome = Column(String(20), nullable=False)                      # allocated, exhausted
    requester_fingerprint = Column(String(32), nullable=True)
    device_class = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_allocation_events_link_created", "link_id", "created_at"),
    )
