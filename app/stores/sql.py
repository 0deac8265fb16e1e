"""
SQLAlchemy-backed CandidateStore + AnalyticsRecorder.

Each call opens its own short session, so a shielded analytics write can
outlive the request that triggered it.

Counters are bumped with UPDATE ... SET total_clicks = total_clicks + 1,
never read-then-write.
"""

from collections.abc import Iterable, Mapping
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.engine import AllocationEvent, AnalyticsWriteFailed, RedirectLink, StorageUnavailable
from app.core.selector import CandidateLiveState, CandidateRef
from app.models.tables import AllocationEventRow, Candidate, RedirectLinkRow


def _as_uuid(value) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def snapshot_candidates(refs: Iterable[CandidateRef]) -> list[dict]:
    """JSON form stored in redirect_links.candidates. Order is preserved."""
    return [
        {"candidate_id": ref.candidate_id, "display_name": ref.display_name, "priority": ref.priority}
        for ref in refs
    ]


def link_from_row(row: RedirectLinkRow) -> RedirectLink:
    refs = tuple(
        CandidateRef(
            candidate_id=str(item["candidate_id"]),
            display_name=item.get("display_name") or "",
            priority=int(item["priority"]),
        )
        for item in (row.candidates or [])
    )
    return RedirectLink(
        id=str(row.id),
        slug=row.slug,
        candidates=refs,
        active=bool(row.is_active),
        total_clicks=row.total_clicks or 0,
    )


class SqlCandidateStore:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    async def get_link(self, slug: str) -> RedirectLink | None:
        try:
            async with self._sessions() as session:
                result = await session.execute(select(RedirectLinkRow).where(RedirectLinkRow.slug == slug))
                row = result.scalar_one_or_none()
            return link_from_row(row) if row else None
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailable(f"get_link failed: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageUnavailable(f"get_link: malformed candidates snapshot: {exc!r}") from exc

    async def get_live_states(self, candidate_ids: Iterable[str]) -> Mapping[str, CandidateLiveState]:
        ids = [uid for uid in (_as_uuid(cid) for cid in candidate_ids) if uid is not None]
        if not ids:
            return {}
        try:
            async with self._sessions() as session:
                result = await session.execute(select(Candidate).where(Candidate.id.in_(ids)))
                rows = result.scalars().all()
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailable(f"get_live_states failed: {exc}") from exc
        return {
            str(row.id): CandidateLiveState(
                occupancy=row.occupancy,
                capacity=row.capacity,
                external_ref=row.external_ref,
                display_name=row.display_name,
            )
            for row in rows
        }

    async def increment_click_counter(self, link_id: str) -> None:
        stmt = (
            update(RedirectLinkRow)
            .where(RedirectLinkRow.id == _as_uuid(link_id))
            .values(total_clicks=RedirectLinkRow.total_clicks + 1)
        )
        try:
            async with self._sessions() as session:
                await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise AnalyticsWriteFailed(f"increment_click_counter failed: {exc}") from exc


class SqlAnalyticsRecorder:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    async def append(self, event: AllocationEvent) -> None:
        row = AllocationEventRow(
            link_id=_as_uuid(event.link_id),
            chosen_candidate_id=_as_uuid(event.chosen_candidate_id) if event.chosen_candidate_id else None,
            outcome=event.outcome.value,
            requester_fingerprint=event.requester_fingerprint,
            device_class=event.device_class,
            created_at=event.timestamp,
        )
        try:
            async with self._sessions() as session:
                session.add(row)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise AnalyticsWriteFailed(f"append failed: {exc}") from exc
