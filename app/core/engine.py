"""
Allocation engine: one redirect resolution, end to end.

Flow (per request, no retries):
  1. Load link by slug            → LinkNotFound / LinkInactive
  2. Fetch live candidate states  → fresh every time, never cached
  3. First-fit selection          → winner or exhausted
  4. Record one AllocationEvent (+ one click-counter increment when allocated)
  5. Return AllocationResult

Failure policy:
  - Reads (1, 2) failing or timing out abort the request with StorageUnavailable.
    Nothing was decided, so nothing is recorded.
  - Writes (4) failing are logged and dropped. The decision still goes back
    to the caller.
  - Exhaustion is a normal result, not an exception.

Writes run shielded: a caller that disconnects mid-request does not cancel
the event write, since the decision was already made.

Known limitation: two concurrent requests can both see the last free slot
and both pick the same candidate. Occupancy is owned by the external system
and synced into the store, so the engine never reserves slots itself.
"""

import asyncio
from collections.abc import Callable
from urllib.parse import quote
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import structlog

from app.core.ports import AnalyticsRecorder, CandidateStore
from app.core.selector import CandidateRef, select_candidate

logger = structlog.get_logger()


# ─── Errors ────────────────────────────────────────────────────────

class AllocationError(Exception):
    """Base for everything the engine raises."""


class LinkNotFound(AllocationError):
    pass


class LinkInactive(AllocationError):
    pass


class StorageUnavailable(AllocationError):
    """A collaborator read failed or timed out."""


class AnalyticsWriteFailed(AllocationError):
    """An event append or counter increment failed. Never reaches the caller."""


# ─── Data ──────────────────────────────────────────────────────────

class AllocationOutcome(str, Enum):
    ALLOCATED = "allocated"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RedirectLink:
    id: str
    slug: str
    candidates: tuple[CandidateRef, ...]  # already in priority order
    active: bool = True
    total_clicks: int = 0


@dataclass(frozen=True)
class RequestMeta:
    requester_fingerprint: str | None = None
    device_class: str | None = None


@dataclass(frozen=True)
class AllocationEvent:
    """Append-only record of one decision."""
    link_id: str
    chosen_candidate_id: str | None
    outcome: AllocationOutcome
    timestamp: datetime
    requester_fingerprint: str | None = None
    device_class: str | None = None


@dataclass(frozen=True)
class AllocationResult:
    status: AllocationOutcome
    link_id: str
    destination: str | None = None
    candidate_id: str | None = None
    display_name: str | None = None
    available_slots: int | None = None

    @property
    def allocated(self) -> bool:
        return self.status is AllocationOutcome.ALLOCATED


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Engine ────────────────────────────────────────────────────────

@dataclass
class AllocationEngine:
    """Stateless between calls. All shared state lives in the store."""
    store: CandidateStore
    recorder: AnalyticsRecorder
    destination_template: str = "https://chat.whatsapp.com/{external_ref}"
    timeout_seconds: float = 5.0
    clock: Callable[[], datetime] = field(default=_utcnow)

    async def resolve(self, slug: str, meta: RequestMeta | None = None) -> AllocationResult:
        meta = meta or RequestMeta()

        # --- 1. Link ---
        link = await self._read("get_link", self.store.get_link(slug))
        if link is None:
            logger.info("link_not_found", slug=slug)
            raise LinkNotFound(slug)
        if not link.active:
            logger.info("link_inactive", slug=slug, link_id=link.id)
            raise LinkInactive(slug)

        # --- 2. Live snapshot ---
        if not link.candidates:
            logger.warning("link_has_no_candidates", slug=slug, link_id=link.id)
        candidate_ids = {ref.candidate_id for ref in link.candidates}
        live = await self._read("get_live_states", self.store.get_live_states(candidate_ids))

        # --- 3. Select ---
        chosen_id = select_candidate(link.candidates, live)

        if chosen_id is None:
            result = AllocationResult(status=AllocationOutcome.EXHAUSTED, link_id=link.id)
            logger.info("allocation_exhausted", slug=slug, link_id=link.id,
                        candidates=len(link.candidates))
        else:
            state = live[chosen_id]
            ref = next(r for r in link.candidates if r.candidate_id == chosen_id)
            result = AllocationResult(
                status=AllocationOutcome.ALLOCATED,
                link_id=link.id,
                destination=self.destination_template.format(external_ref=quote(state.external_ref, safe="")),
                candidate_id=chosen_id,
                display_name=state.display_name or ref.display_name,
                available_slots=state.available_slots,
            )
            logger.info("allocation_decided", slug=slug, link_id=link.id,
                        candidate_id=chosen_id, available_slots=state.available_slots)

        # --- 4. Record ---
        event = AllocationEvent(
            link_id=link.id,
            chosen_candidate_id=chosen_id,
            outcome=result.status,
            timestamp=self.clock(),
            requester_fingerprint=meta.requester_fingerprint,
            device_class=meta.device_class,
        )
        await asyncio.shield(asyncio.ensure_future(self._record(event)))

        return result

    async def _read(self, step: str, call):
        try:
            return await asyncio.wait_for(call, self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.error("storage_unavailable", step=step, reason="timeout",
                         timeout_seconds=self.timeout_seconds)
            raise StorageUnavailable(f"{step} timed out") from exc
        except StorageUnavailable as exc:
            logger.error("storage_unavailable", step=step, reason=str(exc))
            raise
        except Exception as exc:
            # Adapter bugs and raw driver errors still mean "could not read"
            logger.error("storage_unavailable", step=step, reason=repr(exc))
            raise StorageUnavailable(f"{step} failed: {exc!r}") from exc

    async def _record(self, event: AllocationEvent) -> None:
        # Nothing past the decision may fail the request. CancelledError is
        # a BaseException and still propagates.
        try:
            await asyncio.wait_for(self.recorder.append(event), self.timeout_seconds)
        except Exception as exc:
            logger.error("analytics_write_failed", link_id=event.link_id,
                         outcome=event.outcome.value, error=repr(exc))

        if event.outcome is not AllocationOutcome.ALLOCATED:
            return

        try:
            await asyncio.wait_for(self.store.increment_click_counter(event.link_id), self.timeout_seconds)
        except Exception as exc:
            logger.error("click_counter_increment_failed", link_id=event.link_id, error=repr(exc))
