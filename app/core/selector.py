"""
Capacity selector: first-fit over a priority-ordered candidate list.

Input order IS priority order. The list is sorted once, when the link is
authored (see order_candidates), and never re-sorted here:

  for each candidate, in order:
    no live state        → skip (logged, not fatal)
    occupancy < capacity → winner, stop
    otherwise            → next

No winner → None. Callers treat None as "exhausted".

Occupancy may overshoot capacity (counts are synced from an external system),
so "full" is occupancy >= capacity. Zero or negative capacity is always full.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class CandidateRef:
    """Candidate snapshot held by a link, captured when the link was authored."""
    candidate_id: str
    display_name: str
    priority: int  # lower = tried first


@dataclass(frozen=True)
class CandidateLiveState:
    """Fresh per-request view of one candidate."""
    occupancy: int
    capacity: int
    external_ref: str = ""  # e.g. the messaging group invite code
    display_name: str | None = None

    @property
    def is_full(self) -> bool:
        return self.capacity <= 0 or self.occupancy >= self.capacity

    @property
    def available_slots(self) -> int:
        return max(self.capacity - self.occupancy, 0)


def order_candidates(refs: Iterable[CandidateRef]) -> tuple[CandidateRef, ...]:
    """Ascending priority; equal priorities keep their input order (sorted() is stable)."""
    return tuple(sorted(refs, key=lambda ref: ref.priority))


def select_candidate(
    candidates: Sequence[CandidateRef],
    live: Mapping[str, CandidateLiveState],
) -> str | None:
    """Return the id of the first candidate with a free slot, or None."""
    for ref in candidates:
        state = live.get(ref.candidate_id)
        if state is None:
            logger.warning("candidate_live_state_missing",
                           candidate_id=ref.candidate_id, name=ref.display_name)
            continue
        if not state.is_full:
            return ref.candidate_id
    return None
