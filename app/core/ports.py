"""
Collaborator interfaces used by the allocation engine.

Implementations: app/stores/memory.py (tests, local dev) and app/stores/sql.py.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from app.core.engine import AllocationEvent, RedirectLink
    from app.core.selector import CandidateLiveState


class CandidateStore(Protocol):
    """Link definitions plus live candidate occupancy."""

    async def get_link(self, slug: str) -> RedirectLink | None:
        """Link by slug, active or not. None if unknown.

        Raises StorageUnavailable if the backend cannot be read.
        """
        ...

    async def get_live_states(self, candidate_ids: Iterable[str]) -> Mapping[str, CandidateLiveState]:
        """Fresh live state per id. Unknown ids are simply absent."""
        ...

    async def increment_click_counter(self, link_id: str) -> None:
        """Atomically add one to the link's total_clicks.

        Raises AnalyticsWriteFailed on failure.
        """
        ...


class AnalyticsRecorder(Protocol):
    """Append-only allocation event log."""

    async def append(self, event: AllocationEvent) -> None:
        """Raises AnalyticsWriteFailed on failure."""
        ...
