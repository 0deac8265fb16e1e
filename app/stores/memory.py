"""In-process store + recorder. Used by tests and local runs without a database."""

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import replace

from app.core.engine import AllocationEvent, AnalyticsWriteFailed, RedirectLink, StorageUnavailable
from app.core.selector import CandidateLiveState


class MemoryCandidateStore:
    def __init__(self, read_delay: float = 0.0):
        self.links: dict[str, RedirectLink] = {}
        self.live: dict[str, CandidateLiveState] = {}
        self.read_delay = read_delay
        self.fail_reads = False
        self.fail_writes = False
        self.live_state_calls: list[set[str]] = []

    def add_link(self, link: RedirectLink) -> RedirectLink:
        self.links[link.slug] = link
        return link

    def set_live_state(self, candidate_id: str, state: CandidateLiveState) -> None:
        self.live[candidate_id] = state

    def clicks(self, slug: str) -> int:
        return self.links[slug].total_clicks

    async def get_link(self, slug: str) -> RedirectLink | None:
        await self._maybe_stall()
        if self.fail_reads:
            raise StorageUnavailable("memory store reads disabled")
        return self.links.get(slug)

    async def get_live_states(self, candidate_ids: Iterable[str]) -> Mapping[str, CandidateLiveState]:
        ids = set(candidate_ids)
        self.live_state_calls.append(ids)
        await self._maybe_stall()
        if self.fail_reads:
            raise StorageUnavailable("memory store reads disabled")
        return {cid: self.live[cid] for cid in ids if cid in self.live}

    async def increment_click_counter(self, link_id: str) -> None:
        if self.fail_writes:
            raise AnalyticsWriteFailed("memory store writes disabled")
        for slug, link in self.links.items():
            if link.id == link_id:
                self.links[slug] = replace(link, total_clicks=link.total_clicks + 1)
                return

    async def _maybe_stall(self) -> None:
        if self.read_delay:
            await asyncio.sleep(self.read_delay)


class MemoryAnalyticsRecorder:
    def __init__(self, append_delay: float = 0.0):
        self.events: list[AllocationEvent] = []
        self.append_delay = append_delay
        self.fail_writes = False

    async def append(self, event: AllocationEvent) -> None:
        if self.append_delay:
            await asyncio.sleep(self.append_delay)
        if self.fail_writes:
            raise AnalyticsWriteFailed("memory recorder writes disabled")
        self.events.append(event)
