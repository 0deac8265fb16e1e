"""Small builders shared by the engine and API tests."""

from app.core.engine import RedirectLink
from app.core.selector import CandidateLiveState, CandidateRef


def make_link(slug="promo", candidates=(("g1", 1), ("g2", 2)), active=True, link_id=None):
    refs = tuple(CandidateRef(candidate_id=cid, display_name=f"Group {cid}", priority=p) for cid, p in candidates)
    return RedirectLink(id=link_id or f"link-{slug}", slug=slug, candidates=refs, active=active)


def live(occupancy, capacity, ref=None):
    return CandidateLiveState(occupancy=occupancy, capacity=capacity, external_ref=ref or "")
