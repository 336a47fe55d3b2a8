"""
Shortlist Capacity Guard
A client may have at most SHORTLIST_LIMIT pairs in "shortlisted" at once.
"""

from matchflow.config import settings
from matchflow.core.engagement_states import EngagementStage


class ShortlistCapacityGuard:

    def __init__(self, limit: int = None):
        self.limit = settings.SHORTLIST_LIMIT if limit is None else limit

    async def shortlisted_count(self, store, client_id: str) -> int:
        return await store.count_in_stage(client_id, EngagementStage.SHORTLISTED)

    async def can_shortlist(self, store, client_id: str) -> bool:
        return await self.shortlisted_count(store, client_id) < self.limit

    async def report(self, store, client_id: str) -> dict:
        count = await self.shortlisted_count(store, client_id)
        return {
            "client_id": client_id,
            "count": count,
            "limit": self.limit,
            "can_shortlist": count < self.limit,
        }
