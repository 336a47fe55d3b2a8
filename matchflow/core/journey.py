"""
Journey Stage Projector
=======================
Keeps the client-level journey stage in line with the client's engagements.
Runs after the pair transaction has committed; a failure here never touches
the engagement that triggered it.
"""

import asyncio
import logging
from typing import Optional

from matchflow.config import settings
from matchflow.core.engagement_states import DEMOTABLE_JOURNEY_STAGES, JourneyStage
from matchflow.core.errors import ProjectorFailure
from matchflow.core.transitions import FollowUp
from matchflow.db.store import EngagementStore

logger = logging.getLogger(__name__)


class JourneyProjector:

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def reproject(self, client_id: str) -> Optional[JourneyStage]:
        """
        Demote the client to exploring_coaches when none of their engagements
        is active any more. Leaves the journey alone if it is unset, still
        early, or owned by onboarding (coach already chosen and beyond).
        """
        async with self.session_factory() as session:
            async with session.begin():
                store = EngagementStore(session)
                journey = await store.get_journey(client_id, lock=True)
                if journey is None or journey.stage is None:
                    return None

                current = JourneyStage(journey.stage)
                if current not in DEMOTABLE_JOURNEY_STAGES:
                    return current

                active = await store.count_active(client_id)
                if active:
                    logger.debug("Client %s still has %d active engagements", client_id, active)
                    return current

                journey.stage = JourneyStage.EXPLORING_COACHES.value
                logger.info(
                    "Client %s journey: %s -> %s (no active engagements)",
                    client_id, current.value, JourneyStage.EXPLORING_COACHES.value,
                )
                return JourneyStage.EXPLORING_COACHES

    async def advance(self, client_id: str, target: JourneyStage) -> JourneyStage:
        """Move the journey forward to `target`. Never moves it back."""
        async with self.session_factory() as session:
            async with session.begin():
                store = EngagementStore(session)
                journey = await store.lock_client(client_id)
                current = JourneyStage(journey.stage) if journey.stage else None

                if current is not None and current.rank >= target.rank:
                    return current

                journey.stage = target.value
                logger.info(
                    "Client %s journey: %s -> %s",
                    client_id, current.value if current else None, target.value,
                )
                return target

    async def get_stage(self, client_id: str) -> Optional[JourneyStage]:
        async with self.session_factory() as session:
            journey = await EngagementStore(session).get_journey(client_id)
            if journey is None or journey.stage is None:
                return None
            return JourneyStage(journey.stage)

    async def run(self, client_id: str, follow_up: FollowUp):
        if follow_up.job == "reproject":
            return await self.reproject(client_id)
        if follow_up.job == "advance":
            return await self.advance(client_id, follow_up.target)
        raise ValueError(f"Unknown journey job: {follow_up.job}")


class ProjectionDispatcher:
    """
    Fire-and-forget runner for projector follow-ups.
    Each job is retried with exponential backoff, then logged and dropped.
    """

    def __init__(self, projector: JourneyProjector, max_attempts: int = None,
                 backoff_seconds: float = None):
        self.projector = projector
        self.max_attempts = settings.PROJECTOR_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.backoff_seconds = (
            settings.PROJECTOR_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )
        self._tasks = set()

    def schedule(self, client_id: str, follow_ups):
        loop = asyncio.get_running_loop()
        for follow_up in follow_ups:
            task = loop.create_task(self._run_with_retry(client_id, follow_up))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run_with_retry(self, client_id: str, follow_up: FollowUp):
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.projector.run(client_id, follow_up)
            except Exception:
                logger.warning(
                    "Journey %s for client %s failed (attempt %d/%d)",
                    follow_up.job, client_id, attempt, self.max_attempts,
                    exc_info=True,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff_seconds * 2 ** (attempt - 1))

        failure = ProjectorFailure(client_id, follow_up.job, self.max_attempts)
        logger.error(str(failure))
        return failure

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> list:
        """Wait for every scheduled job. Returns their results."""
        results = []
        while self._tasks:
            results.extend(await asyncio.gather(*list(self._tasks)))
        return results
