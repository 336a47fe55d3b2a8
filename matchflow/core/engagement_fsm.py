"""
Database-Backed Engagement FSM
==============================
The single entry point that changes an engagement's stage.
Every event is one locked read-modify-write on the pair's row,
logged to the immutable event table in the same transaction.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from matchflow.config import settings
from matchflow.core.capacity import ShortlistCapacityGuard
from matchflow.core.engagement_states import EngagementEvent, EngagementStage, PairId
from matchflow.core.errors import ConcurrencyConflict, Rejection
from matchflow.core.transitions import (
    TransitionResult,
    follow_ups_for,
    resolve,
    run_record_hooks,
)
from matchflow.db.models import utcnow
from matchflow.db.store import EngagementStore
from matchflow.logging_config import engagement_context

logger = logging.getLogger(__name__)


class EngagementFSM:
    """
    FSM that persists to the engagement store.
    Every applied transition = one database write + one event row.
    """

    def __init__(self, session_factory, dispatcher=None, capacity: ShortlistCapacityGuard = None,
                 max_attempts: int = None):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.capacity = ShortlistCapacityGuard() if capacity is None else capacity
        self.max_attempts = settings.TRANSITION_MAX_ATTEMPTS if max_attempts is None else max_attempts

    async def apply_event(
        self,
        pair: PairId,
        event: EngagementEvent,
        payload: dict = None,
        source: str = "manual",
        source_ref: str = None,
        status: str = None,
        occurred_at: datetime = None,
    ) -> TransitionResult:
        """
        Apply an event to a pair.

        `source_ref` + `status` identify the collaborator entity that caused
        the event (e.g. a discovery call id and "completed"); once applied,
        the same pair of values is a duplicate and does nothing.
        """
        payload = payload or {}
        with engagement_context(pair, source):
            result, follow_ups = await self._with_retry(
                pair, event.value, self._apply_once,
                pair, event, payload, source, source_ref, status, occurred_at,
            )

        # Outside the transaction: projector failures can't undo the transition
        if follow_ups and self.dispatcher is not None:
            self.dispatcher.schedule(pair.client_id, follow_ups)

        return result

    async def update_notes(self, pair: PairId, notes: Optional[str]) -> bool:
        """Edit the pair's notes. Never touches the stage. False if there is no record."""
        with engagement_context(pair, "notes"):
            return await self._with_retry(pair, "update_notes", self._update_notes_once, pair, notes)

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _with_retry(self, pair: PairId, label: str, operation, *args):
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation(*args)
            except (StaleDataError, IntegrityError) as exc:
                logger.warning(
                    "Conflict on %s during %s (attempt %d/%d): %s",
                    pair, label, attempt, self.max_attempts, exc.__class__.__name__,
                )
        raise ConcurrencyConflict(pair, self.max_attempts)

    async def _apply_once(self, pair, event, payload, source, source_ref, status, occurred_at):
        async with self.session_factory() as session:
            async with session.begin():
                store = EngagementStore(session)

                # 1. Already applied this exact collaborator event?
                if source_ref and status and await store.has_receipt(source, source_ref, status):
                    record = await store.get(pair)
                    current = EngagementStage(record.stage) if record else EngagementStage.BROWSING
                    logger.debug(
                        "Duplicate %s %s/%s for %s ignored", source, source_ref, status, pair,
                    )
                    return self._noop(pair, current, Rejection.DUPLICATE), []

                # 2. Shortlisting is capped per client: serialize on the client row
                if event is EngagementEvent.SHORTLIST:
                    await store.lock_client(pair.client_id)

                # 3. Load current stage (with row lock to prevent race conditions)
                record = await store.get(pair, lock=True)
                current = EngagementStage(record.stage) if record else EngagementStage.BROWSING

                # 4. Look up transition in the rule table
                next_stage = resolve(current, event)
                if next_stage is None:
                    logger.debug("No rule for %s + %s on %s", current.value, event.value, pair)
                    return self._noop(pair, current, Rejection.INVALID_TRANSITION), []

                # 5. Capacity guard. Only a shortlist counts against the cap; a
                # cancelled call returning to shortlisted always applies.
                if event is EngagementEvent.SHORTLIST and not await self.capacity.can_shortlist(
                    store, pair.client_id
                ):
                    logger.info("Shortlist full for client %s (limit %d)", pair.client_id, self.capacity.limit)
                    result = self._noop(pair, current, Rejection.CAPACITY_EXCEEDED)
                    result.limit = self.capacity.limit
                    return result, []

                # 6. Write the new stage, stamps, event log and receipt
                now = utcnow()
                if record is None:
                    record = store.create(pair)
                record.stage = next_stage.value
                record.updated_at = now
                run_record_hooks(record, next_stage, occurred_at or now)

                store.log_event(
                    pair, current, event, next_stage,
                    source=source, source_ref=source_ref, payload=payload, occurred_at=now,
                )
                if source_ref and status:
                    store.add_receipt(pair, source, source_ref, status)

        logger.info(
            "Engagement %s: %s + %s -> %s", pair, current.value, event.value, next_stage.value,
        )
        result = TransitionResult(pair, next_stage, applied=True, previous_stage=current)
        return result, follow_ups_for(event, next_stage)

    async def _update_notes_once(self, pair, notes):
        async with self.session_factory() as session:
            async with session.begin():
                record = await EngagementStore(session).get(pair, lock=True)
                if record is None:
                    logger.debug("No engagement %s, notes not saved", pair)
                    return False
                record.notes = notes
                record.updated_at = utcnow()
        return True

    @staticmethod
    def _noop(pair: PairId, current: EngagementStage, reason: Rejection) -> TransitionResult:
        return TransitionResult(pair, current, applied=False, reason=reason, previous_stage=current)
