"""
Event Adapters
==============
Translate each collaborator's notification into the FSM's event vocabulary,
then hand it to EngagementFSM. Also answers the read-side queries.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from matchflow.core.engagement_fsm import EngagementFSM
from matchflow.core.engagement_states import EngagementEvent, EngagementStage, JourneyStage, PairId
from matchflow.core.errors import Rejection
from matchflow.core.journey import JourneyProjector
from matchflow.core.transitions import TransitionResult
from matchflow.db.store import EngagementStore

logger = logging.getLogger(__name__)


# ── Collaborator notifications ────────────────────────────────────────────────

@dataclass
class DiscoveryCallNotification:
    call_id: str
    pair: PairId
    status: str                            # scheduled | completed | cancelled | rescheduled
    occurred_at: Optional[datetime] = None


@dataclass
class SelectionRequestNotification:
    request_id: str
    pair: PairId
    status: str                            # pending | accepted | declined | alternative_suggested
    responded_at: Optional[datetime] = None


@dataclass
class WaitlistNotification:
    pair: PairId
    action: str = "joined"                 # joined | left
    note: Optional[str] = None
    occurred_at: Optional[datetime] = None


@dataclass
class PaymentNotification:
    payment_id: str
    pair: PairId
    status: str                            # completed | failed
    occurred_at: Optional[datetime] = None


@dataclass
class ManualAction:
    pair: PairId
    action: str                            # like | shortlist | remove | dismiss | unmatch
    actor_role: str = "client"


# ── Status → event maps ───────────────────────────────────────────────────────
# A status missing from a map has no stage meaning.

DISCOVERY_CALL_EVENTS = {
    "scheduled": EngagementEvent.CALL_BOOKED,
    "rescheduled": EngagementEvent.CALL_BOOKED,
    "cancelled": EngagementEvent.CALL_CANCELLED,
    "completed": EngagementEvent.CALL_COMPLETED,
}

SELECTION_REQUEST_EVENTS = {
    "accepted": EngagementEvent.REQUEST_ACCEPTED,
    "declined": EngagementEvent.REQUEST_DECLINED,
}

WAITLIST_EVENTS = {
    "joined": EngagementEvent.LIKE,
    "left": EngagementEvent.WAITLIST_LEFT,
}

PAYMENT_EVENTS = {
    "completed": EngagementEvent.ENGAGEMENT_ACTIVATED,
}

MANUAL_EVENTS = {
    "like": EngagementEvent.LIKE,
    "shortlist": EngagementEvent.SHORTLIST,
    "remove": EngagementEvent.REMOVE,
    "dismiss": EngagementEvent.DISMISS_DECLINED,
    "unmatch": EngagementEvent.UNMATCH,
}


def serialize_engagement(record, counterpart: str) -> dict:
    """Row → dict, keyed by the other party's id (`trainer_id` or `client_id`)."""
    return {
        counterpart: getattr(record, counterpart),
        "stage": record.stage,
        "notes": record.notes,
        "created_at": _iso(record.created_at),
        "updated_at": _iso(record.updated_at),
        "liked_at": _iso(record.liked_at),
        "discovery_completed_at": _iso(record.discovery_completed_at),
        "matched_at": _iso(record.matched_at),
        "became_client_at": _iso(record.became_client_at),
    }


# ── Router ────────────────────────────────────────────────────────────────────

class EngagementEventRouter:
    """Inbound: collaborator events → FSM. Outbound: stage queries."""

    def __init__(self, session_factory, fsm: EngagementFSM, projector: JourneyProjector = None):
        self.session_factory = session_factory
        self.fsm = fsm
        self.projector = projector or JourneyProjector(session_factory)

    # Inbound ─────────────────────────────────────────────────────────────────

    async def on_discovery_call_event(self, note: DiscoveryCallNotification) -> TransitionResult:
        event = DISCOVERY_CALL_EVENTS.get(note.status)
        if event is None:
            return await self._ignored(note.pair, "discovery_call", note.status)
        return await self.fsm.apply_event(
            note.pair, event,
            payload={"call_id": note.call_id, "status": note.status,
                     "occurred_at": _iso(note.occurred_at)},
            source="discovery_call",
            source_ref=note.call_id,
            status=note.status,
            occurred_at=note.occurred_at,
        )

    async def on_selection_request_event(self, note: SelectionRequestNotification) -> TransitionResult:
        event = SELECTION_REQUEST_EVENTS.get(note.status)
        if event is None:
            return await self._ignored(note.pair, "selection_request", note.status)
        return await self.fsm.apply_event(
            note.pair, event,
            payload={"request_id": note.request_id, "status": note.status,
                     "responded_at": _iso(note.responded_at)},
            source="selection_request",
            source_ref=note.request_id,
            status=note.status,
            occurred_at=note.responded_at,
        )

    async def on_waitlist_event(self, note: WaitlistNotification) -> TransitionResult:
        event = WAITLIST_EVENTS.get(note.action)
        if event is None:
            return await self._ignored(note.pair, "waitlist", note.action)
        return await self.fsm.apply_event(
            note.pair, event,
            payload={"action": note.action, "note": note.note,
                     "occurred_at": _iso(note.occurred_at)},
            source="waitlist",
            occurred_at=note.occurred_at,
        )

    async def on_payment_event(self, note: PaymentNotification) -> TransitionResult:
        event = PAYMENT_EVENTS.get(note.status)
        if event is None:
            return await self._ignored(note.pair, "payment", note.status)
        return await self.fsm.apply_event(
            note.pair, event,
            payload={"payment_id": note.payment_id, "status": note.status},
            source="payment",
            source_ref=note.payment_id,
            status=note.status,
            occurred_at=note.occurred_at,
        )

    async def on_manual_action(self, action: ManualAction) -> TransitionResult:
        event = MANUAL_EVENTS.get(action.action)
        if event is None:
            raise ValueError(f"Unknown manual action: {action.action}")
        return await self.fsm.apply_event(
            action.pair, event,
            payload={"action": action.action, "actor_role": action.actor_role},
            source="manual",
        )

    async def on_manual_dismiss(self, pair: PairId, was_declined: bool,
                                actor_role: str = "client") -> TransitionResult:
        """
        "Remove" from the client's list. A declined trainer becomes
        declined_dismissed (history kept); anything else goes back to browsing.
        """
        action = "dismiss" if was_declined else "remove"
        return await self.on_manual_action(ManualAction(pair, action, actor_role))

    async def update_notes(self, pair: PairId, notes: Optional[str]) -> bool:
        return await self.fsm.update_notes(pair, notes)

    # Outbound ────────────────────────────────────────────────────────────────

    async def get_stage(self, pair: PairId) -> EngagementStage:
        """Unknown pairs are browsing."""
        async with self.session_factory() as session:
            record = await EngagementStore(session).get(pair)
        return EngagementStage(record.stage) if record else EngagementStage.BROWSING

    async def list_engagements_for_client(self, client_id: str,
                                          stage: EngagementStage = None) -> list:
        async with self.session_factory() as session:
            records = await EngagementStore(session).list_for_client(client_id, stage)
        return [serialize_engagement(r, "trainer_id") for r in records]

    async def list_engagements_for_trainer(self, trainer_id: str,
                                           stage: EngagementStage = None) -> list:
        async with self.session_factory() as session:
            records = await EngagementStore(session).list_for_trainer(trainer_id, stage)
        return [serialize_engagement(r, "client_id") for r in records]

    async def get_history(self, pair: PairId) -> list:
        async with self.session_factory() as session:
            events = await EngagementStore(session).history(pair)
        return [
            {
                "from_stage": e.from_stage,
                "event": e.event,
                "to_stage": e.to_stage,
                "source": e.source,
                "source_ref": e.source_ref,
                "payload": e.payload,
                "occurred_at": e.occurred_at.isoformat(),
            }
            for e in events
        ]

    async def get_shortlist_capacity(self, client_id: str) -> dict:
        async with self.session_factory() as session:
            return await self.fsm.capacity.report(EngagementStore(session), client_id)

    async def get_journey_stage(self, client_id: str) -> Optional[JourneyStage]:
        return await self.projector.get_stage(client_id)

    # ─────────────────────────────────────────────────────────────────────────

    async def _ignored(self, pair: PairId, source: str, status: str) -> TransitionResult:
        stage = await self.get_stage(pair)
        logger.debug("%s status %r has no stage meaning for %s", source, status, pair)
        return TransitionResult(pair, stage, applied=False, reason=Rejection.IGNORED_STATUS,
                                previous_stage=stage)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
