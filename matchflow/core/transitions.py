"""
Engagement Transition Rules
The rule table every stage change is checked against.
Pure: nothing in here touches the database.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from matchflow.core.engagement_states import (
    ABSORBING_STAGES,
    PRE_MATCH_STAGES,
    TERMINAL_STAGES,
    EngagementEvent,
    EngagementStage,
    JourneyStage,
    PairId,
)
from matchflow.core.errors import CapacityExceeded, Rejection


S = EngagementStage
E = EngagementEvent

_ALL = set(EngagementStage)

# (allowed current stages, event, next stage)
_RULES = [
    # Client interest
    ({S.BROWSING}, E.VIEW, S.LIKED),
    ({S.BROWSING}, E.LIKE, S.LIKED),
    ({S.BROWSING, S.LIKED}, E.SHORTLIST, S.SHORTLISTED),

    # Discovery calls
    ({S.SHORTLISTED}, E.CALL_BOOKED, S.DISCOVERY_CALL_BOOKED),
    ({S.DISCOVERY_CALL_BOOKED}, E.CALL_CANCELLED, S.SHORTLISTED),
    (
        _ALL - {S.MATCHED, S.ACTIVE_CLIENT, S.DECLINED, S.DECLINED_DISMISSED, S.UNMATCHED},
        E.CALL_COMPLETED,
        S.DISCOVERY_COMPLETED,
    ),

    # Coach selection
    (_ALL - TERMINAL_STAGES, E.REQUEST_DECLINED, S.DECLINED),
    (PRE_MATCH_STAGES, E.REQUEST_ACCEPTED, S.MATCHED),

    # Payment
    ({S.MATCHED}, E.ENGAGEMENT_ACTIVATED, S.ACTIVE_CLIENT),

    # Manual
    ({S.DECLINED}, E.DISMISS_DECLINED, S.DECLINED_DISMISSED),
    (_ALL - {S.DECLINED, S.DECLINED_DISMISSED}, E.REMOVE, S.BROWSING),
    ({S.MATCHED}, E.UNMATCH, S.UNMATCHED),
]

# (current_stage, event) -> next_stage
# Self-transitions and exits from absorbing stages are left out; they resolve
# to "no rule" and become no-ops.
TRANSITIONS = {
    (current, event): target
    for sources, event, target in _RULES
    for current in sources
    if current not in ABSORBING_STAGES and current != target
}


def resolve(current: EngagementStage, event: EngagementEvent) -> Optional[EngagementStage]:
    """Next stage for (current, event), or None if the event does not apply."""
    if current in ABSORBING_STAGES:
        return None
    return TRANSITIONS.get((current, event))


# ── Result ────────────────────────────────────────────────────────────────────

@dataclass
class TransitionResult:
    pair: PairId
    stage: EngagementStage
    applied: bool
    reason: Optional[Rejection] = None
    previous_stage: Optional[EngagementStage] = None
    limit: Optional[int] = None

    def raise_for_rejection(self):
        """Turn a capacity rejection into CapacityExceeded; other no-ops stay silent."""
        if self.reason is Rejection.CAPACITY_EXCEEDED:
            raise CapacityExceeded(self.pair.client_id, self.limit)
        return self

    def as_dict(self) -> dict:
        return {
            "client_id": self.pair.client_id,
            "trainer_id": self.pair.trainer_id,
            "stage": self.stage.value,
            "previous_stage": self.previous_stage.value if self.previous_stage else None,
            "applied": self.applied,
            "reason": self.reason.value if self.reason else None,
        }


# ── Record hooks ──────────────────────────────────────────────────────────────
# Run inside the transaction, right after the stage changes.

RECORD_HOOKS = defaultdict(list)


def on_enter(stage: EngagementStage):
    """Register a record hook for when a pair enters `stage`."""
    def register(hook):
        RECORD_HOOKS[stage].append(hook)
        return hook
    return register


@on_enter(S.LIKED)
def stamp_liked_at(record, at: datetime):
    if record.liked_at is None:
        record.liked_at = at


@on_enter(S.DISCOVERY_COMPLETED)
def stamp_discovery_completed_at(record, at: datetime):
    if record.discovery_completed_at is None:
        record.discovery_completed_at = at


@on_enter(S.MATCHED)
def stamp_matched_at(record, at: datetime):
    if record.matched_at is None:
        record.matched_at = at


@on_enter(S.ACTIVE_CLIENT)
def stamp_became_client_at(record, at: datetime):
    if record.became_client_at is None:
        record.became_client_at = at


def run_record_hooks(record, stage: EngagementStage, at: datetime):
    for hook in RECORD_HOOKS.get(stage, ()):
        hook(record, at)


# ── Follow-ups ────────────────────────────────────────────────────────────────
# Run after commit, asynchronously, by the journey projector.

@dataclass(frozen=True)
class FollowUp:
    job: str                              # "reproject" | "advance"
    target: Optional[JourneyStage] = None


REPROJECT = FollowUp("reproject")

# (event, next stage, job); None matches anything
FOLLOW_UPS = [
    (None, S.DECLINED, REPROJECT),
    (E.CALL_CANCELLED, None, REPROJECT),
    (E.SHORTLIST, S.SHORTLISTED, FollowUp("advance", JourneyStage.EXPLORING_COACHES)),
    (E.CALL_BOOKED, S.DISCOVERY_CALL_BOOKED, FollowUp("advance", JourneyStage.DISCOVERY_CALL_BOOKED)),
]


def follow_ups_for(event: EngagementEvent, target: EngagementStage) -> list:
    """Projector jobs owed after `event` moved a pair into `target`."""
    jobs = []
    for rule_event, rule_target, job in FOLLOW_UPS:
        if rule_event is not None and rule_event != event:
            continue
        if rule_target is not None and rule_target != target:
            continue
        if job not in jobs:
            jobs.append(job)
    return jobs
