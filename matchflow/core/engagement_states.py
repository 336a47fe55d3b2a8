"""
Engagement Lifecycle States
Every client-trainer pair is in exactly ONE of these stages at any time
"""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class PairId:
    """One client-trainer relationship"""
    client_id: str
    trainer_id: str

    def __str__(self):
        return f"{self.client_id}:{self.trainer_id}"


class EngagementStage(str, Enum):
    # Discovery
    BROWSING = "browsing"                            # No interaction (same as no record)
    LIKED = "liked"                                  # Saved by the client
    SHORTLISTED = "shortlisted"                      # Chat + discovery call unlocked

    # Discovery call
    DISCOVERY_CALL_BOOKED = "discovery_call_booked"
    DISCOVERY_IN_PROGRESS = "discovery_in_progress"  # No producing event yet
    DISCOVERY_COMPLETED = "discovery_completed"

    # Selection
    MATCHED = "matched"                              # Trainer accepted the request
    ACTIVE_CLIENT = "active_client"                  # Paying client (absorbing)

    # Exits
    DECLINED = "declined"                            # Trainer declined the request
    DECLINED_DISMISSED = "declined_dismissed"        # Client removed a declined trainer (terminal)
    UNMATCHED = "unmatched"                          # Relationship ended (terminal)


class EngagementEvent(str, Enum):
    # Client interest
    VIEW = "view"
    LIKE = "like"
    SHORTLIST = "shortlist"

    # Discovery calls
    CALL_BOOKED = "discovery_call_booked"
    CALL_CANCELLED = "discovery_call_cancelled"
    CALL_COMPLETED = "discovery_call_completed"

    # Coach selection
    REQUEST_ACCEPTED = "selection_request_accepted"
    REQUEST_DECLINED = "selection_request_declined"

    # Payment
    ENGAGEMENT_ACTIVATED = "engagement_activated"

    # Manual
    REMOVE = "remove"
    DISMISS_DECLINED = "dismiss_declined"
    UNMATCH = "unmatch"

    # Waitlist
    WAITLIST_LEFT = "waitlist_left"


class JourneyStage(str, Enum):
    """Client-level funnel position, in order"""
    PROFILE_SETUP = "profile_setup"
    PREFERENCES_IDENTIFIED = "preferences_identified"
    EXPLORING_COACHES = "exploring_coaches"
    DISCOVERY_CALL_BOOKED = "discovery_call_booked"
    COACH_CHOSEN = "coach_chosen"
    ONBOARDING_IN_PROGRESS = "onboarding_in_progress"
    ON_YOUR_JOURNEY = "on_your_journey"
    GOAL_ACHIEVED = "goal_achieved"

    @property
    def rank(self) -> int:
        return list(JourneyStage).index(self)


# Terminal stages - no further automatic transitions
TERMINAL_STAGES = {
    EngagementStage.ACTIVE_CLIENT,
    EngagementStage.DECLINED_DISMISSED,
    EngagementStage.UNMATCHED,
}

# Absorbing - nothing ever moves a pair out of these
ABSORBING_STAGES = {
    EngagementStage.ACTIVE_CLIENT,
}

# Anything before the trainer accepts a selection request
PRE_MATCH_STAGES = {
    EngagementStage.BROWSING,
    EngagementStage.LIKED,
    EngagementStage.SHORTLISTED,
    EngagementStage.DISCOVERY_CALL_BOOKED,
    EngagementStage.DISCOVERY_IN_PROGRESS,
    EngagementStage.DISCOVERY_COMPLETED,
}

# Stages that do NOT count as an active engagement for the journey projector
INACTIVE_STAGES = {
    EngagementStage.BROWSING,
    EngagementStage.DECLINED,
    EngagementStage.DECLINED_DISMISSED,
    EngagementStage.UNMATCHED,
}

ACTIVE_STAGES = set(EngagementStage) - INACTIVE_STAGES

# Journey stages driven by the engagement funnel itself; later ones belong to onboarding
DEMOTABLE_JOURNEY_STAGES = {
    JourneyStage.DISCOVERY_CALL_BOOKED,
    JourneyStage.COACH_CHOSEN,
}
