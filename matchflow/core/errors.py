"""
Engagement Errors
=================
Most rejected events are silent no-ops and travel as a Rejection value.
Only the cases a caller has to act on are exceptions.
"""

from enum import Enum


class Rejection(str, Enum):
    INVALID_TRANSITION = "invalid_transition"   # No rule for (stage, event)
    CAPACITY_EXCEEDED = "capacity_exceeded"     # Shortlist is full
    DUPLICATE = "duplicate"                     # Same entity + status already applied
    IGNORED_STATUS = "ignored_status"           # Collaborator status with no stage meaning


class EngagementError(Exception):
    """Base class for engine errors"""


class CapacityExceeded(EngagementError):
    """Client already has the maximum number of shortlisted trainers"""

    def __init__(self, client_id: str, limit: int):
        self.client_id = client_id
        self.limit = limit
        super().__init__(
            f"You can only shortlist up to {limit} trainers. "
            f"Remove one from your shortlist to add another."
        )


class ConcurrencyConflict(EngagementError):
    """Read-modify-write kept colliding with a concurrent writer. Safe to retry."""

    def __init__(self, pair, attempts: int):
        self.pair = pair
        self.attempts = attempts
        super().__init__(
            f"Engagement {pair} was modified concurrently "
            f"({attempts} attempts). Please retry."
        )


class ProjectorFailure(EngagementError):
    """Journey projection gave up after its retries"""

    def __init__(self, client_id: str, job: str, attempts: int):
        self.client_id = client_id
        self.job = job
        self.attempts = attempts
        super().__init__(
            f"Journey {job} for client {client_id} failed after {attempts} attempts"
        )
