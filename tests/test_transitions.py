"""Tests for the pure rule table in matchflow.core.transitions."""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from matchflow.core.engagement_states import (
    EngagementEvent as E,
    EngagementStage as S,
    JourneyStage,
    PairId,
)
from matchflow.core.errors import CapacityExceeded, Rejection
from matchflow.core.transitions import (
    REPROJECT,
    TRANSITIONS,
    FollowUp,
    TransitionResult,
    follow_ups_for,
    resolve,
    run_record_hooks,
)


class TestCanonicalRules:

    @pytest.mark.parametrize("current,event,expected", [
        (S.BROWSING, E.VIEW, S.LIKED),
        (S.BROWSING, E.LIKE, S.LIKED),
        (S.BROWSING, E.SHORTLIST, S.SHORTLISTED),
        (S.LIKED, E.SHORTLIST, S.SHORTLISTED),
        (S.SHORTLISTED, E.CALL_BOOKED, S.DISCOVERY_CALL_BOOKED),
        (S.DISCOVERY_CALL_BOOKED, E.CALL_CANCELLED, S.SHORTLISTED),
        (S.SHORTLISTED, E.CALL_COMPLETED, S.DISCOVERY_COMPLETED),
        (S.DISCOVERY_CALL_BOOKED, E.CALL_COMPLETED, S.DISCOVERY_COMPLETED),
        (S.DISCOVERY_IN_PROGRESS, E.CALL_COMPLETED, S.DISCOVERY_COMPLETED),
        (S.LIKED, E.REQUEST_DECLINED, S.DECLINED),
        (S.MATCHED, E.REQUEST_DECLINED, S.DECLINED),
        (S.DECLINED, E.DISMISS_DECLINED, S.DECLINED_DISMISSED),
        (S.SHORTLISTED, E.REMOVE, S.BROWSING),
        (S.UNMATCHED, E.REMOVE, S.BROWSING),
        (S.DISCOVERY_COMPLETED, E.REQUEST_ACCEPTED, S.MATCHED),
        (S.SHORTLISTED, E.REQUEST_ACCEPTED, S.MATCHED),
        (S.MATCHED, E.ENGAGEMENT_ACTIVATED, S.ACTIVE_CLIENT),
        (S.MATCHED, E.UNMATCH, S.UNMATCHED),
    ])
    def test_rule_applies(self, current, event, expected):
        assert resolve(current, event) == expected

    @pytest.mark.parametrize("current,event", [
        (S.LIKED, E.LIKE),
        (S.SHORTLISTED, E.SHORTLIST),
        (S.LIKED, E.CALL_BOOKED),
        (S.SHORTLISTED, E.CALL_CANCELLED),
        (S.DISCOVERY_COMPLETED, E.CALL_COMPLETED),
        (S.MATCHED, E.CALL_COMPLETED),
        (S.DECLINED, E.CALL_COMPLETED),
        (S.UNMATCHED, E.CALL_COMPLETED),
        (S.DECLINED, E.REQUEST_DECLINED),
        (S.DECLINED, E.REQUEST_ACCEPTED),
        (S.BROWSING, E.ENGAGEMENT_ACTIVATED),
        (S.SHORTLISTED, E.DISMISS_DECLINED),
        (S.DECLINED, E.REMOVE),
        (S.BROWSING, E.REMOVE),
        (S.LIKED, E.WAITLIST_LEFT),
    ])
    def test_everything_else_is_a_noop(self, current, event):
        assert resolve(current, event) is None


class TestTerminalStages:

    @pytest.mark.parametrize("event", list(E))
    def test_active_client_is_absorbing(self, event):
        assert resolve(S.ACTIVE_CLIENT, event) is None

    @pytest.mark.parametrize("event", list(E))
    def test_declined_dismissed_never_goes_back_to_browsing(self, event):
        assert resolve(S.DECLINED_DISMISSED, event) != S.BROWSING

    @pytest.mark.parametrize("event", [
        E.CALL_BOOKED, E.CALL_CANCELLED, E.CALL_COMPLETED,
        E.REQUEST_ACCEPTED, E.REQUEST_DECLINED, E.ENGAGEMENT_ACTIVATED,
    ])
    @pytest.mark.parametrize("stage", [S.DECLINED_DISMISSED, S.UNMATCHED])
    def test_terminal_stages_ignore_automatic_events(self, stage, event):
        assert resolve(stage, event) is None

    def test_dismiss_and_remove_never_share_an_outcome(self):
        for stage in S:
            dismissed = resolve(stage, E.DISMISS_DECLINED)
            removed = resolve(stage, E.REMOVE)
            assert dismissed in (None, S.DECLINED_DISMISSED)
            assert removed in (None, S.BROWSING)
            assert not (dismissed and removed)


class TestTable:

    def test_every_pair_resolves_to_a_known_stage_or_nothing(self):
        for stage in S:
            for event in E:
                assert resolve(stage, event) in set(S) | {None}

    def test_no_self_transitions(self):
        assert all(current != target for (current, _), target in TRANSITIONS.items())

    def test_discovery_in_progress_has_no_producing_event(self):
        assert S.DISCOVERY_IN_PROGRESS not in TRANSITIONS.values()


class TestRecordHooks:

    def _record(self, **overrides):
        values = dict(liked_at=None, discovery_completed_at=None, matched_at=None, became_client_at=None)
        values.update(overrides)
        return SimpleNamespace(**values)

    def test_discovery_completed_at_is_stamped_once(self):
        first = datetime(2026, 3, 1, tzinfo=timezone.utc)
        record = self._record()
        run_record_hooks(record, S.DISCOVERY_COMPLETED, first)
        run_record_hooks(record, S.DISCOVERY_COMPLETED, first + timedelta(days=1))
        assert record.discovery_completed_at == first

    @pytest.mark.parametrize("stage,column", [
        (S.LIKED, "liked_at"),
        (S.MATCHED, "matched_at"),
        (S.ACTIVE_CLIENT, "became_client_at"),
    ])
    def test_milestones(self, stage, column):
        at = datetime(2026, 3, 1, tzinfo=timezone.utc)
        record = self._record()
        run_record_hooks(record, stage, at)
        assert getattr(record, column) == at

    def test_stages_without_hooks_touch_nothing(self):
        record = self._record()
        run_record_hooks(record, S.SHORTLISTED, datetime.now(timezone.utc))
        assert record == self._record()


class TestFollowUps:

    def test_decline_reprojects(self):
        assert follow_ups_for(E.REQUEST_DECLINED, S.DECLINED) == [REPROJECT]

    def test_cancellation_reprojects_without_advancing(self):
        assert follow_ups_for(E.CALL_CANCELLED, S.SHORTLISTED) == [REPROJECT]

    def test_shortlist_advances_to_exploring(self):
        assert follow_ups_for(E.SHORTLIST, S.SHORTLISTED) == [
            FollowUp("advance", JourneyStage.EXPLORING_COACHES)
        ]

    def test_booking_advances_to_discovery_call_booked(self):
        assert follow_ups_for(E.CALL_BOOKED, S.DISCOVERY_CALL_BOOKED) == [
            FollowUp("advance", JourneyStage.DISCOVERY_CALL_BOOKED)
        ]

    def test_plain_like_has_no_follow_ups(self):
        assert follow_ups_for(E.LIKE, S.LIKED) == []


class TestTransitionResult:

    def test_capacity_rejection_raises(self):
        result = TransitionResult(
            PairId("c", "t"), S.LIKED, applied=False,
            reason=Rejection.CAPACITY_EXCEEDED, limit=4,
        )
        with pytest.raises(CapacityExceeded) as exc_info:
            result.raise_for_rejection()
        assert exc_info.value.limit == 4
        assert "4" in str(exc_info.value)

    def test_silent_noop_does_not_raise(self):
        result = TransitionResult(
            PairId("c", "t"), S.LIKED, applied=False, reason=Rejection.INVALID_TRANSITION,
        )
        assert result.raise_for_rejection() is result

    def test_as_dict(self):
        result = TransitionResult(
            PairId("c", "t"), S.SHORTLISTED, applied=True, previous_stage=S.LIKED,
        )
        assert result.as_dict() == {
            "client_id": "c",
            "trainer_id": "t",
            "stage": "shortlisted",
            "previous_stage": "liked",
            "applied": True,
            "reason": None,
        }
