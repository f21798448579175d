"""Tests for the Phase Engine.

Uses the 60/120/300/600 schedule deployed at epoch 1000, so the absolute
boundaries are 1060, 1120, 1300 and 1600.
"""

from __future__ import annotations

import pytest

from htlc_swap.domain.enums import Action, Actor, Phase
from htlc_swap.domain.phase_engine import (
    PHASE_ORDER,
    allowed_actions,
    compute_phase,
    format_duration,
    is_action_allowed,
    pending_phase,
    time_until,
)
from htlc_swap.domain.timelocks import TimelockSchedule

EPOCH = 1000
WITHDRAW = Action.WITHDRAW_WITH_SECRET
CANCEL = Action.CANCEL


class TestComputePhase:
    @pytest.mark.parametrize(
        ("now", "phase", "remaining", "next_phase"),
        [
            (1000, Phase.FINALITY, 60, Phase.PRIVATE_WITHDRAWAL),
            (1059, Phase.FINALITY, 1, Phase.PRIVATE_WITHDRAWAL),
            (1060, Phase.PRIVATE_WITHDRAWAL, 60, Phase.PUBLIC_WITHDRAWAL),
            (1100, Phase.PRIVATE_WITHDRAWAL, 20, Phase.PUBLIC_WITHDRAWAL),
            (1120, Phase.PUBLIC_WITHDRAWAL, 180, Phase.PRIVATE_CANCELLATION),
            (1300, Phase.PRIVATE_CANCELLATION, 300, Phase.PUBLIC_CANCELLATION),
            (1599, Phase.PRIVATE_CANCELLATION, 1, Phase.PUBLIC_CANCELLATION),
        ],
    )
    def test_bounded_phases(
        self,
        schedule: TimelockSchedule,
        now: int,
        phase: Phase,
        remaining: int,
        next_phase: Phase,
    ) -> None:
        info = compute_phase(schedule, EPOCH, now)
        assert info.phase is phase
        assert info.time_remaining == remaining
        assert info.next_phase is next_phase
        assert info.next_phase_at == now + remaining

    @pytest.mark.parametrize("now", [1600, 1700, 10**12])
    def test_public_cancellation_is_unbounded(self, schedule: TimelockSchedule, now: int) -> None:
        info = compute_phase(schedule, EPOCH, now)
        assert info.phase is Phase.PUBLIC_CANCELLATION
        assert info.time_remaining is None
        assert info.next_phase is Phase.EXPIRED
        assert info.next_phase_at is None
        assert info.unbounded

    def test_before_epoch_is_finality(self, schedule: TimelockSchedule) -> None:
        info = compute_phase(schedule, EPOCH, 900)
        assert info.phase is Phase.FINALITY
        assert info.time_remaining == 160

    def test_equal_boundaries_skip_empty_phases(self) -> None:
        schedule = TimelockSchedule(60, 60, 300, 300)
        assert compute_phase(schedule, EPOCH, 1060).phase is Phase.PUBLIC_WITHDRAWAL
        assert compute_phase(schedule, EPOCH, 1300).phase is Phase.PUBLIC_CANCELLATION

    def test_phase_never_moves_backwards(self, schedule: TimelockSchedule) -> None:
        previous = -1
        for now in range(950, 1700):
            order = PHASE_ORDER[compute_phase(schedule, EPOCH, now).phase]
            assert order >= previous
            previous = order

    def test_time_remaining_matches_next_boundary(self, schedule: TimelockSchedule) -> None:
        for now in range(1000, 1600, 7):
            info = compute_phase(schedule, EPOCH, now)
            assert info.time_remaining == info.next_phase_at - now
            assert compute_phase(schedule, EPOCH, info.next_phase_at).phase is info.next_phase

    def test_to_dict(self, schedule: TimelockSchedule) -> None:
        data = compute_phase(schedule, EPOCH, 1120).to_dict()
        assert data["phase"] == "PUBLIC_WITHDRAWAL"
        assert data["allowed_actions"] == ["anyone:withdraw_with_secret"]

    def test_pending_phase(self) -> None:
        info = pending_phase()
        assert info.phase is Phase.PENDING_DEPLOYMENT
        assert info.time_remaining is None
        assert info.allowed_actions == frozenset()


class TestActionTable:
    @pytest.mark.parametrize(
        ("phase", "actor", "expected"),
        [
            (Phase.FINALITY, Actor.MAKER, set()),
            (Phase.FINALITY, Actor.TAKER, set()),
            (Phase.PRIVATE_WITHDRAWAL, Actor.MAKER, {WITHDRAW}),
            (Phase.PRIVATE_WITHDRAWAL, Actor.TAKER, {WITHDRAW}),
            (Phase.PRIVATE_WITHDRAWAL, Actor.THIRD_PARTY, set()),
            (Phase.PUBLIC_WITHDRAWAL, Actor.THIRD_PARTY, {WITHDRAW}),
            (Phase.PRIVATE_CANCELLATION, Actor.MAKER, {CANCEL, WITHDRAW}),
            (Phase.PRIVATE_CANCELLATION, Actor.TAKER, {WITHDRAW}),
            (Phase.PRIVATE_CANCELLATION, Actor.THIRD_PARTY, {WITHDRAW}),
            (Phase.PUBLIC_CANCELLATION, Actor.TAKER, {CANCEL, WITHDRAW}),
            (Phase.PUBLIC_CANCELLATION, Actor.THIRD_PARTY, {CANCEL, WITHDRAW}),
            (Phase.PENDING_DEPLOYMENT, Actor.MAKER, set()),
        ],
    )
    def test_allowed_actions(self, phase: Phase, actor: Actor, expected: set) -> None:
        assert allowed_actions(phase, actor) == frozenset(expected)

    def test_is_action_allowed(self) -> None:
        assert is_action_allowed(Phase.PRIVATE_CANCELLATION, Actor.MAKER, CANCEL)
        assert not is_action_allowed(Phase.PRIVATE_CANCELLATION, Actor.TAKER, CANCEL)

    def test_actions_for(self, schedule: TimelockSchedule) -> None:
        info = compute_phase(schedule, EPOCH, 1060)
        assert info.actions_for(Actor.TAKER) == frozenset({WITHDRAW})


class TestTimeHelpers:
    def test_time_until(self, schedule: TimelockSchedule) -> None:
        assert time_until(schedule, EPOCH, 1000, "cancellation_start") == 300
        assert time_until(schedule, EPOCH, 2000, "cancellation_start") == 0

    def test_time_until_unknown_boundary(self, schedule: TimelockSchedule) -> None:
        with pytest.raises(ValueError, match="Unknown boundary"):
            time_until(schedule, EPOCH, 1000, "expiry")

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [
            (None, "No time limit"),
            (0, "0s"),
            (59, "59s"),
            (61, "1m 1s"),
            (3600, "1h 0m 0s"),
            (90061, "1d 1h 1m 1s"),
        ],
    )
    def test_format_duration(self, seconds: int | None, expected: str) -> None:
        assert format_duration(seconds) == expected
