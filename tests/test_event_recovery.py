"""Tests for event recovery modeling."""

import pytest
from datetime import date, timedelta

from training_projection.analysis.event_recovery import (
    MAX_POST_EVENT_PENALTY,
    compute_event_recovery_profile,
    compute_post_event_fatigue_penalty,
    dominant_recovery_profile,
    estimate_race_intensity,
    post_event_fatigue_penalty,
)
from training_projection.analysis.goals import (
    ActivityCategory,
    Goal,
    HeartRateThresholdTarget,
    PowerThresholdTarget,
    RacePerformanceTarget,
)
from training_projection.analysis.model import ProjectionPoint


MARATHON = RacePerformanceTarget(distance_m=42195, target_time_s=12600)
FIVE_K = RacePerformanceTarget(distance_m=5000, target_time_s=1200)


class TestEventRecoveryProfile:
    """Test recovery sizing per target type."""

    def test_marathon_profile(self):
        """A 3.5 h marathon needs 12 days to recover fully, 5 functionally."""
        profile = compute_event_recovery_profile(MARATHON)

        assert profile.recovery_days_full == 12
        assert profile.recovery_days_functional == 5
        assert profile.fatigue_intensity == 85.0
        assert profile.atl_spike_factor == pytest.approx(1.525)

    def test_five_k_profile(self):
        """A 20 minute 5K is short and intense."""
        profile = compute_event_recovery_profile(FIVE_K)

        assert profile.recovery_days_full == 2
        assert profile.recovery_days_functional == 1
        assert profile.fatigue_intensity == 95.0

    def test_threshold_and_hr_profiles(self):
        """Threshold tests recover in a few days."""
        power = compute_event_recovery_profile(PowerThresholdTarget(target_watts=300, test_duration_s=1200))
        hr = compute_event_recovery_profile(HeartRateThresholdTarget(target_lthr_bpm=170))

        assert power.recovery_days_full == 4
        assert power.fatigue_intensity == 75.0
        assert hr.recovery_days_full == 3
        assert hr.recovery_days_functional == 1

    def test_unknown_target_type_raises(self):
        """Anything outside the target union is a programming error."""
        with pytest.raises(TypeError):
            compute_event_recovery_profile(object())

    def test_race_intensity_scales_by_activity(self):
        """Cycling events are less damaging than running at equal duration."""
        assert estimate_race_intensity(2.0, ActivityCategory.RUN) == 90.0
        assert estimate_race_intensity(2.0, ActivityCategory.BIKE) == 81.0
        assert estimate_race_intensity(30.0, ActivityCategory.RUN) == 70.0

    def test_dominant_profile_is_order_independent(self):
        """The most demanding target wins regardless of input order."""
        first = Goal("a", date(2026, 5, 1), targets=(FIVE_K, MARATHON))
        second = Goal("a", date(2026, 5, 1), targets=(MARATHON, FIVE_K))

        assert dominant_recovery_profile(first) == dominant_recovery_profile(second)
        assert dominant_recovery_profile(first).recovery_days_full == 12
        assert dominant_recovery_profile(Goal("b", date(2026, 5, 1))) is None


class TestPostEventPenalty:
    """Test post-event fatigue penalty decay."""

    def setup_method(self):
        """Set up test fixtures."""
        self.event_date = date(2026, 4, 19)
        self.goal = Goal("marathon", self.event_date, priority=1, targets=(MARATHON,))
        self.profile = compute_event_recovery_profile(MARATHON)

    def point(self, day: date, ctl: float = 60.0, atl: float = 60.0) -> ProjectionPoint:
        return ProjectionPoint(date=day, load=0.0, fitness_ctl=ctl, fatigue_atl=atl)

    def test_no_penalty_on_or_before_event(self):
        """Event day and earlier days carry no post-event penalty."""
        for offset in (-3, 0):
            day = self.event_date + timedelta(days=offset)
            assert compute_post_event_fatigue_penalty(day, self.point(day), self.goal) == 0.0
        assert post_event_fatigue_penalty(0, self.profile, 60, 60) == 0.0

    def test_penalty_decays_monotonically(self):
        """The penalty shrinks every day after the event."""
        penalties = [
            compute_post_event_fatigue_penalty(
                self.event_date + timedelta(days=offset),
                self.point(self.event_date + timedelta(days=offset)),
                self.goal,
            )
            for offset in range(1, 30)
        ]

        assert all(later < earlier for earlier, later in zip(penalties, penalties[1:]))
        assert penalties[0] > 20
        assert penalties[-1] < 1

    def test_half_life_is_a_third_of_full_recovery(self):
        """After four days (full recovery 12) the base penalty halves."""
        penalty = post_event_fatigue_penalty(4, self.profile, 60.0, 60.0)

        assert penalty == pytest.approx(85.0 * 0.5 * 0.5)

    def test_atl_overload_adds_penalty_up_to_cap(self):
        """Fatigue above fitness increases the penalty, capped at the maximum."""
        calm = post_event_fatigue_penalty(1, self.profile, 60.0, 60.0)
        overloaded = post_event_fatigue_penalty(1, self.profile, 60.0, 90.0)
        extreme = post_event_fatigue_penalty(1, self.profile, 10.0, 200.0)

        assert overloaded > calm
        assert extreme == MAX_POST_EVENT_PENALTY

    def test_goal_without_targets_has_no_penalty(self):
        """Without targets there is nothing to recover from."""
        goal = Goal("open", self.event_date)
        day = self.event_date + timedelta(days=1)

        assert compute_post_event_fatigue_penalty(day, self.point(day), goal) == 0.0
