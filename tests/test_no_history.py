"""Tests for no-history anchor resolution and evidence weighting."""

import math
import pytest
from datetime import date

from training_projection.analysis.calibration import CalibrationConfig
from training_projection.analysis.goals import (
    Goal,
    HeartRateThresholdTarget,
    PowerThresholdTarget,
    RacePerformanceTarget,
)
from training_projection.analysis.no_history import (
    AnchorConfidence,
    AvailabilityWindow,
    BuildFeasibility,
    DemandTier,
    EvidenceState,
    FitnessLevel,
    IntensityModel,
    NoHistoryContext,
    WeeklyAvailability,
    classify_build_feasibility,
    classify_goal_tier,
    derive_evidence_weighting,
    derive_goal_demand_profile,
    resolve_no_history_anchor,
)


MARATHON = RacePerformanceTarget(distance_m=42195, target_time_s=12600)


class TestNoHistoryAnchor:
    """Test the starting CTL prior for athletes without history."""

    def test_nothing_known(self):
        """Empty evidence takes every conservative branch and says so."""
        anchor = resolve_no_history_anchor()

        assert anchor.fitness_level == FitnessLevel.WEAK
        assert anchor.goal_tier == DemandTier.MEDIUM
        assert anchor.start_ctl == 28.0
        assert anchor.start_atl == anchor.start_ctl
        assert anchor.start_weekly_tss == 196
        assert anchor.build_feasibility == BuildFeasibility.INSUFFICIENT
        assert anchor.confidence == AnchorConfidence.LOW
        assert anchor.confidence_score == 0.45
        assert anchor.reasons == (
            "fitness_defaulted_to_weak_insufficient_strong_signals",
            "intensity_model_missing_using_conservative_baseline",
            "availability_missing_skip_floor_clamp",
            "timeline_unknown_assume_insufficient",
        )

    def test_strong_athlete_clamped_by_availability(self):
        """Three hours a week cannot absorb a strong marathoner's floor."""
        context = NoHistoryContext(
            goals=(Goal("m", date(2026, 5, 1), priority=1, targets=(MARATHON,)),),
            weeks_to_event=20,
            availability=WeeklyAvailability(declared_weekly_hours=3.0),
            intensity_model=IntensityModel(),
            consistency_marker="high",
            signal_quality=0.9,
        )

        anchor = resolve_no_history_anchor(context)

        assert anchor.fitness_level == FitnessLevel.STRONG
        assert anchor.goal_tier == DemandTier.HIGH
        assert anchor.floor_clamped_by_availability is True
        assert anchor.start_ctl == 24.1
        assert anchor.start_weekly_tss == 169
        assert anchor.build_feasibility == BuildFeasibility.FULL
        assert anchor.confidence == AnchorConfidence.MEDIUM
        assert anchor.confidence_score == 0.6
        assert "floor_clamped_by_availability" in anchor.reasons
        assert "confidence_downgraded_from_high" in anchor.reasons
        assert anchor.target_event_ctl == pytest.approx(92.5)

    def test_high_confidence_when_nothing_downgrades(self):
        """Strong fitness, one goal, enough time and room in the schedule."""
        context = NoHistoryContext(
            goals=(Goal("m", date(2026, 5, 1), priority=1, targets=(MARATHON,)),),
            weeks_to_event=20,
            availability=WeeklyAvailability(declared_weekly_hours=10.0),
            intensity_model=IntensityModel(),
            effort_confidence_marker="high",
            profile_metric_completeness="HIGH",
        )

        anchor = resolve_no_history_anchor(context)

        assert anchor.start_ctl == 50.0
        assert anchor.confidence == AnchorConfidence.HIGH
        assert anchor.confidence_score == 0.75
        assert "confidence_downgraded_from_high" not in anchor.reasons

    def test_long_horizon_downgrades_confidence(self):
        """Plans longer than a year are never high confidence."""
        context = NoHistoryContext(
            goals=(Goal("m", date(2026, 5, 1), targets=(MARATHON,)),),
            weeks_to_event=20,
            total_horizon_weeks=60,
            intensity_model=IntensityModel(),
            consistency_marker="high",
            effort_confidence_marker="high",
        )

        anchor = resolve_no_history_anchor(context)

        assert anchor.confidence == AnchorConfidence.MEDIUM
        assert "confidence_downgraded_from_high" in anchor.reasons

    def test_availability_windows(self):
        """Hours come from windows, skipping rest days and capping sessions."""
        availability = WeeklyAvailability(
            windows=(
                AvailabilityWindow("monday", 360, 450),
                AvailabilityWindow("wednesday", 360, 450),
                AvailabilityWindow("saturday", 420, 660),
            ),
            hard_rest_days=("wednesday",),
            max_session_minutes=180,
        )

        assert availability.weekly_hours() == pytest.approx(4.5)
        assert availability.training_days() == ["monday", "saturday"]

        anchor = resolve_no_history_anchor(NoHistoryContext(availability=availability))

        assert "availability_training_days_2" in anchor.reasons
        assert anchor.floor_clamped_by_availability is False
        assert anchor.start_weekly_tss == 196

    def test_starting_ctl_override(self):
        """An explicit override replaces the floor and is recorded."""
        anchor = resolve_no_history_anchor(NoHistoryContext(starting_ctl_override=33.33))

        assert anchor.start_ctl == 33.3
        assert anchor.start_weekly_tss == 233
        assert anchor.reasons[-2:] == ("starting_ctl_override_applied", "timeline_unknown_assume_insufficient")

    def test_weekly_tss_always_matches_start_ctl(self):
        """start_weekly_tss is the half-up rounded 7 x start_ctl for every context."""
        contexts = [
            None,
            NoHistoryContext(starting_ctl_override=12.35),
            NoHistoryContext(availability=WeeklyAvailability(declared_weekly_hours=1.3)),
            NoHistoryContext(goal_tier=DemandTier.LOW, weeks_to_event=3),
            NoHistoryContext(
                availability=WeeklyAvailability(declared_weekly_hours=2.2),
                intensity_model=IntensityModel(weak_if=-1, conservative_if=0.5),
            ),
        ]
        for context in contexts:
            anchor = resolve_no_history_anchor(context)
            assert anchor.start_weekly_tss == math.floor(7 * anchor.start_ctl + 0.5)

    def test_invalid_intensity_factor_uses_conservative(self):
        """A non-positive intensity factor falls back to the conservative one."""
        anchor = resolve_no_history_anchor(NoHistoryContext(
            availability=WeeklyAvailability(declared_weekly_hours=2.0),
            intensity_model=IntensityModel(weak_if=0),
        ))

        assert "intensity_factor_invalid_using_conservative_baseline" in anchor.reasons
        assert anchor.start_weekly_tss == 85

    def test_calibration_floors(self):
        """Confidence scores come from the calibration floors."""
        calibration = CalibrationConfig.from_dict({"no_history": {"confidence_floor_low": 0.3}})

        assert resolve_no_history_anchor(None, calibration).confidence_score == 0.3

    def test_to_dict(self):
        """Enum fields serialize by value."""
        data = resolve_no_history_anchor().to_dict()

        assert data["fitness_level"] == "weak"
        assert data["confidence"] == "low"
        assert data["build_feasibility"] == "insufficient"


class TestGoalDemand:
    """Test goal demand tiers and required CTL."""

    def test_goal_tiers(self):
        """Long races are high demand, thresholds medium, short races low."""
        assert classify_goal_tier([MARATHON]) == DemandTier.HIGH
        assert classify_goal_tier([RacePerformanceTarget(5000, 1500)]) == DemandTier.LOW
        assert classify_goal_tier([HeartRateThresholdTarget(170)]) == DemandTier.MEDIUM
        assert classify_goal_tier([]) == DemandTier.MEDIUM

    def test_build_feasibility(self):
        """Weeks available decide full, limited or insufficient."""
        assert classify_build_feasibility(DemandTier.HIGH, 16) == BuildFeasibility.FULL
        assert classify_build_feasibility(DemandTier.HIGH, 12) == BuildFeasibility.LIMITED
        assert classify_build_feasibility(DemandTier.HIGH, 11) == BuildFeasibility.INSUFFICIENT
        assert classify_build_feasibility(DemandTier.LOW, None) == BuildFeasibility.INSUFFICIENT

    def test_harder_target_demands_more(self):
        """A faster race time requires more CTL."""
        easy = derive_goal_demand_profile([RacePerformanceTarget(42195, 16200)], 20)
        hard = derive_goal_demand_profile([RacePerformanceTarget(42195, 10800)], 20)

        assert hard.required_ctl > easy.required_ctl
        assert hard.demand_min < hard.required_ctl < hard.demand_max

    def test_time_pressure_raises_demand(self):
        """Fewer weeks to prepare raise the required CTL."""
        relaxed = derive_goal_demand_profile([PowerThresholdTarget(280, 1200)], 30)
        rushed = derive_goal_demand_profile([PowerThresholdTarget(280, 1200)], 4)

        assert rushed.required_ctl > relaxed.required_ctl

    def test_demand_range(self):
        """Required CTL stays within the demand range."""
        extreme = derive_goal_demand_profile([RacePerformanceTarget(100000, 20000)], 1)
        empty = derive_goal_demand_profile([], None)

        assert 35.0 <= extreme.required_ctl <= 110.0
        assert empty.required_ctl == 54.0
        assert empty.target_required_ctl == ()


class TestEvidenceWeighting:
    """Test evidence confidence."""

    def test_stale_when_last_activity_beyond_horizon(self):
        """Rich history older than the reliability horizon counts as stale."""
        fresh = derive_evidence_weighting(EvidenceState.RICH, days_since_last_activity=10)
        old = derive_evidence_weighting(EvidenceState.RICH, days_since_last_activity=60)

        assert fresh.state == EvidenceState.RICH
        assert old.state == EvidenceState.STALE
        assert old.confidence < fresh.confidence

    def test_confidence_floor_per_state(self):
        """Confidence never drops below the per-state floor."""
        weighting = derive_evidence_weighting(EvidenceState.NONE, signal_quality=0.0, effort_confidence_marker="low")

        assert weighting.confidence == 0.35

    def test_markers_nudge_confidence(self):
        """High markers raise confidence, low markers lower it."""
        base = derive_evidence_weighting(EvidenceState.SPARSE, signal_quality=0.5)
        high = derive_evidence_weighting(
            EvidenceState.SPARSE, signal_quality=0.5,
            effort_confidence_marker="high", profile_metric_completeness="high",
        )

        assert base.confidence == pytest.approx(0.465)
        assert high.confidence == pytest.approx(0.605)
