"""Tests for the deterministic projection engine."""

import json
import pytest
from datetime import date, timedelta

from training_projection.analysis import (
    Goal,
    ProjectionControls,
    StartState,
    build_deterministic_projection,
)
from training_projection.analysis.goals import RacePerformanceTarget
from training_projection.analysis.no_history import EvidenceState, NoHistoryContext, WeeklyAvailability
from training_projection.analysis.plan_optimizer import TrainingPhase, WeeklyBlock


START = date(2026, 1, 5)
MARATHON = RacePerformanceTarget(distance_m=42195, target_time_s=12600)


class TestDeterministicProjection:
    """Test the full projection pipeline with training history."""

    def setup_method(self):
        """Set up test fixtures."""
        self.goals = [Goal("marathon", START + timedelta(days=84), priority=1, targets=(MARATHON,))]
        self.start_state = StartState(
            start_date=START,
            end_date=START + timedelta(days=97),
            starting_ctl=45.0,
            starting_atl=40.0,
            baseline_weekly_tss=315.0,
            evidence_state=EvidenceState.RICH,
        )
        self.blocks = [
            WeeklyBlock(
                "build", TrainingPhase.BUILD, START, START + timedelta(days=69),
                target_weekly_tss_min=380.0, target_weekly_tss_max=460.0,
            ),
            WeeklyBlock("taper", TrainingPhase.TAPER, START + timedelta(days=70), START + timedelta(days=84)),
        ]
        self.result = build_deterministic_projection(self.goals, self.start_state, self.blocks)

    def test_series_lengths(self):
        """One point and one score per day, one load per week."""
        result = self.result

        assert len(result.points) == 98
        assert len(result.readiness_scores) == len(result.points)
        assert len(result.weekly_loads) == 14
        assert len(result.microcycles) == 14
        assert result.points[0].date == START
        assert result.points[-1].date == START + timedelta(days=97)

    def test_start_state(self):
        """Explicit starting values are used as given."""
        assert self.result.start_ctl == 45.0
        assert self.result.start_atl == 40.0
        assert self.result.no_history is None
        assert self.result.constraint_summary["seed_weekly_tss"] == 315.0

    def test_daily_loads_follow_weekly_loads(self):
        """Each day carries a seventh of its week's load."""
        for week in self.result.microcycles:
            offset = (week.start_date - START).days
            for point in self.result.points[offset:offset + week.days]:
                assert point.load == pytest.approx(week.planned_weekly_tss / 7.0)

    def test_form_is_fitness_minus_fatigue(self):
        """TSB is always CTL minus ATL."""
        for point in self.result.points:
            assert point.form_tsb == pytest.approx(point.fitness_ctl - point.fatigue_atl)

    def test_weekly_ramp_caps_hold(self):
        """No week moves more than the TSS ramp cap from the previous week."""
        pct = self.result.constraint_summary["max_weekly_tss_ramp_pct"] / 100.0
        previous = self.result.constraint_summary["seed_weekly_tss"]
        for load in self.result.weekly_loads:
            assert abs(load - previous) <= previous * pct + 1e-9
            previous = load

    def test_ctl_ramp_cap_holds(self):
        """No week raises CTL by more than the CTL ramp cap."""
        cap = self.result.constraint_summary["max_ctl_ramp_per_week"]
        for week in self.result.microcycles:
            assert week.ctl_end - week.ctl_start <= cap + 1e-6

    def test_terminal_readiness_matches_composite(self):
        """The last readiness point is the plan composite."""
        assert self.result.readiness_scores[-1] == self.result.composite_readiness.readiness_score
        assert all(0 <= score <= 100 for score in self.result.readiness_scores)

    def test_goal_assessment(self):
        """The marathon is assessed on its own date."""
        assessment = self.result.goal_assessments[0]
        index = (self.goals[0].target_date - START).days

        assert assessment.goal_id == "marathon"
        assert assessment.state_readiness_score == self.result.readiness_scores[index]
        assert assessment.projected_ctl == self.result.points[index].fitness_ctl
        assert assessment.conflicting is False

    def test_deterministic(self):
        """The same inputs always give the same projection."""
        again = build_deterministic_projection(self.goals, self.start_state, self.blocks)

        assert again.to_dict() == self.result.to_dict()

    def test_inputs_are_not_mutated(self):
        """Goal and block lists are left in the caller's order."""
        goals = [
            Goal("b", START + timedelta(days=60), priority=2),
            Goal("a", START + timedelta(days=30), priority=1),
        ]
        blocks = list(reversed(self.blocks))

        build_deterministic_projection(goals, self.start_state, blocks)

        assert [goal.id for goal in goals] == ["b", "a"]
        assert blocks[0].name == "taper"

    def test_to_dict_is_json_serializable(self):
        """The result serializes without custom encoders."""
        data = json.loads(json.dumps(self.result.to_dict()))

        assert data["evidence_state"] == "rich"
        assert len(data["points"]) == 98
        assert data["points"][0]["date"] == "2026-01-05"
        assert data["effective_controls"]["optimization_profile"] == "balanced"
        assert data["no_history"] is None

    def test_to_dataframe(self):
        """One row per day with readiness."""
        df = self.result.to_dataframe()

        assert list(df.columns) == ["date", "load", "ctl", "atl", "tsb", "readiness"]
        assert len(df) == 98
        assert df["readiness"].iloc[-1] == self.result.composite_readiness.readiness_score

    def test_profile_changes_caps(self):
        """A sustainable profile projects with tighter caps."""
        controls = ProjectionControls(safety={"optimization_profile": "sustainable"})
        result = build_deterministic_projection(self.goals, self.start_state, self.blocks, controls)

        assert result.constraint_summary["max_weekly_tss_ramp_pct"] == 5.0
        assert result.constraint_summary["max_ctl_ramp_per_week"] == 2.0
        assert result.effective_controls.optimization_profile.value == "sustainable"


class TestStartStateResolution:
    """Test how the starting fitness is resolved."""

    def test_no_history_uses_anchor(self):
        """Without history or starting CTL the no-history prior seeds the plan."""
        goals = [Goal("marathon", START + timedelta(days=112), priority=1, targets=(MARATHON,))]
        context = NoHistoryContext(
            availability=WeeklyAvailability(declared_weekly_hours=6.0),
            consistency_marker="high",
        )
        start_state = StartState(start_date=START, no_history=context)

        result = build_deterministic_projection(goals, start_state)

        assert result.no_history is not None
        assert result.start_ctl == result.no_history.start_ctl
        assert result.start_atl == result.start_ctl
        assert result.no_history.weeks_to_event == 16
        assert result.constraint_summary["seed_weekly_tss"] >= result.no_history.start_weekly_tss
        assert result.evidence_state == EvidenceState.NONE
        assert result.points[-1].date == goals[0].target_date
        assert result.to_dict()["no_history"]["confidence"] == result.no_history.confidence.value

    def test_baseline_without_starting_ctl(self):
        """A baseline weekly load implies the starting CTL."""
        start_state = StartState(
            start_date=START,
            end_date=START + timedelta(days=27),
            baseline_weekly_tss=350.0,
            evidence_state=EvidenceState.SPARSE,
        )

        result = build_deterministic_projection([], start_state)

        assert result.no_history is None
        assert result.start_ctl == 50.0
        assert result.constraint_summary["seed_weekly_tss"] == 350.0

    def test_ctl_cap_below_tss_floor_is_recorded(self):
        """A heavy baseline on low fitness drops below the TSS ramp floor and says so."""
        start_state = StartState(
            start_date=START,
            end_date=START + timedelta(days=27),
            starting_ctl=20.0,
            baseline_weekly_tss=700.0,
            evidence_state=EvidenceState.RICH,
        )

        result = build_deterministic_projection([], start_state)
        first = result.microcycles[0]

        assert first.planned_weekly_tss < 700.0 * 0.93
        assert first.ctl_end - first.ctl_start <= 3.0 + 1e-6
        assert first.tss_ramp_floor_breached is True
        assert result.constraint_summary["tss_ramp_floor_breach_weeks"] >= 1
        assert result.to_dict()["microcycles"][0]["tss_ramp_floor_breached"] is True

    def test_history_claimed_but_nothing_known(self):
        """Rich evidence without any starting numbers still falls back to the prior."""
        start_state = StartState(start_date=START, end_date=START + timedelta(days=13), evidence_state=EvidenceState.RICH)

        result = build_deterministic_projection([], start_state)

        assert result.no_history is not None
        assert result.start_ctl == result.no_history.start_ctl


class TestProjectionWithoutGoals:
    """Test projections with no goals."""

    def test_no_goals(self):
        """Without goals there is no attainment component and no assessment."""
        start_state = StartState(
            start_date=START, end_date=START + timedelta(days=41), starting_ctl=40.0, evidence_state=EvidenceState.RICH
        )

        result = build_deterministic_projection([], start_state)

        assert result.goal_assessments == []
        assert result.composite_readiness.target_attainment_score is None
        assert len(result.points) == 42
        assert result.readiness_scores[-1] == result.composite_readiness.readiness_score

    def test_single_day(self):
        """With no end date, blocks or goals the plan is one day long."""
        result = build_deterministic_projection([], StartState(start_date=START, starting_ctl=30.0))

        assert len(result.points) == 1
        assert len(result.weekly_loads) == 1
        assert result.microcycles[0].days == 1
