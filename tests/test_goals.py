"""Tests for goal and target parsing."""

import pytest
from datetime import date

from training_projection.analysis.goals import (
    ActivityCategory,
    Goal,
    HeartRateThresholdTarget,
    PaceThresholdTarget,
    PowerThresholdTarget,
    ProjectionInputError,
    RacePerformanceTarget,
    normalize_priority,
    parse_goal,
    parse_goals,
    parse_target,
    sort_goals,
    target_duration_hours,
)


class TestTargetParsing:
    """Test the tagged target union at the input boundary."""

    def test_parse_each_variant(self):
        """Every target_type maps onto its typed variant."""
        race = parse_target({"target_type": "race_performance", "distance_m": 42195, "target_time_s": 12600})
        pace = parse_target({"target_type": "pace_threshold", "target_speed_mps": 4.2, "test_duration_s": 1200})
        power = parse_target({"target_type": "power_threshold", "target_watts": 280, "test_duration_s": 1200})
        hr = parse_target({"target_type": "hr_threshold", "target_lthr_bpm": 172})

        assert isinstance(race, RacePerformanceTarget)
        assert race.activity_category == ActivityCategory.RUN
        assert race.duration_hours == pytest.approx(3.5)
        assert isinstance(pace, PaceThresholdTarget)
        assert isinstance(power, PowerThresholdTarget)
        assert isinstance(hr, HeartRateThresholdTarget)
        assert hr.target_type == "hr_threshold"

    def test_missing_test_duration_fails_with_path(self):
        """A power target without test_duration_s is rejected at the boundary."""
        with pytest.raises(ProjectionInputError) as excinfo:
            parse_target({"target_type": "power_threshold", "target_watts": 280}, "goals[1].targets[0]")

        assert excinfo.value.path == "goals[1].targets[0]"
        assert "test_duration_s" in str(excinfo.value)
        assert str(excinfo.value).startswith("goals[1].targets[0]: ")

    def test_non_positive_values_are_rejected(self):
        """Distances and times must be positive."""
        with pytest.raises(ProjectionInputError, match="greater than 0"):
            parse_target({"target_type": "race_performance", "distance_m": 0, "target_time_s": 1200})

    def test_unknown_target_type(self):
        """Unknown variants are rejected instead of falling through to a default."""
        with pytest.raises(ProjectionInputError, match="unknown target_type"):
            parse_target({"target_type": "vo2max"})

    def test_unknown_activity_category_becomes_other(self):
        """A cosmetic category problem is not fatal."""
        race = parse_target({
            "target_type": "race_performance", "distance_m": 1900, "target_time_s": 2400,
            "activity_category": "rowing",
        })

        assert race.activity_category == ActivityCategory.OTHER

    def test_target_duration_hours(self):
        """Threshold tests report their test duration, HR targets none."""
        assert target_duration_hours(PaceThresholdTarget(4.0, 1800)) == pytest.approx(0.5)
        assert target_duration_hours(HeartRateThresholdTarget(170)) is None


class TestGoalParsing:
    """Test goal construction and validation."""

    def test_priority_is_clamped_not_rejected(self):
        """Out-of-range priorities clamp into [1, 10]."""
        assert Goal("a", date(2026, 5, 1), priority=0).priority == 1
        assert Goal("b", date(2026, 5, 1), priority=99).priority == 10
        assert Goal("c", date(2026, 5, 1), priority=None).priority == 5
        assert normalize_priority(2.5) == 3

    def test_importance_is_highest_for_priority_one(self):
        """Priority 1 carries the most weight."""
        assert Goal("a", date(2026, 5, 1), priority=1).importance == 1.0
        assert Goal("b", date(2026, 5, 1), priority=10).importance == pytest.approx(0.1)

    def test_targets_are_canonically_ordered(self):
        """Target order in the input does not matter."""
        hr = HeartRateThresholdTarget(170)
        race = RacePerformanceTarget(10000, 2700)

        assert Goal("a", date(2026, 5, 1), targets=(hr, race)) == Goal("a", date(2026, 5, 1), targets=(race, hr))

    def test_parse_goal(self):
        """A complete goal mapping parses into a Goal."""
        goal = parse_goal({
            "id": "spring",
            "target_date": "2026-04-19",
            "priority": 1,
            "name": "Spring marathon",
            "targets": [{"target_type": "race_performance", "distance_m": 42195, "target_time_s": 12600}],
        })

        assert goal.id == "spring"
        assert goal.target_date == date(2026, 4, 19)
        assert len(goal.targets) == 1

    def test_parse_goals_reports_nested_path(self):
        """Errors in nested targets carry the full path."""
        items = [
            {"id": "a", "target_date": "2026-04-19"},
            {"id": "b", "target_date": "2026-05-19", "targets": [
                {"target_type": "hr_threshold", "target_lthr_bpm": 170},
                {"target_type": "pace_threshold", "target_speed_mps": 4.1},
            ]},
        ]

        with pytest.raises(ProjectionInputError) as excinfo:
            parse_goals(items)

        assert excinfo.value.path == "goals[1].targets[1]"

    def test_missing_date_and_duplicate_ids(self):
        """Goals need a date and unique ids."""
        with pytest.raises(ProjectionInputError, match="target_date"):
            parse_goals([{"id": "a"}])
        with pytest.raises(ProjectionInputError, match="duplicate goal id"):
            parse_goals([
                {"id": "a", "target_date": "2026-04-19"},
                {"id": "a", "target_date": "2026-05-19"},
            ])

    def test_invalid_date(self):
        """Malformed dates are rejected."""
        with pytest.raises(ProjectionInputError, match="invalid target_date"):
            parse_goal({"id": "a", "target_date": "next spring"})

    def test_sort_goals(self):
        """Goals sort by date, then priority, then id."""
        goals = [
            Goal("c", date(2026, 6, 1), priority=1),
            Goal("b", date(2026, 5, 1), priority=3),
            Goal("a", date(2026, 5, 1), priority=3),
            Goal("d", date(2026, 5, 1), priority=1),
        ]

        assert [g.id for g in sort_goals(goals)] == ["d", "a", "b", "c"]
