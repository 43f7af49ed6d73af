"""Tests for request parsing, preview and create."""

import json
import pytest

from training_projection.analysis.calibration import CalibrationConfig
from training_projection.analysis.goals import ProjectionInputError
from training_projection.analysis.no_history import DemandTier, EvidenceState
from training_projection.analysis.plan_service import (
    build_projection_inputs,
    create_projection,
    get_plan,
    list_plans,
    parse_availability,
    parse_no_history_context,
    parse_start_state,
    preview_projection,
)
from training_projection.config import config
from training_projection.db import PlanStore, close_store, get_store


def make_request(**overrides):
    request = {
        "name": "Spring half",
        "start_state": {
            "start_date": "2026-01-05",
            "end_date": "2026-03-08",
            "starting_ctl": 42,
            "evidence_state": "rich",
        },
        "goals": [
            {
                "id": "half",
                "target_date": "2026-03-01",
                "priority": 1,
                "targets": [{"target_type": "race_performance", "distance_m": 21097, "target_time_s": 6300}],
            }
        ],
        "weekly_blocks": [
            {
                "phase": "build",
                "start_date": "2026-01-05",
                "end_date": "2026-02-15",
                "target_weekly_tss_range": {"min": 320, "max": 400},
            }
        ],
        "safety": {"optimization_profile": "balanced"},
    }
    request.update(overrides)
    return request


class TestRequestParsing:
    """Test request validation and error paths."""

    def test_build_inputs(self):
        """A complete request becomes engine arguments."""
        inputs = build_projection_inputs(make_request(), CalibrationConfig())

        assert inputs.name == "Spring half"
        assert inputs.goals[0].id == "half"
        assert inputs.start_state.starting_ctl == 42.0
        assert inputs.start_state.evidence_state == EvidenceState.RICH
        assert inputs.weekly_blocks[0].midpoint == 360.0
        assert inputs.controls.safety["optimization_profile"] == "balanced"

    def test_default_profile_and_name(self):
        """Missing safety and name fall back to defaults."""
        request = make_request(safety=None)
        del request["name"]

        inputs = build_projection_inputs(request, CalibrationConfig())

        assert inputs.name == "Training plan"
        assert inputs.controls.safety["optimization_profile"] == "balanced"

    def test_request_calibration_overrides(self):
        """Calibration in the request wins over the passed calibration."""
        request = make_request(calibration={"readiness_timeline": {"target_tsb": 10}})

        inputs = build_projection_inputs(request, CalibrationConfig())

        assert inputs.controls.calibration.readiness_timeline.target_tsb == 10.0

    def test_missing_start_date(self):
        """The start date is mandatory."""
        with pytest.raises(ProjectionInputError) as excinfo:
            build_projection_inputs(make_request(start_state={"starting_ctl": 40}), CalibrationConfig())

        assert str(excinfo.value) == "start_state: missing mandatory start_date"

    def test_end_before_start(self):
        """An end date before the start date is rejected."""
        with pytest.raises(ProjectionInputError, match="end_date is before start_date"):
            parse_start_state({"start_date": "2026-02-01", "end_date": "2026-01-01"})

    def test_non_numeric_starting_ctl(self):
        """Numbers must be numbers."""
        with pytest.raises(ProjectionInputError) as excinfo:
            parse_start_state({"start_date": "2026-02-01", "starting_ctl": "lots"})

        assert excinfo.value.path == "start_state"

    def test_unknown_evidence_state(self):
        """Evidence states are a closed set."""
        with pytest.raises(ProjectionInputError, match="unknown evidence_state"):
            parse_start_state({"start_date": "2026-02-01", "evidence_state": "legendary"})

    def test_goal_error_path(self):
        """Goal errors name the goal and target."""
        goals = make_request()["goals"] + [
            {"id": "ftp", "target_date": "2026-02-01", "targets": [{"target_type": "power_threshold", "target_watts": 280}]}
        ]

        with pytest.raises(ProjectionInputError) as excinfo:
            build_projection_inputs(make_request(goals=goals), CalibrationConfig())

        assert excinfo.value.path == "goals[1].targets[0]"
        assert "test_duration_s" in excinfo.value.message

    def test_request_must_be_object(self):
        """Top-level requests are objects."""
        with pytest.raises(ProjectionInputError):
            build_projection_inputs(["not", "a", "request"])

    def test_no_history_context(self):
        """No-history context is parsed with lowercased markers."""
        context = parse_no_history_context(
            {
                "goal_tier": "HIGH",
                "availability": {"declared_weekly_hours": 5, "hard_rest_days": ["Friday"]},
                "consistency_marker": "High",
                "intensity_model": {"weak_if": 0.6},
            },
            [],
        )

        assert context.goal_tier == DemandTier.HIGH
        assert context.availability.declared_weekly_hours == 5.0
        assert context.availability.hard_rest_days == ("friday",)
        assert context.consistency_marker == "high"
        assert context.intensity_model.weak_if == 0.6
        assert parse_no_history_context(None, []) is None

    def test_availability_window_errors(self):
        """Windows need a day and both minutes."""
        with pytest.raises(ProjectionInputError) as excinfo:
            parse_availability({"windows": [{"day": "monday", "start_minute": 360}]})

        assert excinfo.value.path == "availability.windows[0]"


class TestPreviewAndCreate:
    """Test preview/create parity and storage."""

    def setup_method(self):
        """Set up test fixtures."""
        self.db = PlanStore("sqlite:///:memory:")
        self.db.create_tables()
        self.calibration = CalibrationConfig()

    def teardown_method(self):
        """Clean up after tests."""
        self.db.drop_tables()
        self.db.close()

    def test_preview_matches_create(self):
        """Create returns exactly the projection preview computes."""
        preview = preview_projection(make_request(), self.calibration)
        created = create_projection(make_request(), self.db, self.calibration)

        assert created["projection"] == preview
        assert created["plan"]["id"] is not None
        assert created["plan"]["name"] == "Spring half"
        assert created["plan"]["start_date"] == "2026-01-05"
        assert created["plan"]["end_date"] == "2026-03-08"
        assert created["plan"]["goal_count"] == 1
        assert created["plan"]["readiness_score"] == preview["composite_readiness"]["readiness_score"]

    def test_list_and_get(self):
        """Stored plans can be listed and read back."""
        first = create_projection(make_request(name="First"), self.db, self.calibration)
        second = create_projection(make_request(name="Second"), self.db, self.calibration)

        plans = list_plans(self.db)
        stored = get_plan(first["plan"]["id"], self.db)

        assert {plan["name"] for plan in plans} == {"First", "Second"}
        assert len(list_plans(self.db, limit=1)) == 1
        assert stored["request"]["name"] == "First"
        assert stored["projection"] == json.loads(json.dumps(first["projection"]))
        assert get_plan(second["plan"]["id"] + 100, self.db) is None

    def test_invalid_request_is_not_stored(self):
        """Validation errors leave the database untouched."""
        with pytest.raises(ProjectionInputError):
            create_projection(make_request(start_state={}), self.db, self.calibration)

        assert list_plans(self.db) == []


class TestSharedStore:
    """Test the shared plan store."""

    def test_get_store_is_shared_until_closed(self, monkeypatch):
        """get_store returns one instance until close_store drops it."""
        monkeypatch.setattr(config, "DATABASE_URL", "sqlite:///:memory:")
        close_store()

        first = get_store()
        assert get_store() is first
        assert list_plans() == []

        close_store()
        second = get_store()
        assert second is not first
        close_store()
