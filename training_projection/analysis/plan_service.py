"""Plan orchestration: request parsing, preview and create.

A request is a JSON-compatible mapping::

    {
        "name": "Spring marathon",
        "start_state": {"start_date": "2026-01-05", "starting_ctl": 45, "evidence_state": "rich"},
        "goals": [{"id": "a", "target_date": "2026-04-19", "priority": 1, "targets": [...]}],
        "weekly_blocks": [{"phase": "build", "start_date": ..., "end_date": ...,
                           "target_weekly_tss_range": {"min": 350, "max": 450}}],
        "safety": {"optimization_profile": "balanced", "max_weekly_tss_ramp_pct": 8},
        "projection_control": {"mode": "advanced", "ambition": 0.7},
        "no_history": {"availability": {...}, "consistency_marker": "high"},
        "calibration": {"readiness_timeline": {"target_tsb": 10}}
    }

Preview and create share ``build_projection_inputs`` and ``run_projection`` so
both paths produce identical projections for the same request.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..config import config
from .calibration import CalibrationConfig
from .goals import Goal, ProjectionInputError, parse_goals
from .no_history import (
    AvailabilityWindow,
    DemandTier,
    EvidenceState,
    IntensityModel,
    NoHistoryContext,
    WeeklyAvailability,
)
from .plan_optimizer import WeeklyBlock, parse_weekly_blocks
from .projection import ProjectionControls, ProjectionResult, StartState, build_deterministic_projection
from .utils import is_finite, parse_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionInputs:
    """Validated arguments for build_deterministic_projection."""
    name: str
    goals: List[Goal]
    start_state: StartState
    weekly_blocks: List[WeeklyBlock]
    controls: ProjectionControls


def _optional_number(data: Dict[str, Any], key: str, path: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    if not is_finite(value):
        raise ProjectionInputError(path, f"{key} must be a number, got {value!r}")
    return float(value)


def _optional_int(data: Dict[str, Any], key: str, path: str) -> Optional[int]:
    value = _optional_number(data, key, path)
    return None if value is None else int(value)


def _optional_date(data: Dict[str, Any], key: str, path: str):
    if not data.get(key):
        return None
    try:
        return parse_date(data[key])
    except ValueError:
        raise ProjectionInputError(path, f"invalid {key} {data[key]!r}")


def _evidence_state(value: Any, path: str, key: str) -> EvidenceState:
    if value is None:
        return EvidenceState.NONE
    try:
        return EvidenceState(str(value).lower())
    except ValueError:
        raise ProjectionInputError(path, f"unknown {key} {value!r}")


def _require_object(data: Any, path: str) -> Dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ProjectionInputError(path, "expected an object")
    return data


def parse_start_state(
    data: Dict[str, Any], no_history: Optional[NoHistoryContext] = None, path: str = "start_state"
) -> StartState:
    data = _require_object(data, path)
    start_date = _optional_date(data, "start_date", path)
    if start_date is None:
        raise ProjectionInputError(path, "missing mandatory start_date")
    end_date = _optional_date(data, "end_date", path)
    if end_date is not None and end_date < start_date:
        raise ProjectionInputError(path, "end_date is before start_date")

    return StartState(
        start_date=start_date,
        end_date=end_date,
        starting_ctl=_optional_number(data, "starting_ctl", path),
        starting_atl=_optional_number(data, "starting_atl", path),
        baseline_weekly_tss=_optional_number(data, "baseline_weekly_tss", path),
        evidence_state=_evidence_state(data.get("evidence_state"), path, "evidence_state"),
        signal_quality=_optional_number(data, "signal_quality", path),
        days_since_last_activity=_optional_int(data, "days_since_last_activity", path),
        no_history=no_history,
    )


def parse_availability(data: Dict[str, Any], path: str = "availability") -> WeeklyAvailability:
    data = _require_object(data, path)
    raw_windows = data.get("windows") or []
    if not isinstance(raw_windows, list):
        raise ProjectionInputError(f"{path}.windows", "expected a list")

    windows = []
    for index, item in enumerate(raw_windows):
        window_path = f"{path}.windows[{index}]"
        item = _require_object(item, window_path)
        if not item.get("day"):
            raise ProjectionInputError(window_path, "missing mandatory day")
        start = _optional_int(item, "start_minute", window_path)
        end = _optional_int(item, "end_minute", window_path)
        if start is None or end is None:
            raise ProjectionInputError(window_path, "missing mandatory start_minute or end_minute")
        windows.append(AvailabilityWindow(day=str(item["day"]).lower(), start_minute=start, end_minute=end))

    rest_days = data.get("hard_rest_days") or []
    if not isinstance(rest_days, list):
        raise ProjectionInputError(f"{path}.hard_rest_days", "expected a list")

    return WeeklyAvailability(
        windows=tuple(windows),
        hard_rest_days=tuple(str(day).lower() for day in rest_days),
        max_session_minutes=_optional_int(data, "max_session_minutes", path),
        declared_weekly_hours=_optional_number(data, "declared_weekly_hours", path),
    )


def parse_no_history_context(
    data: Optional[Dict[str, Any]], goals: List[Goal], path: str = "no_history"
) -> Optional[NoHistoryContext]:
    if data is None:
        return None
    data = _require_object(data, path)

    goal_tier = None
    if data.get("goal_tier") is not None:
        try:
            goal_tier = DemandTier(str(data["goal_tier"]).lower())
        except ValueError:
            raise ProjectionInputError(path, f"unknown goal_tier {data['goal_tier']!r}")

    availability = None
    if data.get("availability") is not None:
        availability = parse_availability(data["availability"], f"{path}.availability")

    intensity_model = None
    if data.get("intensity_model") is not None:
        raw_model = _require_object(data["intensity_model"], f"{path}.intensity_model")
        defaults = IntensityModel()
        intensity_model = IntensityModel(
            version=str(raw_model.get("version") or defaults.version),
            weak_if=raw_model.get("weak_if", defaults.weak_if),
            strong_if=raw_model.get("strong_if", defaults.strong_if),
            conservative_if=raw_model.get("conservative_if", defaults.conservative_if),
        )

    def marker(key: str) -> Optional[str]:
        value = data.get(key)
        return None if value is None else str(value).lower()

    return NoHistoryContext(
        goals=tuple(goals),
        goal_tier=goal_tier,
        weeks_to_event=_optional_int(data, "weeks_to_event", path),
        total_horizon_weeks=_optional_int(data, "total_horizon_weeks", path),
        availability=availability,
        intensity_model=intensity_model,
        history_state=_evidence_state(data.get("history_state"), path, "history_state"),
        consistency_marker=marker("consistency_marker"),
        effort_confidence_marker=marker("effort_confidence_marker"),
        profile_metric_completeness=marker("profile_metric_completeness"),
        signal_quality=_optional_number(data, "signal_quality", path),
        days_since_last_activity=_optional_int(data, "days_since_last_activity", path),
        starting_ctl_override=_optional_number(data, "starting_ctl_override", path),
    )


def build_projection_inputs(
    request: Dict[str, Any], calibration: Optional[CalibrationConfig] = None
) -> ProjectionInputs:
    """Validate a request and build the engine arguments.

    Args:
        request: JSON-compatible plan request
        calibration: Used when the request carries no calibration overrides;
            defaults to Config.load_calibration()

    Returns:
        ProjectionInputs ready for build_deterministic_projection

    Raises:
        ProjectionInputError: With the path of the first malformed field
    """
    if not isinstance(request, dict):
        raise ProjectionInputError("request", "expected an object")

    goals = parse_goals(request.get("goals"), "goals")
    weekly_blocks = parse_weekly_blocks(request.get("weekly_blocks"), "weekly_blocks")
    no_history = parse_no_history_context(request.get("no_history"), goals, "no_history")
    start_state = parse_start_state(request.get("start_state"), no_history, "start_state")

    safety = dict(_require_object(request.get("safety"), "safety"))
    safety.setdefault("optimization_profile", config.DEFAULT_OPTIMIZATION_PROFILE)
    projection_control = _require_object(request.get("projection_control"), "projection_control")

    if request.get("calibration") is not None:
        calibration = CalibrationConfig.from_dict(_require_object(request["calibration"], "calibration"))
    elif calibration is None:
        calibration = config.load_calibration()

    return ProjectionInputs(
        name=str(request.get("name") or "Training plan"),
        goals=goals,
        start_state=start_state,
        weekly_blocks=weekly_blocks,
        controls=ProjectionControls(
            safety=safety,
            projection_control=projection_control,
            calibration=calibration,
        ),
    )


def run_projection(
    request: Dict[str, Any], calibration: Optional[CalibrationConfig] = None
) -> Tuple[ProjectionInputs, ProjectionResult]:
    inputs = build_projection_inputs(request, calibration)
    result = build_deterministic_projection(
        inputs.goals, inputs.start_state, inputs.weekly_blocks, inputs.controls
    )
    return inputs, result


def preview_projection(request: Dict[str, Any], calibration: Optional[CalibrationConfig] = None) -> Dict[str, Any]:
    """Project a plan without storing it."""
    _, result = run_projection(request, calibration)
    return result.to_dict()


def create_projection(request: Dict[str, Any], store=None, calibration: Optional[CalibrationConfig] = None) -> Dict[str, Any]:
    """Project a plan and store the request with its projection.

    Returns:
        Dictionary with the stored plan summary under ``plan`` and the same
        projection ``preview_projection`` returns under ``projection``
    """
    from ..db import TrainingPlanRecord, get_store

    store = store or get_store()
    inputs, result = run_projection(request, calibration)
    projection = result.to_dict()
    points = result.points

    record = TrainingPlanRecord(
        name=inputs.name,
        start_date=points[0].date.isoformat() if points else inputs.start_state.start_date.isoformat(),
        end_date=points[-1].date.isoformat() if points else inputs.start_state.start_date.isoformat(),
        goal_count=len(inputs.goals),
        readiness_score=result.composite_readiness.readiness_score,
        readiness_confidence=result.composite_readiness.readiness_confidence,
        calibration_version=result.calibration_version,
        request_json=json.dumps(request, sort_keys=True, default=str),
        projection_json=json.dumps(projection, sort_keys=True),
    )
    store.save_plan(record)
    return {"plan": record.summary(), "projection": projection}


def list_plans(store=None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    from ..db import get_store

    store = store or get_store()
    return [record.summary() for record in store.list_plans(limit)]


def get_plan(plan_id: int, store=None) -> Optional[Dict[str, Any]]:
    from ..db import get_store

    store = store or get_store()
    record = store.get_plan(plan_id)
    if record is None:
        return None
    return {"plan": record.summary(), "request": record.request, "projection": record.projection}
