"""Deterministic training-load projection.

``build_deterministic_projection`` is the single engine entry point. It wires
control resolution, the no-history prior, the weekly load optimizer, the
fitness/fatigue dynamics, composite readiness and daily readiness anchoring
together. It performs no I/O and never mutates its inputs.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from .calibration import CalibrationConfig
from .capacity import (
    CapacityEnvelopeResult,
    CompositeReadiness,
    DurabilityResult,
    FeasibilityMetadata,
    compute_capacity_envelope,
    compute_composite_readiness,
    compute_durability_score,
    compute_evidence_score,
    compute_projection_feasibility_metadata,
    compute_target_attainment_score,
)
from .controls import (
    EffectiveControls,
    ProjectionControl,
    SafetyConfig,
    resolve_effective_projection_controls,
)
from .goals import Goal, sort_goals
from .model import FitnessFatigueModel, ProjectionPoint
from .no_history import (
    EvidenceState,
    NoHistoryAnchorResolution,
    NoHistoryContext,
    derive_evidence_weighting,
    derive_goal_demand_profile,
    resolve_no_history_anchor,
)
from .plan_optimizer import (
    MicrocycleProjection,
    WeeklyBlock,
    WeeklyLoadOptimizer,
    build_plan_weeks,
)
from .readiness import (
    GoalAssessment,
    compute_goal_assessments,
    compute_projection_point_readiness_scores,
    score_goal_targets,
)
from .utils import diff_days, is_finite, round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartState:
    """Athlete state at the start of the projection."""
    start_date: date
    end_date: Optional[date] = None
    starting_ctl: Optional[float] = None
    starting_atl: Optional[float] = None
    baseline_weekly_tss: Optional[float] = None
    evidence_state: EvidenceState = EvidenceState.NONE
    signal_quality: Optional[float] = None
    days_since_last_activity: Optional[int] = None
    no_history: Optional[NoHistoryContext] = None


@dataclass(frozen=True)
class ProjectionControls:
    """Safety configuration, advanced controls and calibration for one run."""
    safety: Union[SafetyConfig, Dict[str, Any], None] = None
    projection_control: Union[ProjectionControl, Dict[str, Any], None] = None
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)


@dataclass(frozen=True)
class ProjectionResult:
    points: List[ProjectionPoint]
    weekly_loads: List[float]
    readiness_scores: List[int]
    composite_readiness: CompositeReadiness
    feasibility_metadata: FeasibilityMetadata
    microcycles: List[MicrocycleProjection]
    capacity_envelope: CapacityEnvelopeResult
    durability: DurabilityResult
    goal_assessments: List[GoalAssessment]
    effective_controls: EffectiveControls
    start_ctl: float
    start_atl: float
    evidence_state: EvidenceState
    evidence_confidence: float
    constraint_summary: Dict[str, Any]
    no_history: Optional[NoHistoryAnchorResolution] = None
    calibration_version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe representation."""
        return {
            "calibration_version": self.calibration_version,
            "start_ctl": self.start_ctl,
            "start_atl": self.start_atl,
            "evidence_state": self.evidence_state.value,
            "evidence_confidence": self.evidence_confidence,
            "points": [point.to_dict() for point in self.points],
            "weekly_loads": list(self.weekly_loads),
            "readiness_scores": list(self.readiness_scores),
            "composite_readiness": self.composite_readiness.to_dict(),
            "feasibility_metadata": self.feasibility_metadata.to_dict(),
            "microcycles": [week.to_dict() for week in self.microcycles],
            "capacity_envelope": self.capacity_envelope.to_dict(),
            "durability": self.durability.to_dict(),
            "goal_assessments": [item.to_dict() for item in self.goal_assessments],
            "effective_controls": self.effective_controls.to_dict(),
            "constraint_summary": dict(self.constraint_summary),
            "no_history": self.no_history.to_dict() if self.no_history else None,
        }

    def to_dataframe(self) -> pd.DataFrame:
        """One row per projected day."""
        data = []
        for point, score in zip(self.points, self.readiness_scores):
            data.append({
                "date": pd.Timestamp(point.date),
                "load": point.load,
                "ctl": point.fitness_ctl,
                "atl": point.fatigue_atl,
                "tsb": point.form_tsb,
                "readiness": score,
            })
        return pd.DataFrame(data, columns=["date", "load", "ctl", "atl", "tsb", "readiness"])


def _resolve_end_date(start_state: StartState, goals: Sequence[Goal], blocks: Sequence[WeeklyBlock]) -> date:
    if start_state.end_date is not None:
        return max(start_state.end_date, start_state.start_date)
    candidates = [block.end_date for block in blocks] + [goal.target_date for goal in goals]
    candidates = [day for day in candidates if day >= start_state.start_date]
    return max(candidates) if candidates else start_state.start_date


def _weeks_until(start: date, day: date) -> int:
    return max(0, math.ceil(diff_days(start, day) / 7))


def _needs_no_history_anchor(start_state: StartState) -> bool:
    if start_state.evidence_state == EvidenceState.NONE:
        return not is_finite(start_state.starting_ctl)
    return not is_finite(start_state.starting_ctl) and not is_finite(start_state.baseline_weekly_tss)


def build_deterministic_projection(
    goals: Sequence[Goal],
    start_state: StartState,
    weekly_blocks: Sequence[WeeklyBlock] = (),
    controls: Optional[ProjectionControls] = None,
) -> ProjectionResult:
    """Project daily load, fitness, fatigue and readiness toward the plan goals.

    Args:
        goals: Plan goals (validated, see goals.parse_goals)
        start_state: Starting fitness state, timeline start/end and evidence
        weekly_blocks: Plan blocks with optional weekly TSS target ranges
        controls: Safety configuration, advanced controls and calibration

    Returns:
        ProjectionResult with points, weekly loads, readiness scores,
        composite readiness and feasibility metadata
    """
    controls = controls or ProjectionControls()
    calibration = controls.calibration
    goals = sort_goals(goals)
    blocks = sorted(weekly_blocks, key=lambda block: (block.start_date, block.end_date, block.name))

    effective = resolve_effective_projection_controls(controls.safety, calibration, controls.projection_control)
    model = FitnessFatigueModel.from_calibration(calibration)

    start_date = start_state.start_date
    end_date = _resolve_end_date(start_state, goals, blocks)
    weeks = build_plan_weeks(start_date, end_date, blocks)
    upcoming = [goal for goal in goals if goal.target_date >= start_date]

    anchor = None
    if _needs_no_history_anchor(start_state):
        context = start_state.no_history or NoHistoryContext()
        if not context.goals:
            context = replace(context, goals=tuple(goals))
        if context.weeks_to_event is None and upcoming:
            context = replace(context, weeks_to_event=_weeks_until(start_date, upcoming[0].target_date))
        if context.total_horizon_weeks is None:
            context = replace(context, total_horizon_weeks=len(weeks))
        anchor = resolve_no_history_anchor(context, calibration)

    if is_finite(start_state.starting_ctl):
        start_ctl = max(0.0, float(start_state.starting_ctl))
    elif anchor is not None:
        start_ctl = anchor.start_ctl
    elif is_finite(start_state.baseline_weekly_tss):
        start_ctl = round_half_up(max(0.0, start_state.baseline_weekly_tss) / 7.0, 1)
    else:
        start_ctl = 0.0
    start_atl = max(0.0, float(start_state.starting_atl)) if is_finite(start_state.starting_atl) else start_ctl

    baseline = max(0.0, float(start_state.baseline_weekly_tss)) if is_finite(start_state.baseline_weekly_tss) else 0.0
    seed_weekly_tss = max(baseline, round_half_up(7 * start_ctl, 1))
    if anchor is not None:
        seed_weekly_tss = max(seed_weekly_tss, float(anchor.start_weekly_tss))
    baseline = baseline or seed_weekly_tss

    no_history = start_state.no_history
    weighting = derive_evidence_weighting(
        start_state.evidence_state,
        signal_quality=start_state.signal_quality if start_state.signal_quality is not None
        else (no_history.signal_quality if no_history else None),
        effort_confidence_marker=no_history.effort_confidence_marker if no_history else None,
        profile_metric_completeness=no_history.profile_metric_completeness if no_history else None,
        days_since_last_activity=start_state.days_since_last_activity,
        calibration=calibration,
    )
    evidence_state = weighting.state
    evidence_confidence = weighting.confidence
    if anchor is not None:
        evidence_confidence = round_half_up(0.5 * weighting.confidence + 0.5 * anchor.confidence_score, 3)

    goal_demands = {
        goal.id: derive_goal_demand_profile(goal.targets, _weeks_until(start_date, goal.target_date), calibration)
        for goal in goals
    }

    optimizer = WeeklyLoadOptimizer(
        controls=effective,
        model=model,
        goals=goals,
        goal_demands=goal_demands,
        calibration=calibration,
        evidence_state=evidence_state,
        no_history=anchor,
        evidence_confidence=evidence_confidence,
    )
    microcycles = optimizer.optimize(weeks, start_ctl, start_atl, seed_weekly_tss, baseline)
    weekly_loads = [week.planned_weekly_tss for week in microcycles]

    daily_loads: List[float] = []
    for week in microcycles:
        daily_loads.extend([week.planned_weekly_tss / 7.0] * week.days)
    points = model.project_points(start_date, start_ctl, start_atl, daily_loads)

    envelope = compute_capacity_envelope(weekly_loads, start_ctl, evidence_state, calibration.envelope_penalties)
    durability = compute_durability_score(weekly_loads, calibration.durability_penalties)
    evidence_score = compute_evidence_score(evidence_state, evidence_confidence)

    index_by_date = {point.date: index for index, point in enumerate(points)}
    weighted_attainment = []
    for goal in goals:
        if not points:
            break
        index = index_by_date.get(goal.target_date)
        if index is None:
            index = 0 if goal.target_date < points[0].date else len(points) - 1
        attainment, _ = score_goal_targets(goal, points[index].fitness_ctl, goal_demands[goal.id])
        weighted_attainment.append((goal.importance, attainment))
    target_attainment = compute_target_attainment_score(weighted_attainment)

    composite = compute_composite_readiness(
        target_attainment,
        envelope.envelope_score,
        durability.durability_score,
        evidence_score,
        evidence_state,
        calibration.readiness_composite,
        envelope.envelope_state,
    )

    tss_clamps = sum(1 for week in microcycles if week.tss_ramp_clamped)
    ctl_clamps = sum(1 for week in microcycles if week.ctl_ramp_clamped)
    required_peak = 7 * max((demand.required_ctl for demand in goal_demands.values()), default=0.0)
    feasibility = compute_projection_feasibility_metadata(
        required_peak_weekly_tss=required_peak,
        feasible_peak_weekly_tss=max(weekly_loads, default=0.0),
        tss_ramp_clamp_weeks=tss_clamps,
        ctl_ramp_clamp_weeks=ctl_clamps,
        confidence=evidence_confidence,
        projection_weeks=len(weeks),
    )

    readiness_scores = compute_projection_point_readiness_scores(
        points,
        composite.readiness_score if points else None,
        goals,
        calibration.readiness_timeline,
        feasibility.readiness_score,
    )
    assessments = compute_goal_assessments(goals, points, readiness_scores, goal_demands, calibration)

    constraint_summary = {
        "max_weekly_tss_ramp_pct": effective.ramp_caps.max_weekly_tss_ramp_pct,
        "max_ctl_ramp_per_week": effective.ramp_caps.max_ctl_ramp_per_week,
        "post_goal_recovery_days": effective.post_goal_recovery_days,
        "tss_ramp_clamp_weeks": tss_clamps,
        "ctl_ramp_clamp_weeks": ctl_clamps,
        "tss_ramp_floor_breach_weeks": sum(1 for week in microcycles if week.tss_ramp_floor_breached),
        "recovery_weeks": sum(1 for week in microcycles if week.recovery_goal_ids),
        "seed_weekly_tss": seed_weekly_tss,
    }

    logger.info(
        f"Projected {len(points)} days over {len(weeks)} weeks for {len(goals)} goals: "
        f"readiness {composite.readiness_score} ({envelope.envelope_state.value} envelope)"
    )

    return ProjectionResult(
        points=points,
        weekly_loads=weekly_loads,
        readiness_scores=readiness_scores,
        composite_readiness=composite,
        feasibility_metadata=feasibility,
        microcycles=microcycles,
        capacity_envelope=envelope,
        durability=durability,
        goal_assessments=assessments,
        effective_controls=effective,
        start_ctl=start_ctl,
        start_atl=start_atl,
        evidence_state=evidence_state,
        evidence_confidence=evidence_confidence,
        constraint_summary=constraint_summary,
        no_history=anchor,
        calibration_version=calibration.version,
    )
