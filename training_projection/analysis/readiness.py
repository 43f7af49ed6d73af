"""
Readiness Scoring and Goal Anchoring

Daily 0-100 readiness from the projected CTL/ATL/TSB series:
1. Raw score from fitness, form and fatigue signals (form matters more as a goal nears)
2. Post-event fatigue penalty, the maximum across all goals on each day
3. Peak anchoring for isolated goals; goals too close to another goal are left
   on their natural, fatigue-penalized curve
4. Terminal anchoring to the plan-level composite readiness score

Everything is deterministic: a fixed iteration budget with an early exit once
the curve stops moving.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from .calibration import (
    CalibrationConfig,
    DEFAULT_CALIBRATION,
    GoalAssessmentCalibration,
    ReadinessTimelineCalibration,
)
from .capacity import score_target_attainment
from .event_recovery import compute_post_event_fatigue_penalty, dominant_recovery_profile
from .goals import Goal, sort_goals, target_duration_hours
from .no_history import GoalDemandProfile, required_ctl_for_target
from .utils import clamp, clamp01, diff_days, round_half_up, round_int

logger = logging.getLogger(__name__)

PEAK_CTL_SCALING = 1.15
FATIGUE_WEIGHT = 0.2
FORM_WEIGHT_NEAR = 0.5
FORM_WEIGHT_FAR = 0.2
FORM_WEIGHT_NEAR_DAYS = 14
FORM_WEIGHT_FAR_DAYS = 100
RAW_BLEND_WEIGHT = 0.1
PEAK_RECOVERY_SHARE = 0.6


@dataclass(frozen=True)
class GoalPeakAnchor:
    goal_id: str
    index: int
    window_days: int
    conflicting: bool


@dataclass(frozen=True)
class TargetAssessment:
    target_type: str
    required_ctl: float
    score: int


@dataclass(frozen=True)
class GoalAssessment:
    goal_id: str
    target_date: date
    priority: int
    projected_ctl: float
    state_readiness_score: int
    target_attainment_score: int
    goal_readiness_score: int
    conflicting: bool
    target_scores: Tuple[TargetAssessment, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "goal_id": self.goal_id,
            "target_date": self.target_date.isoformat(),
            "priority": self.priority,
            "projected_ctl": round_half_up(self.projected_ctl, 1),
            "state_readiness_score": self.state_readiness_score,
            "target_attainment_score": self.target_attainment_score,
            "goal_readiness_score": self.goal_readiness_score,
            "conflicting": self.conflicting,
            "target_scores": [
                {"target_type": item.target_type, "required_ctl": item.required_ctl, "score": item.score}
                for item in self.target_scores
            ],
        }


def clamp_score(value: float) -> int:
    return round_int(clamp(value, 0, 100))


def optimal_form_target(goal: Optional[Goal], default_tsb: float) -> float:
    """Form (TSB) a goal wants on event day; longer events want less."""
    if goal is None or not goal.targets:
        return default_tsb
    durations = [target_duration_hours(target) for target in goal.targets]
    durations = [hours for hours in durations if hours is not None]
    if not durations:
        return default_tsb
    hours = max(durations)
    if hours < 0.5:
        return 15.0
    if hours < 1.5:
        return 12.0
    if hours < 3.0:
        return 8.0
    if hours < 5.0:
        return 5.0
    return 3.0


def form_weight_for_days(days_until_goal: Optional[int]) -> float:
    """Form weight rises from 0.2 (100+ days out) to 0.5 (two weeks out)."""
    if days_until_goal is None:
        return FORM_WEIGHT_FAR
    if days_until_goal <= FORM_WEIGHT_NEAR_DAYS:
        return FORM_WEIGHT_NEAR
    if days_until_goal >= FORM_WEIGHT_FAR_DAYS:
        return FORM_WEIGHT_FAR
    progress = (days_until_goal - FORM_WEIGHT_NEAR_DAYS) / (FORM_WEIGHT_FAR_DAYS - FORM_WEIGHT_NEAR_DAYS)
    return FORM_WEIGHT_NEAR + (FORM_WEIGHT_FAR - FORM_WEIGHT_NEAR) * progress


def _nearest_goal(goals: Sequence[Goal], day: date) -> Tuple[Optional[Goal], Optional[int]]:
    """Next goal on or after ``day``; otherwise the most recent past goal with no countdown."""
    for goal in goals:
        if goal.target_date >= day:
            return goal, diff_days(day, goal.target_date)
    return (goals[-1], None) if goals else (None, None)


def compute_raw_readiness_scores(
    points: Sequence,
    goals: Sequence[Goal],
    timeline: Optional[ReadinessTimelineCalibration] = None,
    feasibility_score: Optional[float] = None,
) -> List[float]:
    """Unanchored readiness per point, before any event-recovery penalty."""
    timeline = timeline or ReadinessTimelineCalibration()
    if not points:
        return []
    goals = sort_goals(goals)

    start_ctl = points[0].fitness_ctl
    peak_ctl = max(max(point.fitness_ctl for point in points), 1.0)
    growth_span = peak_ctl - start_ctl

    scores = []
    for point in points:
        ctl = point.fitness_ctl
        if growth_span >= 1.0:
            progressive = clamp01((ctl - start_ctl) / growth_span) ** timeline.progress_exponent
        else:
            progressive = clamp01(ctl / peak_ctl)
        absolute = clamp01(ctl / (peak_ctl * PEAK_CTL_SCALING))
        fitness_signal = 0.7 * progressive + 0.3 * absolute

        goal, days_until = _nearest_goal(goals, point.date)
        target_tsb = optimal_form_target(goal, timeline.target_tsb)
        form_signal = clamp01(1 - abs(point.form_tsb - target_tsb) / timeline.form_tolerance)

        overflow = max(0.0, point.fatigue_atl - ctl)
        fatigue_signal = clamp01(1 - overflow / max(1.0, peak_ctl * timeline.fatigue_overflow_scale))

        form_weight = form_weight_for_days(days_until)
        fitness_weight = 1 - form_weight - FATIGUE_WEIGHT
        raw = form_signal * form_weight + fitness_signal * fitness_weight + fatigue_signal * FATIGUE_WEIGHT
        if timeline.feasibility_blend_weight > 0 and feasibility_score is not None:
            blend = timeline.feasibility_blend_weight
            raw = raw * (1 - blend) + clamp01(feasibility_score / 100.0) * blend
        scores.append(100.0 * raw)
    return scores


def compute_peak_window_days(goal: Goal, timeline: ReadinessTimelineCalibration) -> int:
    """Taper days (5-8, longer for more intense events) plus 60% of full recovery."""
    profile = dominant_recovery_profile(goal)
    if profile is None:
        return timeline.default_peak_window_days
    taper_days = 5 + 3 * clamp01((profile.fatigue_intensity - 65) / 30)
    return round_int(taper_days + PEAK_RECOVERY_SHARE * profile.recovery_days_full)


def detect_goal_conflicts(goals: Sequence[Goal]) -> Dict[str, bool]:
    """Flag goals that sit within another goal's functional-recovery threshold."""
    functional = {}
    for goal in goals:
        profile = dominant_recovery_profile(goal)
        functional[goal.id] = profile.recovery_days_functional if profile else 0

    conflicts = {goal.id: False for goal in goals}
    for i, first in enumerate(goals):
        for second in goals[i + 1:]:
            gap = abs(diff_days(first.target_date, second.target_date))
            if gap <= functional[first.id] or gap <= functional[second.id]:
                conflicts[first.id] = True
                conflicts[second.id] = True
    return conflicts


def build_goal_anchors(
    points: Sequence, goals: Sequence[Goal], timeline: ReadinessTimelineCalibration
) -> List[GoalPeakAnchor]:
    if not points:
        return []
    index_by_date = {point.date: index for index, point in enumerate(points)}
    first_date, last_date = points[0].date, points[-1].date
    conflicts = detect_goal_conflicts(goals)

    anchors = []
    for goal in sort_goals(goals):
        if goal.target_date < first_date or goal.target_date > last_date:
            continue
        index = index_by_date.get(goal.target_date)
        if index is None:
            index = min(
                range(len(points)), key=lambda i: (abs(diff_days(points[i].date, goal.target_date)), i)
            )
        anchors.append(
            GoalPeakAnchor(
                goal_id=goal.id,
                index=index,
                window_days=compute_peak_window_days(goal, timeline),
                conflicting=conflicts[goal.id],
            )
        )
    return anchors


def _window_indices(points: Sequence, anchor: GoalPeakAnchor) -> List[int]:
    goal_date = points[anchor.index].date
    return [
        index
        for index, point in enumerate(points)
        if abs(diff_days(goal_date, point.date)) <= anchor.window_days
    ]


def _enforce_local_peak(
    values: List[float], points: Sequence, anchor: GoalPeakAnchor, slope: float
) -> None:
    window = _window_indices(points, anchor)
    local_max = max(values[index] for index in window)
    values[anchor.index] = max(values[anchor.index], local_max)
    goal_score = values[anchor.index]
    goal_date = points[anchor.index].date
    for index in window:
        if index == anchor.index:
            continue
        distance = abs(diff_days(goal_date, points[index].date))
        values[index] = min(values[index], goal_score - distance * slope)


def _blend_toward_terminal(
    values: List[float], plan_readiness_score: Optional[float], exponent: float
) -> Optional[int]:
    """Ease ``values`` in place toward the plan score along a power curve; returns the terminal score."""
    if plan_readiness_score is None:
        return None
    terminal = clamp_score(plan_readiness_score)
    count = len(values)
    delta = terminal - values[-1]
    for index in range(count):
        progress = (index / (count - 1)) ** exponent if count > 1 else 1.0
        values[index] += delta * progress
    return terminal


def compute_projection_point_readiness_scores(
    points: Sequence,
    plan_readiness_score: Optional[float] = None,
    goals: Sequence[Goal] = (),
    timeline_calibration: Optional[ReadinessTimelineCalibration] = None,
    feasibility_score: Optional[float] = None,
) -> List[int]:
    """Goal-aware readiness score (0-100) for every projection point.

    Args:
        points: Daily projection points in date order
        plan_readiness_score: Plan-level composite score the curve must end on
        goals: All plan goals; every goal contributes event-recovery penalties
        timeline_calibration: Scoring and smoothing constants
        feasibility_score: Optional plan feasibility blended in by calibration

    Returns:
        One integer score per point, same order as ``points``
    """
    timeline = timeline_calibration or ReadinessTimelineCalibration()
    if not points:
        return []

    raw = compute_raw_readiness_scores(points, goals, timeline, feasibility_score)
    if not goals:
        # No penalties, smoothing or peaks; only the terminal blend.
        values = list(raw)
        terminal = _blend_toward_terminal(values, plan_readiness_score, timeline.anchor_blend_exponent)
        scores = [clamp_score(value) for value in values]
        if terminal is not None:
            scores[-1] = terminal
        return scores

    goals = sort_goals(goals)
    adjusted = []
    for point, value in zip(points, raw):
        penalty = max(compute_post_event_fatigue_penalty(point.date, point, goal) for goal in goals)
        adjusted.append(clamp(value - penalty, 0, 100))

    anchors = build_goal_anchors(points, goals, timeline)
    isolated = [anchor for anchor in anchors if not anchor.conflicting]
    count = len(points)
    lam = timeline.smoothing_lambda

    optimized = list(adjusted)
    iterations = 0
    for _ in range(timeline.smoothing_iterations):
        iterations += 1
        previous = list(optimized)
        for index in range(1, count - 1):
            optimized[index] = (adjusted[index] + lam * previous[index - 1] + lam * previous[index + 1]) / (1 + 2 * lam)

        for anchor in isolated:
            _enforce_local_peak(optimized, points, anchor, timeline.peak_slope_per_day)

        # Readiness rebuilds gradually; drops (post-event) are left alone.
        for index in range(1, count):
            optimized[index] = min(optimized[index], optimized[index - 1] + timeline.max_step_delta)

        optimized = [
            (1 - RAW_BLEND_WEIGHT) * value + RAW_BLEND_WEIGHT * prior for value, prior in zip(optimized, adjusted)
        ]
        change = max(abs(value - before) for value, before in zip(optimized, previous))
        if change < timeline.convergence_epsilon:
            break

    terminal = _blend_toward_terminal(optimized, plan_readiness_score, timeline.anchor_blend_exponent)

    for anchor in anchors:
        optimized[anchor.index] = max(optimized[anchor.index], adjusted[anchor.index])

    last_index = count - 1
    for anchor in isolated:
        if anchor.index == last_index and terminal is not None:
            continue
        window = [index for index in _window_indices(points, anchor) if not (terminal is not None and index == last_index)]
        optimized[anchor.index] = max(optimized[anchor.index], max(optimized[index] for index in window))

    scores = [clamp_score(value) for value in optimized]
    if terminal is not None:
        scores[-1] = terminal

    logger.debug(
        f"Readiness anchored over {count} points: {len(isolated)} isolated goals, "
        f"{len(anchors) - len(isolated)} conflicting, {iterations} smoothing passes"
    )
    return scores


def score_goal_targets(
    goal: Goal, projected_ctl: float, demand: Optional[GoalDemandProfile]
) -> Tuple[int, Tuple[TargetAssessment, ...]]:
    """Target attainment for one goal, mean over its targets.

    A harder target always requires more CTL, so it can never score above an
    easier one at the same projected fitness.
    """
    if not goal.targets:
        required = demand.required_ctl if demand else 0.0
        return round_int(score_target_attainment(projected_ctl, required)), ()

    assessments = []
    for target in goal.targets:
        required = round_half_up(required_ctl_for_target(target), 1)
        assessments.append(
            TargetAssessment(
                target_type=target.target_type,
                required_ctl=required,
                score=round_int(score_target_attainment(projected_ctl, required)),
            )
        )
    mean = sum(item.score for item in assessments) / len(assessments)
    return round_int(mean), tuple(assessments)


def compute_goal_readiness(
    state_score: float, attainment_score: float, conflicting: bool, calibration: GoalAssessmentCalibration
) -> int:
    total = calibration.state_weight + calibration.attainment_weight
    if total <= 0:
        blended = state_score
    else:
        blended = (calibration.state_weight * state_score + calibration.attainment_weight * attainment_score) / total
    synergy = calibration.synergy_boost_multiplier * (state_score / 100.0) ** 2 * (attainment_score / 100.0) ** 2
    penalty = calibration.conflict_penalty if conflicting else 0.0
    return clamp_score(blended + synergy - penalty)


def compute_goal_assessments(
    goals: Sequence[Goal],
    points: Sequence,
    readiness_scores: Sequence[int],
    goal_demands: Optional[Dict[str, GoalDemandProfile]] = None,
    calibration: Optional[CalibrationConfig] = None,
) -> List[GoalAssessment]:
    """Per-goal state readiness, target attainment and blended goal readiness."""
    calibration = calibration or DEFAULT_CALIBRATION
    goal_demands = goal_demands or {}
    if not points:
        return []

    index_by_date = {point.date: index for index, point in enumerate(points)}
    conflicts = detect_goal_conflicts(goals)
    assessments = []
    for goal in sort_goals(goals):
        index = index_by_date.get(goal.target_date)
        if index is None:
            index = 0 if goal.target_date < points[0].date else len(points) - 1
        projected_ctl = points[index].fitness_ctl
        state_score = int(readiness_scores[index]) if readiness_scores else 0
        attainment, target_scores = score_goal_targets(goal, projected_ctl, goal_demands.get(goal.id))
        assessments.append(
            GoalAssessment(
                goal_id=goal.id,
                target_date=goal.target_date,
                priority=goal.priority,
                projected_ctl=projected_ctl,
                state_readiness_score=state_score,
                target_attainment_score=attainment,
                goal_readiness_score=compute_goal_readiness(
                    state_score, attainment, conflicts[goal.id], calibration.goal_assessment
                ),
                conflicting=conflicts[goal.id],
                target_scores=target_scores,
            )
        )
    return assessments
