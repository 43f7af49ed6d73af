"""
Weekly Training Load Optimization

Bounded lookahead search over weekly training loads:
- Week patterns (ramp, deload, taper, event, recovery) from blocks and goals
- Candidate lattice generated strictly inside the TSS and CTL ramp caps
- Forward simulation of each candidate over a short lookahead rollout
- Multi-term objective (goal preparedness, risk, volatility, churn, curvature)

Weeks are committed left to right without backtracking, so the search cost is
weeks x candidates x lookahead.
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .calibration import CalibrationConfig, DEFAULT_CALIBRATION
from .capacity import compute_capacity_envelope
from .controls import (
    EffectiveControls,
    MicrocyclePattern,
    build_curvature_envelope,
    compute_curvature_penalty,
)
from .goals import (
    Goal,
    MAX_GOAL_PRIORITY,
    MIN_GOAL_PRIORITY,
    ProjectionInputError,
    sort_goals,
)
from .model import FitnessFatigueModel
from .no_history import EvidenceState, GoalDemandProfile, NoHistoryAnchorResolution
from .readiness import optimal_form_target
from .utils import add_days, clamp01, diff_days, is_finite, parse_date, round_half_up

logger = logging.getLogger(__name__)

RAMP_WAVE_MULTIPLIERS = (0.92, 1.0, 1.08)
TAPER_BLOCK_MULTIPLIER = 0.88
DELOAD_MULTIPLIER = 0.9
RECOVERY_REDUCTION = 0.35
OVERLOAD_RATIO_THRESHOLD = 1.3
TIE_TOLERANCE = 1e-9


class TrainingPhase(Enum):
    """Training phases."""
    BASE = "base"
    BUILD = "build"
    PEAK = "peak"
    TAPER = "taper"
    RECOVERY = "recovery"
    TRANSITION = "transition"


@dataclass(frozen=True)
class WeeklyBlock:
    """A block of the plan with an optional weekly TSS target range."""
    name: str
    phase: TrainingPhase
    start_date: date
    end_date: date
    target_weekly_tss_min: Optional[float] = None
    target_weekly_tss_max: Optional[float] = None

    @property
    def midpoint(self) -> Optional[float]:
        if self.target_weekly_tss_min is None or self.target_weekly_tss_max is None:
            return None
        return (self.target_weekly_tss_min + self.target_weekly_tss_max) / 2

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class PlanWeek:
    index: int
    start_date: date
    end_date: date
    block: Optional[WeeklyBlock] = None
    index_within_block: int = 0

    @property
    def days(self) -> int:
        return diff_days(self.start_date, self.end_date) + 1


@dataclass(frozen=True)
class WeekPattern:
    pattern: MicrocyclePattern
    multiplier: float


@dataclass(frozen=True)
class RecoverySegment:
    goal_id: str
    start_date: date
    end_date: date


@dataclass(frozen=True)
class WeekPlan:
    """Everything about a week that does not depend on the committed loads."""
    week: PlanWeek
    pattern: MicrocyclePattern
    multiplier: float
    recovery_coverage: float
    recovery_goal_ids: Tuple[str, ...]
    demand_floor_weekly_tss: Optional[float]

    @property
    def recovery_factor(self) -> float:
        return round_half_up(1 - RECOVERY_REDUCTION * self.recovery_coverage, 3)


@dataclass(frozen=True)
class CandidateEvaluation:
    load: float
    objective: float
    preparedness: float
    risk: float
    volatility: float
    churn: float
    curvature: float


@dataclass(frozen=True)
class MicrocycleProjection:
    """Committed result for one plan week."""
    week_index: int
    start_date: date
    end_date: date
    days: int
    phase: str
    pattern: MicrocyclePattern
    requested_weekly_tss: float
    planned_weekly_tss: float
    ctl_start: float
    ctl_end: float
    atl_end: float
    tss_ramp_clamped: bool
    ctl_ramp_clamped: bool
    recovery_goal_ids: Tuple[str, ...] = ()
    candidate_count: int = 0
    objective_score: float = 0.0
    tss_ramp_floor_breached: bool = False

    def to_dict(self) -> Dict:
        return {
            "week_index": self.week_index,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "days": self.days,
            "phase": self.phase,
            "pattern": self.pattern.value,
            "requested_weekly_tss": self.requested_weekly_tss,
            "planned_weekly_tss": self.planned_weekly_tss,
            "ctl_start": round_half_up(self.ctl_start, 3),
            "ctl_end": round_half_up(self.ctl_end, 3),
            "atl_end": round_half_up(self.atl_end, 3),
            "tss_ramp_clamped": self.tss_ramp_clamped,
            "ctl_ramp_clamped": self.ctl_ramp_clamped,
            "recovery_goal_ids": list(self.recovery_goal_ids),
            "candidate_count": self.candidate_count,
            "objective_score": self.objective_score,
            "tss_ramp_floor_breached": self.tss_ramp_floor_breached,
        }


def parse_weekly_block(data: Dict, path: str = "block") -> WeeklyBlock:
    if not isinstance(data, dict):
        raise ProjectionInputError(path, "expected an object")
    for key in ("start_date", "end_date"):
        if not data.get(key):
            raise ProjectionInputError(path, f"missing mandatory {key}")
    try:
        start_date = parse_date(data["start_date"])
        end_date = parse_date(data["end_date"])
    except ValueError as e:
        raise ProjectionInputError(path, f"invalid date: {e}")
    if end_date < start_date:
        raise ProjectionInputError(path, "end_date is before start_date")

    try:
        phase = TrainingPhase(str(data.get("phase") or "build").lower())
    except ValueError:
        logger.debug(f"{path}: unknown phase {data.get('phase')!r}, treating as build")
        phase = TrainingPhase.BUILD

    tss_range = data.get("target_weekly_tss_range") or {}
    low, high = tss_range.get("min"), tss_range.get("max")
    if is_finite(low) and is_finite(high):
        low, high = max(0.0, float(low)), max(0.0, float(high))
        if high < low:
            low, high = high, low
    else:
        low = high = None

    return WeeklyBlock(
        name=str(data.get("name") or phase.value),
        phase=phase,
        start_date=start_date,
        end_date=end_date,
        target_weekly_tss_min=low,
        target_weekly_tss_max=high,
    )


def parse_weekly_blocks(items: Optional[List[Dict]], path: str = "weekly_blocks") -> List[WeeklyBlock]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ProjectionInputError(path, "expected a list")
    blocks = [parse_weekly_block(item, f"{path}[{index}]") for index, item in enumerate(items)]
    return sorted(blocks, key=lambda block: (block.start_date, block.end_date, block.name))


def find_block_for_date(blocks: Sequence[WeeklyBlock], day: date) -> Optional[WeeklyBlock]:
    for block in blocks:
        if block.contains(day):
            return block
    return None


def build_plan_weeks(start_date: date, end_date: date, blocks: Sequence[WeeklyBlock]) -> List[PlanWeek]:
    """Split the timeline into 7-day weeks; the final week may be shorter."""
    weeks: List[PlanWeek] = []
    week_start = start_date
    index = 0
    while week_start <= end_date:
        week_end = min(add_days(week_start, 6), end_date)
        block = find_block_for_date(blocks, week_start)
        within = max(0, diff_days(block.start_date, week_start) // 7) if block else 0
        weeks.append(PlanWeek(index, week_start, week_end, block, within))
        week_start = add_days(week_start, 7)
        index += 1
    return weeks


def _priority_progress(goal: Goal) -> float:
    return (goal.priority - MIN_GOAL_PRIORITY) / (MAX_GOAL_PRIORITY - MIN_GOAL_PRIORITY)


def _base_week_pattern(week: PlanWeek) -> WeekPattern:
    if week.block is not None and week.block.phase == TrainingPhase.TAPER:
        return WeekPattern(MicrocyclePattern.TAPER, TAPER_BLOCK_MULTIPLIER)
    if (week.index_within_block + 1) % 4 == 0:
        return WeekPattern(MicrocyclePattern.DELOAD, DELOAD_MULTIPLIER)
    return WeekPattern(MicrocyclePattern.RAMP, RAMP_WAVE_MULTIPLIERS[week.index_within_block % 3])


def resolve_week_pattern(week: PlanWeek, goals: Sequence[Goal]) -> WeekPattern:
    """Combine the block pattern with goal events inside or just after the week.

    A goal inside the week makes it an event week; a goal up to 7 days after
    the week makes it a taper week. The strongest influence (priority weight
    times proximity) names the pattern and the load multiplier never exceeds
    the block pattern's.
    """
    base = _base_week_pattern(week)
    influences = []
    for goal in goals:
        weight = MAX_GOAL_PRIORITY - goal.priority + 1
        progress = _priority_progress(goal)
        if week.start_date <= goal.target_date <= week.end_date:
            influences.append((weight, MicrocyclePattern.EVENT, round_half_up(0.82 + 0.08 * progress, 3), goal))
            continue
        days_until = diff_days(week.end_date, goal.target_date)
        if 0 <= days_until <= 7:
            proximity = (8 - days_until) / 8
            influences.append(
                (weight * proximity, MicrocyclePattern.TAPER, round_half_up(0.9 + 0.06 * progress, 3), goal)
            )

    total = sum(item[0] for item in influences)
    if not influences or total <= 0:
        return base

    weighted_multiplier = sum(score * multiplier for score, _, multiplier, _ in influences) / total
    dominant = max(
        influences,
        key=lambda item: (
            item[0],
            item[1] == MicrocyclePattern.EVENT,
            -item[3].target_date.toordinal(),
            item[3].id,
        ),
    )
    return WeekPattern(dominant[1], round_half_up(min(base.multiplier, weighted_multiplier), 3))


def derive_recovery_segments(
    goals: Sequence[Goal], recovery_days: int, timeline_end: date
) -> List[RecoverySegment]:
    if recovery_days <= 0:
        return []
    segments = []
    for goal in goals:
        start = add_days(goal.target_date, 1)
        end = min(add_days(start, recovery_days - 1), timeline_end)
        if start > timeline_end or start > end:
            continue
        segments.append(RecoverySegment(goal.id, start, end))
    return segments


def find_recovery_overlap(
    segments: Sequence[RecoverySegment], week_start: date, week_end: date
) -> Tuple[int, Tuple[str, ...]]:
    overlap_days = 0
    goal_ids: List[str] = []
    for segment in segments:
        start = max(segment.start_date, week_start)
        end = min(segment.end_date, week_end)
        if start > end:
            continue
        overlap_days += diff_days(start, end) + 1
        if segment.goal_id not in goal_ids:
            goal_ids.append(segment.goal_id)
    return min(overlap_days, diff_days(week_start, week_end) + 1), tuple(goal_ids)


def demand_rhythm_multiplier(pattern: MicrocyclePattern, week_index: int, weeks_to_event: int) -> float:
    if pattern == MicrocyclePattern.EVENT:
        return 0.62
    if pattern == MicrocyclePattern.RECOVERY:
        return 0.72
    if pattern == MicrocyclePattern.TAPER:
        weeks_remaining = max(0, weeks_to_event - week_index - 1)
        if weeks_remaining <= 1:
            return 0.7
        if weeks_remaining <= 2:
            return 0.8
        return 0.88
    if pattern == MicrocyclePattern.DELOAD:
        return 0.82
    return (0.9, 1.0, 1.08)[week_index % 3]


def weekly_load_from_block_and_baseline(
    block_midpoint: Optional[float],
    baseline_weekly_tss: float,
    previous_week_tss: Optional[float] = None,
    demand_floor_weekly_tss: Optional[float] = None,
) -> float:
    """Rolling base load: mostly last week, pulled toward the block and demand floor."""
    midpoint = block_midpoint if block_midpoint is not None else baseline_weekly_tss
    previous = previous_week_tss if previous_week_tss is not None else baseline_weekly_tss
    floor_signal = demand_floor_weekly_tss if demand_floor_weekly_tss is not None else midpoint
    rolling = previous * 0.6 + midpoint * 0.25 + floor_signal * 0.15
    return round_half_up(max(0.0, rolling), 1)


class WeeklyLoadOptimizer:
    """Bounded best-of-N search over weekly training loads."""

    def __init__(
        self,
        controls: EffectiveControls,
        model: FitnessFatigueModel,
        goals: Sequence[Goal] = (),
        goal_demands: Optional[Dict[str, GoalDemandProfile]] = None,
        calibration: Optional[CalibrationConfig] = None,
        evidence_state: EvidenceState = EvidenceState.NONE,
        no_history: Optional[NoHistoryAnchorResolution] = None,
        evidence_confidence: float = 0.25,
    ):
        self.controls = controls
        self.model = model
        self.goals = sort_goals(goals)
        self.goal_demands = goal_demands or {}
        self.calibration = calibration or DEFAULT_CALIBRATION
        self.evidence_state = evidence_state
        self.no_history = no_history
        self.evidence_confidence = evidence_confidence
        self.logger = logging.getLogger(__name__)

    # Week planning

    def plan_weeks(self, weeks: Sequence[PlanWeek], timeline_end: date, seed_weekly_tss: float) -> List[WeekPlan]:
        """Resolve patterns, recovery overlap and demand floors for every week."""
        segments = derive_recovery_segments(self.goals, self.controls.post_goal_recovery_days, timeline_end)
        plans = []
        for week in weeks:
            pattern = resolve_week_pattern(week, self.goals)
            overlap_days, goal_ids = find_recovery_overlap(segments, week.start_date, week.end_date)
            coverage = overlap_days / max(1, week.days)
            effective_pattern = MicrocyclePattern.RECOVERY if goal_ids else pattern.pattern
            plans.append(
                WeekPlan(
                    week=week,
                    pattern=effective_pattern,
                    multiplier=pattern.multiplier,
                    recovery_coverage=coverage,
                    recovery_goal_ids=goal_ids,
                    demand_floor_weekly_tss=self._demand_floor(week, pattern.pattern, goal_ids, seed_weekly_tss),
                )
            )
        return plans

    def _demand_floor(
        self, week: PlanWeek, pattern: MicrocyclePattern, recovery_goal_ids: Tuple[str, ...], seed_weekly_tss: float
    ) -> Optional[float]:
        anchor = self.no_history
        if anchor is None or anchor.weeks_to_event is None or anchor.weeks_to_event <= 0:
            return None
        if week.index >= anchor.weeks_to_event or recovery_goal_ids or pattern != MicrocyclePattern.RAMP:
            return None

        progress = min(1.0, (week.index + 1) / anchor.weeks_to_event)
        progressive_ctl = anchor.start_ctl * (1 - progress) + anchor.target_event_ctl * progress
        floor = round_half_up(progressive_ctl, 1) * 7
        rhythm = demand_rhythm_multiplier(pattern, week.index, anchor.weeks_to_event)
        floor = round_half_up(floor * rhythm, 1)
        baseline = max(0.0, float(anchor.start_weekly_tss or seed_weekly_tss))
        confidence = clamp01(self.evidence_confidence)
        return round_half_up(baseline + (floor - baseline) * confidence, 1)

    def reference_load(
        self, plan: WeekPlan, previous_week_tss: float, baseline_weekly_tss: float, previous_demand_floor: Optional[float]
    ) -> float:
        """Load the plan would ask for this week before the caps apply."""
        midpoint = plan.week.block.midpoint if plan.week.block else None
        base = weekly_load_from_block_and_baseline(
            midpoint, baseline_weekly_tss, previous_week_tss, previous_demand_floor
        )
        requested = max(0.0, round_half_up(base * plan.multiplier, 1))
        adjusted = max(0.0, round_half_up(requested * plan.recovery_factor, 1))
        if plan.demand_floor_weekly_tss is not None:
            adjusted = max(adjusted, plan.demand_floor_weekly_tss)
        return adjusted

    # Candidate generation

    def tss_ramp_floor(self, previous_week_tss: float) -> float:
        """Lowest load the TSS ramp cap allows after ``previous_week_tss``."""
        if previous_week_tss <= 0:
            return 0.0
        return previous_week_tss * (1 - self.controls.ramp_caps.max_weekly_tss_ramp_pct / 100.0)

    def candidate_bounds(self, previous_week_tss: float, ctl: float, atl: float, days: int) -> Tuple[float, float, float, float]:
        """Return (lower, upper, tss_cap, ctl_cap) for the next week's load.

        Loads outside [lower, upper] are never generated. The TSS cap limits
        the relative change against the previous week in both directions and
        the CTL cap limits the end-of-week CTL rise. When the CTL cap sits
        below the TSS ramp floor the CTL cap wins and ``lower == upper``.
        """
        pct = self.controls.ramp_caps.max_weekly_tss_ramp_pct / 100.0
        ctl_cap = self.model.max_weekly_load_for_ctl_delta(ctl, atl, self.controls.ramp_caps.max_ctl_ramp_per_week, days)
        if previous_week_tss > 0:
            tss_cap = previous_week_tss * (1 + pct)
        else:
            tss_cap = ctl_cap
        upper = max(0.0, min(tss_cap, ctl_cap))
        lower = min(self.tss_ramp_floor(previous_week_tss), upper)
        return lower, upper, tss_cap, ctl_cap

    def candidate_lattice(self, lower: float, upper: float, reference: float, previous_week_tss: float) -> List[float]:
        steps = self.controls.optimizer.candidate_steps
        if upper - lower <= TIE_TOLERANCE:
            values = [upper]
        else:
            values = list(np.linspace(lower, upper, steps))
        values.append(reference)
        values.append(previous_week_tss)

        lattice = set()
        for value in values:
            value = round_half_up(float(value), 3)
            lattice.add(min(max(value, lower), upper))
        return sorted(lattice)

    # Objective

    def _upcoming_goal(self, day: date) -> Optional[Goal]:
        for goal in self.goals:
            if goal.target_date >= day:
                return goal
        return None

    def _rollout(
        self,
        plans: Sequence[WeekPlan],
        start: int,
        candidate: float,
        ctl: float,
        atl: float,
        previous_week_tss: float,
        baseline_weekly_tss: float,
        previous_demand_floor: Optional[float],
    ) -> Tuple[List[float], List[float], Dict[date, Tuple[float, float]], float, float]:
        """Simulate the candidate week plus the lookahead weeks.

        Later weeks follow the reference load clamped into their own caps.
        Returns (loads, references, daily states, ctl_end, atl_end).
        """
        horizon = min(len(plans), start + self.controls.optimizer.lookahead_weeks)
        loads: List[float] = []
        references: List[float] = []
        daily: Dict[date, Tuple[float, float]] = {}
        previous = previous_week_tss
        demand_floor = previous_demand_floor
        for index in range(start, horizon):
            plan = plans[index]
            reference = self.reference_load(plan, previous, baseline_weekly_tss, demand_floor)
            if index == start:
                load = candidate
            else:
                lower, upper, _, _ = self.candidate_bounds(previous, ctl, atl, plan.week.days)
                load = min(max(reference, lower), upper)
            for offset in range(plan.week.days):
                ctl, atl = self.model.step(ctl, atl, load / 7.0)
                daily[add_days(plan.week.start_date, offset)] = (ctl, atl)
            loads.append(load)
            references.append(reference)
            previous = load
            if plan.demand_floor_weekly_tss is not None:
                demand_floor = plan.demand_floor_weekly_tss
        return loads, references, daily, ctl, atl

    def evaluate_candidate(
        self,
        plans: Sequence[WeekPlan],
        index: int,
        candidate: float,
        ctl: float,
        atl: float,
        committed: Sequence[float],
        seed_weekly_tss: float,
        baseline_weekly_tss: float,
        previous_demand_floor: Optional[float],
        starting_ctl: float,
    ) -> CandidateEvaluation:
        settings = self.controls.optimizer
        previous = committed[-1] if committed else seed_weekly_tss
        loads, references, daily, ctl_end, _ = self._rollout(
            plans, index, candidate, ctl, atl, previous, baseline_weekly_tss, previous_demand_floor
        )

        preparedness = 0.0
        goal = self._upcoming_goal(plans[index].week.start_date)
        if goal is not None:
            demand = self.goal_demands.get(goal.id)
            required = demand.required_ctl if demand else max(ctl_end, 1.0)
            if goal.target_date in daily:
                goal_ctl, goal_atl = daily[goal.target_date]
                form_target = optimal_form_target(goal, self.calibration.readiness_timeline.target_tsb)
                tolerance = self.calibration.readiness_timeline.form_tolerance
                form = clamp01(1 - abs((goal_ctl - goal_atl) - form_target) / tolerance)
                preparedness = 0.65 * clamp01(goal_ctl / max(required, 1.0)) + 0.35 * form
            else:
                preparedness = clamp01(ctl_end / max(required, 1.0))
            preparedness *= goal.importance

        overload_days = [
            max(0.0, state_atl / max(1.0, state_ctl) - OVERLOAD_RATIO_THRESHOLD) for state_ctl, state_atl in daily.values()
        ]
        overload = 10.0 * (sum(overload_days) / len(overload_days)) if overload_days else 0.0
        envelope = compute_capacity_envelope(
            list(committed) + loads, starting_ctl, self.evidence_state, self.calibration.envelope_penalties
        )
        risk = overload + (100 - envelope.envelope_score) / 10.0

        chain = [previous] + loads
        changes = [
            ((chain[i] - chain[i - 1]) / max(1.0, chain[i - 1])) ** 2 for i in range(1, len(chain))
        ]
        volatility = 100.0 * (sum(changes) / len(changes)) if changes else 0.0
        deviations = [((load - ref) / max(1.0, ref)) ** 2 for load, ref in zip(loads, references)]
        churn = 100.0 * (sum(deviations) / len(deviations)) if deviations else 0.0

        envelopes = [
            build_curvature_envelope(plans[index + offset].pattern, index + offset) for offset in range(len(loads))
        ]
        earlier = committed[-2] if len(committed) >= 2 else None
        curvature = self.controls.curvature.weight * compute_curvature_penalty(
            previous, loads, envelopes, self.controls.curvature.target, previous, earlier
        )

        objective = (
            settings.preparedness_weight * preparedness
            - settings.risk_penalty_weight * risk
            - settings.volatility_penalty_weight * volatility
            - settings.churn_penalty_weight * churn
            - curvature
        )
        return CandidateEvaluation(
            load=candidate,
            objective=round_half_up(objective, 6),
            preparedness=preparedness,
            risk=risk,
            volatility=volatility,
            churn=churn,
            curvature=curvature,
        )

    @staticmethod
    def select_best(evaluations: Sequence[CandidateEvaluation], previous_week_tss: float) -> CandidateEvaluation:
        """Highest objective; ties go to the load closest to last week, then the lower load."""
        best = None
        for evaluation in evaluations:
            if best is None or evaluation.objective > best.objective + TIE_TOLERANCE:
                best = evaluation
                continue
            if abs(evaluation.objective - best.objective) <= TIE_TOLERANCE:
                distance = abs(evaluation.load - previous_week_tss)
                best_distance = abs(best.load - previous_week_tss)
                if distance < best_distance - TIE_TOLERANCE or (
                    abs(distance - best_distance) <= TIE_TOLERANCE and evaluation.load < best.load
                ):
                    best = evaluation
        return best

    # Main loop

    def optimize(
        self,
        weeks: Sequence[PlanWeek],
        start_ctl: float,
        start_atl: float,
        seed_weekly_tss: float,
        baseline_weekly_tss: Optional[float] = None,
    ) -> List[MicrocycleProjection]:
        """Commit one weekly load per plan week.

        Args:
            weeks: Plan weeks in order
            start_ctl: CTL before the first week
            start_atl: ATL before the first week
            seed_weekly_tss: Load the first week's caps are measured against
            baseline_weekly_tss: Load used where a block has no target range

        Returns:
            One MicrocycleProjection per week
        """
        if not weeks:
            return []
        baseline = seed_weekly_tss if baseline_weekly_tss is None else baseline_weekly_tss
        plans = self.plan_weeks(weeks, weeks[-1].end_date, seed_weekly_tss)

        ctl, atl = start_ctl, start_atl
        committed: List[float] = []
        previous_demand_floor: Optional[float] = None
        results: List[MicrocycleProjection] = []

        for index, plan in enumerate(plans):
            previous = committed[-1] if committed else seed_weekly_tss
            reference = self.reference_load(plan, previous, baseline, previous_demand_floor)
            lower, upper, tss_cap, ctl_cap = self.candidate_bounds(previous, ctl, atl, plan.week.days)
            lattice = self.candidate_lattice(lower, upper, reference, previous)

            evaluations = [
                self.evaluate_candidate(
                    plans, index, candidate, ctl, atl, committed, seed_weekly_tss, baseline, previous_demand_floor, start_ctl
                )
                for candidate in lattice
            ]
            best = self.select_best(evaluations, previous)

            ctl_start = ctl
            ctl, atl = self.model.simulate_week(ctl, atl, best.load, plan.week.days)
            committed.append(best.load)
            if plan.demand_floor_weekly_tss is not None:
                previous_demand_floor = plan.demand_floor_weekly_tss

            results.append(
                MicrocycleProjection(
                    week_index=plan.week.index,
                    start_date=plan.week.start_date,
                    end_date=plan.week.end_date,
                    days=plan.week.days,
                    phase=plan.week.block.phase.value if plan.week.block else TrainingPhase.BUILD.value,
                    pattern=plan.pattern,
                    requested_weekly_tss=reference,
                    planned_weekly_tss=best.load,
                    ctl_start=ctl_start,
                    ctl_end=ctl,
                    atl_end=atl,
                    tss_ramp_clamped=reference > tss_cap + TIE_TOLERANCE,
                    ctl_ramp_clamped=reference > ctl_cap + TIE_TOLERANCE and ctl_cap < tss_cap,
                    recovery_goal_ids=plan.recovery_goal_ids,
                    candidate_count=len(lattice),
                    objective_score=best.objective,
                    tss_ramp_floor_breached=best.load < self.tss_ramp_floor(previous) - TIE_TOLERANCE,
                )
            )
            self.logger.debug(
                f"Week {index} ({plan.pattern.value}): requested {reference:.1f}, "
                f"committed {best.load:.1f} from {len(lattice)} candidates in [{lower:.1f}, {upper:.1f}]"
            )

        self.logger.info(
            f"Optimized {len(results)} weeks: peak weekly load {max(committed):.1f}, final CTL {ctl:.1f}"
        )
        return results

    @staticmethod
    def to_dataframe(microcycles: Sequence[MicrocycleProjection]) -> pd.DataFrame:
        """Convert committed weeks to a DataFrame for analysis."""
        return pd.DataFrame([week.to_dict() for week in microcycles])
