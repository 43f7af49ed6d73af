"""
No-History Anchor Resolution

Deterministic starting prior for athletes without training history:
- Fitness class inferred from independent strong signals (never probabilistic)
- CTL floor from a fitness x goal-demand-tier table
- Floor clamped against what declared availability can actually absorb
- Build-time feasibility and confidence classification (metadata only)

Also hosts the goal demand profile and evidence weighting used elsewhere in
the engine. Missing inputs always take the most conservative branch and leave
a reason token behind; nothing here raises.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .calibration import CalibrationConfig, DEFAULT_CALIBRATION
from .goals import (
    Goal,
    HeartRateThresholdTarget,
    PaceThresholdTarget,
    PowerThresholdTarget,
    RacePerformanceTarget,
    Target,
)
from .utils import clamp, clamp01, is_finite, round_half_up, round_int

logger = logging.getLogger(__name__)


class EvidenceState(Enum):
    """How much historical training data backs the projection."""
    NONE = "none"
    SPARSE = "sparse"
    STALE = "stale"
    RICH = "rich"


class DemandTier(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FitnessLevel(Enum):
    WEAK = "weak"
    STRONG = "strong"


class BuildFeasibility(Enum):
    FULL = "full"
    LIMITED = "limited"
    INSUFFICIENT = "insufficient"


class AnchorConfidence(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


TIER_RANK = {DemandTier.LOW: 0, DemandTier.MEDIUM: 1, DemandTier.HIGH: 2}

CTL_FLOOR_TABLE = {
    FitnessLevel.WEAK: {DemandTier.LOW: 20.0, DemandTier.MEDIUM: 28.0, DemandTier.HIGH: 35.0},
    FitnessLevel.STRONG: {DemandTier.LOW: 30.0, DemandTier.MEDIUM: 40.0, DemandTier.HIGH: 50.0},
}

# (weeks for full, weeks for limited)
BUILD_TIME_THRESHOLDS = {
    DemandTier.HIGH: (16, 12),
    DemandTier.MEDIUM: (12, 8),
    DemandTier.LOW: (8, 6),
}

FEASIBILITY_CONFIDENCE = {
    BuildFeasibility.FULL: AnchorConfidence.HIGH,
    BuildFeasibility.LIMITED: AnchorConfidence.MEDIUM,
    BuildFeasibility.INSUFFICIENT: AnchorConfidence.LOW,
}

TARGET_EVENT_CTL_MULTIPLIER = 1.85
TARGET_EVENT_CTL_RANGE = (35.0, 95.0)

EVIDENCE_BASE_CONFIDENCE = {
    EvidenceState.NONE: 0.2,
    EvidenceState.SPARSE: 0.45,
    EvidenceState.STALE: 0.35,
    EvidenceState.RICH: 0.8,
}
EVIDENCE_MIN_CONFIDENCE = {
    EvidenceState.NONE: 0.35,
    EvidenceState.SPARSE: 0.3,
    EvidenceState.STALE: 0.25,
    EvidenceState.RICH: 0.5,
}

DEMAND_RANGE = (35.0, 110.0)
NO_TARGET_REQUIRED_CTL = 50.0

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True)
class IntensityModel:
    """Assumed intensity factors used to convert hours into weekly TSS."""
    version: str = "no_history_intensity_v1"
    weak_if: float = 0.68
    strong_if: float = 0.75
    conservative_if: float = 0.65


CONSERVATIVE_INTENSITY_MODEL = IntensityModel()


@dataclass(frozen=True)
class AvailabilityWindow:
    day: str
    start_minute: int
    end_minute: int

    @property
    def minutes(self) -> int:
        return max(0, self.end_minute - self.start_minute)


@dataclass(frozen=True)
class WeeklyAvailability:
    """Declared training availability.

    Either explicit day windows or a plain ``declared_weekly_hours`` figure.
    """
    windows: Tuple[AvailabilityWindow, ...] = ()
    hard_rest_days: Tuple[str, ...] = ()
    max_session_minutes: Optional[int] = None
    declared_weekly_hours: Optional[float] = None

    def training_days(self) -> List[str]:
        rest = {day.lower() for day in self.hard_rest_days}
        days = {w.day.lower() for w in self.windows if w.minutes > 0 and w.day.lower() not in rest}
        return [day for day in WEEKDAYS if day in days] + sorted(days - set(WEEKDAYS))

    def weekly_hours(self) -> Optional[float]:
        if self.windows:
            rest = {day.lower() for day in self.hard_rest_days}
            total_minutes = 0
            for window in self.windows:
                if window.day.lower() in rest:
                    continue
                minutes = window.minutes
                if self.max_session_minutes is not None and self.max_session_minutes > 0:
                    minutes = min(minutes, self.max_session_minutes)
                total_minutes += minutes
            return total_minutes / 60.0
        if is_finite(self.declared_weekly_hours) and self.declared_weekly_hours > 0:
            return float(self.declared_weekly_hours)
        return None


@dataclass(frozen=True)
class NoHistoryContext:
    """Indirect evidence available for an athlete with no history."""
    goals: Tuple[Goal, ...] = ()
    goal_tier: Optional[DemandTier] = None
    weeks_to_event: Optional[int] = None
    total_horizon_weeks: Optional[int] = None
    availability: Optional[WeeklyAvailability] = None
    intensity_model: Optional[IntensityModel] = None
    history_state: EvidenceState = EvidenceState.NONE
    consistency_marker: Optional[str] = None
    effort_confidence_marker: Optional[str] = None
    profile_metric_completeness: Optional[str] = None
    signal_quality: Optional[float] = None
    days_since_last_activity: Optional[int] = None
    starting_ctl_override: Optional[float] = None


@dataclass(frozen=True)
class NoHistoryAnchorResolution:
    start_ctl: float
    start_atl: float
    start_weekly_tss: int
    fitness_level: FitnessLevel
    confidence: AnchorConfidence
    confidence_score: float
    reasons: Tuple[str, ...]
    floor_clamped_by_availability: bool
    goal_tier: DemandTier
    build_feasibility: BuildFeasibility
    target_event_ctl: float
    weeks_to_event: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "start_ctl": self.start_ctl,
            "start_atl": self.start_atl,
            "start_weekly_tss": self.start_weekly_tss,
            "fitness_level": self.fitness_level.value,
            "confidence": self.confidence.value,
            "confidence_score": self.confidence_score,
            "reasons": list(self.reasons),
            "floor_clamped_by_availability": self.floor_clamped_by_availability,
            "goal_tier": self.goal_tier.value,
            "build_feasibility": self.build_feasibility.value,
            "target_event_ctl": self.target_event_ctl,
            "weeks_to_event": self.weeks_to_event,
        }


@dataclass(frozen=True)
class GoalDemandProfile:
    tier: DemandTier
    required_ctl: float
    demand_min: float
    demand_max: float
    target_required_ctl: Tuple[float, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class EvidenceWeighting:
    state: EvidenceState
    confidence: float


def _is_high(marker: Optional[str]) -> bool:
    return isinstance(marker, str) and marker.strip().lower() == "high"


def infer_fitness_level(context: NoHistoryContext) -> Tuple[FitnessLevel, str]:
    """Promote to strong only with two or more independent strong signals."""
    signals = 0
    if _is_high(context.consistency_marker):
        signals += 1
    if _is_high(context.effort_confidence_marker):
        signals += 1
    if _is_high(context.profile_metric_completeness):
        signals += 1
    if is_finite(context.signal_quality) and context.signal_quality >= 0.8:
        signals += 1

    if signals >= 2:
        return FitnessLevel.STRONG, "fitness_promoted_to_strong_two_independent_signals"
    return FitnessLevel.WEAK, "fitness_defaulted_to_weak_insufficient_strong_signals"


def classify_target_tier(target: Target) -> DemandTier:
    if isinstance(target, RacePerformanceTarget):
        if target.distance_m >= 30000:
            return DemandTier.HIGH
        if target.distance_m >= 10000:
            return DemandTier.MEDIUM
        return DemandTier.LOW
    if isinstance(target, (PaceThresholdTarget, PowerThresholdTarget, HeartRateThresholdTarget)):
        return DemandTier.MEDIUM
    raise TypeError(f"Unsupported target type: {type(target).__name__}")


def classify_goal_tier(targets: Sequence[Target]) -> DemandTier:
    """Highest demand tier across targets; medium when there are none."""
    if not targets:
        return DemandTier.MEDIUM
    return max((classify_target_tier(target) for target in targets), key=lambda tier: TIER_RANK[tier])


def required_ctl_for_target(target: Target) -> float:
    if isinstance(target, RacePerformanceTarget):
        km = clamp(target.distance_m / 1000.0, 1.0, 100.0)
        distance_ctl = 28 + 13 * math.log(1 + km)
        kph = (target.distance_m / target.target_time_s) * 3.6
        pace_boost = clamp((kph - 9.5) * 3.2, 0.0, 24.0)
        return distance_ctl + pace_boost
    if isinstance(target, PaceThresholdTarget):
        return 56.0
    if isinstance(target, PowerThresholdTarget):
        return 60.0
    if isinstance(target, HeartRateThresholdTarget):
        return 54.0
    raise TypeError(f"Unsupported target type: {type(target).__name__}")


def derive_goal_demand_profile(
    targets: Sequence[Target],
    weeks_to_event: Optional[float] = None,
    calibration: Optional[CalibrationConfig] = None,
) -> GoalDemandProfile:
    """CTL a goal's targets demand on event day.

    Args:
        targets: Goal targets (may be empty)
        weeks_to_event: Build time available; shorter builds raise the demand
        calibration: Supplies the time-pressure scale

    Returns:
        GoalDemandProfile with the required CTL and a demand band around it
    """
    calibration = calibration or DEFAULT_CALIBRATION
    tier = classify_goal_tier(targets)
    per_target = tuple(round_half_up(required_ctl_for_target(target), 3) for target in targets)

    if per_target:
        peak = max(per_target)
        mean = sum(per_target) / len(per_target)
        aggregate = 0.7 * peak + 0.3 * mean
    else:
        aggregate = NO_TARGET_REQUIRED_CTL
    aggregate += TIER_RANK[tier] * 4

    if is_finite(weeks_to_event):
        pressure = clamp((20 - weeks_to_event) / 20.0, -0.35, 0.7)
        scale = calibration.no_history.demand_tier_time_pressure_scale
        aggregate *= 1 + pressure * 0.12 * scale

    required = clamp(aggregate, *DEMAND_RANGE)
    return GoalDemandProfile(
        tier=tier,
        required_ctl=round_half_up(required, 1),
        demand_min=round_half_up(required * 0.85, 1),
        demand_max=round_half_up(required * 1.15, 1),
        target_required_ctl=per_target,
    )


def derive_evidence_weighting(
    state: EvidenceState,
    signal_quality: Optional[float] = None,
    effort_confidence_marker: Optional[str] = None,
    profile_metric_completeness: Optional[str] = None,
    days_since_last_activity: Optional[int] = None,
    calibration: Optional[CalibrationConfig] = None,
) -> EvidenceWeighting:
    """Blend the evidence state with signal quality into a 0-1 confidence."""
    calibration = calibration or DEFAULT_CALIBRATION
    horizon = calibration.no_history.reliability_horizon_days
    if (
        state in (EvidenceState.SPARSE, EvidenceState.RICH)
        and is_finite(days_since_last_activity)
        and days_since_last_activity > horizon
    ):
        state = EvidenceState.STALE

    quality = clamp01(signal_quality) if is_finite(signal_quality) else 0.4
    score = EVIDENCE_BASE_CONFIDENCE[state] * 0.7 + quality * 0.3

    effort = (effort_confidence_marker or "").lower()
    if effort == "high":
        score += 0.08
    elif effort == "low":
        score -= 0.08

    completeness = (profile_metric_completeness or "").lower()
    if completeness == "high":
        score += 0.06
    elif completeness == "low":
        score -= 0.06

    score = max(EVIDENCE_MIN_CONFIDENCE[state], clamp01(score))
    return EvidenceWeighting(state=state, confidence=round_half_up(score, 3))


def classify_build_feasibility(tier: DemandTier, weeks_to_event: Optional[int]) -> BuildFeasibility:
    if not is_finite(weeks_to_event):
        return BuildFeasibility.INSUFFICIENT
    full_weeks, limited_weeks = BUILD_TIME_THRESHOLDS[tier]
    if weeks_to_event >= full_weeks:
        return BuildFeasibility.FULL
    if weeks_to_event >= limited_weeks:
        return BuildFeasibility.LIMITED
    return BuildFeasibility.INSUFFICIENT


def _resolve_intensity_factor(
    model: Optional[IntensityModel], fitness: FitnessLevel, reasons: List[str]
) -> float:
    if model is None:
        reasons.append("intensity_model_missing_using_conservative_baseline")
        model = CONSERVATIVE_INTENSITY_MODEL
    factor = model.strong_if if fitness == FitnessLevel.STRONG else model.weak_if
    if not is_finite(factor) or factor <= 0:
        factor = model.conservative_if if is_finite(model.conservative_if) else CONSERVATIVE_INTENSITY_MODEL.conservative_if
        reasons.append("intensity_factor_invalid_using_conservative_baseline")
    return float(clamp(factor, 0.3, 1.2))


def resolve_no_history_anchor(
    context: Optional[NoHistoryContext] = None, calibration: Optional[CalibrationConfig] = None
) -> NoHistoryAnchorResolution:
    """Resolve the starting CTL prior for an athlete with no training history.

    ``start_weekly_tss`` is always ``7 * start_ctl`` rounded half up.

    Args:
        context: Indirect evidence; None means nothing is known
        calibration: Supplies the confidence floors

    Returns:
        NoHistoryAnchorResolution with the prior and its reason tokens
    """
    context = context or NoHistoryContext()
    calibration = calibration or DEFAULT_CALIBRATION
    reasons: List[str] = []

    fitness, fitness_reason = infer_fitness_level(context)
    reasons.append(fitness_reason)

    if context.goal_tier is not None:
        tier = context.goal_tier
    else:
        tiers = [classify_goal_tier(goal.targets) for goal in context.goals]
        tier = max(tiers, key=lambda item: TIER_RANK[item]) if tiers else DemandTier.MEDIUM
    floor_ctl = CTL_FLOOR_TABLE[fitness][tier]
    floor_weekly_tss = round_int(7 * floor_ctl)
    target_event_ctl = round_half_up(clamp(floor_ctl * TARGET_EVENT_CTL_MULTIPLIER, *TARGET_EVENT_CTL_RANGE), 1)

    intensity_factor = _resolve_intensity_factor(context.intensity_model, fitness, reasons)

    weekly_hours = context.availability.weekly_hours() if context.availability else None
    clamped_weekly_tss = float(floor_weekly_tss)
    if weekly_hours is None:
        reasons.append("availability_missing_skip_floor_clamp")
    else:
        if context.availability.windows:
            reasons.append(f"availability_training_days_{len(context.availability.training_days())}")
        feasible_weekly_tss = round_int(weekly_hours * 100 * intensity_factor ** 2)
        clamped_weekly_tss = float(min(floor_weekly_tss, feasible_weekly_tss))

    floor_clamped = clamped_weekly_tss < floor_weekly_tss
    if floor_clamped:
        reasons.append("floor_clamped_by_availability")
        logger.debug(f"No-history floor {floor_weekly_tss} TSS/week clamped to {clamped_weekly_tss:.0f} by availability")

    start_ctl = round_half_up(clamped_weekly_tss / 7.0, 1)
    if is_finite(context.starting_ctl_override) and context.starting_ctl_override >= 0:
        start_ctl = round_half_up(float(context.starting_ctl_override), 1)
        reasons.append("starting_ctl_override_applied")
    start_weekly_tss = round_int(7 * start_ctl)

    weeks_to_event = context.weeks_to_event if is_finite(context.weeks_to_event) else None
    if weeks_to_event is None:
        reasons.append("timeline_unknown_assume_insufficient")
    feasibility = classify_build_feasibility(tier, weeks_to_event)
    confidence = FEASIBILITY_CONFIDENCE[feasibility]

    horizon = context.total_horizon_weeks if is_finite(context.total_horizon_weeks) else weeks_to_event
    downgrade = (
        fitness == FitnessLevel.WEAK
        or len(context.goals) > 1
        or (horizon is not None and horizon > 52)
        or floor_clamped
    )
    if confidence == AnchorConfidence.HIGH and downgrade:
        confidence = AnchorConfidence.MEDIUM
        reasons.append("confidence_downgraded_from_high")

    floors = calibration.no_history
    confidence_score = {
        AnchorConfidence.HIGH: floors.confidence_floor_high,
        AnchorConfidence.MEDIUM: floors.confidence_floor_mid,
        AnchorConfidence.LOW: floors.confidence_floor_low,
    }[confidence]

    return NoHistoryAnchorResolution(
        start_ctl=start_ctl,
        start_atl=start_ctl,
        start_weekly_tss=start_weekly_tss,
        fitness_level=fitness,
        confidence=confidence,
        confidence_score=confidence_score,
        reasons=tuple(reasons),
        floor_clamped_by_availability=floor_clamped,
        goal_tier=tier,
        build_feasibility=feasibility,
        target_event_ctl=target_event_ctl,
        weeks_to_event=weeks_to_event,
    )
