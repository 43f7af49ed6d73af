"""Capacity envelope, durability and composite plan readiness.

All functions here are pure: they score a committed weekly-load sequence (or
its component scores) and return frozen result objects.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .calibration import (
    DurabilityPenalties,
    EnvelopePenaltyWeights,
    ReadinessCompositeWeights,
)
from .no_history import EVIDENCE_BASE_CONFIDENCE, EvidenceState
from .utils import clamp, clamp01, is_finite, round_half_up, round_int

logger = logging.getLogger(__name__)

EVIDENCE_ENVELOPE_MULTIPLIER = {
    EvidenceState.NONE: 0.85,
    EvidenceState.SPARSE: 0.92,
    EvidenceState.STALE: 0.9,
    EvidenceState.RICH: 1.1,
}

EVIDENCE_CONFIDENCE_CAP = {
    EvidenceState.NONE: 58,
    EvidenceState.SPARSE: 72,
    EvidenceState.STALE: 68,
    EvidenceState.RICH: 92,
}

MIN_ENVELOPE_BASE_WEEKLY_TSS = 140.0
ENVELOPE_GROWTH_PER_WEEK = 0.035
ENVELOPE_GROWTH_WEEKS = 24
ENVELOPE_INSIDE_THRESHOLD = 85
ENVELOPE_EDGE_THRESHOLD = 65

DELOAD_REDUCTION_RATIO = 0.95
DELOAD_DEBT_GRACE_WEEKS = 3


class EnvelopeState(Enum):
    INSIDE = "inside"
    EDGE = "edge"
    OUTSIDE = "outside"


@dataclass(frozen=True)
class EnvelopeBounds:
    safe_low: float
    safe_high: float
    ramp_limit: float


@dataclass(frozen=True)
class CapacityEnvelopeResult:
    envelope_score: int
    envelope_state: EnvelopeState
    limiting_factors: Tuple[str, ...]

    def to_dict(self) -> Dict:
        return {
            "envelope_score": self.envelope_score,
            "envelope_state": self.envelope_state.value,
            "limiting_factors": list(self.limiting_factors),
        }


@dataclass(frozen=True)
class DurabilityResult:
    durability_score: int
    monotony: float
    strain: float
    deload_debt_weeks: int

    def to_dict(self) -> Dict:
        return {
            "durability_score": self.durability_score,
            "monotony": self.monotony,
            "strain": self.strain,
            "deload_debt_weeks": self.deload_debt_weeks,
        }


@dataclass(frozen=True)
class CompositeReadiness:
    target_attainment_score: Optional[int]
    envelope_score: int
    durability_score: int
    evidence_score: int
    readiness_score: int
    readiness_confidence: int
    readiness_rationale_codes: Tuple[str, ...]

    def to_dict(self) -> Dict:
        return {
            "target_attainment_score": self.target_attainment_score,
            "envelope_score": self.envelope_score,
            "durability_score": self.durability_score,
            "evidence_score": self.evidence_score,
            "readiness_score": self.readiness_score,
            "readiness_confidence": self.readiness_confidence,
            "readiness_rationale_codes": list(self.readiness_rationale_codes),
        }


@dataclass(frozen=True)
class FeasibilityMetadata:
    readiness_band: str
    readiness_score: int
    demand_gap_weekly_tss: float
    demand_gap_ratio: float
    clamp_pressure: float
    dominant_limiters: Tuple[str, ...]
    readiness_rationale_codes: Tuple[str, ...]
    readiness_uncertainty_pct: float
    tss_ramp_clamp_weeks: int
    ctl_ramp_clamp_weeks: int

    def to_dict(self) -> Dict:
        return {
            "readiness_band": self.readiness_band,
            "readiness_score": self.readiness_score,
            "demand_gap_weekly_tss": self.demand_gap_weekly_tss,
            "demand_gap_ratio": self.demand_gap_ratio,
            "clamp_pressure": self.clamp_pressure,
            "dominant_limiters": list(self.dominant_limiters),
            "readiness_rationale_codes": list(self.readiness_rationale_codes),
            "readiness_uncertainty_pct": self.readiness_uncertainty_pct,
            "tss_ramp_clamp_weeks": self.tss_ramp_clamp_weeks,
            "ctl_ramp_clamp_weeks": self.ctl_ramp_clamp_weeks,
        }


def envelope_bounds(week_index: int, starting_ctl: float, evidence_state: EvidenceState) -> EnvelopeBounds:
    """Safe weekly-load corridor for one week of the plan."""
    multiplier = EVIDENCE_ENVELOPE_MULTIPLIER[evidence_state]
    base = max(7 * max(0.0, starting_ctl), MIN_ENVELOPE_BASE_WEEKLY_TSS)
    progress = min(max(0, week_index), ENVELOPE_GROWTH_WEEKS)
    growth = 1 + ENVELOPE_GROWTH_PER_WEEK * progress
    return EnvelopeBounds(
        safe_low=base * 0.5 * (1 + 0.01 * progress) / multiplier,
        safe_high=base * 1.3 * growth * multiplier,
        ramp_limit=(0.12 + 0.002 * progress) * multiplier,
    )


def compute_capacity_envelope(
    weeks: Sequence[float],
    starting_ctl: float,
    evidence_state: EvidenceState = EvidenceState.NONE,
    penalties: Optional[EnvelopePenaltyWeights] = None,
) -> CapacityEnvelopeResult:
    """Score whether a weekly-load sequence stays inside its safe envelope.

    Args:
        weeks: Committed weekly loads in plan order
        starting_ctl: CTL before the first week
        evidence_state: History richness; richer evidence widens the envelope
        penalties: Relative weights for overshoot, undershoot and over-ramp

    Returns:
        CapacityEnvelopeResult with a 0-100 score, state and limiting factors
    """
    penalties = penalties or EnvelopePenaltyWeights()
    if len(weeks) == 0:
        return CapacityEnvelopeResult(100, EnvelopeState.INSIDE, ())

    total_weight = penalties.over_high + penalties.under_low + penalties.over_ramp
    if total_weight <= 0:
        total_weight = 1.0

    previous = 7 * max(0.0, starting_ctl)
    weighted_penalty = 0.0
    weight_sum = 0.0
    factors = set()
    count = len(weeks)
    for index, load in enumerate(weeks):
        bounds = envelope_bounds(index, starting_ctl, evidence_state)
        over_high = clamp01((load - bounds.safe_high) / bounds.safe_high)
        under_low = clamp01((bounds.safe_low - load) / bounds.safe_low) if bounds.safe_low > 0 else 0.0
        over_ramp = 0.0
        if previous > 0:
            ramp = (load - previous) / previous
            over_ramp = clamp01((ramp - bounds.ramp_limit) / max(bounds.ramp_limit, 0.01))

        if over_high > 0:
            factors.add("load_above_safe_high")
        if under_low > 0:
            factors.add("load_below_safe_low")
        if over_ramp > 0:
            factors.add("ramp_above_limit")

        week_penalty = (
            penalties.over_high * over_high + penalties.under_low * under_low + penalties.over_ramp * over_ramp
        ) / total_weight
        week_weight = 1 + 0.5 * (index / (count - 1) if count > 1 else 0.0)
        weighted_penalty += week_penalty * week_weight
        weight_sum += week_weight
        previous = load

    score = round_int(clamp(100 * (1 - weighted_penalty / weight_sum), 0, 100))
    if score >= ENVELOPE_INSIDE_THRESHOLD:
        state = EnvelopeState.INSIDE
    elif score >= ENVELOPE_EDGE_THRESHOLD:
        state = EnvelopeState.EDGE
    else:
        state = EnvelopeState.OUTSIDE

    return CapacityEnvelopeResult(score, state, tuple(sorted(factors)))


def compute_durability_score(
    weekly_loads: Sequence[float], penalties: Optional[DurabilityPenalties] = None
) -> DurabilityResult:
    """Penalize monotony, strain and long stretches without a real deload.

    Monotony is mean / stddev of the weekly loads and strain is the mean daily
    load times monotony.
    """
    penalties = penalties or DurabilityPenalties()
    loads = np.asarray(weekly_loads, dtype=float)
    if len(loads) < 2:
        return DurabilityResult(100, 0.0, 0.0, 0)

    mean = float(np.mean(loads))
    std = float(np.std(loads))
    monotony = mean / max(std, mean * 0.01, 1e-6) if mean > 0 else 0.0
    monotony = min(monotony, 10.0)
    strain = (mean / 7.0) * monotony

    longest_run = 0
    run = 0
    for index in range(1, len(loads)):
        if loads[index] <= loads[index - 1] * DELOAD_REDUCTION_RATIO:
            run = 0
        else:
            run += 1
        longest_run = max(longest_run, run)
    deload_debt = max(0, longest_run - DELOAD_DEBT_GRACE_WEEKS)

    monotony_penalty = clamp01(
        (monotony - penalties.monotony_threshold) / (penalties.monotony_threshold * penalties.monotony_scale)
    )
    strain_penalty = clamp01((strain - penalties.strain_threshold) / penalties.strain_scale)
    debt_penalty = clamp01(deload_debt / penalties.deload_debt_scale)

    score = 100 * (1 - (0.35 * monotony_penalty + 0.35 * strain_penalty + 0.30 * debt_penalty))
    return DurabilityResult(
        durability_score=round_int(clamp(score, 0, 100)),
        monotony=round_half_up(monotony, 3),
        strain=round_half_up(strain, 1),
        deload_debt_weeks=deload_debt,
    )


def compute_evidence_score(evidence_state: EvidenceState, confidence: Optional[float] = None) -> int:
    if is_finite(confidence):
        return round_int(100 * clamp01(confidence))
    return round_int(100 * EVIDENCE_BASE_CONFIDENCE[evidence_state])


def score_target_attainment(projected_ctl: float, required_ctl: float) -> float:
    """0-100 share of the required CTL the projection reaches on event day."""
    if required_ctl <= 0:
        return 100.0
    return 100.0 * clamp01(projected_ctl / required_ctl)


def compute_target_attainment_score(weighted_scores: Sequence[Tuple[float, float]]) -> Optional[int]:
    """Importance-weighted mean of (importance, score) pairs; None without goals."""
    total_weight = sum(weight for weight, _ in weighted_scores)
    if total_weight <= 0:
        return None
    return round_int(sum(weight * score for weight, score in weighted_scores) / total_weight)


def compute_composite_readiness(
    target_attainment_score: Optional[float],
    envelope_score: float,
    durability_score: float,
    evidence_score: float,
    evidence_state: EvidenceState = EvidenceState.NONE,
    weights: Optional[ReadinessCompositeWeights] = None,
    envelope_state: Optional[EnvelopeState] = None,
) -> CompositeReadiness:
    """Blend the four component scores into one plan readiness score.

    Without goals the target-attainment weight is redistributed over the
    other components.
    """
    weights = weights or ReadinessCompositeWeights()
    components: List[Tuple[float, float]] = [
        (weights.envelope, envelope_score),
        (weights.durability, durability_score),
        (weights.evidence, evidence_score),
    ]
    if target_attainment_score is not None:
        components.insert(0, (weights.target_attainment, target_attainment_score))

    total_weight = sum(weight for weight, _ in components)
    if total_weight <= 0:
        readiness = 0.0
    else:
        readiness = sum(weight * score for weight, score in components) / total_weight
    readiness_score = round_int(clamp(readiness, 0, 100))

    if envelope_state is None:
        if envelope_score >= ENVELOPE_INSIDE_THRESHOLD:
            envelope_state = EnvelopeState.INSIDE
        elif envelope_score >= ENVELOPE_EDGE_THRESHOLD:
            envelope_state = EnvelopeState.EDGE
        else:
            envelope_state = EnvelopeState.OUTSIDE

    codes: List[str] = []
    if target_attainment_score is None:
        codes.append("readiness_target_attainment_not_applicable")
    elif target_attainment_score < 60:
        codes.append("readiness_penalty_target_attainment_low")
    elif target_attainment_score >= 90:
        codes.append("readiness_credit_target_attainment_high")

    if envelope_state == EnvelopeState.OUTSIDE:
        codes.append("readiness_penalty_capacity_envelope_outside")
    elif envelope_state == EnvelopeState.EDGE:
        codes.append("readiness_penalty_capacity_envelope_edge")
    else:
        codes.append("readiness_credit_capacity_envelope_inside")

    if durability_score < 60:
        codes.append("readiness_penalty_durability_low")

    if evidence_state == EvidenceState.RICH:
        codes.append("readiness_credit_evidence_rich")
    else:
        codes.append(f"readiness_penalty_evidence_{evidence_state.value}")

    raw_confidence = 0.5 * evidence_score + 0.3 * envelope_score + 0.2 * durability_score
    cap = EVIDENCE_CONFIDENCE_CAP[evidence_state]
    if raw_confidence > cap:
        codes.append("readiness_confidence_capped_by_evidence")
    confidence = round_int(clamp(min(raw_confidence, cap), 0, 100))

    return CompositeReadiness(
        target_attainment_score=None if target_attainment_score is None else round_int(target_attainment_score),
        envelope_score=round_int(envelope_score),
        durability_score=round_int(durability_score),
        evidence_score=round_int(evidence_score),
        readiness_score=readiness_score,
        readiness_confidence=confidence,
        readiness_rationale_codes=tuple(codes),
    )


def compute_projection_feasibility_metadata(
    required_peak_weekly_tss: float,
    feasible_peak_weekly_tss: float,
    tss_ramp_clamp_weeks: int,
    ctl_ramp_clamp_weeks: int,
    confidence: float,
    projection_weeks: int,
) -> FeasibilityMetadata:
    """Summarize how far the demand sits from what the caps allowed."""
    unmet = max(0.0, round_half_up(required_peak_weekly_tss - feasible_peak_weekly_tss, 1))
    unmet_ratio = 0.0 if required_peak_weekly_tss <= 0 else round_half_up(unmet / required_peak_weekly_tss, 3)
    clamp_pressure = clamp01((tss_ramp_clamp_weeks + ctl_ramp_clamp_weeks) / max(1, projection_weeks))
    fulfillment = (
        1.0 if required_peak_weekly_tss <= 0 else clamp01(feasible_peak_weekly_tss / required_peak_weekly_tss)
    )
    confidence = clamp01(confidence)

    load_state = clamp01(fulfillment * 0.75 + (1 - unmet_ratio) * 0.25 - clamp_pressure * 0.35)
    intensity_balance = clamp01(1 - clamp_pressure * 0.7 - min(0.12, tss_ramp_clamp_weeks * 0.04))
    specificity = clamp01(fulfillment * 0.85 + (1 - clamp_pressure) * 0.15)
    execution_confidence = clamp01(confidence * 0.8 + (1 - clamp_pressure) * 0.2)
    score = round_int(
        (load_state * 0.35 + intensity_balance * 0.25 + specificity * 0.25 + execution_confidence * 0.15) * 100
    )

    if score >= 75:
        band = "high"
    elif score >= 55:
        band = "medium"
    else:
        band = "low"

    limiters = []
    if unmet > 0:
        limiters.append("required_growth_exceeds_caps")
    if tss_ramp_clamp_weeks > 0:
        limiters.append("tss_ramp_cap_pressure")
    if ctl_ramp_clamp_weeks > 0:
        limiters.append("ctl_ramp_cap_pressure")
    if confidence < 0.5:
        limiters.append("low_evidence_confidence")

    codes = []
    if fulfillment < 0.85:
        codes.append("readiness_penalty_demand_gap")
    if clamp_pressure > 0.15:
        codes.append("readiness_penalty_clamp_pressure")
    if confidence < 0.5:
        codes.append("readiness_penalty_low_confidence")
    if not codes:
        codes.append("readiness_within_caps")

    uncertainty = clamp(0.06 + (1 - confidence) * 0.18 + clamp_pressure * 0.05, 0.08, 0.28)

    return FeasibilityMetadata(
        readiness_band=band,
        readiness_score=score,
        demand_gap_weekly_tss=unmet,
        demand_gap_ratio=unmet_ratio,
        clamp_pressure=round_half_up(clamp_pressure, 3),
        dominant_limiters=tuple(limiters),
        readiness_rationale_codes=tuple(codes),
        readiness_uncertainty_pct=round_half_up(uncertainty, 3),
        tss_ramp_clamp_weeks=tss_ramp_clamp_weeks,
        ctl_ramp_clamp_weeks=ctl_ramp_clamp_weeks,
    )
