"""Versioned calibration for the projection engine.

Every numeric constant the engine tunes lives here, grouped by the stage that
consumes it. A ``CalibrationConfig`` is passed explicitly into the engine entry
points; nothing reads module-level state at projection time, so tests can
override any constant without leaking into other tests.

Overrides are merged onto the documented defaults and clamped into the schema
ranges below. Malformed values fall back to the default for that field.
"""

import logging
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, Optional, Tuple

from .utils import clamp, is_finite, round_int

logger = logging.getLogger(__name__)

CALIBRATION_VERSION = 1


@dataclass(frozen=True)
class ReadinessCompositeWeights:
    """Blend weights for the plan-level composite readiness score."""
    target_attainment: float = 0.45
    envelope: float = 0.30
    durability: float = 0.15
    evidence: float = 0.10


@dataclass(frozen=True)
class ReadinessTimelineCalibration:
    """Constants for daily readiness scoring and goal anchoring."""
    target_tsb: float = 8.0
    form_tolerance: float = 20.0
    fatigue_overflow_scale: float = 0.4
    feasibility_blend_weight: float = 0.0
    smoothing_iterations: int = 24
    smoothing_lambda: float = 0.28
    max_step_delta: float = 9.0
    convergence_epsilon: float = 0.01
    peak_slope_per_day: float = 1.2
    default_peak_window_days: int = 12
    progress_exponent: float = 1.35
    anchor_blend_exponent: float = 2.0


@dataclass(frozen=True)
class EnvelopePenaltyWeights:
    """Relative weights of the three capacity-envelope violations."""
    over_high: float = 0.55
    under_low: float = 0.20
    over_ramp: float = 0.25


@dataclass(frozen=True)
class DurabilityPenalties:
    monotony_threshold: float = 2.5
    monotony_scale: float = 4.0
    strain_threshold: float = 900.0
    strain_scale: float = 1200.0
    deload_debt_scale: float = 6.0


@dataclass(frozen=True)
class NoHistoryCalibration:
    reliability_horizon_days: int = 42
    confidence_floor_high: float = 0.75
    confidence_floor_mid: float = 0.6
    confidence_floor_low: float = 0.45
    demand_tier_time_pressure_scale: float = 1.0


@dataclass(frozen=True)
class OptimizerCalibration:
    """Base optimizer weights and search sizes before control modulation."""
    preparedness_weight: float = 14.0
    risk_penalty_weight: float = 0.9
    volatility_penalty_weight: float = 0.7
    churn_penalty_weight: float = 0.6
    lookahead_weeks: int = 4
    candidate_steps: int = 7


@dataclass(frozen=True)
class DynamicsCalibration:
    ctl_time_constant: float = 42.0
    atl_time_constant: float = 7.0


@dataclass(frozen=True)
class GoalAssessmentCalibration:
    """Goal readiness blend.

    ``synergy_boost_multiplier`` scales a continuous bonus for goals that are
    both fresh and well attained. It defaults to 0 (disabled).
    """
    state_weight: float = 0.55
    attainment_weight: float = 0.45
    synergy_boost_multiplier: float = 0.0
    conflict_penalty: float = 6.0


# (min, max) per field; fields missing here are only type-checked.
SCHEMA_RANGES: Dict[str, Dict[str, Tuple[float, float]]] = {
    "readiness_composite": {
        "target_attainment": (0.0, 1.0),
        "envelope": (0.0, 1.0),
        "durability": (0.0, 1.0),
        "evidence": (0.0, 1.0),
    },
    "readiness_timeline": {
        "target_tsb": (-5.0, 20.0),
        "form_tolerance": (8.0, 40.0),
        "fatigue_overflow_scale": (0.1, 1.0),
        "feasibility_blend_weight": (0.0, 0.3),
        "smoothing_iterations": (0, 80),
        "smoothing_lambda": (0.0, 0.9),
        "max_step_delta": (1.0, 20.0),
        "convergence_epsilon": (0.0, 1.0),
        "peak_slope_per_day": (0.0, 5.0),
        "default_peak_window_days": (3, 30),
        "progress_exponent": (1.0, 3.0),
        "anchor_blend_exponent": (0.5, 4.0),
    },
    "envelope_penalties": {
        "over_high": (0.0, 1.0),
        "under_low": (0.0, 1.0),
        "over_ramp": (0.0, 1.0),
    },
    "durability_penalties": {
        "monotony_threshold": (1.0, 4.0),
        "monotony_scale": (0.1, 6.0),
        "strain_threshold": (400.0, 2000.0),
        "strain_scale": (100.0, 4000.0),
        "deload_debt_scale": (1.0, 12.0),
    },
    "no_history": {
        "reliability_horizon_days": (7, 84),
        "confidence_floor_high": (0.0, 1.0),
        "confidence_floor_mid": (0.0, 1.0),
        "confidence_floor_low": (0.0, 1.0),
        "demand_tier_time_pressure_scale": (0.5, 2.0),
    },
    "optimizer": {
        "preparedness_weight": (0.0, 30.0),
        "risk_penalty_weight": (0.0, 2.0),
        "volatility_penalty_weight": (0.0, 2.0),
        "churn_penalty_weight": (0.0, 2.0),
        "lookahead_weeks": (1, 8),
        "candidate_steps": (3, 15),
    },
    "dynamics": {
        "ctl_time_constant": (7.0, 90.0),
        "atl_time_constant": (2.0, 21.0),
    },
    "goal_assessment": {
        "state_weight": (0.0, 1.0),
        "attainment_weight": (0.0, 1.0),
        "synergy_boost_multiplier": (0.0, 20.0),
        "conflict_penalty": (0.0, 30.0),
    },
}


@dataclass(frozen=True)
class CalibrationConfig:
    """Complete engine calibration with documented defaults."""
    version: int = CALIBRATION_VERSION
    readiness_composite: ReadinessCompositeWeights = field(default_factory=ReadinessCompositeWeights)
    readiness_timeline: ReadinessTimelineCalibration = field(default_factory=ReadinessTimelineCalibration)
    envelope_penalties: EnvelopePenaltyWeights = field(default_factory=EnvelopePenaltyWeights)
    durability_penalties: DurabilityPenalties = field(default_factory=DurabilityPenalties)
    no_history: NoHistoryCalibration = field(default_factory=NoHistoryCalibration)
    optimizer: OptimizerCalibration = field(default_factory=OptimizerCalibration)
    dynamics: DynamicsCalibration = field(default_factory=DynamicsCalibration)
    goal_assessment: GoalAssessmentCalibration = field(default_factory=GoalAssessmentCalibration)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CalibrationConfig":
        """Merge partial overrides onto the defaults, clamping into schema ranges.

        Args:
            data: Mapping of section name to a mapping of field overrides

        Returns:
            A fully populated CalibrationConfig
        """
        defaults = cls()
        if not data:
            return defaults

        sections = {}
        for section_field in fields(cls):
            name = section_field.name
            if name == "version":
                continue
            default_section = getattr(defaults, name)
            overrides = data.get(name) or {}
            if not isinstance(overrides, dict):
                logger.warning(f"Ignoring calibration section {name!r}: expected a mapping")
                overrides = {}
            sections[name] = _merge_section(name, default_section, overrides)

        for unknown in sorted(set(data) - set(sections) - {"version"}):
            logger.warning(f"Ignoring unknown calibration section {unknown!r}")

        return cls(version=CALIBRATION_VERSION, **sections)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _merge_section(name: str, default_section, overrides: Dict[str, Any]):
    ranges = SCHEMA_RANGES.get(name, {})
    values = {}
    for item in fields(default_section):
        default_value = getattr(default_section, item.name)
        if item.name not in overrides:
            values[item.name] = default_value
            continue

        raw = overrides[item.name]
        if not is_finite(raw):
            logger.warning(f"Calibration {name}.{item.name}={raw!r} is not a number, using default")
            values[item.name] = default_value
            continue

        value = float(raw)
        if item.name in ranges:
            low, high = ranges[item.name]
            value = clamp(value, low, high)
        if isinstance(default_value, int):
            value = round_int(value)
        values[item.name] = value

    unknown = sorted(set(overrides) - {item.name for item in fields(default_section)})
    for key in unknown:
        logger.warning(f"Ignoring unknown calibration field {name}.{key}")

    return type(default_section)(**values)


DEFAULT_CALIBRATION = CalibrationConfig()
