"""Safety and control resolution for the weekly load optimizer.

Turns an optimization profile plus optional advanced controls into concrete
ramp caps, optimizer weights, search sizes and curvature settings. Inputs are
clamped rather than rejected, and every output is rounded to 3 decimals so
that downstream search results are reproducible.
"""

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Union

from .calibration import CalibrationConfig, DEFAULT_CALIBRATION
from .utils import clamp, clamp01, is_finite, lerp, round_half_up

logger = logging.getLogger(__name__)

ABSOLUTE_MAX_WEEKLY_TSS_RAMP_PCT = 40.0
ABSOLUTE_MAX_CTL_RAMP_PER_WEEK = 12.0
MAX_POST_GOAL_RECOVERY_DAYS = 28

MIN_LOOKAHEAD_WEEKS = 1
MAX_LOOKAHEAD_WEEKS = 8
MIN_CANDIDATE_STEPS = 3
MAX_CANDIDATE_STEPS = 15

MAX_CURVATURE_WEIGHT = 18.0
CURVATURE_TARGET_SCALE = 0.18


class OptimizationProfile(Enum):
    """How aggressively the plan chases the goal outcome."""
    OUTCOME_FIRST = "outcome_first"
    BALANCED = "balanced"
    SUSTAINABLE = "sustainable"


class ControlMode(Enum):
    SIMPLE = "simple"
    ADVANCED = "advanced"


class MicrocyclePattern(Enum):
    """Shape of a single plan week."""
    RAMP = "ramp"
    DELOAD = "deload"
    TAPER = "taper"
    EVENT = "event"
    RECOVERY = "recovery"


PROFILE_DEFAULTS = {
    OptimizationProfile.OUTCOME_FIRST: {
        "post_goal_recovery_days": 3,
        "max_weekly_tss_ramp_pct": 10.0,
        "max_ctl_ramp_per_week": 5.0,
    },
    OptimizationProfile.BALANCED: {
        "post_goal_recovery_days": 5,
        "max_weekly_tss_ramp_pct": 7.0,
        "max_ctl_ramp_per_week": 3.0,
    },
    OptimizationProfile.SUSTAINABLE: {
        "post_goal_recovery_days": 7,
        "max_weekly_tss_ramp_pct": 5.0,
        "max_ctl_ramp_per_week": 2.0,
    },
}

# Profile-specific ceilings on search size.
PROFILE_SEARCH_BOUNDS = {
    OptimizationProfile.OUTCOME_FIRST: {"lookahead_weeks": 6, "candidate_steps": 13},
    OptimizationProfile.BALANCED: {"lookahead_weeks": 5, "candidate_steps": 9},
    OptimizationProfile.SUSTAINABLE: {"lookahead_weeks": 4, "candidate_steps": 7},
}

PHASE_CURVATURE_WEIGHTS = {
    MicrocyclePattern.RAMP: 1.0,
    MicrocyclePattern.DELOAD: 0.45,
    MicrocyclePattern.TAPER: 0.15,
    MicrocyclePattern.EVENT: 0.1,
    MicrocyclePattern.RECOVERY: 0.08,
}


@dataclass(frozen=True)
class SafetyConfig:
    optimization_profile: OptimizationProfile
    post_goal_recovery_days: int
    max_weekly_tss_ramp_pct: float
    max_ctl_ramp_per_week: float


@dataclass(frozen=True)
class ProjectionControl:
    mode: ControlMode = ControlMode.SIMPLE
    ambition: float = 0.5
    risk_tolerance: float = 0.4
    curvature: float = 0.0
    curvature_strength: float = 0.35


@dataclass(frozen=True)
class OptimizerSettings:
    preparedness_weight: float
    risk_penalty_weight: float
    volatility_penalty_weight: float
    churn_penalty_weight: float
    lookahead_weeks: int
    candidate_steps: int


@dataclass(frozen=True)
class RampCaps:
    max_weekly_tss_ramp_pct: float
    max_ctl_ramp_per_week: float


@dataclass(frozen=True)
class CurvatureSettings:
    target: float
    strength: float
    weight: float


@dataclass(frozen=True)
class EffectiveControls:
    """Concrete bounds and weights used by one projection run."""
    optimization_profile: OptimizationProfile
    post_goal_recovery_days: int
    projection_control: ProjectionControl
    optimizer: OptimizerSettings
    ramp_caps: RampCaps
    curvature: CurvatureSettings

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["optimization_profile"] = self.optimization_profile.value
        data["projection_control"]["mode"] = self.projection_control.mode.value
        return data


def _round3(value: float) -> float:
    return round_half_up(value, 3)


def _number_or(value: Any, default: float) -> float:
    return float(value) if is_finite(value) else default


def parse_optimization_profile(value: Any) -> OptimizationProfile:
    if isinstance(value, OptimizationProfile):
        return value
    try:
        return OptimizationProfile(str(value))
    except ValueError:
        if value is not None:
            logger.debug(f"Unknown optimization profile {value!r}, using balanced")
        return OptimizationProfile.BALANCED


def normalize_safety_config(config: Union[SafetyConfig, Dict[str, Any], None] = None) -> SafetyConfig:
    """Fill profile defaults and clamp user caps to the absolute system maxima."""
    if isinstance(config, SafetyConfig):
        return config
    config = config or {}
    profile = parse_optimization_profile(config.get("optimization_profile"))
    defaults = PROFILE_DEFAULTS[profile]

    recovery_days = _number_or(config.get("post_goal_recovery_days"), defaults["post_goal_recovery_days"])
    tss_ramp = _number_or(config.get("max_weekly_tss_ramp_pct"), defaults["max_weekly_tss_ramp_pct"])
    ctl_ramp = _number_or(config.get("max_ctl_ramp_per_week"), defaults["max_ctl_ramp_per_week"])

    return SafetyConfig(
        optimization_profile=profile,
        post_goal_recovery_days=int(round_half_up(clamp(recovery_days, 0, MAX_POST_GOAL_RECOVERY_DAYS))),
        max_weekly_tss_ramp_pct=_round3(clamp(tss_ramp, 0.0, ABSOLUTE_MAX_WEEKLY_TSS_RAMP_PCT)),
        max_ctl_ramp_per_week=_round3(clamp(ctl_ramp, 0.0, ABSOLUTE_MAX_CTL_RAMP_PER_WEEK)),
    )


def normalize_projection_control(controls: Union[ProjectionControl, Dict[str, Any], None] = None) -> ProjectionControl:
    if isinstance(controls, ProjectionControl):
        data = asdict(controls)
        data["mode"] = controls.mode.value
    else:
        data = controls or {}
    defaults = ProjectionControl()
    mode = ControlMode.ADVANCED if data.get("mode") == ControlMode.ADVANCED.value else ControlMode.SIMPLE
    return ProjectionControl(
        mode=mode,
        ambition=_round3(clamp01(_number_or(data.get("ambition"), defaults.ambition))),
        risk_tolerance=_round3(clamp01(_number_or(data.get("risk_tolerance"), defaults.risk_tolerance))),
        curvature=_round3(clamp(_number_or(data.get("curvature"), defaults.curvature), -1.0, 1.0)),
        curvature_strength=_round3(clamp01(_number_or(data.get("curvature_strength"), defaults.curvature_strength))),
    )


def resolve_effective_projection_controls(
    config: Union[SafetyConfig, Dict[str, Any], None] = None,
    calibration: Optional[CalibrationConfig] = None,
    controls: Union[ProjectionControl, Dict[str, Any], None] = None,
) -> EffectiveControls:
    """Resolve the concrete optimizer settings for one projection run.

    Controls are applied in both simple and advanced mode; the mode is only
    carried through to the result.

    Args:
        config: Safety configuration (profile, ramp caps, post-goal recovery days)
        calibration: Engine calibration supplying the base optimizer weights
        controls: Optional advanced controls (ambition, risk tolerance, curvature)

    Returns:
        EffectiveControls with every number rounded to 3 decimals
    """
    safety = normalize_safety_config(config)
    calibration = calibration or DEFAULT_CALIBRATION
    control = normalize_projection_control(controls)

    base = calibration.optimizer
    search_bounds = PROFILE_SEARCH_BOUNDS[safety.optimization_profile]
    lookahead_max = int(clamp(search_bounds["lookahead_weeks"], MIN_LOOKAHEAD_WEEKS, MAX_LOOKAHEAD_WEEKS))
    candidate_max = int(clamp(search_bounds["candidate_steps"], MIN_CANDIDATE_STEPS, MAX_CANDIDATE_STEPS))
    lookahead_base = min(base.lookahead_weeks, lookahead_max)
    candidate_base = min(base.candidate_steps, candidate_max)

    lookahead = int(round_half_up(lerp(lookahead_base, lookahead_max, control.ambition)))
    candidates = int(round_half_up(lerp(candidate_base, candidate_max, control.ambition)))

    optimizer = OptimizerSettings(
        preparedness_weight=_round3(base.preparedness_weight * lerp(0.75, 1.65, control.ambition)),
        risk_penalty_weight=_round3(base.risk_penalty_weight * lerp(1.8, 0.35, control.risk_tolerance)),
        volatility_penalty_weight=_round3(base.volatility_penalty_weight * lerp(1.45, 0.5, control.risk_tolerance)),
        churn_penalty_weight=_round3(base.churn_penalty_weight * lerp(1.3, 0.55, control.risk_tolerance)),
        lookahead_weeks=int(clamp(lookahead, MIN_LOOKAHEAD_WEEKS, lookahead_max)),
        candidate_steps=int(clamp(candidates, MIN_CANDIDATE_STEPS, candidate_max)),
    )

    resolved = EffectiveControls(
        optimization_profile=safety.optimization_profile,
        post_goal_recovery_days=safety.post_goal_recovery_days,
        projection_control=control,
        optimizer=optimizer,
        ramp_caps=RampCaps(
            max_weekly_tss_ramp_pct=_round3(
                clamp(safety.max_weekly_tss_ramp_pct, 0.0, ABSOLUTE_MAX_WEEKLY_TSS_RAMP_PCT)
            ),
            max_ctl_ramp_per_week=_round3(
                clamp(safety.max_ctl_ramp_per_week, 0.0, ABSOLUTE_MAX_CTL_RAMP_PER_WEEK)
            ),
        ),
        curvature=CurvatureSettings(
            target=_round3(control.curvature),
            strength=_round3(control.curvature_strength),
            weight=_round3(lerp(0.0, MAX_CURVATURE_WEIGHT, control.curvature_strength)),
        ),
    )
    logger.debug(
        f"Resolved controls: profile={safety.optimization_profile.value}, "
        f"lookahead={optimizer.lookahead_weeks}, candidates={optimizer.candidate_steps}"
    )
    return resolved


def build_curvature_envelope(pattern: MicrocyclePattern, week_index: int) -> float:
    """How strongly curvature smoothness is enforced for one week.

    Ramp weeks are shaped fully; taper, event and recovery weeks barely at
    all. The envelope narrows for later weeks.
    """
    phase_weight = PHASE_CURVATURE_WEIGHTS[pattern]
    horizon_decay = clamp(1 - 0.04 * max(0, week_index), 0.35, 1.0)
    return _round3(phase_weight * horizon_decay)


def compute_curvature_penalty(
    previous_load: float,
    loads: Sequence[float],
    envelopes: Sequence[float],
    curvature_target: float,
    scale_reference: float,
    earlier_load: Optional[float] = None,
) -> float:
    """Mean squared mismatch between normalized load curvature and the target.

    Args:
        previous_load: Last committed weekly load
        loads: Candidate week followed by its lookahead rollout
        envelopes: Curvature envelope per entry of ``loads``
        curvature_target: Desired curvature in [-1, 1] (positive = accelerating)
        scale_reference: Load used to normalize second differences
        earlier_load: Committed load one week before ``previous_load``, if any

    Returns:
        Penalty rounded to 6 decimals, 0 when there is too little history
    """
    history = ([earlier_load] if earlier_load is not None else []) + [previous_load] + list(loads)
    if len(history) < 3 or len(loads) < 1:
        return 0.0

    scale = max(20.0, abs(scale_reference) * 0.12)
    offset = len(history) - len(loads)
    total = 0.0
    samples = 0
    for index in range(2, len(history)):
        second_difference = history[index] - 2 * history[index - 1] + history[index - 2]
        envelope_index = min(max(0, index - offset), len(envelopes) - 1) if envelopes else -1
        envelope = envelopes[envelope_index] if envelope_index >= 0 else 1.0
        desired = curvature_target * envelope * CURVATURE_TARGET_SCALE
        # Envelope also scales how much the mismatch matters.
        mismatch = (second_difference / scale) - desired
        total += envelope * mismatch * mismatch
        samples += 1

    return round_half_up(total / samples, 6) if samples else 0.0
