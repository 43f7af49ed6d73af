"""Event recovery modeling.

Sizes the recovery a goal event demands from its target and turns that into
a post-event fatigue penalty for later days. The decay is a single-phase
exponential with half-life ``recovery_days_full / 3``.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from .goals import (
    ActivityCategory,
    Goal,
    HeartRateThresholdTarget,
    PaceThresholdTarget,
    PowerThresholdTarget,
    RacePerformanceTarget,
    Target,
)
from .utils import clamp, diff_days, round_int

logger = logging.getLogger(__name__)

MAX_POST_EVENT_PENALTY = 60.0

ACTIVITY_INTENSITY_FACTORS = {
    ActivityCategory.RUN: 1.0,
    ActivityCategory.BIKE: 0.9,
    ActivityCategory.SWIM: 0.95,
    ActivityCategory.OTHER: 0.85,
}

# (upper bound in hours, base intensity)
RACE_INTENSITY_BUCKETS = (
    (1.0, 95.0),
    (3.0, 90.0),
    (6.0, 85.0),
    (12.0, 80.0),
    (24.0, 75.0),
)
ULTRA_RACE_INTENSITY = 70.0


@dataclass(frozen=True)
class EventRecoveryProfile:
    recovery_days_full: int
    recovery_days_functional: int
    fatigue_intensity: float
    atl_spike_factor: float


def estimate_race_intensity(duration_hours: float, activity: ActivityCategory) -> float:
    base = ULTRA_RACE_INTENSITY
    for upper_hours, intensity in RACE_INTENSITY_BUCKETS:
        if duration_hours <= upper_hours:
            base = intensity
            break
    return float(round_int(base * ACTIVITY_INTENSITY_FACTORS[activity]))


def compute_event_recovery_profile(
    target: Target, projected_ctl: Optional[float] = None, projected_atl: Optional[float] = None
) -> EventRecoveryProfile:
    """Recovery demand of a single goal target.

    The projected CTL/ATL at the event are accepted for interface symmetry
    with the penalty function; the profile depends on the target alone.

    Args:
        target: Goal target
        projected_ctl: Projected fitness on event day
        projected_atl: Projected fatigue on event day

    Returns:
        EventRecoveryProfile with full/functional recovery days, fatigue
        intensity (0-100) and ATL spike factor
    """
    if isinstance(target, RacePerformanceTarget):
        hours = target.duration_hours
        intensity = estimate_race_intensity(hours, target.activity_category)
        base_days = clamp(hours * 3.5, 2.0, 28.0)
        return EventRecoveryProfile(
            recovery_days_full=round_int(base_days * (0.7 + 0.3 * intensity / 100)),
            recovery_days_functional=round_int(base_days * 0.4),
            fatigue_intensity=intensity,
            atl_spike_factor=min(2.5, 1 + hours * 0.15),
        )

    if isinstance(target, (PaceThresholdTarget, PowerThresholdTarget)):
        hours = target.test_duration_s / 3600.0
        base_days = 3 + hours * 2
        return EventRecoveryProfile(
            recovery_days_full=round_int(base_days),
            recovery_days_functional=round_int(base_days * 0.35),
            fatigue_intensity=75.0,
            atl_spike_factor=1.2,
        )

    if isinstance(target, HeartRateThresholdTarget):
        return EventRecoveryProfile(
            recovery_days_full=3,
            recovery_days_functional=1,
            fatigue_intensity=65.0,
            atl_spike_factor=1.1,
        )

    raise TypeError(f"Unsupported target type: {type(target).__name__}")


def dominant_recovery_profile(goal: Goal) -> Optional[EventRecoveryProfile]:
    """Most demanding recovery profile across a goal's targets, None without targets.

    Independent of target order: ties on full recovery days go to the higher
    fatigue intensity.
    """
    profiles = [compute_event_recovery_profile(target) for target in goal.targets]
    if not profiles:
        return None
    return max(
        profiles,
        key=lambda profile: (
            profile.recovery_days_full,
            profile.fatigue_intensity,
            profile.recovery_days_functional,
            profile.atl_spike_factor,
        ),
    )


def post_event_fatigue_penalty(
    days_after_event: float, profile: EventRecoveryProfile, ctl: float, atl: float
) -> float:
    if days_after_event <= 0:
        return 0.0
    half_life = max(profile.recovery_days_full / 3.0, 1e-6)
    decay = 0.5 ** (days_after_event / half_life)
    atl_overload_penalty = max(0.0, (atl / max(1.0, ctl) - 1) * 30)
    base_penalty = profile.fatigue_intensity * 0.5
    return min(MAX_POST_EVENT_PENALTY, (base_penalty + atl_overload_penalty) * decay)


def compute_post_event_fatigue_penalty(current_date: date, current_point, event_goal: Goal) -> float:
    """Fatigue penalty (0-60) on ``current_date`` caused by ``event_goal``.

    Args:
        current_date: Day being scored
        current_point: Projection point for that day (supplies CTL and ATL)
        event_goal: Goal whose event may still be weighing on the athlete

    Returns:
        Penalty in readiness points, 0 on or before the event or without targets
    """
    days_after = diff_days(event_goal.target_date, current_date)
    if days_after <= 0:
        return 0.0
    profile = dominant_recovery_profile(event_goal)
    if profile is None:
        return 0.0
    return post_event_fatigue_penalty(days_after, profile, current_point.fitness_ctl, current_point.fatigue_atl)
