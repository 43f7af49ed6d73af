"""Goals and performance targets.

Targets form a closed tagged union keyed by ``target_type``. Every consumer
dispatches over the four variants explicitly and raises ``TypeError`` for
anything else, so adding a variant means updating each consumer.

Parsing from plain mappings happens here, at the boundary. Structural problems
raise ``ProjectionInputError`` with a path such as ``goals[2].targets[0]``;
cosmetic out-of-range values (priority) are clamped instead.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .utils import clamp, is_finite, parse_date, round_int

logger = logging.getLogger(__name__)

MIN_GOAL_PRIORITY = 1
MAX_GOAL_PRIORITY = 10
DEFAULT_GOAL_PRIORITY = 5


class ProjectionInputError(ValueError):
    """Structural problem in caller-supplied projection input."""

    def __init__(self, path: str, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


class ActivityCategory(Enum):
    """Sport of a race target."""
    RUN = "run"
    BIKE = "bike"
    SWIM = "swim"
    OTHER = "other"


@dataclass(frozen=True)
class RacePerformanceTarget:
    distance_m: float
    target_time_s: float
    activity_category: ActivityCategory = ActivityCategory.RUN
    target_type: str = field(default="race_performance", init=False)

    @property
    def duration_hours(self) -> float:
        return self.target_time_s / 3600.0


@dataclass(frozen=True)
class PaceThresholdTarget:
    target_speed_mps: float
    test_duration_s: float
    target_type: str = field(default="pace_threshold", init=False)


@dataclass(frozen=True)
class PowerThresholdTarget:
    target_watts: float
    test_duration_s: float
    target_type: str = field(default="power_threshold", init=False)


@dataclass(frozen=True)
class HeartRateThresholdTarget:
    target_lthr_bpm: float
    target_type: str = field(default="hr_threshold", init=False)


Target = Union[RacePerformanceTarget, PaceThresholdTarget, PowerThresholdTarget, HeartRateThresholdTarget]


def normalize_priority(value: Any) -> int:
    """Clamp a goal priority into [1, 10]; missing or non-numeric becomes the default."""
    if not is_finite(value):
        return DEFAULT_GOAL_PRIORITY
    return int(clamp(round_int(value), MIN_GOAL_PRIORITY, MAX_GOAL_PRIORITY))


@dataclass(frozen=True)
class Goal:
    """A dated outcome the plan optimizes toward.

    Priority 1 is the most important goal (an "A" race) and 10 the least.
    """
    id: str
    target_date: date
    priority: int = DEFAULT_GOAL_PRIORITY
    targets: Tuple[Target, ...] = ()
    name: str = ""

    def __post_init__(self):
        priority = normalize_priority(self.priority)
        if priority != self.priority:
            logger.debug(f"Goal {self.id}: priority {self.priority!r} clamped to {priority}")
        object.__setattr__(self, "priority", priority)
        object.__setattr__(self, "targets", tuple(sorted(self.targets, key=target_sort_key)))

    @property
    def importance(self) -> float:
        """Priority mapped to a weight in [0.1, 1.0], 1.0 for priority 1."""
        return (MAX_GOAL_PRIORITY + 1 - self.priority) / MAX_GOAL_PRIORITY


def target_sort_key(target: Target) -> Tuple:
    """Canonical ordering so that results do not depend on target input order."""
    if isinstance(target, RacePerformanceTarget):
        return (target.target_type, target.distance_m, target.target_time_s, target.activity_category.value)
    if isinstance(target, PaceThresholdTarget):
        return (target.target_type, target.target_speed_mps, target.test_duration_s, "")
    if isinstance(target, PowerThresholdTarget):
        return (target.target_type, target.target_watts, target.test_duration_s, "")
    if isinstance(target, HeartRateThresholdTarget):
        return (target.target_type, target.target_lthr_bpm, 0.0, "")
    raise TypeError(f"Unsupported target type: {type(target).__name__}")


def target_duration_hours(target: Target) -> Optional[float]:
    """Event or test duration in hours, None for HR threshold targets."""
    if isinstance(target, RacePerformanceTarget):
        return target.duration_hours
    if isinstance(target, (PaceThresholdTarget, PowerThresholdTarget)):
        return target.test_duration_s / 3600.0
    if isinstance(target, HeartRateThresholdTarget):
        return None
    raise TypeError(f"Unsupported target type: {type(target).__name__}")


def sort_goals(goals: Sequence[Goal]) -> List[Goal]:
    return sorted(goals, key=lambda goal: (goal.target_date, goal.priority, goal.id))


# Boundary parsing

def _require_positive(data: Dict[str, Any], key: str, path: str) -> float:
    if key not in data or data[key] is None:
        raise ProjectionInputError(path, f"missing mandatory {key}")
    value = data[key]
    if not is_finite(value):
        raise ProjectionInputError(path, f"{key} must be a number, got {value!r}")
    if value <= 0:
        raise ProjectionInputError(path, f"{key} must be greater than 0")
    return float(value)


def parse_target(data: Dict[str, Any], path: str = "target") -> Target:
    """Build a typed target from a mapping tagged with ``target_type``."""
    if not isinstance(data, dict):
        raise ProjectionInputError(path, "expected an object")

    target_type = data.get("target_type")
    if target_type == "race_performance":
        category = str(data.get("activity_category") or "run").lower()
        try:
            activity = ActivityCategory(category)
        except ValueError:
            logger.debug(f"{path}: unknown activity_category {category!r}, using 'other'")
            activity = ActivityCategory.OTHER
        return RacePerformanceTarget(
            distance_m=_require_positive(data, "distance_m", path),
            target_time_s=_require_positive(data, "target_time_s", path),
            activity_category=activity,
        )
    if target_type == "pace_threshold":
        return PaceThresholdTarget(
            target_speed_mps=_require_positive(data, "target_speed_mps", path),
            test_duration_s=_require_positive(data, "test_duration_s", path),
        )
    if target_type == "power_threshold":
        return PowerThresholdTarget(
            target_watts=_require_positive(data, "target_watts", path),
            test_duration_s=_require_positive(data, "test_duration_s", path),
        )
    if target_type == "hr_threshold":
        return HeartRateThresholdTarget(
            target_lthr_bpm=_require_positive(data, "target_lthr_bpm", path),
        )
    if target_type is None:
        raise ProjectionInputError(path, "missing mandatory target_type")
    raise ProjectionInputError(path, f"unknown target_type {target_type!r}")


def parse_goal(data: Dict[str, Any], path: str = "goal") -> Goal:
    """Build a Goal from a mapping, validating its targets."""
    if not isinstance(data, dict):
        raise ProjectionInputError(path, "expected an object")

    goal_id = data.get("id")
    if goal_id is None or str(goal_id) == "":
        raise ProjectionInputError(path, "missing mandatory id")

    if not data.get("target_date"):
        raise ProjectionInputError(path, "missing mandatory target_date")
    try:
        target_date = parse_date(data["target_date"])
    except ValueError:
        raise ProjectionInputError(path, f"invalid target_date {data['target_date']!r}")

    raw_targets = data.get("targets") or []
    if not isinstance(raw_targets, list):
        raise ProjectionInputError(f"{path}.targets", "expected a list")
    targets = tuple(
        parse_target(item, f"{path}.targets[{index}]") for index, item in enumerate(raw_targets)
    )

    return Goal(
        id=str(goal_id),
        target_date=target_date,
        priority=data.get("priority"),
        targets=targets,
        name=str(data.get("name") or ""),
    )


def parse_goals(items: Optional[List[Dict[str, Any]]], path: str = "goals") -> List[Goal]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ProjectionInputError(path, "expected a list")
    goals = [parse_goal(item, f"{path}[{index}]") for index, item in enumerate(items)]
    seen = set()
    for index, goal in enumerate(goals):
        if goal.id in seen:
            raise ProjectionInputError(f"{path}[{index}]", f"duplicate goal id {goal.id!r}")
        seen.add(goal.id)
    return goals
