"""Analysis module for training-load projection and readiness scoring."""

from .calibration import CalibrationConfig, DEFAULT_CALIBRATION
from .goals import Goal, ProjectionInputError, parse_goals
from .model import FitnessFatigueModel, ProjectionPoint
from .projection import ProjectionControls, ProjectionResult, StartState, build_deterministic_projection
from .readiness import compute_projection_point_readiness_scores

__all__ = [
    "CalibrationConfig",
    "DEFAULT_CALIBRATION",
    "Goal",
    "ProjectionInputError",
    "parse_goals",
    "FitnessFatigueModel",
    "ProjectionPoint",
    "ProjectionControls",
    "ProjectionResult",
    "StartState",
    "build_deterministic_projection",
    "compute_projection_point_readiness_scores",
]
