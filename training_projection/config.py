"""Configuration management for the training projection tool."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .analysis.calibration import CalibrationConfig

load_dotenv()

logger = logging.getLogger(__name__)


class Config:
    """Application configuration."""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./training_projection.db")

    # Application
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Projection defaults
    DEFAULT_OPTIMIZATION_PROFILE: str = os.getenv("DEFAULT_OPTIMIZATION_PROFILE", "balanced")
    CALIBRATION_FILE: Optional[str] = os.getenv("CALIBRATION_FILE") or None

    # Model Parameters (fitness/fatigue time constants in days)
    CTL_TIME_CONSTANT: float = float(os.getenv("CTL_TIME_CONSTANT", "42"))
    ATL_TIME_CONSTANT: float = float(os.getenv("ATL_TIME_CONSTANT", "7"))

    @classmethod
    def load_calibration(cls, path: Optional[str] = None) -> CalibrationConfig:
        """Build the engine calibration from CALIBRATION_FILE or the defaults.

        The dynamics time constants from the environment apply unless the
        calibration file sets them explicitly.
        """
        path = path or cls.CALIBRATION_FILE
        data = {}
        if path:
            calibration_path = Path(path)
            if not calibration_path.exists():
                raise FileNotFoundError(f"Calibration file not found: {calibration_path}")
            with open(calibration_path) as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError(f"Calibration file {calibration_path} must contain a JSON object")
            logger.info(f"Loaded calibration overrides from {calibration_path}")

        dynamics = dict(data.get("dynamics") or {})
        dynamics.setdefault("ctl_time_constant", cls.CTL_TIME_CONSTANT)
        dynamics.setdefault("atl_time_constant", cls.ATL_TIME_CONSTANT)
        return CalibrationConfig.from_dict({**data, "dynamics": dynamics})


config = Config()
