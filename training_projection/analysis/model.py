"""Fitness/fatigue dynamics for training-load projection."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Sequence, Tuple

import numpy as np

from .utils import add_days

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionPoint:
    """State at the end of one calendar day."""
    date: date
    load: float
    fitness_ctl: float
    fatigue_atl: float

    @property
    def form_tsb(self) -> float:
        return self.fitness_ctl - self.fatigue_atl

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "load": self.load,
            "fitness_ctl": self.fitness_ctl,
            "fatigue_atl": self.fatigue_atl,
            "form_tsb": self.form_tsb,
        }


class FitnessFatigueModel:
    """Exponentially weighted CTL/ATL recursion.

    new = previous + (load - previous) * alpha, with alpha = 1 - e^(-1/tau)
    for the 42-day (CTL) and 7-day (ATL) time constants.
    """

    def __init__(self, ctl_time_constant: float = 42.0, atl_time_constant: float = 7.0):
        self.ctl_time_constant = ctl_time_constant
        self.atl_time_constant = atl_time_constant
        self.alpha_ctl = 1 - np.exp(-1 / ctl_time_constant)
        self.alpha_atl = 1 - np.exp(-1 / atl_time_constant)

    @classmethod
    def from_calibration(cls, calibration) -> "FitnessFatigueModel":
        dynamics = calibration.dynamics
        return cls(dynamics.ctl_time_constant, dynamics.atl_time_constant)

    def step(self, ctl: float, atl: float, load: float) -> Tuple[float, float]:
        """Advance one day."""
        new_ctl = ctl + (load - ctl) * self.alpha_ctl
        new_atl = atl + (load - atl) * self.alpha_atl
        return float(new_ctl), float(new_atl)

    def simulate_week(self, ctl: float, atl: float, weekly_load: float, days: int = 7) -> Tuple[float, float]:
        """Apply ``days`` days at the daily rate of ``weekly_load`` and return the end state.

        Weekly loads are 7-day rates, so a short final week keeps the same daily load.
        """
        if days <= 0:
            return ctl, atl
        daily_load = weekly_load / 7.0
        for _ in range(days):
            ctl, atl = self.step(ctl, atl, daily_load)
        return ctl, atl

    def impulse_response(
        self, training_loads: np.ndarray, initial_ctl: float = 0.0, initial_atl: float = 0.0
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Calculate CTL, ATL and TSB for a series of daily loads.

        Args:
            training_loads: Array of daily training loads
            initial_ctl: CTL before the first day
            initial_atl: ATL before the first day

        Returns:
            Tuple of (ctl, atl, tsb) arrays, one entry per day
        """
        training_loads = np.asarray(training_loads, dtype=float)
        if np.any(training_loads < 0):
            logger.warning(f"Found {int(np.sum(training_loads < 0))} negative training loads in projection input")

        n_days = len(training_loads)
        ctl = np.zeros(n_days)
        atl = np.zeros(n_days)
        current_ctl, current_atl = float(initial_ctl), float(initial_atl)
        for day in range(n_days):
            current_ctl, current_atl = self.step(current_ctl, current_atl, training_loads[day])
            ctl[day] = current_ctl
            atl[day] = current_atl

        return ctl, atl, ctl - atl

    def max_weekly_load_for_ctl_delta(self, ctl: float, atl: float, max_delta: float, days: int = 7) -> float:
        """Largest weekly load whose end-of-week CTL rise stays within ``max_delta``.

        A daily load of L / 7 held for ``days`` days gives
        ctl_end = ctl * r + (L / 7) * (1 - r) with r = (1 - alpha_ctl)^days.
        """
        if days <= 0:
            return float("inf")
        retention = (1 - self.alpha_ctl) ** days
        limit = 7 * (ctl + max_delta - ctl * retention) / (1 - retention)
        return float(max(0.0, limit))

    def project_points(
        self, start_date: date, initial_ctl: float, initial_atl: float, daily_loads: Sequence[float]
    ) -> List[ProjectionPoint]:
        """Build one ProjectionPoint per day starting at ``start_date``."""
        ctl, atl, _ = self.impulse_response(np.asarray(daily_loads, dtype=float), initial_ctl, initial_atl)
        return [
            ProjectionPoint(
                date=add_days(start_date, day),
                load=float(daily_loads[day]),
                fitness_ctl=float(ctl[day]),
                fatigue_atl=float(atl[day]),
            )
            for day in range(len(daily_loads))
        ]
