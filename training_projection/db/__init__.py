"""Database module for stored training plan projections."""

from .database import PlanStore, close_store, get_store
from .models import TrainingPlanRecord

__all__ = ["PlanStore", "get_store", "close_store", "TrainingPlanRecord"]
