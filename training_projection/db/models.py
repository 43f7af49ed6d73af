"""Database models for stored training plan projections."""

import json
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class TrainingPlanRecord(Base):
    """A created plan: the request it was built from and its projection."""

    __tablename__ = "training_plans"

    id = Column(Integer, primary_key=True)
    name = Column(String(255))
    start_date = Column(String(10))  # ISO date
    end_date = Column(String(10))  # ISO date
    goal_count = Column(Integer, default=0)
    readiness_score = Column(Float)  # Composite readiness 0-100
    readiness_confidence = Column(Float)
    calibration_version = Column(Integer)
    request_json = Column(Text, nullable=False)
    projection_json = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def request(self) -> Dict[str, Any]:
        return json.loads(self.request_json)

    @property
    def projection(self) -> Dict[str, Any]:
        return json.loads(self.projection_json)

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "goal_count": self.goal_count,
            "readiness_score": self.readiness_score,
            "readiness_confidence": self.readiness_confidence,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<TrainingPlanRecord(id={self.id}, name={self.name}, readiness={self.readiness_score})>"
