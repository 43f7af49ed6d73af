"""Deterministic training plan projection and readiness scoring."""

__version__ = "0.1.0"
