"""Timekeeper — attendance timer, approval workflow and audit trail engine."""

__version__ = "0.1.0"
