"""Attendance module — records, timer events, corrections and their lifecycle."""

from timekeeper.attendance.models import AttendanceRecord, TimeCorrection, TimerEvent

__all__ = ["AttendanceRecord", "TimerEvent", "TimeCorrection"]
