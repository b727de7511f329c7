"""
StudyCards Backend Application.

A FastAPI backend for a study-card platform.
Schedules card reviews with an SM-2 spaced-repetition variant and keeps
per-deck progress counters in step with every card.
"""

__version__ = "0.1.0"
