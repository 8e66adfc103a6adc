"""Recurring-task expansion and progress/streak aggregation engine."""

__version__ = "0.1.0"
