"""
Change-log replay for restorekit.

This module provides:
- ChangeLogEntry parsing for the JSONL change-log format
- ReplayEngine applying entries to the relational store
"""

from .changelog import ChangeLogEntry, ChangeLogParseError, Operation
from .engine import ReplayEngine, ReplayError, ReplayResult

__all__ = [
    "ChangeLogEntry",
    "ChangeLogParseError",
    "Operation",
    "ReplayEngine",
    "ReplayError",
    "ReplayResult",
]
