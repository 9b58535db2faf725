"""
Command-line tools for restorekit.

This module provides:
- recover: Restore the latest snapshot and replay newer change logs
- restore: Load one snapshot, optionally a table subset or a dry run
- tables: Show the tables listed in a snapshot header
- cleanup: Retention cleanup of the backup folder
- list: Show the recovery plan

Invariants:
    - Tools read all settings from the environment
    - Every run ends with a printed report and a meaningful exit code
"""

from .recover import main

__all__ = ["main"]
