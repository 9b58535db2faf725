"""
Recovery orchestration for restorekit.
"""

from .orchestrator import RecoveryOrchestrator, RecoveryResult, RecoveryState

__all__ = [
    "RecoveryOrchestrator",
    "RecoveryResult",
    "RecoveryState",
]
