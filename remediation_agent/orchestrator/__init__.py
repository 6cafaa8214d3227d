"""Fix orchestration.

This module provides:
- FixOrchestrator: Per-file fix/validate/retry/rollback state machine
- BaselineBackup: Scoped backup that restores a file unless committed
"""

from .backup import BaselineBackup
from .fix_orchestrator import FixOrchestrator

__all__ = [
    "BaselineBackup",
    "FixOrchestrator",
]
