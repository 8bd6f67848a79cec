"""
Sandboxed execution of document snapshots.

This module provides:
- ExecutionEngine: runs a snapshot in an interpreter subprocess
- ExecutionRun / RunResult: per-run state and the reply sent to the requester
"""

from .engine import ExecutionEngine
from .errors import ExecutionError, ScratchWriteError, ProcessSpawnError
from .models import ExecutionRun, RunResult, RunState, NO_CODE_MESSAGE

__all__ = [
    'ExecutionEngine',
    'ExecutionError',
    'ScratchWriteError',
    'ProcessSpawnError',
    'ExecutionRun',
    'RunResult',
    'RunState',
    'NO_CODE_MESSAGE',
]
