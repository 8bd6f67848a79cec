"""Exceptions raised while preparing or starting a run."""


class ExecutionError(Exception):
    """Base exception for execution engine failures"""
    pass


class ScratchWriteError(ExecutionError):
    """Raised when the snapshot cannot be written to a scratch file"""
    pass


class ProcessSpawnError(ExecutionError):
    """Raised when the interpreter process cannot be started"""
    pass
