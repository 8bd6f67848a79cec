"""
Execution run models.

An ExecutionRun is one end-to-end interpreter invocation triggered by a
run_code request. It lives from the request until the reply is delivered.
"""

from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime
from typing import Dict, Any, Optional
import uuid


NO_CODE_MESSAGE = (
    "No code found in server memory for this document. "
    "Please ensure the file is active and saved."
)

TRUNCATION_NOTICE = "\n... output truncated ({limit} byte limit reached) ..."


class RunState(Enum):
    """Lifecycle of a run."""
    IDLE = "idle"
    SPAWNING = "spawning"
    RUNNING = "running"
    SUCCEEDED = "succeeded"          # exit code 0
    FAILED = "failed"                # non-zero exit code
    SPAWN_FAILED = "spawn_failed"    # interpreter could not be started
    SCRATCH_FAILED = "scratch_failed"  # snapshot could not be written
    TIMED_OUT = "timed_out"          # killed after the run timeout
    CLEANED = "cleaned"
    REPORTED = "reported"


@dataclass
class RunResult:
    """The single reply delivered to the requester."""
    output: str
    error: bool

    def to_message(self) -> Dict[str, Any]:
        return {"type": "code_output", "output": self.output, "error": self.error}


class OutputBuffer:
    """Accumulates one stream up to a byte limit, discarding the rest."""

    def __init__(self, limit: int):
        self.limit = limit
        self._chunks = []
        self._size = 0
        self.truncated = False

    def append(self, chunk: bytes) -> bytes:
        """
        Add a chunk and return the part of it that was kept.

        Once the limit is reached further data is dropped but the caller
        should keep draining the pipe so the process does not block.
        """
        room = self.limit - self._size
        if room <= 0:
            self.truncated = True
            return b""
        kept = chunk[:room]
        if len(kept) < len(chunk):
            self.truncated = True
        self._chunks.append(kept)
        self._size += len(kept)
        return kept

    def text(self) -> str:
        value = b"".join(self._chunks).decode("utf-8", errors="replace")
        if self.truncated:
            value += TRUNCATION_NOTICE.format(limit=self.limit)
        return value

    def __len__(self) -> int:
        return self._size


@dataclass
class ExecutionRun:
    """State for one run request."""
    document_id: str
    content: str
    requester_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: RunState = RunState.IDLE
    # Terminal state reached before cleanup (SUCCEEDED, FAILED, ...)
    outcome: Optional[RunState] = None
    scratch_path: Optional[str] = None
    exit_code: Optional[int] = None
    started_at: datetime = field(default_factory=datetime.now)
    result: Optional[RunResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "requester_id": self.requester_id,
            "state": self.state.value,
            "outcome": self.outcome.value if self.outcome else None,
            "exit_code": self.exit_code,
            "started_at": self.started_at.isoformat(),
        }
