"""
Execution Engine - runs a document snapshot in an interpreter subprocess.

The snapshot is written to a scratch file which is passed to the interpreter
as its only argument. stdout and stderr are drained concurrently into capped
buffers; the outcome is folded into a single RunResult for the requester.

Beyond the bare relay behavior, runs are bounded by a concurrency semaphore
and an optional wall clock timeout after which the process is killed.
"""

import asyncio
import codecs
import logging
import os
import tempfile
from typing import Optional, Dict, List, Any, Callable, Awaitable

from .errors import ScratchWriteError, ProcessSpawnError
from .models import (
    ExecutionRun,
    OutputBuffer,
    RunResult,
    RunState,
    NO_CODE_MESSAGE,
)

logger = logging.getLogger(__name__)

# Type for incremental output callback
ChunkCallback = Callable[[str, str], Awaitable[None]]  # (stream_name, text)

READ_CHUNK_SIZE = 4096


class ExecutionEngine:
    """
    Spawns interpreter processes for run requests.

    All runs share one semaphore, so at most max_concurrent_runs processes
    exist at a time; further requests wait their turn. A timeout of 0
    disables the time limit.
    """

    def __init__(
        self,
        python_executable: str = "python3",
        timeout: float = 10.0,
        max_concurrent_runs: int = 4,
        max_output_bytes: int = 1024 * 1024,
        scratch_dir: Optional[str] = None,
    ):
        self.python_executable = python_executable
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.scratch_dir = scratch_dir or tempfile.gettempdir()
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent_runs))
        # Runs currently waiting or executing: run_id -> ExecutionRun
        self._active: Dict[str, ExecutionRun] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────────

    async def run(
        self,
        document_id: str,
        content: Optional[str],
        requester_id: Optional[str] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> RunResult:
        """
        Execute a snapshot and return the reply for the requester.

        A missing or empty snapshot is not an error: the requester gets a
        benign "no code" message and nothing is spawned.
        """
        if not content:
            return RunResult(output=NO_CODE_MESSAGE, error=False)

        run = ExecutionRun(document_id=document_id, content=content, requester_id=requester_id)
        await self.execute(run, on_chunk=on_chunk)
        return run.result

    async def execute(self, run: ExecutionRun, on_chunk: Optional[ChunkCallback] = None) -> ExecutionRun:
        """Drive a run through its whole lifecycle and return it."""
        self._active[run.id] = run
        try:
            async with self._semaphore:
                logger.info(f"Run {run.id}: executing document {run.document_id} for {run.requester_id}")
                try:
                    run.result = await self._spawn_and_wait(run, on_chunk)
                finally:
                    self._cleanup(run)
        finally:
            self._active.pop(run.id, None)

        run.state = RunState.REPORTED
        return run

    @property
    def active_count(self) -> int:
        return len(self._active)

    def active_runs(self) -> List[Dict[str, Any]]:
        return [run.to_dict() for run in self._active.values()]

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle steps
    # ─────────────────────────────────────────────────────────────────────────

    async def _spawn_and_wait(self, run: ExecutionRun, on_chunk: Optional[ChunkCallback]) -> RunResult:
        run.state = RunState.SPAWNING

        try:
            run.scratch_path = self._write_scratch(run)
            logger.debug(f"Run {run.id}: code written to {run.scratch_path}")
        except ScratchWriteError as e:
            logger.error(f"Run {run.id}: error writing temporary file: {e}")
            run.outcome = RunState.SCRATCH_FAILED
            return RunResult(
                output=f"Server Error: Could not prepare code for execution. ({e})",
                error=True,
            )

        try:
            process = await self._spawn(run)
        except ProcessSpawnError as e:
            logger.error(f"Run {run.id}: failed to start Python process: {e}")
            run.outcome = RunState.SPAWN_FAILED
            return RunResult(
                output=f"Error: Could not start Python interpreter. Is Python installed and in your PATH? ({e})",
                error=True,
            )

        run.state = RunState.RUNNING
        stdout = OutputBuffer(self.max_output_bytes)
        stderr = OutputBuffer(self.max_output_bytes)

        async def communicate() -> int:
            await asyncio.gather(
                self._pump(run, process.stdout, stdout, "stdout", on_chunk),
                self._pump(run, process.stderr, stderr, "stderr", on_chunk),
            )
            return await process.wait()

        try:
            if self.timeout and self.timeout > 0:
                run.exit_code = await asyncio.wait_for(communicate(), timeout=self.timeout)
            else:
                run.exit_code = await communicate()
        except asyncio.TimeoutError:
            await self._kill(process)
            run.exit_code = process.returncode
            run.outcome = RunState.TIMED_OUT
            logger.warning(f"Run {run.id}: timed out after {self.timeout:g}s, process killed")
            partial = stderr.text() or stdout.text()
            if partial and not partial.endswith("\n"):
                partial += "\n"
            return RunResult(
                output=f"{partial}Execution timed out after {self.timeout:g} seconds",
                error=True,
            )
        finally:
            if process.returncode is None:
                # Cancelled from outside (e.g. server shutdown)
                await self._kill(process)

        logger.info(f"Run {run.id}: Python process exited with code {run.exit_code}")

        if run.exit_code != 0:
            run.outcome = RunState.FAILED
            return RunResult(
                output=stderr.text() or f"Python process exited with non-zero code: {run.exit_code}",
                error=True,
            )

        run.outcome = RunState.SUCCEEDED
        return RunResult(output=stdout.text(), error=False)

    def _write_scratch(self, run: ExecutionRun) -> str:
        """Write the snapshot to a fresh scratch file and return its path."""
        path = None
        try:
            fd, path = tempfile.mkstemp(prefix=f"run_{run.id}_", suffix=".py", dir=self.scratch_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(run.content)
        except (OSError, UnicodeError) as e:
            if path:
                # Partially written file still counts as this run's scratch
                run.scratch_path = path
            raise ScratchWriteError(str(e)) from e
        return path

    async def _spawn(self, run: ExecutionRun) -> asyncio.subprocess.Process:
        env = dict(os.environ)
        env["PYTHONUNBUFFERED"] = "1"
        env["PYTHONIOENCODING"] = "utf-8"
        try:
            return await asyncio.create_subprocess_exec(
                self.python_executable,
                run.scratch_path,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise ProcessSpawnError(str(e)) from e

    async def _pump(
        self,
        run: ExecutionRun,
        stream: asyncio.StreamReader,
        buffer: OutputBuffer,
        name: str,
        on_chunk: Optional[ChunkCallback],
    ) -> None:
        """Drain a pipe into a buffer, forwarding kept text to on_chunk."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            kept = buffer.append(chunk)
            if kept and on_chunk is not None:
                text = decoder.decode(kept)
                if text:
                    try:
                        await on_chunk(name, text)
                    except Exception as e:
                        logger.warning(f"Run {run.id}: error forwarding {name} chunk: {e}")

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()

    def _cleanup(self, run: ExecutionRun) -> None:
        """Remove the scratch file. Failures are logged and never raised."""
        if run.scratch_path:
            try:
                os.unlink(run.scratch_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error(f"Run {run.id}: error deleting temp file {run.scratch_path}: {e}")
        run.state = RunState.CLEANED
