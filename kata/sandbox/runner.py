"""
Sandbox runner - executes learner code against a challenge in a fresh worker.

Every request gets its own worker process, working directory and timers.
The worker is acquired through an async context manager that kills and reaps
the process and deletes the directory on every exit path: success, error,
timeout and cancellation.

Usage:
    runner = SandboxRunner(graph, KataConfig())
    verdict = await runner.execute(ExecutionRequest("add-two-numbers", {"main.py": code}))

    # or, from synchronous code
    verdict = runner.execute_sync(request)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import signal
import sys
import tempfile
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional

import kata
from kata.config import KataConfig
from kata.curriculum.graph import ChallengeGraph
from kata.exceptions import (
    ExecutionCrashError,
    ExecutionError,
    ExecutionTimeoutError,
    ResourceLimitError,
    SandboxSetupError,
)
from kata.models import (
    Challenge,
    ChallengeType,
    ExecutionRequest,
    FileKind,
    OutcomeStatus,
    TestOutcome,
    Verdict,
)
from kata.sandbox.aggregator import TIMED_OUT_MESSAGE, aggregate, not_run_verdict

logger = logging.getLogger(__name__)

WORKER_MODULE = "kata.sandbox.worker"

# Protocol lines can carry long assertion messages
STREAM_LIMIT = 1024 * 1024

# Exit statuses of a worker killed by its CPU or address-space ceiling
RESOURCE_EXIT_CODES = frozenset(
    -sig for sig in (getattr(signal, "SIGKILL", None), getattr(signal, "SIGXCPU", None)) if sig is not None
)


class SandboxRunner:
    """Run candidate solutions against challenge tests in isolated workers."""

    def __init__(self, graph: ChallengeGraph, config: Optional[KataConfig] = None):
        """
        Initialize the runner.

        Args:
            graph: Challenge graph used to look up challenges. Shared read-only.
            config: Timeout, memory and pool limits; defaults to ``KataConfig()``.
        """
        self.graph = graph
        self.config = config or KataConfig()
        self._slots: Optional[asyncio.Semaphore] = None
        self._slots_loop: Optional[asyncio.AbstractEventLoop] = None

    # -------------------------------------------------------------------------
    # Public interface
    # -------------------------------------------------------------------------

    async def execute(self, request: ExecutionRequest) -> Verdict:
        """
        Run a candidate against every test of its challenge.

        Args:
            request: Challenge id, candidate files and optional timeout override.

        Returns:
            The Verdict. Timeouts, resource breaches, crashes and setup
            failures are all reported through it.

        Raises:
            ChallengeNotFoundError: If the challenge id is not in the graph.
        """
        challenge = self.graph.get_challenge(request.challenge_id)
        timeout_ms = self.config.clamp_timeout(request.timeout_ms)
        start = time.perf_counter()

        try:
            files = self._resolve_files(challenge, request)
        except SandboxSetupError as e:
            logger.warning(f"Rejected request for {challenge.id}: {e}")
            return not_run_verdict(challenge, str(e), _elapsed_ms(start))

        async with self._slot():
            verdict = await self._run(challenge, files, timeout_ms)

        logger.info(
            f"{challenge.id}: {verdict.passed_count}/{len(verdict.outcomes)} passed"
            f"{' (truncated)' if verdict.truncated else ''} in {verdict.duration_ms:.0f}ms"
        )
        return verdict

    def execute_sync(self, request: ExecutionRequest) -> Verdict:
        """Run ``execute`` on a private event loop."""
        return asyncio.run(self.execute(request))

    async def execute_many(self, requests: Iterable[ExecutionRequest]) -> AsyncIterator[Verdict]:
        """
        Run requests concurrently, yielding verdicts in completion order.

        Requests still running when the consumer stops iterating are cancelled.
        """
        tasks = [asyncio.ensure_future(self.execute(r)) for r in requests]
        try:
            for finished in asyncio.as_completed(tasks):
                yield await finished
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Request preparation
    # -------------------------------------------------------------------------

    @staticmethod
    def _resolve_files(challenge: Challenge, request: ExecutionRequest) -> list[dict]:
        """Merge candidate contents over the challenge's starter files."""
        if challenge.challenge_type is ChallengeType.QUIZ and not challenge.files:
            return [
                {"name": name, "kind": FileKind.TEXT.value, "contents": contents}
                for name, contents in sorted(request.files.items())
            ]

        unknown = sorted(name for name in request.files if challenge.get_file(name) is None)
        if unknown:
            raise SandboxSetupError(
                f"Unknown file(s) for challenge {challenge.id}: {', '.join(unknown)}",
                challenge_id=challenge.id,
            )
        return [
            {
                "name": f.name,
                "kind": f.kind.value,
                "contents": request.files.get(f.name, f.contents),
            }
            for f in challenge.files
        ]

    def _job(self, challenge: Challenge, files: list[dict], timeout_ms: int) -> bytes:
        job = {
            "challenge_id": challenge.id,
            "challenge_type": challenge.challenge_type.value,
            "files": files,
            "tests": [t.to_dict() for t in challenge.tests],
            "memory_limit_bytes": self.config.memory_limit_bytes,
            "cpu_seconds": timeout_ms / 1000 + 2,
        }
        return json.dumps(job).encode("utf-8")

    @staticmethod
    def _worker_env() -> dict:
        """Environment for the worker: nothing from the host but import paths."""
        package_root = str(Path(kata.__file__).resolve().parent.parent)
        python_path = [package_root]
        if os.environ.get("PYTHONPATH"):
            python_path.extend(os.environ["PYTHONPATH"].split(os.pathsep))
        env = {
            "PYTHONPATH": os.pathsep.join(python_path),
            "PYTHONHASHSEED": "0",
            "PYTHONDONTWRITEBYTECODE": "1",
            "PYTHONNOUSERSITE": "1",
            "PYTHONIOENCODING": "utf-8",
        }
        if sys.platform == "win32":
            env["SYSTEMROOT"] = os.environ.get("SYSTEMROOT", "")
        return env

    # -------------------------------------------------------------------------
    # Worker lifecycle
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _slot(self):
        """Bound the number of live workers per event loop."""
        loop = asyncio.get_running_loop()
        if self._slots is None or self._slots_loop is not loop:
            self._slots = asyncio.Semaphore(self.config.max_workers)
            self._slots_loop = loop
        async with self._slots:
            yield

    @asynccontextmanager
    async def _worker(self, challenge: Challenge):
        """Spawn a fresh worker and always tear it down."""
        workdir = tempfile.mkdtemp(prefix="kata-sandbox-")
        process: Optional[asyncio.subprocess.Process] = None
        try:
            try:
                process = await asyncio.create_subprocess_exec(
                    sys.executable,
                    "-m",
                    WORKER_MODULE,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.DEVNULL,
                    close_fds=True,
                    cwd=workdir,
                    env=self._worker_env(),
                    limit=STREAM_LIMIT,
                )
            except OSError as e:
                raise SandboxSetupError(f"Cannot start sandbox worker: {e}", challenge_id=challenge.id)
            logger.debug(f"Started worker {process.pid} for {challenge.id} in {workdir}")
            yield process
        finally:
            if process is not None:
                await self._terminate(process)
            shutil.rmtree(workdir, ignore_errors=True)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        try:
            await asyncio.wait_for(process.wait(), self.config.kill_grace_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning(f"Worker {process.pid} did not exit within {self.config.kill_grace_ms}ms of kill")

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def _run(self, challenge: Challenge, files: list[dict], timeout_ms: int) -> Verdict:
        start = time.perf_counter()
        outcomes: list[TestOutcome] = []

        try:
            async with self._worker(challenge) as process:
                await self._converse(process, challenge, self._job(challenge, files, timeout_ms), timeout_ms, outcomes)
        except ExecutionTimeoutError as e:
            logger.warning(f"{challenge.id}: {e.message}")
            return aggregate(
                challenge, outcomes, _elapsed_ms(start), truncated=True, error=e.message, reason=TIMED_OUT_MESSAGE
            )
        except ResourceLimitError as e:
            logger.warning(f"{challenge.id}: {e.message}")
            return aggregate(challenge, outcomes, _elapsed_ms(start), truncated=True, error=e.message, reason=e.message)
        except SandboxSetupError as e:
            logger.warning(f"{challenge.id}: sandbox setup failed: {e.message}")
            return not_run_verdict(challenge, e.message, _elapsed_ms(start))
        except ExecutionError as e:
            logger.warning(f"{challenge.id}: {e.message}")
            return aggregate(challenge, outcomes, _elapsed_ms(start), truncated=True, error=e.message, reason=e.message)
        except Exception as e:
            logger.exception(f"Unexpected sandbox failure for {challenge.id}")
            message = f"internal sandbox error: {e}"
            return aggregate(challenge, outcomes, _elapsed_ms(start), truncated=True, error=message, reason=message)

        return aggregate(challenge, outcomes, _elapsed_ms(start))

    async def _converse(
        self,
        process: asyncio.subprocess.Process,
        challenge: Challenge,
        job: bytes,
        timeout_ms: int,
        outcomes: list[TestOutcome],
    ) -> None:
        """Send the job and collect events until ``done`` or the deadline.

        Interpreter startup is bounded by ``startup_timeout_ms``; the
        execution deadline starts once the worker reports ``ready``.
        """
        loop = asyncio.get_running_loop()
        startup_s = self.config.startup_timeout_ms / 1000
        assert process.stdin is not None and process.stdout is not None

        try:
            process.stdin.write(job)
            await asyncio.wait_for(process.stdin.drain(), startup_s)
            process.stdin.close()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise SandboxSetupError(f"Worker rejected job: {e}", challenge_id=challenge.id)
        except asyncio.TimeoutError:
            raise SandboxSetupError("Worker did not accept its job", challenge_id=challenge.id)

        ready = False
        deadline = loop.time() + startup_s
        while True:
            remaining = deadline - loop.time()
            try:
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                line = await asyncio.wait_for(process.stdout.readline(), remaining)
            except asyncio.TimeoutError:
                if not ready:
                    raise SandboxSetupError(
                        f"Worker did not start within {self.config.startup_timeout_ms}ms",
                        challenge_id=challenge.id,
                    )
                raise ExecutionTimeoutError(timeout_ms, challenge.id)

            if not line:
                code = await self._exit_code(process)
                if not ready:
                    raise SandboxSetupError(
                        f"Worker exited before starting (exit code {code})",
                        challenge_id=challenge.id,
                        exit_code=code,
                    )
                if code in RESOURCE_EXIT_CODES:
                    raise ResourceLimitError(
                        f"Worker terminated unexpectedly (exit code {code}); resource limit exceeded",
                        challenge_id=challenge.id,
                        exit_code=code,
                    )
                raise ExecutionCrashError(code, challenge_id=challenge.id)

            try:
                event = json.loads(line)
            except ValueError:
                raise ExecutionError(f"Malformed worker output: {line[:200]!r}", challenge_id=challenge.id)

            kind = event.get("event")
            if kind == "ready":
                ready = True
                deadline = loop.time() + timeout_ms / 1000
            elif kind == "outcome":
                outcomes.append(
                    TestOutcome(
                        index=int(event["index"]),
                        status=OutcomeStatus.PASSED if event.get("passed") else OutcomeStatus.FAILED,
                        message=str(event.get("message", "")),
                        duration_ms=float(event.get("duration_ms", 0.0)),
                    )
                )
            elif kind == "done":
                return
            elif kind == "setup_failed":
                raise SandboxSetupError(str(event.get("message", "worker setup failed")), challenge_id=challenge.id)
            elif kind == "resource_exceeded":
                raise ResourceLimitError(str(event.get("message", "resource limit exceeded")), challenge_id=challenge.id)
            else:
                logger.debug(f"Ignoring unknown worker event: {kind}")

    async def _exit_code(self, process: asyncio.subprocess.Process) -> Optional[int]:
        try:
            return await asyncio.wait_for(process.wait(), self.config.kill_grace_ms / 1000)
        except asyncio.TimeoutError:
            return None


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
