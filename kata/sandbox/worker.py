"""
Sandbox worker - runs one candidate against one challenge's tests.

Launched by ``SandboxRunner`` as ``python -m kata.sandbox.worker`` in a fresh
temporary directory with a scrubbed environment. Reads one JSON job from
stdin and writes one JSON event per line to stdout:

    {"event": "ready"}
    {"event": "outcome", "index": 0, "passed": true, "message": "", "duration_ms": 0.4}
    {"event": "done"}

or, on failure, ``setup_failed`` / ``resource_exceeded``. Anything a test raises,
``BaseException`` subclasses included, becomes a failed outcome. The process is
single use: the runner kills it after ``done`` or when the deadline passes.
"""

from __future__ import annotations

import contextlib
import io
import json
import math
import sys
import time
from typing import Any, Optional, TextIO

from kata.models import ChallengeType
from kata.sandbox.strategies import SandboxFile, strategy_for

MAX_MESSAGE_LENGTH = 2000

EXIT_OK = 0
EXIT_SETUP_FAILED = 2
EXIT_RESOURCE_EXCEEDED = 3


def apply_limits(memory_limit_bytes: Optional[int], cpu_seconds: Optional[float]) -> None:
    """Apply address space and CPU time ceilings where the platform has rlimits."""
    if sys.platform == "win32":
        return
    import resource

    if memory_limit_bytes:
        _lower_limit(resource, resource.RLIMIT_AS, int(memory_limit_bytes))
    if cpu_seconds:
        soft = max(1, math.ceil(cpu_seconds))
        _lower_limit(resource, resource.RLIMIT_CPU, soft, hard=soft + 1)


def _lower_limit(resource: Any, which: int, soft: int, hard: Optional[int] = None) -> None:
    _, current_hard = resource.getrlimit(which)
    if current_hard != resource.RLIM_INFINITY:
        soft = min(soft, current_hard)
        hard = min(hard, current_hard) if hard is not None else current_hard
    resource.setrlimit(which, (soft, hard if hard is not None else soft))


def describe(error: BaseException) -> str:
    """Render an exception as a short single message."""
    if isinstance(error, AssertionError) and error.args:
        message = str(error.args[0])
    else:
        text = str(error)
        message = f"{type(error).__name__}: {text}" if text else type(error).__name__
    return message[:MAX_MESSAGE_LENGTH]


def evaluate(code: str, namespace: dict, text: str, output: io.StringIO) -> tuple[bool, str]:
    """
    Evaluate one test against the candidate namespace.

    Expressions must evaluate truthy; statement blocks must not raise.
    Names the test binds land in a shallow copy of the namespace; objects
    the candidate created are shared, so the worker loads the candidate
    afresh for every test.

    Returns:
        Tuple of (passed, message).
    """
    scope = dict(namespace)
    scope["output"] = output.getvalue()
    try:
        compiled = compile(code, "<test>", "eval")
    except SyntaxError:
        compiled = None

    with contextlib.redirect_stdout(output):
        if compiled is not None:
            if eval(compiled, scope):
                return True, ""
            return False, text or f"assertion failed: {code.strip()}"
        exec(compile(code, "<test>", "exec"), scope)
    return True, ""


class Worker:
    """Runs a job and reports events on a protocol stream."""

    def __init__(self, channel: TextIO):
        self.channel = channel

    def emit(self, event: str, **payload: Any) -> None:
        payload["event"] = event
        self.channel.write(json.dumps(payload) + "\n")
        self.channel.flush()

    def run(self, job: dict) -> int:
        try:
            strategy = strategy_for(ChallengeType.from_string(job["challenge_type"]))
            files = [SandboxFile.from_dict(f) for f in job.get("files", [])]
            tests = job["tests"]
            apply_limits(job.get("memory_limit_bytes"), job.get("cpu_seconds"))
        except Exception as e:
            self.emit("setup_failed", message=describe(e))
            return EXIT_SETUP_FAILED

        self.emit("ready")

        # Every test gets a freshly loaded candidate, so state one test
        # mutates is never seen by the next
        load_error: Optional[str] = None
        for test in tests:
            namespace: dict = {}
            output = io.StringIO()
            if load_error is None:
                try:
                    namespace = strategy.load(files, output)
                except MemoryError:
                    self.emit("resource_exceeded", message="memory limit exceeded while loading candidate code")
                    return EXIT_RESOURCE_EXCEEDED
                except BaseException as e:
                    load_error = describe(e)

            start = time.perf_counter()
            if load_error is not None:
                passed, message = False, load_error
            else:
                try:
                    passed, message = evaluate(test["code"], namespace, test.get("text", ""), output)
                except MemoryError:
                    self.emit("resource_exceeded", message=f"memory limit exceeded in test {test['index']}")
                    return EXIT_RESOURCE_EXCEEDED
                except BaseException as e:
                    passed, message = False, describe(e)
            self.emit(
                "outcome",
                index=test["index"],
                passed=bool(passed),
                message=message[:MAX_MESSAGE_LENGTH],
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        self.emit("done")
        return EXIT_OK


def main() -> int:
    channel = sys.stdout
    try:
        job = json.loads(sys.stdin.read())
    except ValueError as e:
        Worker(channel).emit("setup_failed", message=f"invalid job: {e}")
        return EXIT_SETUP_FAILED
    return Worker(channel).run(job)


if __name__ == "__main__":
    sys.exit(main())
