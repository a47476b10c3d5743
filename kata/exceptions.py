"""Custom exceptions for the Kata framework."""

from __future__ import annotations

from typing import Optional


class KataError(Exception):
    """Base exception for all Kata errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ─────────────────────────────────────────────────────────────────────────────
# Build-time errors (author-facing, fatal to the build)
# ─────────────────────────────────────────────────────────────────────────────


class CurriculumError(KataError):
    """Raised when there's an issue with curriculum loading."""

    def __init__(self, message: str, file_path: Optional[str] = None, cause: Optional[Exception] = None):
        self.file_path = file_path
        self.cause = cause
        details = {"file_path": file_path}
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)


class ParseError(CurriculumError):
    """Raised when a content unit is malformed."""

    def __init__(self, identifier: str, line: int, reason: str):
        self.identifier = identifier
        self.line = line
        self.reason = reason
        super().__init__(f"{identifier}:{line}: {reason}", file_path=identifier)
        self.details.update({"line": line, "reason": reason})


class ValidationError(CurriculumError):
    """Raised when a parsed record violates its schema.

    ``issues`` holds every failing field, not just the first.
    """

    def __init__(self, identifier: str, issues: Optional[list[str]] = None):
        self.identifier = identifier
        self.issues = issues or []
        message = f"{identifier}: {len(self.issues)} validation issue(s)"
        if self.issues:
            message += "\n  - " + "\n  - ".join(self.issues)
        super().__init__(message, file_path=identifier)
        self.details["issues"] = self.issues


class GraphIntegrityError(CurriculumError):
    """Raised when records are individually valid but do not form a graph."""

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        message = f"Challenge graph has {len(self.violations)} integrity violation(s)"
        if self.violations:
            message += "\n  - " + "\n  - ".join(self.violations)
        super().__init__(message)
        self.details["violations"] = self.violations


class CurriculumBuildError(CurriculumError):
    """Raised with every parse and validation error found in one build."""

    def __init__(self, errors: list[CurriculumError]):
        self.errors = list(errors)
        message = f"Curriculum build failed with {len(self.errors)} error(s)"
        if self.errors:
            message += "\n" + "\n".join(str(e) for e in self.errors)
        super().__init__(message)
        self.details["errors"] = [str(e) for e in self.errors]


# ─────────────────────────────────────────────────────────────────────────────
# Lookup errors
# ─────────────────────────────────────────────────────────────────────────────


class NotFoundError(KataError):
    """Raised when a graph lookup misses."""


class ChallengeNotFoundError(NotFoundError):
    """Raised when a challenge ID doesn't exist."""

    def __init__(self, challenge_id: str, block: Optional[str] = None):
        self.challenge_id = challenge_id
        self.block = block
        message = f"Challenge not found: {challenge_id}"
        if block:
            message += f" (block: {block})"
        super().__init__(message, {"challenge_id": challenge_id, "block": block})


class BlockNotFoundError(NotFoundError):
    """Raised when a block, superblock or certification ID doesn't exist."""

    def __init__(self, block_id: str, kind: str = "block"):
        self.block_id = block_id
        self.kind = kind
        super().__init__(f"{kind.title()} not found: {block_id}", {"id": block_id, "kind": kind})


# ─────────────────────────────────────────────────────────────────────────────
# Run-time errors (recovered into a Verdict by the sandbox runner)
# ─────────────────────────────────────────────────────────────────────────────


class ExecutionError(KataError):
    """Raised when sandboxed execution fails."""

    def __init__(
        self,
        message: str,
        challenge_id: Optional[str] = None,
        exit_code: Optional[int] = None,
    ):
        self.challenge_id = challenge_id
        self.exit_code = exit_code
        super().__init__(
            message,
            {
                "challenge_id": challenge_id,
                "exit_code": exit_code,
            },
        )


class ExecutionTimeoutError(ExecutionError):
    """Raised when the worker misses its deadline."""

    def __init__(self, timeout_ms: int, challenge_id: Optional[str] = None):
        self.timeout_ms = timeout_ms
        super().__init__(f"Execution timed out after {timeout_ms}ms", challenge_id=challenge_id)


class ResourceLimitError(ExecutionError):
    """Raised when the worker breaches its memory or CPU ceiling."""


class ExecutionCrashError(ExecutionError):
    """Raised when the worker dies without reporting a resource breach."""

    def __init__(self, exit_code: Optional[int], challenge_id: Optional[str] = None):
        super().__init__(
            f"Worker crashed (exit code {exit_code})",
            challenge_id=challenge_id,
            exit_code=exit_code,
        )


class SandboxSetupError(ExecutionError):
    """Raised when an execution context cannot be initialised."""


class ConfigurationError(KataError):
    """Raised when configuration is invalid."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        super().__init__(message, {"config_key": config_key})
