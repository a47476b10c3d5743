"""Result aggregation - folds per-test outcomes into a Verdict."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from kata.models import Challenge, OutcomeStatus, TestOutcome, Verdict

logger = logging.getLogger(__name__)

NOT_RUN_MESSAGE = "not run"
TIMED_OUT_MESSAGE = "timed out"


def aggregate(
    challenge: Challenge,
    outcomes: Iterable[TestOutcome],
    duration_ms: float,
    truncated: bool = False,
    error: Optional[str] = None,
    reason: str = NOT_RUN_MESSAGE,
) -> Verdict:
    """
    Build a Verdict with exactly one outcome per challenge test.

    Args:
        challenge: The challenge that was run.
        outcomes: Reported outcomes, possibly partial and in any order.
        duration_ms: Total wall-clock time of the run.
        truncated: Whether execution was cut short.
        error: Setup or truncation cause, if any.
        reason: Message for tests that have no reported outcome.

    Returns:
        Verdict in the challenge's test order. It passes only if every test
        passed and the run was not truncated.
    """
    expected = {test.index for test in challenge.tests}
    reported: dict[int, TestOutcome] = {}
    for outcome in outcomes:
        if outcome.index not in expected:
            logger.warning(f"Dropping outcome for unknown test {outcome.index} of {challenge.id}")
            continue
        reported.setdefault(outcome.index, outcome)

    ordered = tuple(
        reported.get(test.index)
        or TestOutcome(index=test.index, status=OutcomeStatus.NOT_RUN, message=reason)
        for test in challenge.tests
    )

    return Verdict(
        challenge_id=challenge.id,
        outcomes=ordered,
        passed=not truncated and all(o.passed for o in ordered),
        duration_ms=duration_ms,
        truncated=truncated,
        error=error,
    )


def not_run_verdict(challenge: Challenge, message: str, duration_ms: float = 0.0) -> Verdict:
    """Verdict for a run that never started: every test not run, truncated."""
    return aggregate(challenge, (), duration_ms, truncated=True, error=message, reason=message)
