"""Solution verification - proves each challenge passes with its own solution."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from kata.curriculum.graph import ChallengeGraph
from kata.models import Challenge, ChallengeType, ExecutionRequest, Verdict
from kata.sandbox.runner import SandboxRunner

logger = logging.getLogger(__name__)

QUIZ_ANSWERS_FILE = "answers.txt"


def build_solution_request(challenge: Challenge) -> Optional[ExecutionRequest]:
    """
    Build a request that submits the challenge's reference solution.

    Returns:
        The request, or None if the challenge ships no solution.
    """
    if challenge.challenge_type is ChallengeType.QUIZ:
        if not challenge.questions:
            return None
        answers = "\n".join(str(q.solution) for q in challenge.questions) + "\n"
        return ExecutionRequest(challenge.id, {QUIZ_ANSWERS_FILE: answers})

    if not challenge.has_solution:
        return None
    return ExecutionRequest(
        challenge.id,
        {f.name: f.solution for f in challenge.files if f.solution is not None},
    )


async def verify_solutions(
    graph: ChallengeGraph,
    runner: SandboxRunner,
    challenge_ids: Optional[Iterable[str]] = None,
) -> list[Verdict]:
    """
    Run reference solutions against their challenges' tests.

    Args:
        graph: The curriculum graph.
        runner: Runner to execute with.
        challenge_ids: Restrict to these challenges; defaults to all.

    Returns:
        Verdicts in curriculum order, one per challenge that has a solution.

    Raises:
        ChallengeNotFoundError: If a requested id is not in the graph.
    """
    if challenge_ids is None:
        challenges = list(graph.challenges_in_order())
    else:
        challenges = [graph.get_challenge(cid) for cid in challenge_ids]

    requests = []
    for challenge in challenges:
        request = build_solution_request(challenge)
        if request is None:
            logger.debug(f"Skipping {challenge.id}: no solution")
            continue
        requests.append(request)

    verdicts = list(await asyncio.gather(*(runner.execute(r) for r in requests)))
    failed = [v.challenge_id for v in verdicts if not v.passed]
    logger.info(f"Verified {len(verdicts)} solution(s); {len(failed)} failed")
    for challenge_id in failed:
        logger.warning(f"Solution does not pass its tests: {challenge_id}")
    return verdicts
