"""
Kata Sandbox Module

Runs untrusted candidate code against challenge tests in isolated workers
and aggregates the outcomes into verdicts.
"""

from kata.sandbox.aggregator import aggregate, not_run_verdict
from kata.sandbox.runner import SandboxRunner
from kata.sandbox.strategies import STRATEGIES, Strategy, strategy_for
from kata.sandbox.verify import build_solution_request, verify_solutions

__all__ = [
    # Runner
    "SandboxRunner",
    # Aggregation
    "aggregate",
    "not_run_verdict",
    # Strategies
    "STRATEGIES",
    "Strategy",
    "strategy_for",
    # Verification
    "build_solution_request",
    "verify_solutions",
]
