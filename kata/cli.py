#!/usr/bin/env python3
"""
Kata CLI - build curricula and run solutions from the command line.

Usage:
    python -m kata build curriculum/ --output graph.json
    python -m kata run graph.json add-two-numbers --file main.py=solution.py
    python -m kata verify curriculum/
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from kata.config import KataConfig, Locale
from kata.curriculum.graph import ChallengeGraph
from kata.curriculum.loader import CurriculumLoader
from kata.exceptions import ConfigurationError, CurriculumBuildError, CurriculumError, KataError
from kata.models import ExecutionRequest
from kata.sandbox.runner import SandboxRunner
from kata.sandbox.verify import verify_solutions

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _load_config(args: argparse.Namespace) -> KataConfig:
    config = KataConfig.from_file(args.config) if args.config else KataConfig.from_env()
    if getattr(args, "locale", None):
        config = replace(config, locale=Locale.from_string(args.locale))
    return config


def _load_graph(source: Path, config: KataConfig) -> ChallengeGraph:
    """Load a persisted graph file or build one from a content root."""
    if source.is_file():
        logger.debug(f"Loading saved graph from {source}")
        return ChallengeGraph.load(source)
    logger.debug(f"Building graph from {source} ({config.locale.value})")
    return CurriculumLoader(config).build(source)


def _print_build_errors(error: CurriculumError) -> None:
    errors = error.errors if isinstance(error, CurriculumBuildError) else [error]
    print(f"Build failed with {len(errors)} error(s):", file=sys.stderr)
    for e in errors:
        print(f"\n{e}", file=sys.stderr)


def cmd_build(args: argparse.Namespace, config: KataConfig) -> int:
    try:
        graph = CurriculumLoader(config).build(args.root)
    except CurriculumError as e:
        _print_build_errors(e)
        return 1

    stats = graph.stats()
    print(
        f"Built {stats['challenges']} challenge(s) in {stats['blocks']} block(s), "
        f"{stats['superblocks']} superblock(s), {stats['certifications']} certification(s); "
        f"{stats['tests']} test(s)"
    )
    if args.output:
        graph.save(args.output)
        print(f"Saved graph to {args.output}")
    return 0


def _parse_file_args(values: list[str]) -> dict[str, str]:
    files: dict[str, str] = {}
    for value in values:
        name, sep, path = value.partition("=")
        if not sep or not name or not path:
            raise argparse.ArgumentTypeError(f"--file expects NAME=PATH, got '{value}'")
        files[name] = Path(path).read_text(encoding="utf-8")
    return files


def cmd_run(args: argparse.Namespace, config: KataConfig) -> int:
    try:
        graph = _load_graph(args.source, config)
    except CurriculumError as e:
        _print_build_errors(e)
        return 1

    request = ExecutionRequest(
        challenge_id=args.challenge_id,
        files=_parse_file_args(args.file or []),
        timeout_ms=args.timeout_ms,
    )
    verdict = SandboxRunner(graph, config).execute_sync(request)
    print(verdict.to_json())
    return 0 if verdict.passed else 1


def cmd_verify(args: argparse.Namespace, config: KataConfig) -> int:
    try:
        graph = _load_graph(args.source, config)
    except CurriculumError as e:
        _print_build_errors(e)
        return 1

    runner = SandboxRunner(graph, config)
    verdicts = asyncio.run(verify_solutions(graph, runner, args.challenge or None))

    failures = 0
    for verdict in verdicts:
        status = "PASS" if verdict.passed else "FAIL"
        print(f"  [{status}] {verdict.challenge_id} ({verdict.passed_count}/{len(verdict.outcomes)})")
        if not verdict.passed:
            failures += 1
            for outcome in verdict.outcomes:
                if not outcome.passed:
                    print(f"      test {outcome.index}: {outcome.message}")
    print(f"\n{len(verdicts) - failures}/{len(verdicts)} solution(s) pass")
    return 1 if failures else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kata",
        description="Build challenge curricula and verify solutions in a sandbox",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Parse, validate and link a content directory")
    build.add_argument("root", type=Path, help="Content root (one directory per locale)")
    build.add_argument("--locale", help="Content locale to load")
    build.add_argument("--output", type=Path, help="Write the built graph as JSON")
    build.set_defaults(handler=cmd_build)

    run = sub.add_parser("run", help="Run candidate files against a challenge")
    run.add_argument("source", type=Path, help="Graph JSON file or content root")
    run.add_argument("challenge_id", help="Challenge to run")
    run.add_argument("--file", action="append", metavar="NAME=PATH", help="Candidate file contents")
    run.add_argument("--timeout-ms", type=int, help="Shorter timeout than the configured default")
    run.add_argument("--locale", help="Content locale to load")
    run.set_defaults(handler=cmd_run)

    verify = sub.add_parser("verify", help="Check every challenge passes with its own solution")
    verify.add_argument("source", type=Path, help="Graph JSON file or content root")
    verify.add_argument("--challenge", action="append", metavar="ID", help="Only verify these challenges")
    verify.add_argument("--locale", help="Content locale to load")
    verify.set_defaults(handler=cmd_verify)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
    )

    try:
        config = _load_config(args)
        return args.handler(args, config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except (argparse.ArgumentTypeError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except KataError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
