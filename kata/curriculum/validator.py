"""Schema validator - turns parsed records into typed graph nodes."""

from __future__ import annotations

import logging
from typing import Iterable, Union

from jsonschema import Draft7Validator

from kata.curriculum.schemas import BLOCK_METADATA_KEYS, SCHEMAS
from kata.exceptions import ValidationError
from kata.models import (
    Block,
    Certification,
    Challenge,
    ChallengeFile,
    ChallengeType,
    EditableRegion,
    FileKind,
    ParsedRecord,
    QuizQuestion,
    RecordKind,
    SuperBlock,
    Test,
)

logger = logging.getLogger(__name__)

GraphNode = Union[Challenge, Block, SuperBlock, Certification]

# File kinds each executable challenge type must ship at least one of
REQUIRED_FILE_KINDS = {
    ChallengeType.SCRIPT: FileKind.PYTHON,
    ChallengeType.LAB: FileKind.PYTHON,
    ChallengeType.PROJECT: FileKind.PYTHON,
    ChallengeType.MARKUP: FileKind.HTML,
}


def _format_path(path: Iterable) -> str:
    out = ""
    for part in path:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else str(part)
    return out or "<record>"


class SchemaValidator:
    """Validate parsed records against the schema for their kind."""

    def __init__(self) -> None:
        self._validators = {kind: Draft7Validator(schema) for kind, schema in SCHEMAS.items()}

    def check(self, record: ParsedRecord) -> list[str]:
        """
        Collect every problem with a record without raising.

        Args:
            record: The parsed record.

        Returns:
            Sorted list of ``"<field path>: <message>"`` issues; empty if valid.
        """
        validator = self._validators[record.kind]
        issues = sorted(
            f"{_format_path(error.absolute_path)}: {error.message}"
            for error in validator.iter_errors(record.fields)
        )
        if record.kind is RecordKind.CHALLENGE:
            issues.extend(self._challenge_issues(record.fields))
        return issues

    def _challenge_issues(self, data: dict) -> list[str]:
        issues: list[str] = []

        try:
            challenge_type = ChallengeType(data.get("challengeType"))
        except ValueError:
            challenge_type = None

        tests = data.get("tests") if isinstance(data.get("tests"), list) else []
        questions = data.get("questions") if isinstance(data.get("questions"), list) else []
        files = data.get("files") if isinstance(data.get("files"), list) else []

        if challenge_type is not None and challenge_type.is_executable and not tests:
            issues.append(f"tests: '{challenge_type.value}' challenges require at least one test")

        if challenge_type is ChallengeType.QUIZ:
            if not questions:
                issues.append("questions: quiz challenges require at least one question")
            for i, question in enumerate(questions):
                if not isinstance(question, dict):
                    continue
                answers = question.get("answers")
                solution = question.get("solution")
                if isinstance(answers, list) and isinstance(solution, int) and solution > len(answers):
                    issues.append(
                        f"questions[{i}].solution: {solution} is out of range for {len(answers)} answers"
                    )

        required_kind = REQUIRED_FILE_KINDS.get(challenge_type) if challenge_type else None
        if required_kind is not None and not any(
            isinstance(f, dict) and f.get("kind") == required_kind.value for f in files
        ):
            issues.append(
                f"files: '{challenge_type.value}' challenges require at least one {required_kind.value} file"
            )

        seen: set[str] = set()
        for i, challenge_file in enumerate(files):
            if not isinstance(challenge_file, dict):
                continue
            name = challenge_file.get("name")
            if isinstance(name, str):
                if name in seen:
                    issues.append(f"files[{i}].name: duplicate file name '{name}'")
                seen.add(name)
            issues.extend(self._region_issues(i, challenge_file))

        prerequisites = data.get("prerequisites")
        if isinstance(prerequisites, list) and data.get("id") in prerequisites:
            issues.append(f"prerequisites: challenge '{data.get('id')}' lists itself")

        return issues

    @staticmethod
    def _region_issues(file_index: int, challenge_file: dict) -> list[str]:
        regions = challenge_file.get("editable_regions")
        contents = challenge_file.get("contents")
        if not isinstance(regions, list) or not isinstance(contents, str):
            return []

        issues: list[str] = []
        line_count = len(contents.splitlines())
        checked: list[EditableRegion] = []
        for j, region in enumerate(regions):
            if not isinstance(region, dict):
                continue
            start, end = region.get("start"), region.get("end")
            if not isinstance(start, int) or not isinstance(end, int):
                continue
            where = f"files[{file_index}].editable_regions[{j}]"
            if end < start:
                issues.append(f"{where}: end {end} is before start {start}")
                continue
            if end > line_count:
                issues.append(f"{where}: end {end} is past the last line ({line_count})")
            current = EditableRegion(start, end)
            for other in checked:
                if current.overlaps(other):
                    issues.append(
                        f"{where}: [{start}, {end}) overlaps [{other.start}, {other.end})"
                    )
            checked.append(current)
        return issues

    def validate(self, record: ParsedRecord) -> GraphNode:
        """
        Validate a record and build its typed node.

        Args:
            record: The parsed record.

        Returns:
            The Challenge, Block, SuperBlock or Certification.

        Raises:
            ValidationError: Listing every failing field.
        """
        issues = self.check(record)
        if issues:
            raise ValidationError(record.identifier, issues)
        return _build_node(record)

    def validate_many(self, records: Iterable[ParsedRecord]) -> tuple[list[GraphNode], list[ValidationError]]:
        """
        Validate a batch, collecting failures instead of stopping at the first.

        Returns:
            Tuple of (accepted nodes in input order, validation errors).
        """
        accepted: list[GraphNode] = []
        errors: list[ValidationError] = []
        for record in records:
            try:
                accepted.append(self.validate(record))
            except ValidationError as e:
                logger.debug(f"Rejected {record.identifier}: {len(e.issues)} issue(s)")
                errors.append(e)
        return accepted, errors


def _build_node(record: ParsedRecord) -> GraphNode:
    data = record.fields
    if record.kind is RecordKind.CHALLENGE:
        return _build_challenge(data)
    if record.kind is RecordKind.BLOCK:
        metadata = tuple(
            sorted((key, data[key]) for key in BLOCK_METADATA_KEYS if key in data and data[key] != "")
        )
        return Block(
            id=data["id"],
            title=data["title"],
            challenge_ids=tuple(data["challengeOrder"]),
            metadata=metadata,
        )
    if record.kind is RecordKind.SUPERBLOCK:
        return SuperBlock(id=data["id"], title=data["title"], block_ids=tuple(data["blocks"]))
    return Certification(id=data["id"], title=data["title"], superblock_ids=tuple(data["superBlocks"]))


def _build_challenge(data: dict) -> Challenge:
    challenge_type = ChallengeType(data["challengeType"])

    files = tuple(
        ChallengeFile(
            name=f["name"],
            kind=FileKind(f["kind"]),
            contents=f["contents"],
            editable_regions=tuple(
                EditableRegion(r["start"], r["end"]) for r in f.get("editable_regions", [])
            ),
            solution=f.get("solution"),
        )
        for f in data.get("files", [])
    )

    questions = tuple(
        QuizQuestion(text=q["text"], answers=tuple(q["answers"]), solution=q["solution"])
        for q in data.get("questions", [])
    )

    # Quizzes are checked by synthesized tests, one per question
    raw_tests = [
        {"text": q.text, "code": f"answers[{i}] == {q.solution}"} for i, q in enumerate(questions)
    ]
    raw_tests.extend(data.get("tests", []))
    tests = tuple(
        Test(index=i, text=t.get("text", ""), code=t["code"]) for i, t in enumerate(raw_tests)
    )

    return Challenge(
        id=data["id"],
        title=data["title"],
        challenge_type=challenge_type,
        files=files,
        tests=tests,
        prerequisites=frozenset(data.get("prerequisites", [])),
        description=data.get("description", ""),
        questions=questions,
    )
