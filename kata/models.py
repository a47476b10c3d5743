"""Core data models for the Kata framework."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


class ChallengeType(Enum):
    """Kinds of challenge, each with its own execution strategy."""

    MARKUP = "markup"
    SCRIPT = "script"
    PROJECT = "project"
    QUIZ = "quiz"
    LAB = "lab"

    @property
    def is_executable(self) -> bool:
        """Check if this type runs candidate code against tests."""
        return self is not ChallengeType.QUIZ

    @classmethod
    def from_string(cls, value: str) -> ChallengeType:
        """Create ChallengeType from string value."""
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Invalid challenge type: {value}")


class FileKind(Enum):
    """Language of a challenge file."""

    PYTHON = "python"
    HTML = "html"
    CSS = "css"
    TEXT = "text"
    JSON = "json"

    @property
    def extension(self) -> str:
        """Get the file extension for this kind."""
        extensions = {
            FileKind.PYTHON: ".py",
            FileKind.HTML: ".html",
            FileKind.CSS: ".css",
            FileKind.TEXT: ".txt",
            FileKind.JSON: ".json",
        }
        return extensions[self]

    @classmethod
    def from_tag(cls, tag: str) -> Optional[FileKind]:
        """Map a code fence language tag to a FileKind, or None if unknown."""
        return _LANGUAGE_TAGS.get(tag.lower())


_LANGUAGE_TAGS = {
    "py": FileKind.PYTHON,
    "python": FileKind.PYTHON,
    "html": FileKind.HTML,
    "css": FileKind.CSS,
    "txt": FileKind.TEXT,
    "text": FileKind.TEXT,
    "json": FileKind.JSON,
}


class ContentBlockKind(Enum):
    """Kinds of block inside a raw content unit."""

    METADATA = "metadata"
    PROSE = "prose"
    CODE = "code"


class RecordKind(Enum):
    """Levels of the curriculum hierarchy."""

    CERTIFICATION = "certification"
    SUPERBLOCK = "superblock"
    BLOCK = "block"
    CHALLENGE = "challenge"


# ─────────────────────────────────────────────────────────────────────────────
# Raw content
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ContentBlock:
    """A single metadata, prose or code block of a content unit."""

    kind: ContentBlockKind
    section: str
    text: str
    line: int
    language: Optional[str] = None
    attributes: tuple[tuple[str, str], ...] = ()

    def attribute(self, name: str) -> Optional[str]:
        for key, value in self.attributes:
            if key == name:
                return value
        return None


@dataclass(frozen=True)
class ContentUnit:
    """A parsed but not yet interpreted content file."""

    identifier: str
    blocks: tuple[ContentBlock, ...]
    locale: str

    def section(self, name: str) -> tuple[ContentBlock, ...]:
        """Get the blocks belonging to a section, in source order."""
        return tuple(b for b in self.blocks if b.section == name)


@dataclass(frozen=True)
class ParsedRecord:
    """Intermediate record produced by the parser, ready for validation."""

    kind: RecordKind
    identifier: str
    locale: str
    fields: dict = field(compare=False)

    @property
    def record_id(self) -> Optional[str]:
        value = self.fields.get("id")
        return value if isinstance(value, str) else None


# ─────────────────────────────────────────────────────────────────────────────
# Challenge graph nodes
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EditableRegion:
    """Half-open range of 0-based content lines the learner may edit."""

    start: int
    end: int

    def overlaps(self, other: EditableRegion) -> bool:
        return self.start < other.end and other.start < self.end

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class ChallengeFile:
    """A starter file of a challenge, with its optional reference solution."""

    name: str
    kind: FileKind
    contents: str
    editable_regions: tuple[EditableRegion, ...] = ()
    solution: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "contents": self.contents,
            "editable_regions": [r.to_dict() for r in self.editable_regions],
            "solution": self.solution,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChallengeFile:
        return cls(
            name=data["name"],
            kind=FileKind(data["kind"]),
            contents=data.get("contents", ""),
            editable_regions=tuple(
                EditableRegion(r["start"], r["end"]) for r in data.get("editable_regions", [])
            ),
            solution=data.get("solution"),
        )


@dataclass(frozen=True)
class Test:
    """A single assertion of a challenge.

    ``code`` is either a Python expression that must evaluate truthy, or a
    block of statements that must run without raising.
    """

    __test__ = False  # not a pytest test class

    index: int
    text: str
    code: str

    def to_dict(self) -> dict:
        return {"index": self.index, "text": self.text, "code": self.code}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Test:
        return cls(index=data["index"], text=data.get("text", ""), code=data["code"])


@dataclass(frozen=True)
class QuizQuestion:
    """A multiple choice question; ``solution`` is the 1-based answer index."""

    text: str
    answers: tuple[str, ...]
    solution: int

    def to_dict(self) -> dict:
        return {"text": self.text, "answers": list(self.answers), "solution": self.solution}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> QuizQuestion:
        return cls(
            text=data["text"],
            answers=tuple(data["answers"]),
            solution=data["solution"],
        )


@dataclass(frozen=True)
class Challenge:
    """A single coding exercise."""

    id: str
    title: str
    challenge_type: ChallengeType
    files: tuple[ChallengeFile, ...] = ()
    tests: tuple[Test, ...] = ()
    prerequisites: frozenset[str] = frozenset()
    description: str = ""
    questions: tuple[QuizQuestion, ...] = ()
    block: Optional[str] = None

    @property
    def has_solution(self) -> bool:
        """Check if every file ships a reference solution."""
        return bool(self.files) and all(f.solution is not None for f in self.files)

    def get_file(self, name: str) -> Optional[ChallengeFile]:
        for challenge_file in self.files:
            if challenge_file.name == name:
                return challenge_file
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "challenge_type": self.challenge_type.value,
            "files": [f.to_dict() for f in self.files],
            "tests": [t.to_dict() for t in self.tests],
            "prerequisites": sorted(self.prerequisites),
            "description": self.description,
            "questions": [q.to_dict() for q in self.questions],
            "block": self.block,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Challenge:
        return cls(
            id=data["id"],
            title=data["title"],
            challenge_type=ChallengeType(data["challenge_type"]),
            files=tuple(ChallengeFile.from_dict(f) for f in data.get("files", [])),
            tests=tuple(Test.from_dict(t) for t in data.get("tests", [])),
            prerequisites=frozenset(data.get("prerequisites", [])),
            description=data.get("description", ""),
            questions=tuple(QuizQuestion.from_dict(q) for q in data.get("questions", [])),
            block=data.get("block"),
        )


@dataclass(frozen=True)
class Block:
    """An ordered group of challenges."""

    id: str
    title: str
    challenge_ids: tuple[str, ...] = ()
    superblock: Optional[str] = None
    metadata: tuple[tuple[str, Any], ...] = ()

    @property
    def meta(self) -> dict:
        return dict(self.metadata)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "challenge_ids": list(self.challenge_ids),
            "superblock": self.superblock,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Block:
        return cls(
            id=data["id"],
            title=data["title"],
            challenge_ids=tuple(data.get("challenge_ids", [])),
            superblock=data.get("superblock"),
            metadata=tuple(sorted(data.get("metadata", {}).items())),
        )


@dataclass(frozen=True)
class SuperBlock:
    """An ordered group of blocks."""

    id: str
    title: str
    block_ids: tuple[str, ...] = ()
    certification: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "block_ids": list(self.block_ids),
            "certification": self.certification,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SuperBlock:
        return cls(
            id=data["id"],
            title=data["title"],
            block_ids=tuple(data.get("block_ids", [])),
            certification=data.get("certification"),
        )


@dataclass(frozen=True)
class Certification:
    """The root of a curriculum tree."""

    id: str
    title: str
    superblock_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"id": self.id, "title": self.title, "superblock_ids": list(self.superblock_ids)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Certification:
        return cls(
            id=data["id"],
            title=data["title"],
            superblock_ids=tuple(data.get("superblock_ids", [])),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Execution
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ExecutionRequest:
    """A learner's attempt at a challenge.

    Files missing from ``files`` fall back to the challenge's starter contents.
    """

    challenge_id: str
    files: Mapping[str, str] = field(default_factory=dict)
    timeout_ms: Optional[int] = None


class OutcomeStatus(Enum):
    """Result of a single test."""

    PASSED = "passed"
    FAILED = "failed"
    NOT_RUN = "not_run"


@dataclass(frozen=True)
class TestOutcome:
    """Outcome of one test of a challenge."""

    __test__ = False  # not a pytest test class

    index: int
    status: OutcomeStatus
    message: str = ""
    duration_ms: float = 0.0

    @property
    def passed(self) -> bool:
        return self.status is OutcomeStatus.PASSED

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "passed": self.passed,
            "status": self.status.value,
            "message": self.message,
            "duration_ms": round(self.duration_ms, 3),
        }


@dataclass(frozen=True)
class Verdict:
    """Aggregated result of running a candidate against a challenge."""

    challenge_id: str
    outcomes: tuple[TestOutcome, ...]
    passed: bool
    duration_ms: float
    truncated: bool = False
    error: Optional[str] = None

    @property
    def passed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.passed)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "challenge_id": self.challenge_id,
            "passed": self.passed,
            "truncated": self.truncated,
            "duration_ms": round(self.duration_ms, 3),
            "error": self.error,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=2)
