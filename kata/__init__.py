"""
Kata

Compiles Markdown curriculum content into a validated challenge graph and
verifies learner solutions against challenge tests in sandboxed workers.
"""

from kata.config import KataConfig, Locale

# Curriculum compilation
from kata.curriculum import (
    ChallengeGraph,
    CurriculumLoader,
    GraphBuilder,
    SchemaValidator,
    load_graph,
    parse_record,
    parse_unit,
    unit_to_record,
)
from kata.exceptions import (
    BlockNotFoundError,
    ChallengeNotFoundError,
    ConfigurationError,
    CurriculumBuildError,
    CurriculumError,
    ExecutionCrashError,
    ExecutionError,
    ExecutionTimeoutError,
    GraphIntegrityError,
    KataError,
    NotFoundError,
    ParseError,
    ResourceLimitError,
    SandboxSetupError,
    ValidationError,
)
from kata.models import (
    Block,
    Certification,
    Challenge,
    ChallengeFile,
    ChallengeType,
    ContentBlock,
    ContentUnit,
    EditableRegion,
    ExecutionRequest,
    FileKind,
    OutcomeStatus,
    ParsedRecord,
    QuizQuestion,
    RecordKind,
    SuperBlock,
    Test,
    TestOutcome,
    Verdict,
)

# Sandboxed verification
from kata.sandbox import SandboxRunner, aggregate, verify_solutions

__version__ = "0.1.0"
__all__ = [
    # Config
    "KataConfig",
    "Locale",
    # Models
    "ChallengeType",
    "FileKind",
    "RecordKind",
    "ContentBlock",
    "ContentUnit",
    "ParsedRecord",
    "EditableRegion",
    "ChallengeFile",
    "Test",
    "QuizQuestion",
    "Challenge",
    "Block",
    "SuperBlock",
    "Certification",
    "ExecutionRequest",
    "OutcomeStatus",
    "TestOutcome",
    "Verdict",
    # Curriculum
    "parse_unit",
    "unit_to_record",
    "parse_record",
    "SchemaValidator",
    "ChallengeGraph",
    "GraphBuilder",
    "CurriculumLoader",
    "load_graph",
    # Sandbox
    "SandboxRunner",
    "aggregate",
    "verify_solutions",
    # Exceptions
    "KataError",
    "CurriculumError",
    "CurriculumBuildError",
    "ParseError",
    "ValidationError",
    "GraphIntegrityError",
    "NotFoundError",
    "ChallengeNotFoundError",
    "BlockNotFoundError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "ExecutionCrashError",
    "ResourceLimitError",
    "SandboxSetupError",
    "ConfigurationError",
]
