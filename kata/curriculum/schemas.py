"""JSON Schemas for each curriculum record kind.

Schemas only constrain the keys the pipeline reads; extra front matter keys
are allowed so newer content still validates.
"""

from __future__ import annotations

from kata.models import ChallengeType, FileKind, RecordKind

DRAFT_7 = "http://json-schema.org/draft-07/schema#"

_ID = {"type": "string", "pattern": r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"}
_TITLE = {"type": "string", "minLength": 1}
_ID_LIST = {"type": "array", "items": _ID}

_REGION = {
    "type": "object",
    "required": ["start", "end"],
    "properties": {
        "start": {"type": "integer", "minimum": 0},
        "end": {"type": "integer", "minimum": 0},
    },
}

_FILE = {
    "type": "object",
    "required": ["name", "kind", "contents"],
    "properties": {
        "name": {"type": "string", "minLength": 1, "pattern": r"^[^/\\]+$"},
        "kind": {"enum": [k.value for k in FileKind]},
        "contents": {"type": "string"},
        "editable_regions": {"type": "array", "items": _REGION},
        "solution": {"type": "string"},
    },
}

_TEST = {
    "type": "object",
    "required": ["code"],
    "properties": {
        "text": {"type": "string"},
        "code": {"type": "string", "minLength": 1},
    },
}

_QUESTION = {
    "type": "object",
    "required": ["text", "answers", "solution"],
    "properties": {
        "text": {"type": "string", "minLength": 1},
        "answers": {"type": "array", "minItems": 2, "items": {"type": "string"}},
        "solution": {"type": "integer", "minimum": 1},
    },
}

CHALLENGE_SCHEMA = {
    "$schema": DRAFT_7,
    "$id": "kata:challenge",
    "type": "object",
    "required": ["id", "title", "challengeType"],
    "properties": {
        "id": _ID,
        "title": _TITLE,
        "challengeType": {"enum": [t.value for t in ChallengeType]},
        "prerequisites": _ID_LIST,
        "description": {"type": "string"},
        "files": {"type": "array", "items": _FILE},
        "tests": {"type": "array", "items": _TEST},
        "questions": {"type": "array", "items": _QUESTION},
    },
}

BLOCK_SCHEMA = {
    "$schema": DRAFT_7,
    "$id": "kata:block",
    "type": "object",
    "required": ["id", "title", "challengeOrder"],
    "properties": {
        "id": _ID,
        "title": _TITLE,
        "challengeOrder": _ID_LIST,
        "timeEstimate": {"type": "string"},
        "isUpcoming": {"type": "boolean"},
        "description": {"type": "string"},
    },
}

SUPERBLOCK_SCHEMA = {
    "$schema": DRAFT_7,
    "$id": "kata:superblock",
    "type": "object",
    "required": ["id", "title", "blocks"],
    "properties": {
        "id": _ID,
        "title": _TITLE,
        "blocks": _ID_LIST,
        "description": {"type": "string"},
    },
}

CERTIFICATION_SCHEMA = {
    "$schema": DRAFT_7,
    "$id": "kata:certification",
    "type": "object",
    "required": ["id", "title", "superBlocks"],
    "properties": {
        "id": _ID,
        "title": _TITLE,
        "superBlocks": _ID_LIST,
        "description": {"type": "string"},
    },
}

SCHEMAS = {
    RecordKind.CHALLENGE: CHALLENGE_SCHEMA,
    RecordKind.BLOCK: BLOCK_SCHEMA,
    RecordKind.SUPERBLOCK: SUPERBLOCK_SCHEMA,
    RecordKind.CERTIFICATION: CERTIFICATION_SCHEMA,
}

# Display metadata copied from block front matter onto the Block node
BLOCK_METADATA_KEYS = ("timeEstimate", "isUpcoming", "description")
