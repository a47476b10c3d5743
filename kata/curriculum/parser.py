"""
Content parser - turns Markdown content files into typed intermediate records.

A content file is YAML front matter between two ``---`` lines followed by a
Markdown body split into ``# --section--`` headings:

    ---
    id: add-two-numbers
    title: Add two numbers
    challengeType: script
    ---

    # --description--
    Write ``add``.

    # --hints--
    ``add(2, 2)`` should return 4.

    ```py
    assert add(2, 2) == 4
    ```

    # --seed--
    ## --seed-contents--
    ```py name=main.py
    def add(a, b):
        # --editable-region--
        pass
        # --editable-region--
    ```

    # --solutions--
    ```py name=main.py
    def add(a, b):
        return a + b
    ```

Parsing is split in two steps: ``parse_unit`` tokenizes the file into a
``ContentUnit`` of ordered blocks, and ``unit_to_record`` interprets those
blocks into a ``ParsedRecord`` whose ``fields`` dict is handed to the schema
validator. Both are pure functions of their input.
"""

from __future__ import annotations

import re
from typing import Optional

import yaml

from kata.exceptions import ParseError
from kata.models import (
    ContentBlock,
    ContentBlockKind,
    ContentUnit,
    FileKind,
    ParsedRecord,
    RecordKind,
)

FRONT_MATTER_MARKER = "---"
FENCE = "```"
EDITABLE_REGION_MARKER = "--editable-region--"

SECTION_RE = re.compile(r"^(#{1,2})\s+--([a-z0-9-]+)--\s*$")

DESCRIPTION_SECTION = "description"
HINTS_SECTION = "hints"
SEED_SECTION = "seed-contents"
SOLUTIONS_SECTION = "solutions"


def parse_unit(text: str, identifier: str, locale: str) -> ContentUnit:
    """
    Split a raw content file into metadata, prose and code blocks.

    Args:
        text: Raw file contents.
        identifier: Name of the unit, used in diagnostics.
        locale: Locale tag the unit was loaded from.

    Returns:
        The tokenized ContentUnit.

    Raises:
        ParseError: If front matter or a code fence is malformed.
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    lines = text.splitlines()

    if not lines or lines[0].strip() != FRONT_MATTER_MARKER:
        raise ParseError(identifier, 1, "missing front matter marker '---' on first line")

    closing = None
    for i in range(1, len(lines)):
        if lines[i].strip() == FRONT_MATTER_MARKER:
            closing = i
            break
    if closing is None:
        raise ParseError(identifier, 1, "unterminated front matter")

    blocks: list[ContentBlock] = [
        ContentBlock(
            kind=ContentBlockKind.METADATA,
            section="",
            text="\n".join(lines[1:closing]),
            line=2,
        )
    ]
    blocks.extend(_tokenize_body(lines, closing + 1, identifier))
    return ContentUnit(identifier=identifier, blocks=tuple(blocks), locale=locale)


def _tokenize_body(lines: list[str], start: int, identifier: str) -> list[ContentBlock]:
    blocks: list[ContentBlock] = []
    section = DESCRIPTION_SECTION
    paragraph: list[str] = []
    paragraph_line = 0

    def flush_paragraph() -> None:
        nonlocal paragraph
        if paragraph:
            blocks.append(
                ContentBlock(
                    kind=ContentBlockKind.PROSE,
                    section=section,
                    text="\n".join(paragraph).strip(),
                    line=paragraph_line,
                )
            )
            paragraph = []

    i = start
    while i < len(lines):
        line = lines[i]
        stripped = line.strip()

        heading = SECTION_RE.match(stripped)
        if heading:
            flush_paragraph()
            # nested "## --x--" headings replace the section name
            section = heading.group(2)
            i += 1
            continue

        if stripped.startswith(FENCE):
            flush_paragraph()
            fence_line = i + 1
            language, attributes = _parse_fence_info(stripped[len(FENCE):])
            body: list[str] = []
            i += 1
            while i < len(lines) and lines[i].strip() != FENCE:
                body.append(lines[i])
                i += 1
            if i >= len(lines):
                raise ParseError(identifier, fence_line, "unterminated code fence")
            blocks.append(
                ContentBlock(
                    kind=ContentBlockKind.CODE,
                    section=section,
                    text="\n".join(body),
                    line=fence_line + 1,
                    language=language,
                    attributes=attributes,
                )
            )
            i += 1
            continue

        if stripped:
            if not paragraph:
                paragraph_line = i + 1
            paragraph.append(line)
        else:
            flush_paragraph()
        i += 1

    flush_paragraph()
    return blocks


def _parse_fence_info(info: str) -> tuple[Optional[str], tuple[tuple[str, str], ...]]:
    """Split ``py name=main.py`` into a language tag and attributes."""
    tokens = info.split()
    if not tokens:
        return None, ()
    language = tokens[0] if "=" not in tokens[0] else None
    attributes = tuple(
        tuple(token.split("=", 1)) for token in tokens if "=" in token
    )
    return language, attributes  # type: ignore[return-value]


def strip_editable_regions(text: str, identifier: str, first_line: int) -> tuple[str, list[dict]]:
    """
    Remove editable region marker lines from a code block.

    Markers pair up: the lines between the first and second marker form one
    region, the third and fourth the next, and so on.

    Args:
        text: Code block contents.
        identifier: Unit name for diagnostics.
        first_line: 1-based line of the first code line in the unit.

    Returns:
        Tuple of (contents without markers, list of {"start", "end"} regions).

    Raises:
        ParseError: If a marker is left unpaired.
    """
    kept: list[str] = []
    regions: list[dict] = []
    open_at: Optional[int] = None
    open_line = 0

    for offset, line in enumerate(text.split("\n")):
        if line.strip().endswith(EDITABLE_REGION_MARKER):
            if open_at is None:
                open_at = len(kept)
                open_line = first_line + offset
            else:
                regions.append({"start": open_at, "end": len(kept)})
                open_at = None
            continue
        kept.append(line)

    if open_at is not None:
        raise ParseError(identifier, open_line, "unpaired editable region marker")

    contents = "\n".join(kept)
    if contents and not contents.endswith("\n"):
        contents += "\n"
    return contents, regions


def _load_front_matter(unit: ContentUnit) -> dict:
    metadata = unit.blocks[0]
    try:
        data = yaml.safe_load(metadata.text) if metadata.text.strip() else {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        line = metadata.line + mark.line if mark is not None else metadata.line
        reason = getattr(e, "problem", None) or str(e)
        raise ParseError(unit.identifier, line, f"invalid front matter: {reason}")

    if not isinstance(data, dict):
        raise ParseError(unit.identifier, metadata.line, "front matter must be a mapping")
    if "id" not in data or data["id"] in (None, ""):
        raise ParseError(unit.identifier, metadata.line, "missing required field 'id'")
    return data


def _prose(unit: ContentUnit, section: str) -> str:
    return "\n\n".join(
        b.text for b in unit.section(section) if b.kind is ContentBlockKind.PROSE
    )


def _file_name(block: ContentBlock, kind_tag: str, position: int, taken: set[str]) -> str:
    name = block.attribute("name")
    if name:
        return name
    kind = FileKind.from_tag(kind_tag)
    extension = kind.extension if kind else f".{kind_tag or 'txt'}"
    base = "index" if position == 0 else f"index{position + 1}"
    name = f"{base}{extension}"
    if name in taken:
        name = f"{base}_{position}{extension}"
    return name


def _challenge_fields(unit: ContentUnit, data: dict) -> dict:
    fields = dict(data)
    fields["description"] = _prose(unit, DESCRIPTION_SECTION)

    # Hints: each code block is a test, described by the prose before it
    tests: list[dict] = []
    pending_text: list[str] = []
    for block in unit.section(HINTS_SECTION):
        if block.kind is ContentBlockKind.PROSE:
            pending_text.append(block.text)
        else:
            tests.append({"text": "\n\n".join(pending_text), "code": block.text})
            pending_text = []
    fields["tests"] = tests

    files: list[dict] = []
    taken: set[str] = set()
    for position, block in enumerate(
        b for b in unit.section(SEED_SECTION) if b.kind is ContentBlockKind.CODE
    ):
        tag = (block.language or "").lower()
        kind = FileKind.from_tag(tag)
        contents, regions = strip_editable_regions(block.text, unit.identifier, block.line)
        name = _file_name(block, tag, position, taken)
        taken.add(name)
        files.append(
            {
                "name": name,
                "kind": kind.value if kind else tag,
                "contents": contents,
                "editable_regions": regions,
            }
        )

    solutions = [b for b in unit.section(SOLUTIONS_SECTION) if b.kind is ContentBlockKind.CODE]
    by_name = {f["name"]: f for f in files}
    for position, block in enumerate(solutions):
        contents, _ = strip_editable_regions(block.text, unit.identifier, block.line)
        target = by_name.get(block.attribute("name") or "")
        if target is None and position < len(files):
            target = files[position]
        if target is not None and "solution" not in target:
            target["solution"] = contents

    fields["files"] = files
    return fields


def unit_to_record(unit: ContentUnit) -> ParsedRecord:
    """
    Interpret a tokenized unit as a record of its declared kind.

    Unknown front matter keys are kept so newer content still loads.

    Args:
        unit: The tokenized content unit.

    Returns:
        ParsedRecord whose ``fields`` are ready for schema validation.

    Raises:
        ParseError: On invalid YAML, a missing id or an unknown record kind.
    """
    data = _load_front_matter(unit)

    kind_value = data.pop("kind", RecordKind.CHALLENGE.value)
    try:
        kind = RecordKind(str(kind_value).lower())
    except ValueError:
        valid = ", ".join(k.value for k in RecordKind)
        raise ParseError(unit.identifier, unit.blocks[0].line, f"unknown kind '{kind_value}' (expected one of: {valid})")

    if kind is RecordKind.CHALLENGE:
        fields = _challenge_fields(unit, data)
    else:
        fields = dict(data)
        fields["description"] = _prose(unit, DESCRIPTION_SECTION)

    return ParsedRecord(kind=kind, identifier=unit.identifier, locale=unit.locale, fields=fields)


def parse_record(text: str, identifier: str, locale: str) -> ParsedRecord:
    """Tokenize and interpret a content file in one step."""
    return unit_to_record(parse_unit(text, identifier, locale))
