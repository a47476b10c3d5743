"""Tests for the content parser."""

from __future__ import annotations

import pytest

from kata.curriculum.parser import parse_record, parse_unit, strip_editable_regions, unit_to_record
from kata.exceptions import ParseError
from kata.models import ContentBlockKind, RecordKind


class TestParseUnit:
    """Tests for tokenizing content files into blocks."""

    def test_splits_metadata_prose_and_code(self, add_challenge_text: str):
        unit = parse_unit(add_challenge_text, "add.md", "english")

        assert unit.identifier == "add.md"
        assert unit.locale == "english"
        assert unit.blocks[0].kind is ContentBlockKind.METADATA
        assert unit.blocks[0].line == 2
        assert "id: add-two-numbers" in unit.blocks[0].text

        hints = unit.section("hints")
        assert [b.kind for b in hints] == [
            ContentBlockKind.PROSE,
            ContentBlockKind.CODE,
            ContentBlockKind.PROSE,
            ContentBlockKind.CODE,
            ContentBlockKind.PROSE,
            ContentBlockKind.CODE,
        ]

    def test_nested_heading_replaces_section(self, add_challenge_text: str):
        unit = parse_unit(add_challenge_text, "add.md", "english")

        seed = unit.section("seed-contents")
        assert len(seed) == 1
        assert seed[0].language == "py"
        assert seed[0].attribute("name") == "main.py"
        assert unit.section("seed") == ()

    def test_parsing_is_deterministic(self, add_challenge_text: str):
        """Parsing the same text twice gives equal units."""
        assert parse_unit(add_challenge_text, "a.md", "english") == parse_unit(
            add_challenge_text, "a.md", "english"
        )

    def test_strips_byte_order_mark(self, add_challenge_text: str):
        unit = parse_unit("\ufeff" + add_challenge_text, "add.md", "english")
        assert unit.blocks[0].kind is ContentBlockKind.METADATA

    def test_missing_front_matter(self):
        with pytest.raises(ParseError) as exc_info:
            parse_unit("# --description--\nNo metadata.\n", "bad.md", "english")
        assert exc_info.value.line == 1
        assert str(exc_info.value).startswith("bad.md:1:")

    def test_unterminated_front_matter(self):
        with pytest.raises(ParseError, match="unterminated front matter"):
            parse_unit("---\nid: x\ntitle: y\n", "bad.md", "english")

    def test_unterminated_code_fence_reports_line(self):
        text = "---\nid: x\n---\n\n# --hints--\n\n```py\nadd(1, 1) == 2\n"
        with pytest.raises(ParseError) as exc_info:
            parse_unit(text, "bad.md", "english")
        assert exc_info.value.line == 7
        assert exc_info.value.reason == "unterminated code fence"

    def test_code_block_line_points_at_first_code_line(self):
        text = "---\nid: x\n---\n# --hints--\n```py\nfoo()\n```\n"
        unit = parse_unit(text, "x.md", "english")
        code = unit.section("hints")[0]
        assert code.kind is ContentBlockKind.CODE
        assert code.line == 6
        assert code.text == "foo()"


class TestEditableRegions:
    """Tests for editable region marker handling."""

    def test_markers_become_regions(self):
        text = "def f():\n    # --editable-region--\n    pass\n    # --editable-region--\nf()"
        contents, regions = strip_editable_regions(text, "x.md", 10)

        assert contents == "def f():\n    pass\nf()\n"
        assert regions == [{"start": 1, "end": 2}]

    def test_multiple_regions(self):
        text = "--editable-region--\na\n--editable-region--\nb\n--editable-region--\nc\n--editable-region--"
        _, regions = strip_editable_regions(text, "x.md", 1)
        assert regions == [{"start": 0, "end": 1}, {"start": 2, "end": 3}]

    def test_unpaired_marker(self):
        text = "a\n# --editable-region--\nb"
        with pytest.raises(ParseError) as exc_info:
            strip_editable_regions(text, "x.md", 20)
        assert exc_info.value.line == 21


class TestUnitToRecord:
    """Tests for interpreting units as records."""

    def test_challenge_record(self, add_challenge_text: str):
        record = parse_record(add_challenge_text, "add.md", "english")

        assert record.kind is RecordKind.CHALLENGE
        assert record.record_id == "add-two-numbers"
        assert record.fields["challengeType"] == "script"
        assert record.fields["description"].startswith("Write a function `add`")

    def test_hints_become_tests(self, add_challenge_text: str):
        record = parse_record(add_challenge_text, "add.md", "english")

        tests = record.fields["tests"]
        assert len(tests) == 3
        assert tests[0] == {"text": "`add(1, 1)` should return 2.", "code": "add(1, 1) == 2"}
        assert tests[2]["code"].startswith("result = add(2, 2)")

    def test_seed_and_solution_files(self, add_challenge_text: str):
        record = parse_record(add_challenge_text, "add.md", "english")

        (main,) = record.fields["files"]
        assert main["name"] == "main.py"
        assert main["kind"] == "python"
        assert main["contents"] == "def add(a, b):\n    pass\n"
        assert main["editable_regions"] == [{"start": 1, "end": 2}]
        assert main["solution"] == "def add(a, b):\n    return a + b\n"

    def test_default_file_names(self):
        text = (
            "---\nid: page\ntitle: Page\nchallengeType: markup\n---\n"
            "# --seed--\n## --seed-contents--\n"
            "```html\n<p></p>\n```\n\n```css\np {}\n```\n"
        )
        record = parse_record(text, "page.md", "english")
        assert [f["name"] for f in record.fields["files"]] == ["index.html", "index2.css"]

    def test_unknown_language_tag_is_kept_for_validation(self):
        text = (
            "---\nid: x\ntitle: X\nchallengeType: script\n---\n"
            "# --seed--\n## --seed-contents--\n```rust name=main.rs\nfn main() {}\n```\n"
        )
        record = parse_record(text, "x.md", "english")
        assert record.fields["files"][0]["kind"] == "rust"

    def test_solutions_match_by_order_without_names(self):
        text = (
            "---\nid: x\ntitle: X\nchallengeType: script\n---\n"
            "# --seed--\n## --seed-contents--\n```py\npass\n```\n"
            "# --solutions--\n```py\nx = 1\n```\n"
        )
        record = parse_record(text, "x.md", "english")
        assert record.fields["files"][0]["solution"] == "x = 1\n"

    def test_block_record(self):
        text = "---\nkind: block\nid: b\ntitle: B\nchallengeOrder: [a]\n---\n\nA block.\n"
        record = parse_record(text, "b.md", "english")

        assert record.kind is RecordKind.BLOCK
        assert "kind" not in record.fields
        assert record.fields["challengeOrder"] == ["a"]
        assert record.fields["description"] == "A block."

    def test_unknown_kind(self):
        with pytest.raises(ParseError, match="unknown kind 'chapter'"):
            parse_record("---\nkind: chapter\nid: c\n---\n", "c.md", "english")

    def test_invalid_yaml_reports_line(self):
        text = "---\nid: x\ntitle: [unclosed\nchallengeType: script\n---\n"
        with pytest.raises(ParseError) as exc_info:
            parse_record(text, "x.md", "english")
        assert exc_info.value.line >= 3
        assert "invalid front matter" in exc_info.value.reason

    def test_front_matter_must_be_mapping(self):
        with pytest.raises(ParseError, match="must be a mapping"):
            parse_record("---\n- a\n- b\n---\n", "x.md", "english")

    def test_missing_id(self):
        with pytest.raises(ParseError, match="missing required field 'id'"):
            parse_record("---\ntitle: No id\n---\n", "x.md", "english")

    def test_unknown_front_matter_keys_are_kept(self):
        record = parse_record("---\nid: x\ntitle: X\nchallengeType: quiz\nforumTopicId: 7\n---\n", "x.md", "english")
        assert record.fields["forumTopicId"] == 7

    def test_unit_to_record_matches_parse_record(self, add_challenge_text: str):
        unit = parse_unit(add_challenge_text, "add.md", "english")
        assert unit_to_record(unit).fields == parse_record(add_challenge_text, "add.md", "english").fields
