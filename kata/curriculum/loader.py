"""Curriculum loader - builds a challenge graph from a content directory."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Union

from kata.config import FALLBACK_LOCALE, KataConfig
from kata.curriculum.graph import ChallengeGraph, GraphBuilder
from kata.curriculum.parser import parse_record
from kata.curriculum.validator import SchemaValidator
from kata.exceptions import CurriculumBuildError, CurriculumError, GraphIntegrityError, ParseError
from kata.models import ParsedRecord

logger = logging.getLogger(__name__)

CONTENT_GLOB = "*.md"


class CurriculumLoader:
    """Load, validate and link every content file under a content root.

    Content lives in one directory per locale:

        curriculum/
            english/
                python-cert.md
                basic-python/
                    _block.md
                    add-two-numbers.md
            espanol/
                basic-python/
                    add-two-numbers.md

    Units from the configured locale replace fallback (English) units that
    declare the same id; everything else comes from the fallback locale.
    """

    def __init__(
        self,
        config: Optional[KataConfig] = None,
        validator: Optional[SchemaValidator] = None,
        builder: Optional[GraphBuilder] = None,
    ):
        """
        Initialize the loader.

        Args:
            config: Configuration; defaults to ``KataConfig()``.
            validator: Schema validator to use.
            builder: Graph builder to use.
        """
        self.config = config or KataConfig()
        self.validator = validator or SchemaValidator()
        self.builder = builder or GraphBuilder()

    def discover(self, root: Path, locale: str) -> list[Path]:
        """List content files for one locale in a stable order."""
        locale_dir = root / locale
        if not locale_dir.is_dir():
            return []
        return sorted(p for p in locale_dir.rglob(CONTENT_GLOB) if p.is_file())

    def _parse_path(self, root: Path, path: Path, locale: str) -> Union[ParsedRecord, ParseError]:
        identifier = path.relative_to(root).as_posix()
        try:
            raw = path.read_bytes()
        except OSError as e:
            return ParseError(identifier, 0, f"cannot read file: {e}")
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            line = raw.count(b"\n", 0, e.start) + 1
            return ParseError(identifier, line, f"invalid UTF-8 at byte {e.start}")
        try:
            return parse_record(text, identifier, locale)
        except ParseError as e:
            return e

    def parse_locale(self, root: Path, locale: str) -> tuple[list[ParsedRecord], list[ParseError]]:
        """
        Parse every unit of a locale in parallel.

        Results are collected in discovery order, so the output does not
        depend on thread scheduling.

        Returns:
            Tuple of (parsed records, parse errors).
        """
        paths = self.discover(root, locale)
        records: list[ParsedRecord] = []
        errors: list[ParseError] = []
        if not paths:
            return records, errors

        with ThreadPoolExecutor(max_workers=self.config.parse_workers) as pool:
            results = list(pool.map(lambda p: self._parse_path(root, p, locale), paths))

        for result in results:
            if isinstance(result, ParseError):
                errors.append(result)
            else:
                records.append(result)
        logger.debug(f"Parsed {len(records)} unit(s) for locale '{locale}' ({len(errors)} error(s))")
        return records, errors

    def collect_records(self, root: Path) -> tuple[list[ParsedRecord], list[ParseError]]:
        """Parse the fallback locale and overlay the configured locale on it."""
        fallback = FALLBACK_LOCALE.value
        selected = self.config.locale.value

        records, errors = self.parse_locale(root, fallback)
        if selected == fallback:
            return records, errors

        if not (root / selected).is_dir():
            logger.warning(f"No content for locale '{selected}' under {root}; using '{fallback}'")
            return records, errors

        localized, localized_errors = self.parse_locale(root, selected)
        overridden = {r.record_id for r in localized}
        merged = [r for r in records if r.record_id not in overridden] + localized
        logger.info(f"Locale '{selected}' overrides {len(overridden)} unit(s)")
        return merged, errors + localized_errors

    def build(self, root: Optional[Path] = None) -> ChallengeGraph:
        """
        Parse, validate and link the whole curriculum.

        Args:
            root: Content root; defaults to ``config.content_dir``.

        Returns:
            The immutable challenge graph.

        Raises:
            CurriculumBuildError: With every parse and validation error found,
                plus the structural violations among the accepted records.
            GraphIntegrityError: With every structural violation found, when
                every record parsed and validated.
            CurriculumError: If the root holds no content at all.
        """
        root = Path(root) if root is not None else self.config.content_dir
        start = time.time()

        records, parse_errors = self.collect_records(root)
        if not records and not parse_errors:
            raise CurriculumError(f"No content found under {root}", file_path=str(root))

        nodes, validation_errors = self.validator.validate_many(records)

        errors: list[CurriculumError] = [*parse_errors, *validation_errors]
        rejected = self._rejected_ids(records, nodes, parse_errors)
        try:
            graph = self.builder.build(nodes, rejected_ids=rejected)
        except GraphIntegrityError as e:
            if not errors:
                raise
            errors.append(e)

        if errors:
            logger.error(
                f"Curriculum build failed: {len(parse_errors)} parse error(s), "
                f"{len(validation_errors)} validation error(s), "
                f"{len(errors) - len(parse_errors) - len(validation_errors)} graph error(s)"
            )
            raise CurriculumBuildError(errors)

        stats = graph.stats()
        logger.info(
            f"Built curriculum from {root} in {time.time() - start:.2f}s: "
            f"{stats['certifications']} certification(s), {stats['superblocks']} superblock(s), "
            f"{stats['blocks']} block(s), {stats['challenges']} challenge(s)"
        )
        return graph

    @staticmethod
    def _rejected_ids(records: list[ParsedRecord], nodes: list, parse_errors: list[ParseError]) -> set[str]:
        """Ids the graph should treat as declared although their records failed.

        Unparseable files have no readable id; their file stem stands in for it.
        """
        accepted = {node.id for node in nodes}
        rejected = {r.record_id for r in records if r.record_id and r.record_id not in accepted}
        rejected.update(Path(e.identifier).stem for e in parse_errors)
        return rejected - accepted


def load_graph(config: Optional[KataConfig] = None, root: Optional[Path] = None) -> ChallengeGraph:
    """Build the challenge graph with a default loader."""
    return CurriculumLoader(config).build(root)
