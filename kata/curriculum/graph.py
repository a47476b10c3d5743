"""
Challenge graph - assembles validated records into the curriculum tree.

Nodes only refer to each other by id; the graph keeps one table per level
plus read-only indexes so lookups are O(1) and the snapshot can be shared by
concurrent sandbox runs without locking.

Usage:
    graph = GraphBuilder().build(nodes)
    challenge = graph.get_challenge("add-two-numbers")
    ordered_ids = graph.list_block("basic-python")
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from kata.curriculum.validator import GraphNode
from kata.exceptions import BlockNotFoundError, ChallengeNotFoundError, GraphIntegrityError
from kata.models import Block, Certification, Challenge, SuperBlock

logger = logging.getLogger(__name__)

GRAPH_FORMAT_VERSION = 1


@dataclass(frozen=True)
class ChallengeGraph:
    """Immutable snapshot of a built curriculum.

    Equality compares the ordered node tuples, so two builds of the same
    content compare equal.
    """

    certifications: tuple[Certification, ...] = ()
    superblocks: tuple[SuperBlock, ...] = ()
    blocks: tuple[Block, ...] = ()
    challenges: tuple[Challenge, ...] = ()

    _challenges: Mapping[str, Challenge] = field(init=False, repr=False, compare=False)
    _blocks: Mapping[str, Block] = field(init=False, repr=False, compare=False)
    _superblocks: Mapping[str, SuperBlock] = field(init=False, repr=False, compare=False)
    _certifications: Mapping[str, Certification] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Build lookup indexes."""
        object.__setattr__(self, "_challenges", MappingProxyType({c.id: c for c in self.challenges}))
        object.__setattr__(self, "_blocks", MappingProxyType({b.id: b for b in self.blocks}))
        object.__setattr__(self, "_superblocks", MappingProxyType({s.id: s for s in self.superblocks}))
        object.__setattr__(
            self, "_certifications", MappingProxyType({c.id: c for c in self.certifications})
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_challenge(self, challenge_id: str) -> Challenge:
        """
        Look up a challenge by id.

        Raises:
            ChallengeNotFoundError: If the challenge doesn't exist.
        """
        try:
            return self._challenges[challenge_id]
        except KeyError:
            raise ChallengeNotFoundError(challenge_id)

    def has_challenge(self, challenge_id: str) -> bool:
        return challenge_id in self._challenges

    def list_block(self, block_id: str) -> tuple[str, ...]:
        """
        Get the ordered challenge ids of a block.

        Raises:
            BlockNotFoundError: If the block doesn't exist.
        """
        return self.get_block(block_id).challenge_ids

    def get_block(self, block_id: str) -> Block:
        try:
            return self._blocks[block_id]
        except KeyError:
            raise BlockNotFoundError(block_id)

    def get_superblock(self, superblock_id: str) -> SuperBlock:
        try:
            return self._superblocks[superblock_id]
        except KeyError:
            raise BlockNotFoundError(superblock_id, kind="superblock")

    def get_certification(self, certification_id: str) -> Certification:
        try:
            return self._certifications[certification_id]
        except KeyError:
            raise BlockNotFoundError(certification_id, kind="certification")

    def challenges_in_order(self) -> tuple[Challenge, ...]:
        """All challenges in curriculum order (certification, superblock, block)."""
        return self.challenges

    def prerequisites_order(self, challenge_id: str) -> list[str]:
        """
        Get every transitive prerequisite of a challenge, dependencies first.

        Args:
            challenge_id: The challenge to resolve.

        Returns:
            Challenge ids in an order where each id follows its own prerequisites.
        """
        root = self.get_challenge(challenge_id)
        ordered: list[str] = []
        visited: set[str] = {root.id}
        # Explicit stack: prerequisite chains can be deeper than the recursion limit
        stack = [(root, iter(sorted(root.prerequisites)))]
        while stack:
            challenge, deps = stack[-1]
            for dep in deps:
                if dep not in visited:
                    visited.add(dep)
                    child = self._challenges[dep]
                    stack.append((child, iter(sorted(child.prerequisites))))
                    break
            else:
                stack.pop()
                if stack:
                    ordered.append(challenge.id)
        return ordered

    def stats(self) -> dict:
        return {
            "certifications": len(self.certifications),
            "superblocks": len(self.superblocks),
            "blocks": len(self.blocks),
            "challenges": len(self.challenges),
            "tests": sum(len(c.tests) for c in self.challenges),
        }

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "version": GRAPH_FORMAT_VERSION,
            "certifications": [c.to_dict() for c in self.certifications],
            "superblocks": [s.to_dict() for s in self.superblocks],
            "blocks": [b.to_dict() for b in self.blocks],
            "challenges": [c.to_dict() for c in self.challenges],
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> ChallengeGraph:
        """Rebuild a graph, re-checking its integrity."""
        nodes: list[GraphNode] = []
        nodes.extend(Certification.from_dict(c) for c in data.get("certifications", []))
        nodes.extend(SuperBlock.from_dict(s) for s in data.get("superblocks", []))
        nodes.extend(Block.from_dict(b) for b in data.get("blocks", []))
        nodes.extend(Challenge.from_dict(c) for c in data.get("challenges", []))
        return GraphBuilder().build(nodes)

    def save(self, path: Path) -> None:
        """Persist the graph as JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)
        logger.info(f"Saved challenge graph to {path}")

    @classmethod
    def load(cls, path: Path) -> ChallengeGraph:
        """Load a graph persisted with ``save``."""
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


class GraphBuilder:
    """Build a ChallengeGraph from validated nodes, reporting every violation."""

    def build(self, nodes: Iterable[GraphNode], rejected_ids: Iterable[str] = ()) -> ChallengeGraph:
        """
        Assemble the hierarchy and resolve references.

        Args:
            nodes: Validated Challenge, Block, SuperBlock and Certification nodes.
            rejected_ids: Ids of records that failed parsing or validation.
                References to them are not reported as dangling, and orphan
                challenges are not reported while any record was rejected.

        Returns:
            The immutable graph snapshot.

        Raises:
            GraphIntegrityError: Listing every duplicate id, dangling
                reference, multiply-claimed child, orphan challenge and
                prerequisite cycle found.
        """
        violations: list[str] = []
        rejected = frozenset(rejected_ids)

        certifications: dict[str, Certification] = {}
        superblocks: dict[str, SuperBlock] = {}
        blocks: dict[str, Block] = {}
        challenges: dict[str, Challenge] = {}
        tables = {
            Certification: (certifications, "certification"),
            SuperBlock: (superblocks, "superblock"),
            Block: (blocks, "block"),
            Challenge: (challenges, "challenge"),
        }

        # Arena: one table per level, ids unique across all of them
        declared: dict[str, str] = {}
        for node in nodes:
            table, kind = tables[type(node)]
            if node.id in declared:
                violations.append(f"duplicate id '{node.id}' (declared as {declared[node.id]} and {kind})")
                continue
            declared[node.id] = kind
            table[node.id] = node

        sb_parent = self._claim(
            "certification", certifications, lambda c: c.superblock_ids, "superblock", superblocks, violations, rejected
        )
        block_parent = self._claim(
            "superblock", superblocks, lambda s: s.block_ids, "block", blocks, violations, rejected
        )
        challenge_parent = self._claim(
            "block", blocks, lambda b: b.challenge_ids, "challenge", challenges, violations, rejected
        )

        for challenge_id in challenges:
            if challenge_id not in challenge_parent and not rejected:
                violations.append(f"challenge '{challenge_id}' does not belong to any block")

        for challenge in challenges.values():
            for dep in sorted(challenge.prerequisites):
                if dep not in challenges and dep not in rejected:
                    violations.append(f"challenge '{challenge.id}' requires unknown challenge '{dep}'")
        for cycle in self._find_cycles(challenges):
            violations.append(f"prerequisite cycle: {' -> '.join(cycle)}")

        if violations:
            raise GraphIntegrityError(violations)

        graph = self._assemble(
            certifications, superblocks, blocks, challenges, sb_parent, block_parent, challenge_parent
        )
        logger.debug(f"Built challenge graph: {graph.stats()}")
        return graph

    @staticmethod
    def _claim(parent_kind, parents, children_of, child_kind, children, violations, rejected=frozenset()) -> dict[str, str]:
        """Map each child id to its single parent, recording violations."""
        owner: dict[str, str] = {}
        claims: dict[str, list[str]] = defaultdict(list)
        for parent in parents.values():
            for child_id in children_of(parent):
                if child_id not in children:
                    if child_id in rejected:
                        continue
                    violations.append(
                        f"{parent_kind} '{parent.id}' references unknown {child_kind} '{child_id}'"
                    )
                    continue
                claims[child_id].append(parent.id)

        for child_id, claimants in claims.items():
            if len(claimants) > 1:
                violations.append(
                    f"{child_kind} '{child_id}' is listed {len(claimants)} times "
                    f"(by {parent_kind}s: {', '.join(claimants)})"
                )
            owner[child_id] = claimants[0]
        return owner

    @staticmethod
    def _find_cycles(challenges: dict[str, Challenge]) -> list[list[str]]:
        """Find prerequisite cycles, each reported once starting at its smallest id."""
        WHITE, GREY, BLACK = 0, 1, 2
        color = {cid: WHITE for cid in challenges}
        path: list[str] = []
        found: dict[tuple[str, ...], list[str]] = {}

        for start in sorted(challenges):
            if color[start] != WHITE:
                continue
            color[start] = GREY
            path.append(start)
            pending = [iter(sorted(challenges[start].prerequisites))]
            while pending:
                for dep in pending[-1]:
                    if dep not in challenges:
                        continue
                    if color[dep] == GREY:
                        cycle = path[path.index(dep):]
                        pivot = cycle.index(min(cycle))
                        rotated = cycle[pivot:] + cycle[:pivot]
                        found.setdefault(tuple(rotated), rotated + [rotated[0]])
                    elif color[dep] == WHITE:
                        color[dep] = GREY
                        path.append(dep)
                        pending.append(iter(sorted(challenges[dep].prerequisites)))
                        break
                else:
                    pending.pop()
                    color[path.pop()] = BLACK
        return [found[key] for key in sorted(found)]

    @staticmethod
    def _assemble(certifications, superblocks, blocks, challenges, sb_parent, block_parent, challenge_parent) -> ChallengeGraph:
        """Insert levels top-down so every node follows its parent.

        Ids of rejected records are skipped; the loader discards a graph
        built alongside rejected records.
        """
        ordered_sb: list[SuperBlock] = []
        ordered_blocks: list[Block] = []
        ordered_challenges: list[Challenge] = []

        def add_superblock(superblock: SuperBlock, parent: Optional[str]) -> None:
            ordered_sb.append(replace(superblock, certification=parent))
            for block_id in superblock.block_ids:
                if block_id in blocks:
                    add_block(blocks[block_id], superblock.id)

        def add_block(block: Block, parent: Optional[str]) -> None:
            ordered_blocks.append(replace(block, superblock=parent))
            for challenge_id in block.challenge_ids:
                if challenge_id in challenges:
                    ordered_challenges.append(replace(challenges[challenge_id], block=block.id))

        for certification in certifications.values():
            for sb_id in certification.superblock_ids:
                if sb_id in superblocks:
                    add_superblock(superblocks[sb_id], certification.id)
        for sb_id, superblock in superblocks.items():
            if sb_id not in sb_parent:
                add_superblock(superblock, None)
        for block_id, block in blocks.items():
            if block_id not in block_parent:
                add_block(block, None)

        return ChallengeGraph(
            certifications=tuple(certifications.values()),
            superblocks=tuple(ordered_sb),
            blocks=tuple(ordered_blocks),
            challenges=tuple(ordered_challenges),
        )
