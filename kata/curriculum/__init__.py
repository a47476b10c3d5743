"""
Kata Curriculum Module

Handles content parsing, schema validation and challenge graph building.
"""

from kata.curriculum.graph import ChallengeGraph, GraphBuilder
from kata.curriculum.loader import CurriculumLoader, load_graph
from kata.curriculum.parser import parse_record, parse_unit, unit_to_record
from kata.curriculum.validator import SchemaValidator

__all__ = [
    # Parser
    "parse_unit",
    "unit_to_record",
    "parse_record",
    # Validator
    "SchemaValidator",
    # Graph
    "ChallengeGraph",
    "GraphBuilder",
    # Loader
    "CurriculumLoader",
    "load_graph",
]
