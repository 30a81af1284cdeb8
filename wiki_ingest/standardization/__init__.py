"""
Field Standardization Package

Label mapping, ascension stat processing, entity list parsing and
pattern-based attribute extraction for raw wiki payloads.
"""

from .attribute_extractor import AttributeExtractor
from .entry_parser import apply_filter, load_entries, parse_entries
from .field_mapper import (
    AttackType,
    Element,
    FieldMapper,
    MappingCategory,
    Rarity,
    Specialty,
    Stat,
)
from .stats_processor import AGENT_LEVELS, W_ENGINE_LEVELS, AscensionProcessor

__all__ = [
    "AttributeExtractor",
    "FieldMapper",
    "MappingCategory",
    "AttackType",
    "Element",
    "Rarity",
    "Specialty",
    "Stat",
    "AscensionProcessor",
    "AGENT_LEVELS",
    "W_ENGINE_LEVELS",
    "apply_filter",
    "load_entries",
    "parse_entries",
]
