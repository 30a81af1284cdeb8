"""
Field Mapper - Maps raw wiki labels onto closed internal enums
"""

import html
import re
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Type, TypeVar

import structlog
import yaml
from fuzzywuzzy import fuzz, process

from wiki_ingest.core.config import settings
from wiki_ingest.core.exceptions import ConfigurationError, UnmappedValueError

logger = structlog.get_logger(__name__)

E = TypeVar("E", bound=Enum)

_TAG_RE = re.compile(r"<[^>]+>")


class Specialty(str, Enum):
    """Agent specialty"""
    ATTACK = "attack"
    STUN = "stun"
    ANOMALY = "anomaly"
    SUPPORT = "support"
    DEFENSE = "defense"
    RUPTURE = "rupture"


class Element(str, Enum):
    """Damage attribute"""
    ETHER = "ether"
    FIRE = "fire"
    ICE = "ice"
    PHYSICAL = "physical"
    ELECTRIC = "electric"
    FROST = "frostAttribute"
    AURIC_INK = "auricInk"


class Rarity(str, Enum):
    S = "S"
    A = "A"
    B = "B"


class Stat(str, Enum):
    """Combat stat keys as stored on Attributes"""
    HP = "hp"
    ATK = "atk"
    DEF = "def"
    IMPACT = "impact"
    CRIT_RATE = "critRate"
    CRIT_DMG = "critDmg"
    ANOMALY_MASTERY = "anomalyMastery"
    ANOMALY_PROFICIENCY = "anomalyProficiency"
    PEN_RATIO = "penRatio"
    ENERGY = "energy"


class AttackType(str, Enum):
    SLASH = "slash"
    PIERCE = "pierce"
    STRIKE = "strike"


class MappingCategory(str, Enum):
    """Lookup table families"""
    SPECIALTY = "specialty"
    ELEMENT = "element"
    RARITY = "rarity"
    STAT = "stat"
    ATTACK_TYPE = "attack_type"


CATEGORY_ENUMS: Dict[MappingCategory, Type[Enum]] = {
    MappingCategory.SPECIALTY: Specialty,
    MappingCategory.ELEMENT: Element,
    MappingCategory.RARITY: Rarity,
    MappingCategory.STAT: Stat,
    MappingCategory.ATTACK_TYPE: AttackType,
}

DEFAULT_LABELS: Dict[MappingCategory, Dict[str, Enum]] = {
    MappingCategory.SPECIALTY: {
        "強攻": Specialty.ATTACK,
        "撃破": Specialty.STUN,
        "異常": Specialty.ANOMALY,
        "支援": Specialty.SUPPORT,
        "防護": Specialty.DEFENSE,
        "命破": Specialty.RUPTURE,
        "Attack": Specialty.ATTACK,
        "Stun": Specialty.STUN,
        "Anomaly": Specialty.ANOMALY,
        "Support": Specialty.SUPPORT,
        "Defense": Specialty.DEFENSE,
        "Rupture": Specialty.RUPTURE,
    },
    MappingCategory.ELEMENT: {
        "氷属性": Element.ICE,
        "炎属性": Element.FIRE,
        "電気属性": Element.ELECTRIC,
        "物理属性": Element.PHYSICAL,
        "エーテル属性": Element.ETHER,
        "霜烈属性": Element.FROST,
        "玄墨属性": Element.AURIC_INK,
        "Ice": Element.ICE,
        "Fire": Element.FIRE,
        "Electric": Element.ELECTRIC,
        "Physical": Element.PHYSICAL,
        "Ether": Element.ETHER,
        "Frost": Element.FROST,
        "Auric Ink": Element.AURIC_INK,
    },
    MappingCategory.RARITY: {
        "S": Rarity.S,
        "A": Rarity.A,
        "B": Rarity.B,
    },
    MappingCategory.STAT: {
        "HP": Stat.HP,
        "攻撃力": Stat.ATK,
        "防御力": Stat.DEF,
        "衝撃力": Stat.IMPACT,
        "会心率": Stat.CRIT_RATE,
        "会心ダメージ": Stat.CRIT_DMG,
        "異常マスタリー": Stat.ANOMALY_MASTERY,
        "異常掌握": Stat.ANOMALY_PROFICIENCY,
        "貫通率": Stat.PEN_RATIO,
        "エネルギー自動回復": Stat.ENERGY,
        "ATK": Stat.ATK,
        "DEF": Stat.DEF,
        "Impact": Stat.IMPACT,
        "CRIT Rate": Stat.CRIT_RATE,
        "CRIT DMG": Stat.CRIT_DMG,
        "Anomaly Mastery": Stat.ANOMALY_MASTERY,
        "Anomaly Proficiency": Stat.ANOMALY_PROFICIENCY,
        "PEN Ratio": Stat.PEN_RATIO,
        "Energy Regen": Stat.ENERGY,
    },
    MappingCategory.ATTACK_TYPE: {
        "打撃": AttackType.STRIKE,
        "斬撃": AttackType.SLASH,
        "刺突": AttackType.PIERCE,
        "Strike": AttackType.STRIKE,
        "Slash": AttackType.SLASH,
        "Pierce": AttackType.PIERCE,
    },
}

# Composite elements count as their base element as well
ELEMENT_TAGS: Dict[Element, List[Element]] = {
    Element.FROST: [Element.ICE, Element.FROST],
    Element.AURIC_INK: [Element.ETHER, Element.AURIC_INK],
}

STAT_PREFIXES = ("基礎", "上級", "Base ", "Advanced ")


def clean_label(raw_label: str) -> str:
    """Strip markup and surrounding whitespace from a wiki label"""
    text = _TAG_RE.sub("", raw_label)
    text = html.unescape(text)
    return text.replace(" ", " ").strip()


class FieldMappingConfig:
    """Optional YAML file with additional label aliases per category"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path if config_path is not None else settings.FIELD_MAPPING_CONFIG_PATH
        self.config_data: Dict[str, Dict[str, str]] = {}
        self._load_config()

    def _load_config(self):
        """Load label aliases from YAML file"""
        if not self.config_path:
            return

        config_file = Path(self.config_path)
        if not config_file.exists():
            logger.warning("Field mapping config not found", path=self.config_path)
            return

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Field mapping config is not valid YAML: {self.config_path}",
                error_code="FIELD_MAPPING_PARSE_ERROR",
                details={"error": str(e)}
            ) from e

        self.config_data = loaded.get("labels", {}) or {}
        logger.info("Field mapping config loaded", path=self.config_path)

    def get_aliases(self, category: MappingCategory) -> Dict[str, str]:
        """Label → enum value aliases for one category"""
        return self.config_data.get(category.value, {}) or {}


class FieldMapper:
    """Maps raw labels to typed enum members, one closed table per category"""

    def __init__(
        self,
        config_path: Optional[str] = None,
        fuzzy_threshold: Optional[int] = None
    ):
        self.config = FieldMappingConfig(config_path)
        self.fuzzy_threshold = fuzzy_threshold if fuzzy_threshold is not None else settings.FUZZY_MATCH_THRESHOLD
        self.mapping_cache: Dict[MappingCategory, Dict[str, Enum]] = {}
        self._build_mapping_cache()

        logger.debug("Field mapper initialized",
                     categories=[c.value for c in self.mapping_cache])

    def _build_mapping_cache(self):
        """Merge built-in labels with configured aliases"""
        for category, labels in DEFAULT_LABELS.items():
            table = dict(labels)
            enum_type = CATEGORY_ENUMS[category]

            for alias, enum_value in self.config.get_aliases(category).items():
                try:
                    table[str(alias)] = enum_type(enum_value)
                except ValueError as e:
                    raise ConfigurationError(
                        f"Alias {alias!r} maps to unknown {category.value} value {enum_value!r}",
                        error_code="FIELD_MAPPING_INVALID",
                        details={"category": category.value, "alias": alias, "value": enum_value}
                    ) from e

            self.mapping_cache[category] = table

    def map_enum(self, raw_label: str, category: MappingCategory) -> Enum:
        """
        Map a raw label to its enum member

        Args:
            raw_label: Label as found in the payload (may carry markup)
            category: Lookup table to use

        Returns:
            Enum member of the category's type

        Raises:
            UnmappedValueError: If the label is unknown
        """
        table = self.mapping_cache[category]
        label = clean_label(raw_label or "")

        if label in table:
            return table[label]

        # Enum values themselves are accepted ("fire", "S", "critRate")
        enum_type = CATEGORY_ENUMS[category]
        for member in enum_type:
            if member.value == label:
                return member

        raise UnmappedValueError(
            category=category.value,
            raw_label=raw_label,
            suggestion=self._suggest_label(label, category)
        )

    def map_with_prefix_strip(
        self,
        raw_label: str,
        prefix: str,
        category: MappingCategory = MappingCategory.STAT
    ) -> Enum:
        """Strip a qualifying prefix (e.g. 基礎 in 基礎攻撃力) before lookup"""
        label = clean_label(raw_label or "")
        if prefix and label.startswith(prefix):
            label = label[len(prefix):].strip()
        return self.map_enum(label, category)

    def map_stat_label(self, raw_label: str) -> Enum:
        """Map a stat label that may carry any known base/advanced prefix"""
        label = clean_label(raw_label or "")
        for prefix in STAT_PREFIXES:
            if label.startswith(prefix):
                return self.map_with_prefix_strip(label, prefix, MappingCategory.STAT)
        return self.map_enum(label, MappingCategory.STAT)

    def map_or_default(
        self,
        raw_label: Optional[str],
        category: MappingCategory,
        default: Optional[E] = None
    ) -> Optional[E]:
        """Map a label, logging and returning ``default`` when it is missing or unknown"""
        if raw_label is None or not clean_label(raw_label):
            return default
        try:
            return self.map_enum(raw_label, category)
        except UnmappedValueError as e:
            logger.warning("Unmapped value replaced with default",
                           category=category.value,
                           raw_label=raw_label,
                           suggestion=e.suggestion,
                           default=default.value if default is not None else None)
            return default

    def map_element_tags(self, raw_label: str) -> List[Element]:
        """Element tags for a stats label; composite elements expand to their base element"""
        element = self.map_enum(raw_label, MappingCategory.ELEMENT)
        return list(ELEMENT_TAGS.get(element, [element]))

    def known_labels(self, category: MappingCategory) -> List[str]:
        return list(self.mapping_cache[category].keys())

    def _suggest_label(self, label: str, category: MappingCategory) -> Optional[str]:
        """Closest known label by fuzzy score, if it clears the threshold"""
        choices = self.known_labels(category)
        if not label or not choices:
            return None

        best_match = process.extractOne(label, choices, scorer=fuzz.ratio)
        if best_match and best_match[1] >= self.fuzzy_threshold:
            logger.debug("Fuzzy suggestion found",
                         category=category.value,
                         label=label,
                         suggestion=best_match[0],
                         score=best_match[1])
            return best_match[0]
        return None
