"""
Ascension data → Attributes
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from wiki_ingest.core.exceptions import ParsingError, UnmappedValueError
from wiki_ingest.models.record import STAGE_COUNT, Attributes
from .field_mapper import FieldMapper, Stat

logger = structlog.get_logger(__name__)

AGENT_LEVELS: List[str] = ["1", "10", "20", "30", "40", "50", "60"]
W_ENGINE_LEVELS: List[str] = ["0", "10", "20", "30", "40", "50", "60"]

PROGRESSION_STATS = (Stat.HP, Stat.ATK, Stat.DEF)
FIXED_STATS = (
    Stat.IMPACT,
    Stat.CRIT_RATE,
    Stat.CRIT_DMG,
    Stat.ANOMALY_MASTERY,
    Stat.ANOMALY_PROFICIENCY,
    Stat.PEN_RATIO,
    Stat.ENERGY,
)

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")

Number = Union[int, float]


def parse_stat_value(value: Any) -> Number:
    """'1,234' -> 1234, '5%' -> 5, '2.4' -> 2.4, '-' -> 0"""
    if value is None:
        return 0
    if isinstance(value, (int, float)):
        return value
    text = str(value).replace(",", "").replace("%", "").strip()
    if text in ("", "-"):
        return 0
    match = _NUMBER_RE.search(text)
    if not match:
        return 0
    number = match.group(0)
    return float(number) if "." in number else int(number)


class AscensionProcessor:
    """Turns an ascension component into progression arrays and fixed stats"""

    def __init__(self, field_mapper: Optional[FieldMapper] = None):
        self.field_mapper = field_mapper or FieldMapper()

    def _stat_for(self, key: Any) -> Optional[Stat]:
        if not isinstance(key, str):
            return None
        try:
            return self.field_mapper.map_stat_label(key)
        except UnmappedValueError:
            return None

    @staticmethod
    def is_well_formed(data: Any) -> bool:
        """True when ``data`` carries a ``list`` array"""
        return isinstance(data, dict) and isinstance(data.get("list"), list)

    def _level_index(self, data: Any, strict: bool) -> Dict[str, List[Dict[str, Any]]]:
        if not self.is_well_formed(data):
            if strict:
                raise ParsingError(
                    "Ascension data has no list array",
                    error_code="ASCENSION_STRUCTURE",
                )
            # Same as an empty list: every stage becomes zero
            logger.warning("Ascension data has no list array, filling zeros",
                           data_type=type(data).__name__)
            return {}
        index: Dict[str, List[Dict[str, Any]]] = {}
        for level in data["list"]:
            if isinstance(level, dict) and "key" in level:
                combat = level.get("combatList")
                index[str(level["key"])] = combat if isinstance(combat, list) else []
        return index

    def _after_values(self, combat_list: List[Dict[str, Any]]) -> Dict[Stat, Any]:
        """Stat → "after" value (values[1]) for one level"""
        values: Dict[Stat, Any] = {}
        for entry in combat_list:
            if not isinstance(entry, dict):
                continue
            stat = self._stat_for(entry.get("key"))
            raw = entry.get("values")
            if stat is None or not isinstance(raw, list) or len(raw) < 2:
                continue
            values[stat] = raw[1]
        return values

    def process(
        self,
        data: Any,
        levels: Sequence[str] = AGENT_LEVELS,
        required_stats: Sequence[Stat] = PROGRESSION_STATS,
        strict: bool = True
    ) -> Attributes:
        """
        Build Attributes from ``{"list": [{"key": level, "combatList": [...]}]}``

        Args:
            data: Parsed ascension component
            levels: Level keys, one per stage, in order
            required_stats: Progression stats every level must carry in strict mode
            strict: Raise on a malformed structure or a missing level/stat instead of filling zero

        Raises:
            ParsingError: (strict) If the structure is unusable or a level/stat is missing
        """
        if len(levels) != STAGE_COUNT:
            raise ParsingError(f"Expected {STAGE_COUNT} levels, got {len(levels)}")

        index = self._level_index(data, strict)
        progression: Dict[Stat, List[Number]] = {stat: [] for stat in PROGRESSION_STATS}

        for level in levels:
            if level not in index:
                if strict:
                    raise ParsingError(
                        f"Ascension level {level} is missing",
                        error_code="ASCENSION_LEVEL_MISSING",
                        details={"level": level}
                    )
                for stat in PROGRESSION_STATS:
                    progression[stat].append(0)
                continue

            level_values = self._after_values(index[level])
            for stat in PROGRESSION_STATS:
                if stat not in level_values and strict and stat in required_stats:
                    raise ParsingError(
                        f"{stat.value} missing at ascension level {level}",
                        error_code="ASCENSION_STAT_MISSING",
                        details={"level": level, "stat": stat.value}
                    )
                progression[stat].append(parse_stat_value(level_values.get(stat)))

        fixed = self._after_values(index.get(levels[0], []))
        fixed_values = {stat.value: parse_stat_value(fixed.get(stat)) for stat in FIXED_STATS}

        # Stats a kind never carries stay empty rather than all-zero
        arrays = {
            stat: values if (stat in required_stats or any(values)) else []
            for stat, values in progression.items()
        }

        return Attributes(
            hp=arrays[Stat.HP],
            atk=arrays[Stat.ATK],
            def_=arrays[Stat.DEF],
            **fixed_values
        )
