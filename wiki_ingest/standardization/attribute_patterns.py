"""
Surface patterns for damage-attribute detection, per language
"""

from typing import Dict, List, Optional

# Category order here is the order tags are reported in
ATTRIBUTE_CATEGORIES: List[str] = ["physical", "fire", "ice", "electric", "ether"]

_JA_ELEMENT_NAMES: Dict[str, str] = {
    "physical": "物理",
    "fire": "炎",
    "ice": "氷",
    "electric": "電気",
    "ether": "エーテル",
}

_JA_SUFFIXES: List[str] = ["属性ダメージ", "属性の", "属性を与え", "属性で", "属性による"]

_EN_SUFFIXES: List[str] = [" damage", " dmg", " attribute"]


def _build_japanese() -> Dict[str, List[str]]:
    patterns = {
        category: [f"{name}{suffix}" for suffix in _JA_SUFFIXES]
        for category, name in _JA_ELEMENT_NAMES.items()
    }
    patterns["ether"].append("エーテル透徹ダメージ")
    return patterns


def _build_english() -> Dict[str, List[str]]:
    return {
        category: [f"{category}{suffix}" for suffix in _EN_SUFFIXES]
        for category in ATTRIBUTE_CATEGORIES
    }


ATTRIBUTE_PATTERNS: Dict[str, Dict[str, List[str]]] = {
    "ja": _build_japanese(),
    "en": _build_english(),
}

# Languages whose patterns are matched case-insensitively
CASE_INSENSITIVE_LANGUAGES = {"en"}


def normalize_language(language: Optional[str]) -> Optional[str]:
    """'ja-jp' -> 'ja', 'EN_us' -> 'en'"""
    if not language:
        return None
    return language.strip().lower().replace("_", "-").split("-")[0] or None


def supported_languages() -> List[str]:
    return list(ATTRIBUTE_PATTERNS.keys())


def get_patterns(language: str) -> Dict[str, List[str]]:
    """Patterns for a language tag, empty when unsupported"""
    return ATTRIBUTE_PATTERNS.get(normalize_language(language) or "", {})
