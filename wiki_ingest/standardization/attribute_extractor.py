"""
Attribute Extractor - Pattern-based damage attribute tagging of free text
"""

import html
import re
from typing import Dict, List, Optional, Tuple

import structlog

from wiki_ingest.core.config import settings
from wiki_ingest.models.record import ExtractedAttributes, MatchedPattern
from .attribute_patterns import (
    ATTRIBUTE_PATTERNS,
    CASE_INSENSITIVE_LANGUAGES,
    get_patterns,
    normalize_language,
    supported_languages,
)

logger = structlog.get_logger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")

BASE_CONFIDENCE = 0.7
MATCH_CONFIDENCE_STEP = 0.1
MATCH_CONFIDENCE_CAP = 0.3
MULTI_ATTRIBUTE_BONUS = 0.1


def normalize_text(text: str) -> str:
    """Strip markup and entities, collapse whitespace"""
    stripped = _TAG_RE.sub(" ", text)
    stripped = html.unescape(stripped)
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def find_occurrences(haystack: str, needle: str) -> List[int]:
    """Start offsets of every non-overlapping occurrence"""
    positions = []
    start = haystack.find(needle)
    while start != -1:
        positions.append(start)
        start = haystack.find(needle, start + len(needle))
    return positions


def calculate_confidence(attribute_count: int, total_matches: int) -> float:
    if attribute_count == 0:
        return 0.0
    confidence = BASE_CONFIDENCE + min(total_matches * MATCH_CONFIDENCE_STEP, MATCH_CONFIDENCE_CAP)
    if attribute_count > 1:
        confidence += MULTI_ATTRIBUTE_BONUS
    return round(min(confidence, 1.0), 4)


class AttributeExtractor:
    """Tags text with damage attributes using the static pattern table"""

    def __init__(
        self,
        language_priority: Optional[List[str]] = None,
        max_text_length: Optional[int] = None
    ):
        self.language_priority = [
            normalize_language(lang) for lang in (language_priority or settings.LANGUAGE_PRIORITY)
        ]
        self.max_text_length = max_text_length or settings.MAX_TEXT_LENGTH

    def _prepare(self, text: Optional[str], language: Optional[str]) -> Tuple[str, Optional[str], List[str]]:
        """Normalized text, language key and warnings"""
        warnings: List[str] = []
        lang = normalize_language(language)

        if lang not in ATTRIBUTE_PATTERNS:
            warnings.append(
                f"Unsupported language: {language!r} (supported: {', '.join(supported_languages())})"
            )
            return "", None, warnings

        if text is None or not str(text).strip():
            warnings.append("Empty text: no attributes extracted")
            return "", lang, warnings

        normalized = normalize_text(str(text))
        if len(normalized) > self.max_text_length:
            warnings.append(
                f"Text truncated from {len(normalized)} to {self.max_text_length} characters"
            )
            normalized = normalized[:self.max_text_length]

        if lang in CASE_INSENSITIVE_LANGUAGES:
            normalized = normalized.lower()

        return normalized, lang, warnings

    def extract(self, text: Optional[str], language: Optional[str]) -> ExtractedAttributes:
        """
        Extract damage attribute tags from text

        Args:
            text: Free text, may contain markup
            language: Language tag ('ja', 'en', 'ja-jp', ...)

        Returns:
            Deduplicated tags with confidence, matched patterns and warnings.
            Never raises on bad input; problems are reported as warnings.
        """
        normalized, lang, warnings = self._prepare(text, language)
        if not normalized or lang is None:
            for warning in warnings:
                logger.warning("Attribute extraction skipped", language=language, reason=warning)
            return ExtractedAttributes(language=lang, warnings=warnings)

        attributes: List[str] = []
        matched: List[MatchedPattern] = []
        total_matches = 0

        for category, patterns in ATTRIBUTE_PATTERNS[lang].items():
            category_hit = False
            for pattern in patterns:
                positions = find_occurrences(normalized, pattern)
                if not positions:
                    continue
                category_hit = True
                total_matches += len(positions)
                matched.append(MatchedPattern(
                    pattern=pattern,
                    category=category,
                    occurrence_count=len(positions),
                    positions=positions
                ))
            if category_hit and category not in attributes:
                attributes.append(category)

        confidence = calculate_confidence(len(attributes), total_matches)

        for warning in warnings:
            logger.warning("Attribute extraction warning", language=lang, reason=warning)
        logger.debug("Attributes extracted",
                     language=lang,
                     attributes=attributes,
                     total_matches=total_matches,
                     confidence=confidence)

        return ExtractedAttributes(
            attributes=attributes,
            confidence=confidence,
            matched_patterns=matched,
            language=lang,
            warnings=warnings
        )

    def extract_from_multi_lang(self, texts: Dict[str, Optional[str]]) -> ExtractedAttributes:
        """
        Extract from the first language, in priority order, that has usable text

        Languages are never merged: once a language with non-blank text is
        found, the others are ignored even if it yields no tags.
        """
        by_language = {normalize_language(lang): text for lang, text in (texts or {}).items()}

        for lang in self.language_priority:
            text = by_language.get(lang)
            if text is not None and str(text).strip():
                logger.debug("Language selected for attribute extraction", language=lang)
                return self.extract(text, lang)

        warning = (
            "No usable text in any supported language "
            f"(priority: {', '.join(lang for lang in self.language_priority if lang)})"
        )
        logger.warning("Attribute extraction skipped", reason=warning)
        return ExtractedAttributes(warnings=[warning])

    def get_match_details(self, text: Optional[str], category: str, language: str) -> Dict[str, object]:
        """Match count, sorted positions and matched patterns for one category"""
        normalized, lang, _ = self._prepare(text, language)
        details: Dict[str, object] = {"match_count": 0, "positions": [], "matched_patterns": []}
        if not normalized or lang is None:
            return details

        positions: List[int] = []
        patterns_hit: List[str] = []
        for pattern in get_patterns(lang).get(category, []):
            found = find_occurrences(normalized, pattern)
            if found:
                positions.extend(found)
                patterns_hit.append(pattern)

        details["match_count"] = len(positions)
        details["positions"] = sorted(positions)
        details["matched_patterns"] = patterns_hit
        return details
