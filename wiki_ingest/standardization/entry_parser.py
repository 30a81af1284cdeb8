"""
Entity list parser

Reads markdown lists of the form::

    - [lycaon](https://wiki.hoyolab.com/pc/zzz/entry/28) - pageId: 28
"""

import re
from pathlib import Path
from typing import Iterable, List, Optional

import structlog

from wiki_ingest.core.config import EntityFilter
from wiki_ingest.core.exceptions import EntityListError
from wiki_ingest.models.record import EntityEntry

logger = structlog.get_logger(__name__)

ENTRY_PATTERN = re.compile(r"- \[([^\]]+)\]\(([^)]+)\) - pageId: (\d+)")


def parse_entries(content: str) -> List[EntityEntry]:
    """
    Extract entity entries from markdown content

    Raises:
        EntityListError: If no entry can be extracted
    """
    entries: List[EntityEntry] = []
    seen = set()

    for match in ENTRY_PATTERN.finditer(content or ""):
        entity_id, wiki_url, page_id = match.groups()
        entity_id = entity_id.strip()
        if not entity_id:
            logger.warning("Skipping entry without id", line=match.group(0))
            continue
        if entity_id in seen:
            logger.warning("Skipping duplicate entry", entity_id=entity_id)
            continue
        seen.add(entity_id)
        entries.append(EntityEntry(id=entity_id, page_id=int(page_id), wiki_url=wiki_url.strip()))

    if not entries:
        raise EntityListError(
            "No entity entries found in list",
            error_code="ENTITY_LIST_EMPTY"
        )

    logger.info("Entity list parsed",
                entries=len(entries),
                page_id_range=[min(e.page_id for e in entries), max(e.page_id for e in entries)])
    return entries


def load_entries(path: str) -> List[EntityEntry]:
    """
    Read and parse an entity list file

    Raises:
        EntityListError: If the file cannot be read or holds no entries
    """
    list_file = Path(path)
    try:
        content = list_file.read_text(encoding="utf-8")
    except OSError as e:
        raise EntityListError(
            f"Failed to read entity list: {path}",
            error_code="ENTITY_LIST_UNREADABLE",
            details={"path": path, "error": str(e)}
        ) from e
    return parse_entries(content)


def apply_filter(entries: Iterable[EntityEntry], entity_filter: Optional[EntityFilter]) -> List[EntityEntry]:
    """Apply include/exclude lists and the entity cap, keeping list order"""
    selected = list(entries)
    if entity_filter is None:
        return selected

    if entity_filter.include_ids:
        wanted = set(entity_filter.include_ids)
        selected = [e for e in selected if e.id in wanted]
    if entity_filter.exclude_ids:
        unwanted = set(entity_filter.exclude_ids)
        selected = [e for e in selected if e.id not in unwanted]
    if entity_filter.max_entities is not None:
        selected = selected[:entity_filter.max_entities]

    logger.info("Entity filter applied", selected=len(selected))
    return selected
