"""
Entity kinds known to the pipeline
"""

from typing import Dict, Type

from wiki_ingest.core.exceptions import ConfigurationError
from wiki_ingest.extraction.base_extractor import EntityPlugin
from .attack_type_fallback import AttackTypeFallbackService
from .character import CharacterPlugin
from .drive_disc import DriverDiscPlugin
from .weapon import WeaponPlugin

PLUGINS: Dict[str, Type[EntityPlugin]] = {
    CharacterPlugin.kind: CharacterPlugin,
    WeaponPlugin.kind: WeaponPlugin,
    DriverDiscPlugin.kind: DriverDiscPlugin,
}


def get_plugin(kind: str, **kwargs) -> EntityPlugin:
    """Instantiate the plug-in for ``kind`` ("character", "weapon" or "disc")"""
    plugin_class = PLUGINS.get(kind)
    if plugin_class is None:
        raise ConfigurationError(
            f"Unknown entity kind: {kind}",
            error_code="UNKNOWN_ENTITY_KIND",
            details={"kind": kind, "known": sorted(PLUGINS)}
        )
    return plugin_class(**kwargs)


__all__ = [
    "AttackTypeFallbackService",
    "CharacterPlugin",
    "DriverDiscPlugin",
    "WeaponPlugin",
    "PLUGINS",
    "get_plugin",
]
