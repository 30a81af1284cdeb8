import json
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from wiki_ingest.core.exceptions import NotFoundError
from wiki_ingest.extraction.batch_processor import BatchPipeline, BatchProcessorConfig
from wiki_ingest.entities.attack_type_fallback import AttackTypeFallbackService
from wiki_ingest.entities.character import CharacterPlugin
from wiki_ingest.entities.drive_disc import DriverDiscPlugin
from wiki_ingest.entities.weapon import WeaponPlugin
from wiki_ingest.models.payload import RawPayload
from wiki_ingest.models.record import EntityEntry
from wiki_ingest.standardization.stats_processor import AGENT_LEVELS, W_ENGINE_LEVELS


def make_agent_ascension(levels: List[str] = AGENT_LEVELS) -> str:
    """Ascension component data as the API sends it (a JSON string)"""
    items = []
    for i, level in enumerate(levels):
        items.append({
            "key": level,
            "combatList": [
                {"key": "HP", "values": ["-", str(600 + i * 100)]},
                {"key": "攻撃力", "values": ["-", str(90 + i * 10)]},
                {"key": "防御力", "values": ["-", str(50 + i * 5)]},
                {"key": "衝撃力", "values": ["-", "119"]},
                {"key": "会心率", "values": ["-", "5%"]},
                {"key": "会心ダメージ", "values": ["-", "50%"]},
                {"key": "異常マスタリー", "values": ["-", "91"]},
                {"key": "異常掌握", "values": ["-", "90"]},
                {"key": "貫通率", "values": ["-", "0%"]},
                {"key": "エネルギー自動回復", "values": ["-", "1.2"]},
            ],
        })
    return json.dumps({"list": items}, ensure_ascii=False)


def make_weapon_ascension(levels: List[str] = W_ENGINE_LEVELS) -> str:
    items = []
    for i, level in enumerate(levels):
        items.append({
            "key": level,
            "combatList": [
                {"key": "基礎攻撃力", "values": ["-", str(48 + i * 50)]},
                {"key": "会心率", "values": ["-", "24%"]},
            ],
        })
    return json.dumps({"list": items}, ensure_ascii=False)


def character_document(
    name: str = "フォン・ライカン",
    page_id: str = "28",
    with_modules: bool = True,
    drop_filters: Optional[List[str]] = None,
    version: str = "Ver.1.0",
) -> Dict[str, Any]:
    filter_values = {
        "agent_specialties": {"values": ["撃破"]},
        "agent_stats": {"values": ["氷属性"]},
        "agent_rarity": {"values": ["S"]},
        "agent_faction": {"values": ["ヴィクトリア家政"]},
        "agent_attack_type": {"values": ["打撃"]},
    }
    for key in drop_filters or []:
        filter_values.pop(key, None)

    page: Dict[str, Any] = {"id": page_id, "name": name, "filter_values": filter_values}
    if with_modules:
        page["modules"] = [{
            "name": "ステータス",
            "components": [
                {"component_id": "ascension", "data": make_agent_ascension()},
                {"component_id": "baseInfo", "data": json.dumps(
                    {"list": [{"key": "実装バージョン", "values": [version]}]},
                    ensure_ascii=False
                )},
            ],
        }]
    return {"retcode": 0, "message": "OK", "data": {"page": page}}


def weapon_document(name: str = "鋼の肉球", page_id: str = "933") -> Dict[str, Any]:
    base_info = {"list": [
        {"key": "基礎ステータス", "values": ["基礎攻撃力"]},
        {"key": "上級ステータス", "values": ["会心率"]},
        {"key": "該当エージェント", "values": ["<p>フォン・ライカン</p>"]},
    ]}
    skill = {
        "skill_name": "<p>狩りの歓び</p>",
        "skill_desc": "<p>装備者の氷属性ダメージ+20%。</p>",
    }
    page = {
        "id": page_id,
        "name": name,
        "filter_values": {
            "w_engine_rarity": {"values": ["S"]},
            "filter_key_13": {"values": ["撃破"]},
        },
        "modules": [{
            "name": "基本情報",
            "components": [
                {"component_id": "baseInfo", "data": json.dumps(base_info, ensure_ascii=False)},
                {"component_id": "ascension", "data": make_weapon_ascension()},
                {"component_id": "equipment_skill", "data": json.dumps(skill, ensure_ascii=False)},
            ],
        }],
    }
    return {"retcode": 0, "message": "OK", "data": {"page": page}}


def disc_document(
    name: str = "ショックスター・ディスコ",
    page_id: str = "901",
    four_set: str = "<p>通常攻撃、ダッシュ攻撃、回避反撃が敵に命中した時、与えるブレイク値+20%。撃破エージェント向け。</p>",
    two_set: str = "<p>与える衝撃力+6%。</p>",
    effect_component: str = "reliquary_set_effect",
) -> Dict[str, Any]:
    effects = {"four_set_effect": four_set, "two_set_effect": two_set}
    page = {
        "id": page_id,
        "name": name,
        "filter_values": {},
        "modules": [{
            "name": "セット効果",
            "components": [
                {"component_id": effect_component, "data": json.dumps(effects, ensure_ascii=False)},
                {"component_id": "baseInfo", "data": json.dumps(
                    {"list": [{"key": "実装バージョン", "values": ["Ver.1.0"]}]},
                    ensure_ascii=False
                )},
            ],
        }],
    }
    return {"retcode": 0, "message": "OK", "data": {"page": page}}


def set_component(document: Dict[str, Any], component_id: str, data: Any) -> Dict[str, Any]:
    """Replace one component's data in a page document"""
    for module in document["data"]["page"].get("modules", []):
        for component in module["components"]:
            if component["component_id"] == component_id:
                component["data"] = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    return document


class FakeFetcher:
    """Stands in for HoyoWikiClient; failures keyed by page id or (page id, locale)"""

    def __init__(
        self,
        documents: Optional[Dict[Any, Dict[str, Any]]] = None,
        failures: Optional[Dict[Any, Any]] = None,
        default_document=None
    ):
        self.documents = documents or {}
        self.failures = failures or {}
        self.default_document = default_document
        self.calls: List[tuple] = []

    async def fetch(self, page_id: int, locale: str) -> RawPayload:
        self.calls.append((page_id, locale))

        for key in ((page_id, locale), page_id):
            failure = self.failures.get(key)
            if isinstance(failure, list):
                if failure:
                    raise failure.pop(0)
            elif failure is not None:
                raise failure

        document = self.documents.get((page_id, locale)) or self.documents.get(page_id)
        if document is None and self.default_document is not None:
            document = self.default_document(page_id)
        if document is None:
            raise NotFoundError(f"Entry page {page_id} not found")
        return RawPayload(document, locale=locale)


def make_entries(count: int) -> List[EntityEntry]:
    return [EntityEntry(id=f"agent{i}", page_id=i) for i in range(1, count + 1)]


@pytest.fixture
def no_list_fallback(tmp_path):
    """Fallback service pointed at a file that does not exist"""
    return AttackTypeFallbackService(str(tmp_path / "missing.json"))


@pytest.fixture
def character_plugin(no_list_fallback):
    return CharacterPlugin(attack_type_fallback=no_list_fallback)


@pytest.fixture
def weapon_plugin():
    return WeaponPlugin()


@pytest.fixture
def disc_plugin():
    return DriverDiscPlugin()


@pytest.fixture
def lycaon_entry():
    return EntityEntry(id="lycaon", page_id=28, wiki_url="https://wiki.hoyolab.com/pc/zzz/entry/28")


@pytest.fixture
def character_payloads():
    return {
        "ja-jp": RawPayload(character_document(), locale="ja-jp"),
        "en-us": RawPayload(character_document(name="Von Lycaon"), locale="en-us"),
    }


@pytest.fixture
def no_sleep():
    return AsyncMock()


@pytest.fixture
def pipeline_config():
    return BatchProcessorConfig(
        batch_size=3,
        inter_item_delay_seconds=0,
        max_retries=2,
        retry_delay_seconds=0,
        abort_failure_rate=0.5,
        failure_check_min_items=10,
    )


@pytest.fixture
def make_pipeline(character_plugin, pipeline_config, no_sleep):
    def _make(fetcher, **config_overrides) -> BatchPipeline:
        config = pipeline_config.model_copy(update=config_overrides)
        return BatchPipeline(character_plugin, fetcher, config=config, sleep=no_sleep)
    return _make
