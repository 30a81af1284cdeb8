import pytest

from conftest import FakeFetcher, disc_document
from wiki_ingest.core.exceptions import ParsingError
from wiki_ingest.entities.drive_disc import (
    NAME_KEYWORDS,
    SET_EFFECT_UNAVAILABLE,
    SPECIALTY_KEYWORDS,
    match_specialties,
    set_effects,
)
from wiki_ingest.extraction.batch_processor import BatchPipeline
from wiki_ingest.extraction.partial_data import PartialRecordBuilder
from wiki_ingest.extraction.validation_engine import ValidationEngine
from wiki_ingest.models.payload import RawPayload
from wiki_ingest.models.record import EntityEntry, ViabilityTier
from wiki_ingest.standardization.field_mapper import Specialty

NEUTRAL_FOUR = "<p>HP+10%。</p>"
NEUTRAL_TWO = "<p>与える衝撃力+6%。</p>"


@pytest.fixture
def disco_entry():
    return EntityEntry(id="shockstar_disco", page_id=901)


def payloads_for(document, english=None):
    payloads = {"ja-jp": RawPayload(document, locale="ja-jp")}
    if english is not None:
        payloads["en-us"] = RawPayload(english, locale="en-us")
    return payloads


class TestSetEffects:
    def test_from_set_effect_component(self):
        effects = set_effects(RawPayload(disc_document()))

        assert effects["four"].startswith("通常攻撃")
        assert "<p>" not in effects["four"]
        assert effects["two"] == "与える衝撃力+6%。"

    def test_from_display_field_component(self):
        effects = set_effects(RawPayload(disc_document(effect_component="display_field")))

        assert effects["two"] == "与える衝撃力+6%。"

    def test_page_level_display_field_wins(self):
        document = disc_document()
        document["data"]["page"]["display_field"] = {
            "four_set_effect": "<p>異常マスタリー+30。</p>",
            "two_set_effect": "",
        }

        effects = set_effects(RawPayload(document))

        assert effects == {"four": "異常マスタリー+30。", "two": ""}

    def test_empty_texts_are_missing(self):
        assert set_effects(RawPayload(disc_document(four_set="", two_set="<p> </p>"))) is None
        assert set_effects(RawPayload(None)) is None


@pytest.mark.parametrize("text,keywords,expected", [
    ("撃破エージェント向け", SPECIALTY_KEYWORDS, [Specialty.STUN]),
    ("支援と防護", SPECIALTY_KEYWORDS, [Specialty.SUPPORT, Specialty.DEFENSE]),
    ("Boosts Anomaly Proficiency", SPECIALTY_KEYWORDS, [Specialty.ANOMALY]),
    ("防御のブルース", NAME_KEYWORDS, [Specialty.DEFENSE]),
    ("与える衝撃力+6%", SPECIALTY_KEYWORDS, []),
    (None, SPECIALTY_KEYWORDS, []),
])
def test_match_specialties(text, keywords, expected):
    assert match_specialties(text, keywords) == expected


class TestDriverDiscPlugin:
    def test_full_record(self, disc_plugin, disco_entry):
        english = disc_document(
            name="Shockstar Disco",
            four_set="<p>Inflicts 20% more Daze. Suited to Stun agents.</p>",
            two_set="<p>Impact +6%.</p>",
        )

        record = disc_plugin.build_record(disco_entry, payloads_for(disc_document(), english))

        assert record.kind == "disc"
        assert record.name == {"ja": "ショックスター・ディスコ", "en": "Shockstar Disco"}
        assert record.basic_fields["specialty"] == ["stun"]
        assert record.basic_fields["twoSetEffect"] == {"ja": "与える衝撃力+6%。", "en": "Impact +6%."}
        assert record.basic_fields["fourSetEffect"]["en"].startswith("Inflicts 20%")
        assert record.resolution_tiers == {
            "specialty": "four_set_effect",
            "release_version": "alternate_components",
        }
        assert record.release_version == 1.0
        assert not record.degraded

        report = ValidationEngine().validate_record(record, disc_plugin.validation_rules())
        assert report.is_valid

    def test_missing_language_uses_the_other(self, disc_plugin, disco_entry):
        record = disc_plugin.build_record(disco_entry, payloads_for(disc_document()))

        assert record.basic_fields["twoSetEffect"] == {"ja": "与える衝撃力+6%。", "en": "与える衝撃力+6%。"}
        assert record.name["en"] == "ショックスター・ディスコ"

    def test_specialty_from_two_piece_effect(self, disc_plugin, disco_entry):
        document = disc_document(four_set=NEUTRAL_FOUR, two_set="<p>異常マスタリー+30。</p>")

        record = disc_plugin.build_record(disco_entry, payloads_for(document))

        assert record.basic_fields["specialty"] == ["anomaly"]
        assert record.resolution_tiers["specialty"] == "two_set_effect"
        assert not record.degraded

    def test_specialty_from_name_is_degraded(self, disc_plugin, disco_entry):
        document = disc_document(name="防御のブルース", four_set=NEUTRAL_FOUR, two_set=NEUTRAL_TWO)

        record = disc_plugin.build_record(disco_entry, payloads_for(document))

        assert record.basic_fields["specialty"] == ["defense"]
        assert record.resolution_tiers["specialty"] == "name"
        assert record.degraded

    def test_specialty_default(self, disc_plugin, disco_entry):
        document = disc_document(four_set=NEUTRAL_FOUR, two_set=NEUTRAL_TWO)

        record = disc_plugin.build_record(disco_entry, payloads_for(document))

        assert record.basic_fields["specialty"] == ["attack"]
        assert record.resolution_tiers["specialty"] == "default"
        assert record.degraded

    def test_missing_set_effect_raises_when_strict(self, disc_plugin, disco_entry):
        document = disc_document(four_set="", two_set="")

        with pytest.raises(ParsingError) as exc_info:
            disc_plugin.build_record(disco_entry, payloads_for(document))

        assert exc_info.value.details["field"] == "set_effect"

    def test_missing_set_effect_gives_placeholder_when_lenient(self, disc_plugin, disco_entry):
        builder = PartialRecordBuilder(disc_plugin)
        payloads = payloads_for(disc_document(four_set="", two_set=""))
        report = builder.detect_missing(payloads["ja-jp"])

        record = builder.build(disco_entry, payloads, report)

        assert report.viability_tier == ViabilityTier.PARTIAL
        assert report.missing_fields == ["set_effect"]
        assert record.basic_fields["fourSetEffect"] == {
            "ja": SET_EFFECT_UNAVAILABLE,
            "en": SET_EFFECT_UNAVAILABLE,
        }
        assert "set_effect" in record.defaulted_fields
        assert record.degraded

    def test_description_texts(self, disc_plugin):
        texts = disc_plugin.description_texts(payloads_for(disc_document()))

        assert list(texts) == ["ja"]
        assert "ブレイク値+20%" in texts["ja"]
        assert texts["ja"].endswith("与える衝撃力+6%。")

    def test_degradation_tiers(self, disc_plugin, disco_entry):
        assert set(disc_plugin.degradation_tiers(disco_entry)) == {"release_version", "specialty"}


@pytest.mark.asyncio
async def test_pipeline_with_disc_plugin(disc_plugin, pipeline_config, no_sleep):
    fetcher = FakeFetcher(default_document=lambda page_id: disc_document(page_id=str(page_id)))
    pipeline = BatchPipeline(disc_plugin, fetcher, config=pipeline_config, sleep=no_sleep)
    entries = [EntityEntry(id="shockstar_disco", page_id=901), EntityEntry(id="woodpecker", page_id=902)]

    result = await pipeline.run(entries)

    assert result.failed == []
    assert [r.id for r in result.successful] == ["shockstar_disco", "woodpecker"]
    assert all(r.basic_fields["specialty"] == ["stun"] for r in result.successful)
    assert result.statistics.succeeded == 2
