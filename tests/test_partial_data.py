import pytest

from conftest import character_document, set_component
from wiki_ingest.extraction.partial_data import PartialRecordBuilder
from wiki_ingest.models.payload import RawPayload
from wiki_ingest.models.record import STAGE_COUNT, Record, ViabilityTier


@pytest.fixture
def builder(character_plugin):
    return PartialRecordBuilder(character_plugin)


class TestDetectMissing:
    def test_full(self, builder):
        report = builder.detect_missing(RawPayload(character_document()))

        assert report.viability_tier == ViabilityTier.FULL
        assert report.missing_fields == []
        assert report.completeness_percent == 100

    def test_missing_modules_skips_nested_fields(self, builder):
        report = builder.detect_missing(RawPayload(character_document(with_modules=False)))

        assert report.missing_fields == ["modules"]
        assert "ascension" not in report.available_fields
        assert report.viability_tier == ViabilityTier.PARTIAL
        assert report.completeness_percent == 86

    def test_minimal(self, builder):
        document = character_document(drop_filters=["agent_specialties", "agent_stats", "agent_rarity"])

        report = builder.detect_missing(RawPayload(document))

        assert report.viability_tier == ViabilityTier.MINIMAL
        assert set(report.missing_fields) == {"specialty", "stats", "rarity"}

    def test_empty_payload_is_impossible(self, builder):
        report = builder.detect_missing(RawPayload(None))

        assert report.viability_tier == ViabilityTier.IMPOSSIBLE
        assert "page" in report.missing_fields
        assert not report.is_viable

    def test_inspection_failure_reports_everything_missing(self, builder):
        report = builder.detect_missing(object())

        assert report.viability_tier == ViabilityTier.IMPOSSIBLE
        assert report.available_fields == []
        assert report.missing_fields == builder.all_fields()
        assert report.completeness_percent == 0


class TestBuild:
    def test_defaults_fill_missing_modules(self, builder, lycaon_entry):
        payloads = {
            "ja-jp": RawPayload(character_document(with_modules=False), locale="ja-jp"),
            "en-us": RawPayload(character_document(name="Von Lycaon", with_modules=False), locale="en-us"),
        }
        report = builder.detect_missing(payloads["ja-jp"])

        record = builder.build(lycaon_entry, payloads, report)

        assert record is not None
        assert record.degraded is True
        assert record.completeness == report
        assert {"modules", "ascension", "baseInfo"} <= set(record.defaulted_fields)
        assert record.attributes.hp == [0] * STAGE_COUNT
        assert record.basic_fields["specialty"] == "stun"
        assert record.name == {"ja": "フォン・ライカン", "en": "Von Lycaon"}
        assert record.release_version == 1.0
        assert record.resolution_tiers["release_version"] == "id_table"

    def test_malformed_ascension_is_zero_filled(self, builder, lycaon_entry):
        document = set_component(character_document(), "ascension", {"rows": []})
        payloads = {"ja-jp": RawPayload(document, locale="ja-jp")}
        report = builder.detect_missing(payloads["ja-jp"])

        record = builder.build(lycaon_entry, payloads, report)

        assert report.viability_tier == ViabilityTier.FULL
        assert record is not None
        assert record.attributes.hp == [0] * STAGE_COUNT
        assert record.attributes.atk == [0] * STAGE_COUNT
        assert record.defaulted_fields == ["ascension"]
        assert record.basic_fields["specialty"] == "stun"

    def test_impossible_builds_nothing(self, builder, lycaon_entry):
        payloads = {"ja-jp": RawPayload(None, locale="ja-jp")}
        report = builder.detect_missing(payloads["ja-jp"])

        assert builder.build(lycaon_entry, payloads, report) is None


class TestValidatePartial:
    def test_needs_id_and_name(self):
        assert PartialRecordBuilder.validate_partial(
            Record(id="lycaon", kind="character", name={"ja": "フォン・ライカン"})
        )
        assert not PartialRecordBuilder.validate_partial(Record(id="lycaon", kind="character"))
        assert not PartialRecordBuilder.validate_partial(
            Record(id="lycaon", kind="character", name={"ja": "  "})
        )
        assert not PartialRecordBuilder.validate_partial(None)
