from unittest.mock import AsyncMock

import pytest

from conftest import FakeFetcher, character_document, make_entries, set_component
from wiki_ingest.core.config import ProcessingConfig
from wiki_ingest.core.exceptions import (
    BatchAbortedError,
    BatchProcessingError,
    NetworkError,
    NotFoundError,
)
from wiki_ingest.extraction.batch_processor import (
    BatchProcessorConfig,
    BatchResult,
    ProcessingStage,
)
from wiki_ingest.models.record import EntityEntry, ViabilityTier


def every_page(page_id):
    return character_document(page_id=str(page_id))


def failing_pages(*page_ids):
    return {page_id: NetworkError("connection refused") for page_id in page_ids}


class TestFullSuccess:
    @pytest.mark.asyncio
    async def test_all_entities_succeed(self, make_pipeline):
        pipeline = make_pipeline(FakeFetcher(default_document=every_page))

        result = await pipeline.run(make_entries(5))

        assert len(result.successful) == 5
        assert result.failed == []
        assert result.statistics.succeeded == 5
        assert result.statistics.success_rate == 1.0
        assert not result.aborted

        record = result.successful[0]
        assert record.id == "agent1"
        assert record.basic_fields["specialty"] == "stun"
        assert record.basic_fields["stats"] == ["ice"]
        assert record.basic_fields["attackType"] == ["strike"]
        assert record.basic_fields["faction"] == 2
        assert record.release_version == 1.0
        assert record.is_valid

    @pytest.mark.asyncio
    async def test_fetches_both_locales(self, make_pipeline):
        fetcher = FakeFetcher(default_document=every_page)

        await make_pipeline(fetcher).run(make_entries(2))

        assert fetcher.calls == [(1, "ja-jp"), (1, "en-us"), (2, "ja-jp"), (2, "en-us")]

    @pytest.mark.asyncio
    async def test_secondary_failure_falls_back_to_primary_name(self, make_pipeline):
        fetcher = FakeFetcher(
            default_document=every_page,
            failures={(1, "en-us"): NotFoundError("Entry page 1 not found")}
        )

        result = await make_pipeline(fetcher).run(make_entries(1))

        record = result.successful[0]
        assert record.name == {"ja": "フォン・ライカン", "en": "フォン・ライカン"}
        assert not record.degraded

    @pytest.mark.asyncio
    async def test_sleeps_between_items_only(self, make_pipeline, no_sleep):
        pipeline = make_pipeline(FakeFetcher(default_document=every_page),
                                 inter_item_delay_seconds=0.5)

        await pipeline.run(make_entries(4))

        assert no_sleep.await_count == 3
        assert all(c.args[0] == 0.5 for c in no_sleep.await_args_list)

    @pytest.mark.asyncio
    async def test_duplicates_are_skipped(self, make_pipeline):
        fetcher = FakeFetcher(default_document=every_page)
        entries = make_entries(2) + [EntityEntry(id="agent1", page_id=1)]

        result = await make_pipeline(fetcher).run(entries)

        assert len(result.successful) == 2
        assert result.statistics.skipped == 1
        assert result.statistics.total == 2

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self, make_pipeline):
        with pytest.raises(ValueError):
            await make_pipeline(FakeFetcher()).run(make_entries(1), batch_size=-1)


class TestProgress:
    @pytest.mark.asyncio
    async def test_sync_callback(self, make_pipeline):
        seen = []
        pipeline = make_pipeline(FakeFetcher(default_document=every_page))
        pipeline.progress_callback = seen.append

        await pipeline.run(make_entries(3))

        assert [p.current for p in seen] == [1, 2, 3]
        assert seen[-1].percentage == 100.0
        assert seen[0].current_entity_id == "agent1"
        assert seen[0].stage == ProcessingStage.BATCH_PROCESSING

    @pytest.mark.asyncio
    async def test_async_callback(self, make_pipeline):
        callback = AsyncMock()
        pipeline = make_pipeline(FakeFetcher(default_document=every_page))
        pipeline.progress_callback = callback

        await pipeline.run(make_entries(2))

        assert callback.await_count == 2


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, make_pipeline):
        fetcher = FakeFetcher(
            default_document=every_page,
            failures={(1, "ja-jp"): [NetworkError("timed out")]}
        )

        result = await make_pipeline(fetcher).run(make_entries(1))

        assert len(result.successful) == 1
        assert result.statistics.retries == 1
        assert result.statistics.retry_successes == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_entity(self, make_pipeline):
        fetcher = FakeFetcher(default_document=every_page, failures=failing_pages(1))

        result = await make_pipeline(fetcher).run(make_entries(2))

        assert result.failed_ids == ["agent1"]
        failure = result.failed[0]
        assert failure.error_type == "network"
        assert failure.stage == "api_fetch"
        assert failure.partial_data is None
        assert fetcher.calls.count((1, "ja-jp")) == 3

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, make_pipeline):
        fetcher = FakeFetcher()

        result = await make_pipeline(fetcher, abort_failure_rate=1.0).run(make_entries(1))

        assert result.failed[0].error_type == "not_found"
        assert fetcher.calls == [(1, "ja-jp")]


class TestAbort:
    @pytest.mark.asyncio
    async def test_failures_below_threshold_complete(self, make_pipeline):
        fetcher = FakeFetcher(default_document=every_page, failures=failing_pages(2, 5, 8))

        result = await make_pipeline(fetcher).run(make_entries(10))

        assert len(result.successful) == 7
        assert result.failed_ids == ["agent2", "agent5", "agent8"]
        assert result.statistics.failure_rate == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_failures_above_threshold_abort(self, make_pipeline):
        fetcher = FakeFetcher(default_document=every_page, failures=failing_pages(2, 5, 8))
        pipeline = make_pipeline(fetcher, abort_failure_rate=0.2)

        with pytest.raises(BatchAbortedError) as exc_info:
            await pipeline.run(make_entries(12))

        error = exc_info.value
        assert error.processed == 10
        assert error.failed_ids == ["agent2", "agent5", "agent8"]
        assert error.failure_rate == pytest.approx(0.3)
        assert error.result.aborted
        assert len(error.result.successful) == 7
        assert (11, "ja-jp") not in fetcher.calls

    @pytest.mark.asyncio
    async def test_small_runs_check_after_every_item(self, make_pipeline):
        fetcher = FakeFetcher(default_document=every_page, failures=failing_pages(1, 2, 3))

        result = await make_pipeline(fetcher, abort_failure_rate=1.0).run(make_entries(3))

        assert len(result.failed) == 3
        assert not result.aborted

    @pytest.mark.asyncio
    async def test_all_fail_in_small_run_aborts(self, make_pipeline):
        fetcher = FakeFetcher(default_document=every_page, failures=failing_pages(1, 2, 3))

        with pytest.raises(BatchAbortedError) as exc_info:
            await make_pipeline(fetcher).run(make_entries(3))

        assert exc_info.value.processed == 3

    @pytest.mark.asyncio
    async def test_system_error_stops_run(self, make_pipeline):
        fetcher = FakeFetcher(default_document=every_page,
                              failures={1: MemoryError("out of memory")})

        with pytest.raises(BatchAbortedError) as exc_info:
            await make_pipeline(fetcher).run(make_entries(5))

        assert exc_info.value.processed == 1
        assert "critical" in exc_info.value.reason
        assert exc_info.value.result.failed[0].error_type == "system"


class TestPartialRecords:
    @pytest.mark.asyncio
    async def test_missing_modules_yield_partial_record(self, make_pipeline, lycaon_entry):
        fetcher = FakeFetcher({28: character_document(with_modules=False)})

        result = await make_pipeline(fetcher).run([lycaon_entry])

        assert result.failed == []
        record = result.successful[0]
        assert record.degraded
        assert record.completeness.viability_tier == ViabilityTier.PARTIAL
        assert record.attributes.atk == [0] * 7
        assert result.statistics.partial_succeeded == 1
        assert result.statistics.defaulted_field_counts["modules"] == 1

    @pytest.mark.asyncio
    async def test_invalid_partial_record_fails_with_data(self, make_pipeline, lycaon_entry):
        document = character_document(with_modules=False, drop_filters=["agent_specialties"])
        fetcher = FakeFetcher({28: document})

        result = await make_pipeline(fetcher, abort_failure_rate=1.0).run([lycaon_entry])

        assert result.successful == []
        failure = result.failed[0]
        assert failure.error_type == "data_structure"
        assert failure.stage == "data_processing"
        assert failure.partial_data is not None
        assert failure.partial_data.basic_fields["specialty"] is None

    @pytest.mark.asyncio
    async def test_degraded_output_allowed(self, make_pipeline, lycaon_entry):
        document = character_document(with_modules=False, drop_filters=["agent_specialties"])
        fetcher = FakeFetcher({28: document})

        result = await make_pipeline(fetcher, allow_degraded_output=True).run([lycaon_entry])

        assert len(result.successful) == 1
        assert not result.successful[0].is_valid

    @pytest.mark.asyncio
    async def test_malformed_ascension_yields_partial_record(self, make_pipeline, lycaon_entry):
        document = character_document()
        set_component(document, "ascension", {"rows": []})
        fetcher = FakeFetcher({28: document})

        result = await make_pipeline(fetcher).run([lycaon_entry])

        assert result.failed == []
        record = result.successful[0]
        assert record.completeness.viability_tier == ViabilityTier.FULL
        assert record.attributes.hp == [0] * 7
        assert "ascension" in record.defaulted_fields
        assert result.statistics.partial_succeeded == 1
        assert result.statistics.defaulted_field_counts["ascension"] == 1

    @pytest.mark.asyncio
    async def test_attack_type_default(self, make_pipeline, lycaon_entry):
        document = character_document(drop_filters=["agent_attack_type"])
        fetcher = FakeFetcher({28: document})

        result = await make_pipeline(fetcher).run([lycaon_entry])

        record = result.successful[0]
        assert record.basic_fields["attackType"] == ["strike"]
        assert record.resolution_tiers["attackType"] == "default"
        assert record.degraded
        assert result.statistics.degradation_counts["attackType:default"] == 1


class TestFollowUps:
    @pytest.mark.asyncio
    async def test_retry_failed(self, make_pipeline):
        errors = [NetworkError("connection refused") for _ in range(3)]
        fetcher = FakeFetcher(default_document=every_page, failures={2: errors})
        pipeline = make_pipeline(fetcher, abort_failure_rate=1.0)
        entries = make_entries(3)

        first = await pipeline.run(entries)
        assert first.failed_ids == ["agent2"]

        retried = await pipeline.retry_failed(first, entries)

        assert retried.failed == []
        assert sorted(r.id for r in retried.successful) == ["agent1", "agent2", "agent3"]

        stats = retried.statistics
        assert stats.total == 3
        assert stats.processed == 3
        assert stats.succeeded == 3
        assert stats.failed == 0
        assert stats.retries == 2
        assert stats.error_type_counts == {}
        assert stats.success_rate == 1.0

    @pytest.mark.asyncio
    async def test_retry_failed_ignores_failure_rate_threshold(self, make_pipeline):
        fetcher = FakeFetcher(default_document=every_page, failures=failing_pages(2))
        pipeline = make_pipeline(fetcher)
        entries = make_entries(3)

        first = await pipeline.run(entries)
        retried = await pipeline.retry_failed(first, entries)

        assert not retried.aborted
        assert retried.failed_ids == ["agent2"]
        assert [r.id for r in retried.successful] == ["agent1", "agent3"]
        assert retried.statistics.total == 3
        assert retried.statistics.succeeded == 2
        assert retried.statistics.failed == 1
        assert retried.statistics.error_type_counts == {"network": 1}

    @pytest.mark.asyncio
    async def test_retry_failed_stops_on_critical_error(self, make_pipeline):
        failures = {
            (2, "ja-jp"): [NetworkError("connection refused") for _ in range(3)],
            2: MemoryError("out of memory"),
            3: NetworkError("connection refused"),
        }
        fetcher = FakeFetcher(default_document=every_page, failures=failures)
        pipeline = make_pipeline(fetcher)
        entries = make_entries(4)

        first = await pipeline.run(entries)
        assert first.failed_ids == ["agent2", "agent3"]

        retried = await pipeline.retry_failed(first, entries)

        assert retried.aborted
        assert "critical" in retried.abort_reason
        assert retried.failed_ids == ["agent2", "agent3"]
        assert [f.error_type for f in retried.failed] == ["system", "network"]
        assert retried.statistics.failed == 2
        assert retried.statistics.error_type_counts == {"system": 1, "network": 1}

    @pytest.mark.asyncio
    async def test_retry_failed_without_failures(self, make_pipeline):
        pipeline = make_pipeline(FakeFetcher(default_document=every_page))
        result = BatchResult()

        assert await pipeline.retry_failed(result, make_entries(2)) is result

    @pytest.mark.asyncio
    async def test_validate_processing_result(self, make_pipeline):
        fetcher = FakeFetcher(default_document=every_page, failures=failing_pages(2, 5, 8))
        pipeline = make_pipeline(fetcher)
        result = await pipeline.run(make_entries(10))

        pipeline.validate_processing_result(result, 0.5)
        with pytest.raises(BatchProcessingError) as exc_info:
            pipeline.validate_processing_result(result, 0.8)

        assert exc_info.value.failed_ids == ["agent2", "agent5", "agent8"]
        assert exc_info.value.total == 10

    @pytest.mark.asyncio
    async def test_report(self, make_pipeline):
        fetcher = FakeFetcher(default_document=every_page, failures=failing_pages(2))
        pipeline = make_pipeline(fetcher)
        result = await pipeline.run(make_entries(3))

        report = pipeline.generate_processing_report(result)

        assert report.startswith("# Processing report: character")
        assert "| Failed | 1 |" in report
        assert "## Failed entities" in report
        assert "| agent2 | api_fetch | network |" in report
        assert "## Recommendations" in report


def test_config_from_processing_config():
    processing = ProcessingConfig(batch_size=4, inter_item_delay_ms=250, allow_degraded_output=True)

    config = BatchProcessorConfig.from_processing_config(processing)

    assert config.batch_size == 4
    assert config.inter_item_delay_seconds == 0.25
    assert config.allow_degraded_output is True
