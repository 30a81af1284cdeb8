import pytest

from wiki_ingest.extraction.statistics import (
    ProcessingStatistics,
    StatisticsCollector,
    merge_retry_statistics,
)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def collector(clock):
    collector = StatisticsCollector(clock=clock)
    collector.start(total=4)
    return collector


def test_counters_and_rates(collector, clock):
    collector.record_success("a", 100)
    collector.record_success("b", 300, partial=True)
    collector.record_failure("c", "network", 200)
    collector.record_skip("a")
    clock.now = 102.0
    collector.finish()

    stats = collector.snapshot()

    assert stats.processed == 3
    assert stats.succeeded == 1
    assert stats.partial_succeeded == 1
    assert stats.failed == 1
    assert stats.skipped == 1
    assert stats.success_rate == pytest.approx(2 / 3)
    assert stats.failure_rate == pytest.approx(1 / 3)
    assert stats.average_processing_time_ms == pytest.approx(200)
    assert stats.elapsed_seconds == pytest.approx(2.0)
    assert stats.throughput_per_second == pytest.approx(1.5)


def test_empty_run_rates(collector):
    stats = collector.snapshot()

    assert stats.success_rate == 0.0
    assert stats.failure_rate == 0.0
    assert stats.retry_success_rate == 0.0


def test_retries(collector):
    collector.record_retry(attempts=1, succeeded=True)
    collector.record_retry(attempts=3, succeeded=True)
    collector.record_retry(attempts=2, succeeded=False)

    stats = collector.snapshot()

    assert stats.retries == 3
    assert stats.retried_entities == 2
    assert stats.retry_success_rate == 0.5


def test_api_requests(collector):
    collector.record_api_request(100)
    collector.record_api_request(300)

    assert collector.get_performance_summary()["average_api_time_ms"] == 200


def test_progress_summary(collector):
    collector.record_success("a", 10)

    summary = collector.get_progress_summary()

    assert summary["total"] == 4
    assert summary["processed"] == 1
    assert summary["success_rate"] == 1.0


class TestRecommendations:
    def test_no_issues(self, collector):
        collector.record_success("a", 10)
        assert collector.get_recommendations() == ["No issues detected"]

    def test_high_failure_and_dominant_network(self, collector):
        collector.record_success("a", 10)
        collector.record_failure("b", "network", 10)

        recommendations = collector.get_recommendations()

        assert any("High failure rate" in r for r in recommendations)
        assert any("Network errors dominate" in r for r in recommendations)

    def test_data_structure_share(self, collector):
        for i in range(9):
            collector.record_success(f"ok{i}", 10)
        collector.record_failure("x", "data_structure", 10)

        recommendations = collector.get_recommendations()

        assert not any("High failure rate" in r for r in recommendations)
        assert any("response format may have changed" in r for r in recommendations)

    def test_slow(self, collector):
        collector.record_success("a", 6000)
        assert any("Slow processing" in r for r in collector.get_recommendations())

    def test_low_retry_success(self, collector):
        collector.record_success("a", 10)
        collector.record_retry(attempts=3, succeeded=False)
        assert any("retry interval" in r for r in collector.get_recommendations())


def test_report(collector):
    collector.record_success("a", 10)
    collector.record_failure("b", "api", 10)
    collector.record_degradation("attackType", "default")
    collector.record_defaults(["modules", "ascension"])

    report = collector.generate_report()

    assert report.startswith("=== Processing Statistics ===")
    assert "Failed: 1" in report
    assert "api: 1" in report
    assert "attackType:default: 1" in report
    assert "modules: 1" in report
    assert "=== Recommendations ===" in report


def test_merge_retry_statistics():
    first = ProcessingStatistics(
        total=5, processed=5, succeeded=2, partial_succeeded=1, failed=2, retries=4,
        api_requests=9, timings={"a": 100.0, "d": 50.0},
        error_type_counts={"network": 2}, defaulted_field_counts={"modules": 1},
    )
    retried = ProcessingStatistics(
        total=2, processed=2, succeeded=1, failed=1, retries=1,
        api_requests=3, timings={"d": 25.0}, error_type_counts={"network": 1},
        defaulted_field_counts={"modules": 1, "ascension": 1},
    )

    merged = merge_retry_statistics(first, retried, ["not_found"])

    assert merged.total == 5
    assert merged.processed == 5
    assert merged.succeeded == 3
    assert merged.partial_succeeded == 1
    assert merged.failed == 1
    assert merged.success_rate == pytest.approx(4 / 5)
    assert merged.retries == 5
    assert merged.api_requests == 12
    assert merged.timings == {"a": 100.0, "d": 75.0}
    assert merged.error_type_counts == {"not_found": 1}
    assert merged.defaulted_field_counts == {"modules": 2, "ascension": 1}
