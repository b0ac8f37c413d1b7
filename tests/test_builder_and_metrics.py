"""
Unit tests for BuilderState, MetricsSnapshot and HealthSnapshot.
"""

from __future__ import annotations

from query_runtime.models import (
    DynamicQuerySpec,
    QueryHealthStatus,
    QueryMetrics,
    QueryStatistics,
    QueryValidationResult,
)
from query_runtime.services.builder_state import BuilderState
from query_runtime.services.metrics_snapshot import HealthSnapshot, MetricsSnapshot
from tests.conftest import FakeClock


def _spec() -> DynamicQuerySpec:
    return DynamicQuerySpec.model_validate(
        {"dataSource": "postgres", "select": ["id", "name"], "from": "users", "limit": 10}
    )


class TestBuilderState:
    def test_starts_idle(self) -> None:
        builder = BuilderState()
        assert builder.phase == "idle"
        assert builder.current_query is None

    def test_validation_lifecycle(self) -> None:
        builder = BuilderState()
        builder.set_draft(_spec())

        builder.record_validation_pending()
        assert builder.phase == "validating"

        builder.record_validation_result(QueryValidationResult(is_valid=False, errors=["no such table"]))
        assert builder.phase == "validated"
        assert builder.is_validating is False
        assert builder.validation_result.errors == ["no such table"]

    def test_validation_error(self) -> None:
        builder = BuilderState()
        builder.record_validation_pending()

        builder.record_validation_error("Validator unreachable")

        assert builder.phase == "errored"
        assert builder.error == "Validator unreachable"
        assert builder.is_validating is False

    def test_new_draft_clears_prior_outcome(self) -> None:
        builder = BuilderState()
        builder.record_validation_result(QueryValidationResult(is_valid=True))
        builder.record_preview([{"id": 1}])
        builder.record_validation_error("old")

        spec = _spec()
        builder.set_draft(spec)

        assert builder.current_query is spec
        assert builder.validation_result is None
        assert builder.preview_data is None
        assert builder.error is None
        assert builder.phase == "idle"

    def test_preview_lifecycle(self) -> None:
        builder = BuilderState()
        builder.record_test_pending()
        assert builder.is_testing is True

        builder.record_preview([{"id": 1}])

        assert builder.is_testing is False
        assert builder.preview_data == [{"id": 1}]

    def test_clear_resets_everything(self) -> None:
        builder = BuilderState()
        builder.set_draft(_spec())
        builder.record_validation_pending()
        builder.record_test_pending()

        builder.clear()

        assert builder.current_query is None
        assert builder.is_validating is False
        assert builder.is_testing is False
        assert builder.phase == "idle"


class TestMetricsSnapshot:
    def test_overall_and_per_query_slots(self, clock: FakeClock) -> None:
        metrics = MetricsSnapshot(clock=clock)
        metrics.mark_loading()

        metrics.record_overall(QueryMetrics(total_queries=7))
        metrics.record_query_stats("q1", QueryStatistics(execution_count=2))

        assert metrics.loading is False
        assert metrics.overall.total_queries == 7
        assert metrics.by_query["q1"].execution_count == 2
        assert metrics.last_update == clock.now

    def test_snapshot_is_overwritten_wholesale(self) -> None:
        metrics = MetricsSnapshot()
        metrics.record_overall(QueryMetrics(total_queries=7, active_queries=2))

        metrics.record_overall(QueryMetrics(total_queries=1))

        assert metrics.overall.active_queries == 0

    def test_failure_keeps_previous_values(self) -> None:
        metrics = MetricsSnapshot()
        metrics.record_overall(QueryMetrics(total_queries=7))
        metrics.mark_loading()

        metrics.record_error("nope")

        assert metrics.overall.total_queries == 7
        assert metrics.error == "nope"
        assert metrics.loading is False

    def test_age_is_reported_not_enforced(self, clock: FakeClock) -> None:
        metrics = MetricsSnapshot(clock=clock)
        assert metrics.age_seconds() is None

        metrics.record_overall(QueryMetrics())
        clock.advance(3600)

        assert metrics.age_seconds() == 3600
        assert metrics.overall is not None


class TestHealthSnapshot:
    def test_record_status(self, clock: FakeClock) -> None:
        health = HealthSnapshot(clock=clock)
        health.mark_loading()

        health.record_status(QueryHealthStatus(status="degraded", message="cache down"))

        assert health.status.status == "degraded"
        assert health.last_check == clock.now
        assert health.loading is False

    def test_record_error_keeps_last_status(self) -> None:
        health = HealthSnapshot()
        health.record_status(QueryHealthStatus(status="healthy"))

        health.record_error("timeout")

        assert health.status.status == "healthy"
        assert health.error == "timeout"
