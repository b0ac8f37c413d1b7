"""
Shared fixtures for the query runtime tests.

This module provides:
- A controllable clock so TTL and timestamp behaviour is deterministic
- An in-memory fake of the query service collaborator
- Settings and state factories wired to the fake clock
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from query_runtime.models import (
    CacheClearResult,
    DynamicQuerySpec,
    QueryDefinition,
    QueryExecutionResult,
    QueryHealthStatus,
    QueryMetrics,
    QueryStatistics,
    QueryValidationResult,
)
from query_runtime.services.config import Settings
from query_runtime.state import QueryState


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_definition(
    definition_id: str,
    name: Optional[str] = None,
    data_source: str = "postgres",
    **extra: Any,
) -> QueryDefinition:
    return QueryDefinition(
        id=definition_id,
        name=name or definition_id.replace("_", " ").title(),
        data_source=data_source,
        **extra,
    )


def make_result(query_id: str = "q1", rows: Optional[list] = None) -> QueryExecutionResult:
    return QueryExecutionResult(query_id=query_id, data=rows if rows is not None else [{"id": 1}])


class FakeQueryService:
    """
    In-memory stand-in for the query service.

    Responses are queued per operation; an Exception instance in the queue is
    raised instead of returned. ``gate`` lets a test hold execute() calls open
    to exercise concurrency.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.definitions_results: list = []
        self.graph_definitions_results: list = []
        self.execute_results: list = []
        self.graph_execute_results: list = []
        self.build_results: list = []
        self.validation_results: list = []
        self.health_results: list = []
        self.stats_results: list = []
        self.metrics_results: list = []
        self.clear_results: list = []
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    @staticmethod
    def _next(queue: list, default: Any = None) -> Any:
        value = queue.pop(0) if queue else default
        if isinstance(value, Exception):
            raise value
        return value

    async def execute(self, query_id, parameters, options=None):
        self.calls.append(("execute", (query_id, parameters, options)))
        if self.gate is not None:
            await self.gate.wait()
        return self._next(self.execute_results, make_result(query_id))

    async def execute_graph(self, query_id, parameters, options=None):
        self.calls.append(("execute_graph", (query_id, parameters, options)))
        if self.gate is not None:
            await self.gate.wait()
        return self._next(self.graph_execute_results, make_result(query_id))

    async def build(self, query_spec: DynamicQuerySpec):
        self.calls.append(("build", (query_spec,)))
        return self._next(self.build_results, make_result("dynamic-query"))

    async def validate(self, definition, parameters=None):
        self.calls.append(("validate", (definition, parameters)))
        return self._next(self.validation_results, QueryValidationResult(is_valid=True))

    async def get_health(self):
        self.calls.append(("get_health", ()))
        return self._next(self.health_results, QueryHealthStatus(status="healthy"))

    async def get_stats(self, query_id=None):
        self.calls.append(("get_stats", (query_id,)))
        return self._next(self.stats_results, QueryStatistics(query_id=query_id, execution_count=3))

    async def get_metrics(self):
        self.calls.append(("get_metrics", ()))
        return self._next(self.metrics_results, QueryMetrics(total_queries=5))

    async def get_definitions(self, filters=None):
        self.calls.append(("get_definitions", (filters,)))
        return self._next(self.definitions_results, [])

    async def get_graph_definitions(self, filters=None):
        self.calls.append(("get_graph_definitions", (filters,)))
        return self._next(self.graph_definitions_results, [])

    async def clear_cache(self, query_id=None):
        self.calls.append(("clear_cache", (query_id,)))
        return self._next(self.clear_results, CacheClearResult(cleared=True, entries_cleared=1))

    async def close(self):
        self.closed = True

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        query_api_url="http://query.test/api/",
        cache_max_size=100,
        cache_ttl_seconds=300,
        history_max_size=50,
        _env_file=None,
    )


@pytest.fixture
def state(clock: FakeClock, settings: Settings) -> QueryState:
    return QueryState.from_settings(settings, clock=clock)


@pytest.fixture
def service() -> FakeQueryService:
    return FakeQueryService()
