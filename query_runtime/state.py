import time
from typing import Callable, Optional

from query_runtime.models import ViewPreferences
from query_runtime.services.builder_state import BuilderState
from query_runtime.services.cache_service import ResultCache
from query_runtime.services.config import Settings
from query_runtime.services.definition_registry import DefinitionRegistry
from query_runtime.services.metrics_snapshot import HealthSnapshot, MetricsSnapshot
from query_runtime.services.query_job_manager import ExecutionTracker


class QueryState:
    """
    All query runtime state for one application.

    Owned by the application root and handed to the runtime and selectors;
    nothing in this package keeps state at module level.
    """

    def __init__(
        self,
        max_cache_size: int = 100,
        cache_ttl_seconds: int = 300,
        max_history: int = 50,
        clock: Callable[[], float] = time.time,
    ):
        self.clock = clock
        self.definitions = DefinitionRegistry(clock=clock)
        self.executions = ExecutionTracker(max_history=max_history, clock=clock)
        self.results_cache = ResultCache(
            max_size=max_cache_size,
            default_ttl_seconds=cache_ttl_seconds,
            clock=clock,
        )
        self.builder = BuilderState()
        self.metrics = MetricsSnapshot(clock=clock)
        self.health = HealthSnapshot(clock=clock)
        self.view = ViewPreferences()

    @classmethod
    def from_settings(cls, settings: Settings, clock: Optional[Callable[[], float]] = None) -> "QueryState":
        return cls(
            max_cache_size=settings.cache_max_size,
            cache_ttl_seconds=settings.cache_ttl_seconds,
            max_history=settings.history_max_size,
            clock=clock or time.time,
        )

    def reset(self) -> None:
        """Discard everything, keeping the configured limits."""
        self.__init__(
            max_cache_size=self.results_cache.max_size,
            cache_ttl_seconds=self.results_cache.default_ttl_seconds,
            max_history=self.executions.max_history,
            clock=self.clock,
        )
