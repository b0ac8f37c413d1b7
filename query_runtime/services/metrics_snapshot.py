"""
Last-fetched metrics and health of the query service.

Each slot is overwritten wholesale on a successful fetch and keeps its
previous value on failure. There is no staleness policy here; callers
decide when a snapshot is too old using ``age_seconds()``.
"""
import time
from typing import Callable, Dict, Optional
import structlog

from query_runtime.models import QueryHealthStatus, QueryMetrics, QueryStatistics

logger = structlog.get_logger()


class MetricsSnapshot:
    def __init__(self, clock: Callable[[], float] = time.time):
        self.overall: Optional[QueryMetrics] = None
        self.by_query: Dict[str, QueryStatistics] = {}
        self.last_update: Optional[float] = None
        self.loading = False
        self.error: Optional[str] = None
        self._clock = clock

    def mark_loading(self) -> None:
        self.loading = True
        self.error = None

    def record_overall(self, metrics: QueryMetrics) -> None:
        self.overall = metrics
        self._updated()

    def record_query_stats(self, query_id: str, stats: QueryStatistics) -> None:
        self.by_query[query_id] = stats
        self._updated()

    def record_error(self, message: str) -> None:
        self.loading = False
        self.error = message
        logger.warning("Metrics fetch failed", error=message)

    def age_seconds(self) -> Optional[float]:
        if self.last_update is None:
            return None
        return self._clock() - self.last_update

    def _updated(self) -> None:
        self.loading = False
        self.error = None
        self.last_update = self._clock()


class HealthSnapshot:
    def __init__(self, clock: Callable[[], float] = time.time):
        self.status: Optional[QueryHealthStatus] = None
        self.last_check: Optional[float] = None
        self.loading = False
        self.error: Optional[str] = None
        self._clock = clock

    def mark_loading(self) -> None:
        self.loading = True
        self.error = None

    def record_status(self, status: QueryHealthStatus) -> None:
        self.status = status
        self.last_check = self._clock()
        self.loading = False
        self.error = None
        if status.status != "healthy":
            logger.warning("Query service not healthy", status=status.status, message=status.message)

    def record_error(self, message: str) -> None:
        self.loading = False
        self.error = message
        logger.warning("Health check failed", error=message)

    def age_seconds(self) -> Optional[float]:
        if self.last_check is None:
            return None
        return self._clock() - self.last_check
