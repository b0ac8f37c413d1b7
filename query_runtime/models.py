"""
Data model for the query runtime.

Collaborator-facing entities are pydantic models that accept the reporting
backend's camelCase payloads as well as snake_case names. Records owned and
mutated by the runtime itself (executions, cache entries) are dataclasses.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Query id recorded for executions of ad-hoc builder specs
DYNAMIC_QUERY_ID = "dynamic-query"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class _OpaqueModel(BaseModel):
    """Loosely shaped payloads; unknown fields are kept as-is."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class QueryParameter(_WireModel):
    name: str
    display_name: Optional[str] = None
    type: Literal["string", "number", "boolean", "date", "array", "object"] = "string"
    required: bool = False
    default: Any = None
    description: Optional[str] = None
    options: Optional[List[Any]] = None


class QueryCacheSettings(_WireModel):
    enabled: bool = True
    ttl_seconds: Optional[int] = None


class QueryDefinition(_WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    id: str
    name: str
    description: Optional[str] = None
    data_source: str
    sql: Optional[str] = None
    parameters: List[QueryParameter] = Field(default_factory=list)
    category: Optional[str] = None
    subcategory: Optional[str] = None
    version: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_system: bool = False
    is_custom: bool = False
    execution_count: Optional[int] = None
    last_executed: Optional[datetime] = None
    avg_execution_time: Optional[float] = None
    success_rate: Optional[float] = None
    cache: Optional[QueryCacheSettings] = None

    @field_validator("last_executed")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Naive and aware timestamps must stay comparable when sorting
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class QueryExecutionResult(_OpaqueModel):
    query_id: Optional[str] = None
    execution_id: Optional[str] = None
    executed_at: Optional[str] = None
    cached: Optional[bool] = None
    success: Optional[bool] = None
    data: Optional[List[Dict[str, Any]]] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def rows(self) -> List[Dict[str, Any]]:
        """Result rows, whether top-level or nested under ``result.data``"""
        if self.data is not None:
            return self.data
        nested = (self.model_extra or {}).get("result")
        if isinstance(nested, dict) and isinstance(nested.get("data"), list):
            return nested["data"]
        return []


class WhereClause(_WireModel):
    field: str
    operator: str
    value: Any = None
    logic: Optional[Literal["AND", "OR"]] = None


class JoinClause(_WireModel):
    type: Literal["INNER", "LEFT", "RIGHT", "FULL"] = "INNER"
    table: str
    on: str


class OrderBy(_WireModel):
    field: str
    direction: Literal["asc", "desc"] = "asc"


class DynamicQuerySpec(_WireModel):
    data_source: str
    select: List[str] = Field(default_factory=list)
    from_: str = Field(alias="from")
    where: Optional[List[WhereClause]] = None
    joins: Optional[List[JoinClause]] = None
    group_by: Optional[List[str]] = None
    having: Optional[str] = None
    order_by: Optional[OrderBy] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    def to_parameters(self) -> Dict[str, Any]:
        """Wire form of the builder query, used as the parameters of an ad-hoc execution."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class QueryValidationResult(_WireModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class QueryHealthStatus(_OpaqueModel):
    status: Literal["healthy", "unhealthy", "degraded"]
    message: Optional[str] = None
    components: Dict[str, Any] = Field(default_factory=dict)
    data_sources: Dict[str, Any] = Field(default_factory=dict)
    cache: Optional[Dict[str, Any]] = None
    timestamp: Optional[str] = None


class QueryStatistics(_OpaqueModel):
    query_id: Optional[str] = None
    execution_count: int = 0
    average_execution_time: float = 0.0
    cache_hit_rate: float = 0.0
    error_rate: float = 0.0
    last_executed: Optional[str] = None
    p95_execution_time: Optional[float] = None
    p99_execution_time: Optional[float] = None


class QueryMetrics(_OpaqueModel):
    total_queries: int = 0
    active_queries: int = 0
    queued_queries: int = 0
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0


class CacheClearResult(_WireModel):
    cleared: bool
    entries_cleared: int = 0


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED)


@dataclass
class QueryExecution:
    """One invocation of a query definition or ad-hoc spec."""

    id: str
    query_id: str
    parameters: Dict[str, Any]
    start_time: float
    status: ExecutionStatus = ExecutionStatus.PENDING
    end_time: Optional[float] = None
    result: Optional[QueryExecutionResult] = None
    error: Optional[str] = None
    from_cache: bool = False

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time


@dataclass
class CacheEntry:
    """A memoized result for one (query id, parameters) signature."""

    result: QueryExecutionResult
    timestamp: float
    ttl_seconds: int
    parameters: Dict[str, Any]
    cache_key: str
    sequence: int = 0

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_stale(self, now: float) -> bool:
        return self.age(now) > self.ttl_seconds


@dataclass
class ViewPreferences:
    """UI-supplied search, filter and sort preferences for the definition list."""

    selected_definition_id: Optional[str] = None
    data_source_filter: Optional[str] = None
    search_text: str = ""
    sort_by: Literal["name", "lastExecuted", "executionCount"] = "name"
    sort_order: Literal["asc", "desc"] = "asc"
