from .errors import MalformedResponseError, QueryServiceError
from .models import (
    DYNAMIC_QUERY_ID,
    DynamicQuerySpec,
    ExecutionStatus,
    QueryDefinition,
    QueryExecution,
    QueryExecutionResult,
)
from .services.config import Settings, get_settings
from .services.query_runtime import QueryRuntime
from .state import QueryState

__all__ = [
    "DYNAMIC_QUERY_ID",
    "DynamicQuerySpec",
    "ExecutionStatus",
    "MalformedResponseError",
    "QueryDefinition",
    "QueryExecution",
    "QueryExecutionResult",
    "QueryRuntime",
    "QueryServiceError",
    "QueryState",
    "Settings",
    "get_settings",
]
