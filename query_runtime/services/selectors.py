"""
Read-only projections over the query state for the presentation layer.

Every function here is pure: it never mutates the state it is given and
never touches cache hit/miss counters.
"""
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Tuple

from query_runtime.models import (
    QueryDefinition,
    QueryExecution,
    QueryExecutionResult,
    QueryStatistics,
)

if TYPE_CHECKING:
    from query_runtime.state import QueryState

SORT_KEYS = ("name", "lastExecuted", "executionCount")


def _matches_search(definition: QueryDefinition, needle: str) -> bool:
    return (
        needle in definition.name.lower()
        or needle in (definition.description or "").lower()
        or needle in definition.id.lower()
    )


def _sort_key(sort_by: str) -> Callable[[QueryDefinition], Tuple[bool, Any]]:
    # Definitions without a value always sort last, in either direction
    if sort_by == "name":
        return lambda d: (False, d.name.casefold())
    if sort_by == "lastExecuted":
        return lambda d: (d.last_executed is None, d.last_executed.timestamp() if d.last_executed else 0.0)
    if sort_by == "executionCount":
        return lambda d: (d.execution_count is None, d.execution_count or 0)
    raise ValueError(f"Unsupported sort key: {sort_by}")


def filtered_definitions(
    definitions: Iterable[QueryDefinition],
    search_text: str = "",
    data_source_filter: Optional[str] = None,
    sort_by: str = "name",
    sort_order: str = "asc",
) -> List[QueryDefinition]:
    """
    Search, filter and sort definitions.

    Search is a case-insensitive substring match over name, description and
    id. The data source filter is an exact match. Sorting is stable.
    """
    result = list(definitions)

    needle = (search_text or "").strip().lower()
    if needle:
        result = [d for d in result if _matches_search(d, needle)]

    if data_source_filter:
        result = [d for d in result if d.data_source == data_source_filter]

    key = _sort_key(sort_by)
    if sort_order == "desc":
        present = [d for d in result if not key(d)[0]]
        missing = [d for d in result if key(d)[0]]
        return sorted(present, key=key, reverse=True) + missing
    return sorted(result, key=key)


def definitions_for_preferences(state: "QueryState") -> List[QueryDefinition]:
    view = state.view
    return filtered_definitions(
        state.definitions.all(),
        search_text=view.search_text,
        data_source_filter=view.data_source_filter,
        sort_by=view.sort_by,
        sort_order=view.sort_order,
    )


def selected_definition(state: "QueryState") -> Optional[QueryDefinition]:
    if state.view.selected_definition_id is None:
        return None
    return state.definitions.get(state.view.selected_definition_id)


def active_executions(state: "QueryState") -> List[QueryExecution]:
    return state.executions.active_executions()


def execution_history(state: "QueryState") -> List[QueryExecution]:
    return state.executions.history()


def cached_result(
    state: "QueryState",
    query_id: str,
    parameters: Optional[Dict[str, Any]] = None,
) -> Optional[QueryExecutionResult]:
    entry = state.results_cache.find_entry(query_id, parameters)
    return entry.result if entry else None


def query_statistics(state: "QueryState", query_id: str) -> Optional[QueryStatistics]:
    return state.metrics.by_query.get(query_id)


def combined_metrics(state: "QueryState") -> Dict[str, Any]:
    """Overall metrics flattened together with the per-query statistics map."""
    overall = state.metrics.overall
    combined: Dict[str, Any] = overall.model_dump() if overall else {}
    combined["by_query"] = dict(state.metrics.by_query)
    return combined
