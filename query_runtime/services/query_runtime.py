import asyncio
from dataclasses import replace
from typing import Any, Dict, List, Optional
import structlog

from query_runtime.clients.query_service_client import QueryExecutionService
from query_runtime.errors import MalformedResponseError, describe_error
from query_runtime.models import (
    DYNAMIC_QUERY_ID,
    DynamicQuerySpec,
    QueryDefinition,
    QueryExecution,
    QueryExecutionResult,
    QueryValidationResult,
)
from query_runtime.services.cache_service import ResultCache
from query_runtime.services.config import Settings, get_settings
from query_runtime.services.selectors import SORT_KEYS
from query_runtime.state import QueryState
from query_runtime.utils import canonical_json, make_cache_key

logger = structlog.get_logger()

# In-flight key prefixes for the two remote execution endpoints
QUERY_KIND = "query"
GRAPH_KIND = "graph"


class QueryRuntime:
    """
    Async entry points of the query runtime.

    Every operation awaits at most one collaborator call and then applies a
    single synchronous update to the state: success or failure, never a
    partial one. Operations never raise; failures land as messages on the
    matching state slot and the operation returns None (or False).
    """

    def __init__(
        self,
        service: QueryExecutionService,
        state: Optional[QueryState] = None,
        settings: Optional[Settings] = None,
    ):
        self.service = service
        self.settings = settings or get_settings()
        self.state = state or QueryState.from_settings(self.settings)
        # cache_key -> task running the remote call for that invocation
        self._in_flight: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    async def fetch_definitions(self, filters: Optional[Dict[str, Any]] = None) -> bool:
        """Replace the definition catalog with the service's current list."""
        registry = self.state.definitions
        registry.mark_loading()
        try:
            definitions = await self.service.get_definitions(filters)
        except Exception as e:
            registry.record_error(describe_error(e, "Failed to fetch query definitions"))
            return False

        registry.replace_all(definitions)
        return True

    async def fetch_graph_definitions(self, filters: Optional[Dict[str, Any]] = None) -> bool:
        """Merge Graph API definitions into the catalog without replacing known ids."""
        registry = self.state.definitions
        registry.mark_loading()
        try:
            definitions = await self.service.get_graph_definitions(filters)
        except Exception as e:
            registry.record_error(describe_error(e, "Failed to fetch Graph definitions"))
            return False

        registry.merge_in(definitions)
        return True

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_query(
        self,
        query_id: str,
        parameters: Optional[Dict[str, Any]] = None,
        *,
        skip_cache: bool = False,
        timeout: Optional[int] = None,
        credential_id: Optional[int] = None,
    ) -> Optional[QueryExecutionResult]:
        """
        Execute a stored query, answering from the result cache when possible.

        Concurrent calls with the same query id, parameters, timeout and
        credential share one remote call unless skip_cache is set. Each call
        is tracked as its own execution either way.

        Returns:
            The result, or None if the execution failed or was cancelled
        """
        options = {
            key: value
            for key, value in (("skipCache", skip_cache), ("timeout", timeout), ("credentialId", credential_id))
            if value is not None
        }
        return await self._execute(
            QUERY_KIND, query_id, parameters, options, skip_cache, "Query execution failed"
        )

    async def execute_graph_query(
        self,
        query_id: str,
        parameters: Optional[Dict[str, Any]] = None,
        *,
        skip_cache: bool = False,
        page_size: Optional[int] = None,
        max_records: Optional[int] = None,
        include_count: Optional[bool] = None,
        timeout: Optional[int] = None,
    ) -> Optional[QueryExecutionResult]:
        """
        Execute a Graph API query. Tracked, cached and coalesced like
        execute_query(); Graph results share the result cache namespace.
        """
        options = {
            key: value
            for key, value in (
                ("includeCount", include_count),
                ("pageSize", page_size),
                ("maxRecords", max_records),
                ("timeout", timeout),
            )
            if value is not None
        }
        return await self._execute(
            GRAPH_KIND, query_id, parameters, options, skip_cache, "Graph query execution failed"
        )

    async def _execute(
        self,
        kind: str,
        query_id: str,
        parameters: Optional[Dict[str, Any]],
        options: Dict[str, Any],
        skip_cache: bool,
        fallback_message: str,
    ) -> Optional[QueryExecutionResult]:
        parameters = dict(parameters or {})
        tracker = self.state.executions
        cache = self.state.results_cache
        execution = tracker.begin(query_id, parameters)

        if not skip_cache:
            cached = cache.lookup(query_id, parameters)
            if cached is not None:
                tracker.complete(query_id, parameters, cached, execution_id=execution.id, from_cache=True)
                return cached

        try:
            result = await self._shared_execute(kind, query_id, parameters, options, cache, coalesce=not skip_cache)
        except asyncio.CancelledError:
            tracker.cancel(execution.id, "Execution cancelled by caller")
            raise
        except Exception as e:
            message = describe_error(e, fallback_message)
            tracker.fail(query_id, parameters, message, execution_id=execution.id)
            logger.warning(fallback_message, query_id=query_id, execution_id=execution.id, error=message)
            return None

        if tracker.complete(query_id, parameters, result, execution_id=execution.id) is None:
            # Cancelled while the remote call was in flight
            return None
        return result

    async def execute_dynamic_query(self, spec: DynamicQuerySpec) -> Optional[QueryExecutionResult]:
        """Build and run an ad-hoc query spec. Ad-hoc results are never cached."""
        parameters = spec.to_parameters()
        tracker = self.state.executions
        execution = tracker.begin(DYNAMIC_QUERY_ID, parameters)

        try:
            result = await self.service.build(spec)
            if not isinstance(result, QueryExecutionResult):
                raise MalformedResponseError("Unexpected build result")
        except Exception as e:
            message = describe_error(e, "Dynamic query execution failed")
            tracker.fail(DYNAMIC_QUERY_ID, parameters, message, execution_id=execution.id)
            logger.warning("Dynamic query failed", execution_id=execution.id, error=message)
            return None

        if tracker.complete(DYNAMIC_QUERY_ID, parameters, result, execution_id=execution.id) is None:
            return None
        return result

    def cancel_execution(self, execution_id: str, reason: Optional[str] = None) -> Optional[QueryExecution]:
        """Record an in-flight execution as cancelled. The remote call is not interrupted."""
        execution = self.state.executions.cancel(execution_id, reason or "Cancelled")
        if execution is not None:
            logger.info("Execution cancelled", execution_id=execution_id, query_id=execution.query_id)
        return execution

    # ------------------------------------------------------------------
    # Builder
    # ------------------------------------------------------------------

    async def validate_query(
        self,
        definition: QueryDefinition,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> Optional[QueryValidationResult]:
        builder = self.state.builder
        builder.record_validation_pending()
        try:
            result = await self.service.validate(definition, parameters or {})
            if not isinstance(result, QueryValidationResult):
                raise MalformedResponseError("Unexpected validation result")
        except Exception as e:
            builder.record_validation_error(describe_error(e, "Query validation failed"))
            return None

        builder.record_validation_result(result)
        return result

    async def preview_draft(self) -> Optional[List[Dict[str, Any]]]:
        """Run the current builder draft and keep its rows as preview data."""
        builder = self.state.builder
        spec = builder.current_query
        if spec is None:
            builder.record_test_error("No query draft to preview")
            return None

        builder.record_test_pending()
        result = await self.execute_dynamic_query(spec)
        if result is None:
            builder.record_test_error(
                self.state.executions.error_for(DYNAMIC_QUERY_ID) or "Dynamic query execution failed"
            )
            return None

        builder.record_preview(result.rows)
        return result.rows

    # ------------------------------------------------------------------
    # Metrics & health
    # ------------------------------------------------------------------

    async def fetch_health(self) -> bool:
        health = self.state.health
        health.mark_loading()
        try:
            status = await self.service.get_health()
        except Exception as e:
            health.record_error(describe_error(e, "Failed to fetch health status"))
            return False

        health.record_status(status)
        return True

    async def fetch_metrics(self, query_id: Optional[str] = None) -> bool:
        """Fetch per-query statistics when query_id is given, service-wide metrics otherwise."""
        metrics = self.state.metrics
        metrics.mark_loading()
        try:
            if query_id:
                stats = await self.service.get_stats(query_id)
            else:
                overall = await self.service.get_metrics()
        except Exception as e:
            metrics.record_error(describe_error(e, "Failed to fetch metrics"))
            return False

        if query_id:
            metrics.record_query_stats(query_id, stats)
        else:
            metrics.record_overall(overall)
        return True

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    async def clear_cache(self, query_id: Optional[str] = None) -> Optional[int]:
        """
        Clear the service-side cache, then the local one.

        Returns:
            Number of local entries removed, or None if the service call failed
            (the local cache is left untouched in that case)
        """
        try:
            outcome = await self.service.clear_cache(query_id)
        except Exception as e:
            logger.warning("Cache clear failed", query_id=query_id, error=describe_error(e, "Failed to clear cache"))
            return None

        removed = self.state.results_cache.clear(query_id)
        logger.info(
            "Cache cleared",
            query_id=query_id,
            local_entries=removed,
            remote_entries=outcome.entries_cleared
        )
        return removed

    def evict_cache_entry(self, query_id: str, cache_key: str) -> bool:
        return self.state.results_cache.evict(query_id, cache_key)

    # ------------------------------------------------------------------
    # View preferences
    # ------------------------------------------------------------------

    def update_view(self, **changes: Any) -> None:
        """Update search/filter/sort preferences, e.g. update_view(sort_by="name", sort_order="desc")."""
        if "sort_by" in changes and changes["sort_by"] not in SORT_KEYS:
            raise ValueError(f"Unsupported sort key: {changes['sort_by']}")
        if "sort_order" in changes and changes["sort_order"] not in ("asc", "desc"):
            raise ValueError(f"Unsupported sort order: {changes['sort_order']}")
        self.state.view = replace(self.state.view, **changes)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def reset(self) -> None:
        """Discard all state. Remote calls already issued finish without effect on the new state."""
        self.state.reset()
        self._in_flight.clear()
        logger.info("Query runtime state reset")

    async def close(self) -> None:
        close = getattr(self.service, "close", None)
        if close is not None:
            await close()

    async def _shared_execute(
        self,
        kind: str,
        query_id: str,
        parameters: Dict[str, Any],
        options: Dict[str, Any],
        cache: ResultCache,
        coalesce: bool,
    ) -> QueryExecutionResult:
        if not (coalesce and self.settings.coalesce_in_flight):
            return await self._run_remote(kind, query_id, parameters, options, cache)

        # Callers with different options (credential, timeout) never share a call
        key = f"{kind}:{make_cache_key(query_id, parameters)}:{canonical_json(options)}"
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._run_remote(kind, query_id, parameters, options, cache))
            self._in_flight[key] = task

            def cleanup(f):
                try:
                    f.result()  # Check for exceptions
                except asyncio.CancelledError:
                    logger.info("In-flight execution cancelled", query_id=query_id)
                except Exception as e:
                    logger.debug("In-flight execution failed", query_id=query_id, error=str(e))
                finally:
                    if self._in_flight.get(key) is f:
                        del self._in_flight[key]

            task.add_done_callback(cleanup)
        else:
            logger.info("Joining in-flight execution", query_id=query_id)

        # One caller giving up must not cancel the call for the others
        return await asyncio.shield(task)

    async def _run_remote(
        self,
        kind: str,
        query_id: str,
        parameters: Dict[str, Any],
        options: Dict[str, Any],
        cache: ResultCache,
    ) -> QueryExecutionResult:
        if kind == GRAPH_KIND:
            result = await self.service.execute_graph(query_id, parameters, options)
        else:
            result = await self.service.execute(query_id, parameters, options)
        if not isinstance(result, QueryExecutionResult):
            raise MalformedResponseError("Unexpected execution result")

        # cache is the one current when the call was issued; after reset() it is detached
        ttl_seconds = self._cache_ttl_for(query_id, cache)
        if ttl_seconds is not None:
            cache.put(query_id, parameters, result, ttl_seconds)
        return result

    def _cache_ttl_for(self, query_id: str, cache: ResultCache) -> Optional[int]:
        """TTL from the definition's cache settings; None when the definition opts out of caching."""
        definition = self.state.definitions.get(query_id)
        if definition is not None and definition.cache is not None:
            if not definition.cache.enabled:
                return None
            if definition.cache.ttl_seconds:
                return definition.cache.ttl_seconds
        return cache.default_ttl_seconds
