import time
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional
import structlog

from query_runtime.models import ExecutionStatus, QueryExecution, QueryExecutionResult
from query_runtime.utils import same_parameters

logger = structlog.get_logger()


class ExecutionTracker:
    """
    Tracks every query invocation from initiation to a terminal outcome.

    Each execution id lives in exactly one partition: the active list while it
    is in flight, the history once it is finalized. History is capped, most
    recent first; the oldest record falls off the back and is discarded.
    """

    def __init__(self, max_history: int = 50, clock: Callable[[], float] = time.time):
        self.by_id: Dict[str, QueryExecution] = {}
        self.active_ids: List[str] = []
        self.history_ids: Deque[str] = deque()
        # query_id -> last error message ("" once a new run starts)
        self.errors: Dict[str, str] = {}
        self.max_history = max_history
        self._clock = clock

        logger.info("ExecutionTracker initialized", max_history=max_history)

    def begin(self, query_id: str, parameters: Optional[Dict[str, Any]] = None) -> QueryExecution:
        """Record a new pending execution and return it."""
        execution = QueryExecution(
            id=f"exec_{uuid.uuid4().hex}",
            query_id=query_id,
            parameters=dict(parameters or {}),
            start_time=self._clock(),
        )
        self.by_id[execution.id] = execution
        self.active_ids.append(execution.id)
        self.errors[query_id] = ""

        logger.info("Execution started", execution_id=execution.id, query_id=query_id)
        return execution

    def mark_running(self, execution_id: str) -> bool:
        """Report progress: pending -> running. Returns False if the execution is not pending."""
        execution = self.by_id.get(execution_id)
        if execution is None or execution.status != ExecutionStatus.PENDING:
            return False
        execution.status = ExecutionStatus.RUNNING
        logger.debug("Execution running", execution_id=execution_id, query_id=execution.query_id)
        return True

    def complete(
        self,
        query_id: str,
        parameters: Optional[Dict[str, Any]],
        result: QueryExecutionResult,
        execution_id: Optional[str] = None,
        from_cache: bool = False,
    ) -> Optional[QueryExecution]:
        """
        Finalize an execution as completed.

        With an execution_id that execution is finalized; otherwise the most
        recent pending execution with the same query id and parameters is.
        Returns the finalized execution, or None if nothing matched.
        """
        execution = self._locate(query_id, parameters, execution_id)
        if execution is None:
            logger.warning(
                "No in-flight execution to complete",
                query_id=query_id,
                execution_id=execution_id
            )
            return None

        execution.result = result
        execution.from_cache = from_cache
        self._finalize(execution, ExecutionStatus.COMPLETED)
        return execution

    def fail(
        self,
        query_id: str,
        parameters: Optional[Dict[str, Any]],
        error: str,
        execution_id: Optional[str] = None,
    ) -> Optional[QueryExecution]:
        """Finalize an execution as failed and record the error for its query id."""
        execution = self._locate(query_id, parameters, execution_id)
        if execution is None:
            logger.warning(
                "No in-flight execution to fail",
                query_id=query_id,
                execution_id=execution_id
            )
            return None

        self.errors[query_id] = error
        execution.error = error
        self._finalize(execution, ExecutionStatus.FAILED)
        return execution

    def cancel(self, execution_id: str, reason: Optional[str] = None) -> Optional[QueryExecution]:
        """
        Record an execution as cancelled.

        This is bookkeeping only: a remote call already issued keeps running,
        and its eventual outcome is ignored for this execution.
        """
        execution = self.by_id.get(execution_id)
        if execution is None or execution.status.is_terminal:
            return None

        execution.error = reason
        self._finalize(execution, ExecutionStatus.CANCELLED)
        return execution

    def get(self, execution_id: str) -> Optional[QueryExecution]:
        return self.by_id.get(execution_id)

    def active_executions(self) -> List[QueryExecution]:
        return [self.by_id[execution_id] for execution_id in self.active_ids]

    def history(self) -> List[QueryExecution]:
        return [self.by_id[execution_id] for execution_id in self.history_ids]

    def is_loading(self, query_id: str) -> bool:
        return any(self.by_id[execution_id].query_id == query_id for execution_id in self.active_ids)

    def error_for(self, query_id: str) -> Optional[str]:
        return self.errors.get(query_id) or None

    def clear_history(self) -> int:
        """Drop all finalized records. Active executions are untouched."""
        removed = len(self.history_ids)
        for execution_id in self.history_ids:
            self.by_id.pop(execution_id, None)
        self.history_ids.clear()
        logger.info("Execution history cleared", removed=removed)
        return removed

    def _locate(
        self,
        query_id: str,
        parameters: Optional[Dict[str, Any]],
        execution_id: Optional[str],
    ) -> Optional[QueryExecution]:
        if execution_id is not None:
            if execution_id not in self.active_ids:
                return None
            return self.by_id[execution_id]

        # Most recent first
        for active_id in reversed(self.active_ids):
            execution = self.by_id[active_id]
            if (
                execution.status == ExecutionStatus.PENDING
                and execution.query_id == query_id
                and same_parameters(execution.parameters, parameters)
            ):
                return execution
        return None

    def _finalize(self, execution: QueryExecution, status: ExecutionStatus) -> None:
        execution.status = status
        execution.end_time = self._clock()

        self.active_ids.remove(execution.id)
        self.history_ids.appendleft(execution.id)

        while len(self.history_ids) > self.max_history:
            dropped = self.history_ids.pop()
            self.by_id.pop(dropped, None)

        logger.info(
            "Execution finished",
            execution_id=execution.id,
            query_id=execution.query_id,
            status=status.value,
            duration_seconds=execution.duration_seconds
        )
