from typing import Any, Dict, List, Optional
import structlog

from query_runtime.models import DynamicQuerySpec, QueryValidationResult

logger = structlog.get_logger()


class BuilderState:
    """The ad-hoc query draft being assembled, plus its validation and preview outcome."""

    def __init__(self):
        self.current_query: Optional[DynamicQuerySpec] = None
        self.validation_result: Optional[QueryValidationResult] = None
        self.preview_data: Optional[List[Dict[str, Any]]] = None
        self.is_validating = False
        self.is_testing = False
        self.error: Optional[str] = None

    @property
    def phase(self) -> str:
        """idle, validating, validated or errored"""
        if self.is_validating:
            return "validating"
        if self.error:
            return "errored"
        if self.validation_result is not None:
            return "validated"
        return "idle"

    def set_draft(self, spec: Optional[DynamicQuerySpec]) -> None:
        self.current_query = spec
        self.validation_result = None
        self.preview_data = None
        self.error = None

    def record_validation_pending(self) -> None:
        self.is_validating = True
        self.error = None

    def record_validation_result(self, result: QueryValidationResult) -> None:
        self.is_validating = False
        self.validation_result = result
        logger.debug("Draft validated", is_valid=result.is_valid, errors=len(result.errors))

    def record_validation_error(self, message: str) -> None:
        self.is_validating = False
        self.error = message

    def record_test_pending(self) -> None:
        self.is_testing = True
        self.error = None

    def record_preview(self, rows: List[Dict[str, Any]]) -> None:
        self.is_testing = False
        self.preview_data = rows

    def record_test_error(self, message: str) -> None:
        self.is_testing = False
        self.error = message

    def clear(self) -> None:
        """Back to idle with no draft."""
        self.set_draft(None)
        self.is_validating = False
        self.is_testing = False
