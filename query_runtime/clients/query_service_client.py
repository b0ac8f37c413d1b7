from typing import Any, Dict, List, Optional, Protocol, Type, TypeVar
import httpx
import structlog
from pydantic import BaseModel, ValidationError

from query_runtime.errors import MalformedResponseError, QueryServiceError
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
from query_runtime.utils import make_json_serializable

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)

# Graph API definitions arrive without these; they are all system queries on Azure AD
GRAPH_DEFINITION_DEFAULTS = {"dataSource": "azure", "isSystem": True, "version": "1.0.0"}


class QueryExecutionService(Protocol):
    """Remote query service used by the runtime. Every call may raise."""

    async def execute(
        self,
        query_id: str,
        parameters: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> QueryExecutionResult: ...

    async def execute_graph(
        self,
        query_id: str,
        parameters: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> QueryExecutionResult: ...

    async def build(self, query_spec: DynamicQuerySpec) -> QueryExecutionResult: ...

    async def validate(
        self,
        definition: QueryDefinition,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> QueryValidationResult: ...

    async def get_health(self) -> QueryHealthStatus: ...

    async def get_stats(self, query_id: Optional[str] = None) -> QueryStatistics: ...

    async def get_metrics(self) -> QueryMetrics: ...

    async def get_definitions(self, filters: Optional[Dict[str, Any]] = None) -> List[QueryDefinition]: ...

    async def get_graph_definitions(self, filters: Optional[Dict[str, Any]] = None) -> List[QueryDefinition]: ...

    async def clear_cache(self, query_id: Optional[str] = None) -> CacheClearResult: ...


class QueryServiceClient:
    """
    HTTP client for the reporting backend's /reports/query endpoints.

    The backend wraps every payload as ``{"success": bool, "data": ..., "error": ...}``.
    Responses are unwrapped here and validated into the runtime's models, so
    nothing past this class has to branch on payload shape.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.query_api_url
        self.timeout = settings.request_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self):
        """Open the underlying HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
            logger.info("Query service client connected", base_url=self.base_url)

    async def close(self):
        """Close the underlying HTTP client"""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Query service client closed")

    async def __aenter__(self) -> "QueryServiceClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def execute(
        self,
        query_id: str,
        parameters: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> QueryExecutionResult:
        data = await self._request(
            "POST",
            "/reports/query/execute",
            json={"queryId": query_id, "parameters": parameters, "options": options or {}},
        )
        return self._parse(QueryExecutionResult, data)

    async def execute_graph(
        self,
        query_id: str,
        parameters: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> QueryExecutionResult:
        data = await self._request(
            "POST",
            "/reports/query/graph/execute",
            json={"queryId": query_id, "parameters": parameters, "options": options or {}},
        )
        return self._parse(QueryExecutionResult, data)

    async def build(self, query_spec: DynamicQuerySpec) -> QueryExecutionResult:
        data = await self._request("POST", "/reports/query/build", json=query_spec.to_parameters())
        return self._parse(QueryExecutionResult, data)

    async def validate(
        self,
        definition: QueryDefinition,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> QueryValidationResult:
        data = await self._request(
            "POST",
            "/reports/query/validate",
            json={
                "queryDef": make_json_serializable(definition),
                "parameters": parameters or {},
            },
        )
        return self._parse(QueryValidationResult, data)

    async def get_health(self) -> QueryHealthStatus:
        data = await self._request("GET", "/reports/query/health")
        return self._parse(QueryHealthStatus, data)

    async def get_stats(self, query_id: Optional[str] = None) -> QueryStatistics:
        url = f"/reports/query/stats/{query_id}" if query_id else "/reports/query/stats"
        data = await self._request("GET", url)
        return self._parse(QueryStatistics, data)

    async def get_metrics(self) -> QueryMetrics:
        data = await self._request("GET", "/reports/query/metrics")
        return self._parse(QueryMetrics, data)

    async def get_definitions(self, filters: Optional[Dict[str, Any]] = None) -> List[QueryDefinition]:
        data = await self._request("GET", "/reports/query/definitions", params=filters)
        if not isinstance(data, dict) or not isinstance(data.get("definitions", []), list):
            raise MalformedResponseError("Unexpected definitions payload")
        return [self._parse(QueryDefinition, item) for item in data.get("definitions", [])]

    async def get_graph_definitions(self, filters: Optional[Dict[str, Any]] = None) -> List[QueryDefinition]:
        data = await self._request("GET", "/reports/query/graph/definitions", params=filters)
        if not isinstance(data, dict) or not isinstance(data.get("queries"), list):
            raise MalformedResponseError("Unexpected Graph definitions payload")

        definitions = []
        for item in data["queries"]:
            if not isinstance(item, dict):
                raise MalformedResponseError("Unexpected Graph definition entry")
            definitions.append(self._parse(QueryDefinition, {**item, **GRAPH_DEFINITION_DEFAULTS}))
        return definitions

    async def clear_cache(self, query_id: Optional[str] = None) -> CacheClearResult:
        url = f"/reports/query/cache/{query_id}" if query_id else "/reports/query/cache"
        data = await self._request("DELETE", url)
        return self._parse(CacheClearResult, data)

    async def _request(
        self,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        await self.connect()
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = await self._client.request(method, url, json=json, params=params or None)
        except httpx.HTTPError as e:
            logger.warning("Query service request failed", method=method, url=url, error=str(e))
            raise QueryServiceError(f"Query service unreachable: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            if response.is_error:
                raise QueryServiceError(
                    f"Query service returned HTTP {response.status_code}",
                    status_code=response.status_code,
                ) from e
            raise MalformedResponseError("Query service returned a non-JSON body", status_code=response.status_code) from e

        if not isinstance(body, dict) or "success" not in body:
            if response.is_error:
                raise QueryServiceError(
                    f"Query service returned HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            raise MalformedResponseError("Query service response is missing its envelope", status_code=response.status_code)

        if not body.get("success") or response.is_error:
            message = self._error_message(body.get("error")) or f"Query service returned HTTP {response.status_code}"
            logger.warning("Query service reported failure", method=method, url=url, status_code=response.status_code, error=message)
            raise QueryServiceError(message, status_code=response.status_code)

        if body.get("data") is None:
            raise MalformedResponseError("Query service response has no data", status_code=response.status_code)

        logger.debug("Query service request succeeded", method=method, url=url)
        return body["data"]

    @staticmethod
    def _error_message(error: Any) -> Optional[str]:
        if isinstance(error, str):
            return error or None
        if isinstance(error, dict):
            message = error.get("message")
            return str(message) if message else None
        return None

    @staticmethod
    def _parse(model: Type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning("Malformed query service payload", model=model.__name__, error=str(e))
            raise MalformedResponseError(f"Malformed {model.__name__} payload") from e
