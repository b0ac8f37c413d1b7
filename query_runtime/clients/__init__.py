from .query_service_client import QueryExecutionService, QueryServiceClient

__all__ = [
    "QueryExecutionService",
    "QueryServiceClient",
]
