import asyncio
import logging
from typing import Optional

import httpx
import structlog

from query_runtime.clients.query_service_client import QueryServiceClient
from query_runtime.services.config import Settings, get_settings
from query_runtime.services.query_runtime import QueryRuntime
from query_runtime.state import QueryState

logger = structlog.get_logger()


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )


def create_runtime(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> QueryRuntime:
    """Wire the HTTP client, a fresh state and the runtime for an application root."""
    settings = settings or get_settings()
    client = QueryServiceClient(settings, transport=transport)
    state = QueryState.from_settings(settings)
    return QueryRuntime(client, state=state, settings=settings)


async def check_service(settings: Optional[Settings] = None) -> bool:
    """Fetch health and definitions once and log a summary."""
    runtime = create_runtime(settings)
    try:
        healthy = await runtime.fetch_health()
        loaded = await runtime.fetch_definitions()
        status = runtime.state.health.status
        logger.info(
            "Query service check",
            health=status.status if status else None,
            health_error=runtime.state.health.error,
            definitions=len(runtime.state.definitions),
            definitions_error=runtime.state.definitions.error,
        )
        return healthy and loaded
    finally:
        await runtime.close()


if __name__ == "__main__":
    configure_logging()
    ok = asyncio.run(check_service())
    raise SystemExit(0 if ok else 1)
