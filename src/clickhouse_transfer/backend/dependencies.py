"""Dependency injection functions for FastAPI routes."""

from typing import Callable
import logging

from fastapi import HTTPException

from .config import Settings, get_settings
from .models.transfer import ConnectionParams
from .services.clickhouse_client import ClickHouseClient
from .services.exceptions import (
    ParseError,
    QueryError,
    SchemaError,
    StoreConnectionError,
    TransferError,
    ValidationError,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ConnectionParams], ClickHouseClient]

ERROR_STATUS = {
    ValidationError: 400,
    ParseError: 400,
    SchemaError: 400,
    QueryError: 422,
    StoreConnectionError: 502,
}


def resolve_connection(params: ConnectionParams, settings: Settings) -> ConnectionParams:
    """Fill unset connection fields from settings and check the required ones."""
    resolved = ConnectionParams(
        host=params.host or settings.CLICKHOUSE_HOST,
        port=params.port or settings.CLICKHOUSE_PORT,
        database=params.database or settings.CLICKHOUSE_DATABASE,
        username=params.username or settings.CLICKHOUSE_USER,
        password=params.password if params.password is not None else settings.CLICKHOUSE_PASSWORD,
        use_ssl=params.use_ssl if params.use_ssl is not None else settings.CLICKHOUSE_USE_SSL,
    )
    if not resolved.host or not resolved.port or not resolved.database:
        raise ValidationError("Missing required connection parameters")
    return resolved


def get_client_factory() -> ClientFactory:
    """Return a callable that opens a store client for request parameters."""
    settings = get_settings()

    def factory(params: ConnectionParams) -> ClickHouseClient:
        return ClickHouseClient(
            resolve_connection(params, settings),
            timeout=settings.CLICKHOUSE_TIMEOUT,
        )

    return factory


def http_error(error: Exception) -> HTTPException:
    """Translate a service error into an HTTP error response."""
    if isinstance(error, TransferError):
        status_code = ERROR_STATUS.get(type(error), 500)
        logger.warning(f"{type(error).__name__}: {error.message}")
        return HTTPException(status_code=status_code, detail=error.message)
    logger.error(f"Unexpected error: {str(error)}")
    return HTTPException(status_code=500, detail=str(error))
