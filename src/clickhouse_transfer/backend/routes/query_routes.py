"""API routes for composing multi-table queries."""

from fastapi import APIRouter
import logging

from clickhouse_transfer.backend.dependencies import http_error
from clickhouse_transfer.backend.models.transfer import JoinQueryRequest
from clickhouse_transfer.backend.services.exceptions import ValidationError
from clickhouse_transfer.backend.services.sql_generation_service import build_join_query

logger = logging.getLogger(__name__)

router = APIRouter(tags=["queries"])


@router.post("/query/join")
async def compose_join_query(request: JoinQueryRequest):
    """Build a raw SELECT from a primary table and join clauses."""
    try:
        query = build_join_query(
            request.primary,
            request.joins,
            filter=request.filter,
            order_by=request.order_by,
            limit=request.limit,
        )
    except ValidationError as e:
        raise http_error(e)
    logger.info(f"Composed join query over {len(request.joins) + 1} tables")
    return {"query": query}
