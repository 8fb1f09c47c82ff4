"""API routes for table discovery, schema resolution and previews."""

from fastapi import APIRouter, Depends, HTTPException
import logging

from clickhouse_transfer.backend.config import get_settings
from clickhouse_transfer.backend.dependencies import (
    ClientFactory,
    get_client_factory,
    http_error,
)
from clickhouse_transfer.backend.models.transfer import (
    PreviewRequest,
    SchemaRequest,
    TablesRequest,
)
from clickhouse_transfer.backend.services.exceptions import TransferError
from clickhouse_transfer.backend.services.schema_service import SchemaService

logger = logging.getLogger(__name__)

# Create router without prefix (prefix is set in main.py)
router = APIRouter(tags=["clickhouse"])


@router.post("/tables/clickhouse")
async def list_tables(
    request: TablesRequest,
    client_factory: ClientFactory = Depends(get_client_factory)
):
    """List the tables of the connection's database."""
    try:
        async with client_factory(request) as client:
            tables = await SchemaService(client).list_tables()
        return {"tables": tables}
    except TransferError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error fetching tables: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/schema/clickhouse")
async def get_schema(
    request: SchemaRequest,
    client_factory: ClientFactory = Depends(get_client_factory)
):
    """Resolve the columns of a table or query."""
    try:
        async with client_factory(request) as client:
            columns = await SchemaService(client).resolve(request.query_spec)
        return {"columns": [c.model_dump(by_alias=True) for c in columns]}
    except TransferError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error fetching schema: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/preview/clickhouse")
async def preview_rows(
    request: PreviewRequest,
    client_factory: ClientFactory = Depends(get_client_factory)
):
    """Return the first rows of the selected columns."""
    settings = get_settings()
    try:
        async with client_factory(request) as client:
            service = SchemaService(client, preview_limit=settings.PREVIEW_LIMIT)
            preview = await service.preview(request.query_spec, limit=request.limit)
        return preview.model_dump()
    except TransferError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error previewing data: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
