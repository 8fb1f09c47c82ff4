"""API routes for CSV parsing, export and import.

Exports and streamed imports answer with Server-Sent Events; each frame is
one progress event and the last frame is either ``complete`` or ``error``.
"""

from pathlib import Path
from typing import AsyncIterator, List, Optional
import logging
import shutil
import tempfile

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse, StreamingResponse
from pydantic import TypeAdapter
from pydantic import ValidationError as ModelValidationError

from clickhouse_transfer.backend.config import get_settings
from clickhouse_transfer.backend.dependencies import (
    ClientFactory,
    get_client_factory,
    http_error,
)
from clickhouse_transfer.backend.models.transfer import (
    ColumnDescriptor,
    ConnectionParams,
    ExportRequest,
    TransferEvent,
)
from clickhouse_transfer.backend.services.clickhouse_client import ClickHouseClient
from clickhouse_transfer.backend.services.csv_service import parse_file
from clickhouse_transfer.backend.services.exceptions import (
    TransferError,
    ValidationError,
)
from clickhouse_transfer.backend.services.export_service import (
    ExportService,
    locate_export,
)
from clickhouse_transfer.backend.services.import_service import ImportService
from clickhouse_transfer.backend.services.progress import to_sse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["transfer"])

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}

_columns_adapter = TypeAdapter(List[ColumnDescriptor])


async def _event_source(
    events: AsyncIterator[TransferEvent],
    client: ClickHouseClient,
    cleanup_dir: Optional[Path] = None
) -> AsyncIterator[str]:
    try:
        async for event in events:
            yield to_sse(event)
    finally:
        await events.aclose()
        await client.close()
        if cleanup_dir is not None:
            shutil.rmtree(cleanup_dir, ignore_errors=True)


async def _save_upload(file: UploadFile) -> Path:
    """Copy an uploaded file into a fresh temporary directory."""
    temp_dir = Path(tempfile.mkdtemp(prefix="csv-upload-"))
    file_path = temp_dir / Path(file.filename or "upload.csv").name
    file_path.write_bytes(await file.read())
    return file_path


def _parse_columns(columns_json: str) -> List[ColumnDescriptor]:
    try:
        return _columns_adapter.validate_json(columns_json)
    except ModelValidationError as e:
        raise ValidationError(f"Invalid columns: {e}") from e


@router.post("/export/clickhouse-to-file")
async def export_to_file(
    request: ExportRequest,
    client_factory: ClientFactory = Depends(get_client_factory)
):
    """Stream an export as Server-Sent Events."""
    settings = get_settings()
    try:
        client = client_factory(request)
    except TransferError as e:
        raise http_error(e)

    try:
        service = ExportService(client, export_dir=settings.EXPORT_DIR)
        events = service.stream(request.query_spec)
    except TransferError as e:
        await client.close()
        raise http_error(e)

    return StreamingResponse(
        _event_source(events, client),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/export/files/{filename}")
async def download_export(filename: str):
    """Download a finished export."""
    settings = get_settings()
    try:
        path = locate_export(settings.EXPORT_DIR, filename)
    except ValidationError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return FileResponse(path, media_type="text/csv", filename=path.name)


@router.post("/parse/csv")
async def parse_csv(
    file: UploadFile = File(...),
    delimiter: str = Form(","),
    hasHeader: bool = Form(True)
):
    """Parse an uploaded file and suggest a type for each column."""
    settings = get_settings()
    file_path = await _save_upload(file)
    try:
        parsed = parse_file(
            file_path,
            delimiter=delimiter,
            has_header=hasHeader,
            preview_limit=settings.PREVIEW_LIMIT,
            sample_size=settings.SAMPLE_SIZE,
        )
        return parsed.model_dump(by_alias=True)
    except TransferError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error parsing CSV: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    finally:
        shutil.rmtree(file_path.parent, ignore_errors=True)


def _connection_from_form(
    host: Optional[str],
    port: Optional[int],
    database: Optional[str],
    username: Optional[str],
    jwtToken: Optional[str],
    useSSL: Optional[bool]
) -> ConnectionParams:
    return ConnectionParams(
        host=host,
        port=port,
        database=database,
        username=username,
        password=jwtToken,
        use_ssl=useSSL,
    )


@router.post("/import/file-to-clickhouse")
async def import_from_file(
    file: UploadFile = File(...),
    tableName: str = Form(...),
    columns: str = Form(...),
    delimiter: str = Form(","),
    hasHeader: bool = Form(True),
    host: Optional[str] = Form(None),
    port: Optional[int] = Form(None),
    database: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
    jwtToken: Optional[str] = Form(None),
    useSSL: Optional[bool] = Form(None),
    client_factory: ClientFactory = Depends(get_client_factory)
):
    """Import an uploaded file into a table and return the record count."""
    settings = get_settings()
    file_path = await _save_upload(file)
    try:
        descriptors = _parse_columns(columns)
        params = _connection_from_form(host, port, database, username, jwtToken, useSSL)
        async with client_factory(params) as client:
            service = ImportService(client, batch_size=settings.BATCH_SIZE)
            result = await service.import_file(
                file_path, delimiter, hasHeader, tableName, descriptors
            )
        return {"success": True, **result.model_dump(by_alias=True)}
    except TransferError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Error importing to ClickHouse: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
    finally:
        shutil.rmtree(file_path.parent, ignore_errors=True)


@router.post("/import/file-to-clickhouse/stream")
async def import_from_file_stream(
    file: UploadFile = File(...),
    tableName: str = Form(...),
    columns: str = Form(...),
    delimiter: str = Form(","),
    hasHeader: bool = Form(True),
    host: Optional[str] = Form(None),
    port: Optional[int] = Form(None),
    database: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
    jwtToken: Optional[str] = Form(None),
    useSSL: Optional[bool] = Form(None),
    client_factory: ClientFactory = Depends(get_client_factory)
):
    """Import an uploaded file, streaming batch progress as Server-Sent Events."""
    settings = get_settings()
    file_path = await _save_upload(file)
    client = None
    try:
        descriptors = _parse_columns(columns)
        params = _connection_from_form(host, port, database, username, jwtToken, useSSL)
        client = client_factory(params)
        service = ImportService(client, batch_size=settings.BATCH_SIZE)
        events = service.stream(file_path, delimiter, hasHeader, tableName, descriptors)
    except TransferError as e:
        if client is not None:
            await client.close()
        shutil.rmtree(file_path.parent, ignore_errors=True)
        raise http_error(e)

    return StreamingResponse(
        _event_source(events, client, cleanup_dir=file_path.parent),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
