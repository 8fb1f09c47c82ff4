"""Batched import of a delimited file into a store table."""

from pathlib import Path
from typing import Any, AsyncIterator, List, Optional, Sequence, Tuple, Union
import logging
import math
import re

from ..models.transfer import (
    ColumnDescriptor,
    CompleteEvent,
    ImportResult,
    TransferDirection,
    TransferEvent,
    TransferJob,
)
from .clickhouse_client import ClickHouseClient
from .csv_service import read_records
from .exceptions import SchemaError, TransferError, ValidationError
from .progress import ProgressChannel, relay
from .sql_generation_service import (
    build_create_table,
    build_insert,
    quote_identifier,
    selected_columns,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000
POSITIONAL_NAME = re.compile(r"^Column(\d+)$", re.ASCII)


def column_positions(
    source_columns: Sequence[str],
    targets: Sequence[ColumnDescriptor],
    has_header: bool
) -> List[int]:
    """
    Map each selected column to its position in the parsed file.

    With a header the name must appear in it. Without one, names are
    positional (``Column1`` is the first field) and must be in range.

    Raises:
        SchemaError: If a selected column cannot be found in the source
    """
    positions = []
    for column in targets:
        if has_header:
            if column.name not in source_columns:
                raise SchemaError(
                    f"Column '{column.name}' not found in file header",
                    {"column": column.name, "header": list(source_columns)},
                )
            positions.append(list(source_columns).index(column.name))
            continue

        match = POSITIONAL_NAME.match(column.name)
        index = int(match.group(1)) - 1 if match else -1
        if index < 0 or index >= len(source_columns):
            raise SchemaError(
                f"Column '{column.name}' is outside the file's "
                f"{len(source_columns)} positional columns",
                {"column": column.name, "width": len(source_columns)},
            )
        positions.append(index)
    return positions


def partition(rows: Sequence[Any], batch_size: int) -> List[Tuple[int, Sequence[Any]]]:
    """Split rows into ``(offset, batch)`` pairs of at most ``batch_size`` rows."""
    return [
        (start, rows[start:start + batch_size])
        for start in range(0, len(rows), batch_size)
    ]


class ImportService:
    """Writes the rows of a delimited file into a table, one INSERT per batch."""

    def __init__(self, client: ClickHouseClient, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.client = client
        self.batch_size = batch_size

    def _start(
        self,
        file_path: Union[str, Path],
        delimiter: str,
        has_header: bool,
        table_name: str,
        columns: Sequence[ColumnDescriptor]
    ):
        if not table_name or not table_name.strip():
            raise ValidationError("Table name is required")
        quote_identifier(table_name, kind="table")
        targets = selected_columns(columns)
        if not delimiter or len(delimiter) != 1:
            raise ValidationError(f"Delimiter must be a single character, got {delimiter!r}")
        if not Path(file_path).is_file():
            raise ValidationError(f"File not found: {file_path}")

        channel = ProgressChannel(TransferJob(direction=TransferDirection.IMPORT))
        logger.info(
            f"Starting import job {channel.job.job_id}: {Path(file_path).name} -> "
            f"{table_name} ({len(targets)} columns, batch size {self.batch_size})"
        )
        events = self._run(
            channel, Path(file_path), delimiter, has_header, table_name.strip(), targets
        )
        return channel, events

    def stream(
        self,
        file_path: Union[str, Path],
        delimiter: str,
        has_header: bool,
        table_name: str,
        columns: Sequence[ColumnDescriptor]
    ) -> AsyncIterator[TransferEvent]:
        """
        Start an import and return its progress events.

        Parameter problems raise ``ValidationError`` before this returns.
        Parse, schema and store failures arrive as the terminal error event;
        batches inserted before the failure stay in the table.

        Args:
            file_path: Delimited file to read
            delimiter: Single-character field delimiter
            has_header: Whether the first row holds column names
            table_name: Target table, created if missing
            columns: Column descriptors; only selected ones are imported

        Returns:
            AsyncIterator of progress events ending in exactly one complete
            or error event
        """
        channel, events = self._start(file_path, delimiter, has_header, table_name, columns)
        return relay(channel, events)

    async def import_file(
        self,
        file_path: Union[str, Path],
        delimiter: str,
        has_header: bool,
        table_name: str,
        columns: Sequence[ColumnDescriptor]
    ) -> ImportResult:
        """Run an import to completion; errors propagate with their own type."""
        _, events = self._start(file_path, delimiter, has_header, table_name, columns)
        final: Optional[TransferEvent] = None
        async for event in events:
            final = event
        if not isinstance(final, CompleteEvent):
            raise TransferError("Import ended without a result")
        return ImportResult(record_count=final.record_count, table_name=final.output_location)

    async def _run(
        self,
        channel: ProgressChannel,
        file_path: Path,
        delimiter: str,
        has_header: bool,
        table_name: str,
        targets: List[ColumnDescriptor]
    ) -> AsyncIterator[TransferEvent]:
        await self.client.command(build_create_table(table_name, targets))

        source_columns, records = read_records(file_path, delimiter, has_header)
        positions = column_positions(source_columns, targets, has_header)
        rows = [[record[i] for i in positions] for record in records]

        total = len(rows)
        batches = partition(rows, self.batch_size)
        logger.info(
            f"Import job {channel.job.job_id}: {total} rows in {math.ceil(total / self.batch_size)} batches"
        )

        processed = 0
        for offset, batch in batches:
            # Row numbers in errors count data rows from 1
            statement, payload = build_insert(
                table_name, targets, batch, first_row_number=offset + 1
            )
            await self.client.command(statement, data=payload)
            processed += len(batch)
            channel.job.records_processed = processed
            yield channel.progress(processed / total * 100)

        yield channel.complete(processed, table_name)
