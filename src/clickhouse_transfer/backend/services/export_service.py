"""Streaming export of a table or query to a CSV file."""

from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, List, Optional, Union
import logging
import tempfile

from ..models.transfer import (
    CompleteEvent,
    ExportResult,
    QuerySpec,
    TransferDirection,
    TransferEvent,
    TransferJob,
)
from .clickhouse_client import ClickHouseClient
from .exceptions import TransferError, ValidationError
from .progress import ProgressChannel, relay
from .sql_generation_service import build_projection

logger = logging.getLogger(__name__)

EXPORT_DIR_PREFIX = "clickhouse-export-"
INITIAL_SIZE_ESTIMATE = 1_000_000
ESTIMATE_EVERY_LINES = 1000


class ProgressEstimator:
    """Estimates completion of a stream whose total size is unknown.

    Every ``ESTIMATE_EVERY_LINES`` lines the expected total is reset to twice
    the bytes seen so far, i.e. the stream is assumed to be about half done.
    """

    def __init__(self, initial_estimate: int = INITIAL_SIZE_ESTIMATE):
        self.bytes_received = 0
        self.estimated_total = initial_estimate

    def add_bytes(self, count: int) -> None:
        self.bytes_received += count

    def reestimate(self, lines: int) -> None:
        if lines > 0:
            self.estimated_total = (self.bytes_received / lines) * (lines * 2)

    @property
    def percent(self) -> float:
        if self.estimated_total <= 0:
            return 0.0
        return min(99.0, self.bytes_received / self.estimated_total * 100)


def locate_export(export_dir: Union[str, Path], filename: str) -> Path:
    """Find a finished export by file name inside the export directory."""
    name = Path(filename).name
    if name != filename or not name.endswith(".csv"):
        raise ValidationError(f"Invalid export file name: {filename}")
    matches = sorted(Path(export_dir).glob(f"{EXPORT_DIR_PREFIX}*/{name}"))
    if not matches:
        raise ValidationError(f"Export file not found: {filename}")
    return matches[-1]


class ExportService:
    """Exports the rows selected by a ``QuerySpec`` into a new CSV file."""

    def __init__(
        self,
        client: ClickHouseClient,
        export_dir: Union[str, Path, None] = None,
        chunk_size: Optional[int] = None
    ):
        self.client = client
        self.export_dir = Path(export_dir or tempfile.gettempdir())
        self.chunk_size = chunk_size

    def _create_output_path(self) -> Path:
        self.export_dir.mkdir(parents=True, exist_ok=True)
        job_dir = Path(tempfile.mkdtemp(prefix=EXPORT_DIR_PREFIX, dir=self.export_dir))
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S-%f")
        return job_dir / f"export_{timestamp}.csv"

    def stream(self, query_spec: QuerySpec) -> AsyncIterator[TransferEvent]:
        """
        Start an export and return its progress events.

        The statement is built before this returns, so validation problems
        raise ``ValidationError`` immediately. Failures after that arrive as
        the terminal error event.

        Args:
            query_spec: Source and selected columns

        Returns:
            AsyncIterator of progress events ending in exactly one complete
            or error event
        """
        channel, events = self._start(query_spec)
        return relay(channel, events)

    async def export(self, query_spec: QuerySpec) -> ExportResult:
        """Run an export to completion; errors propagate with their own type."""
        _, events = self._start(query_spec)
        final: Optional[TransferEvent] = None
        async for event in events:
            final = event
        if not isinstance(final, CompleteEvent):
            raise TransferError("Export ended without a result")
        return ExportResult(
            record_count=final.record_count,
            output_location=final.output_location,
        )

    def _start(self, query_spec: QuerySpec):
        statement = build_projection(query_spec)
        channel = ProgressChannel(TransferJob(direction=TransferDirection.EXPORT))
        logger.info(f"Starting export job {channel.job.job_id}: {statement}")
        return channel, self._run(channel, statement, list(query_spec.columns))

    async def _run(
        self,
        channel: ProgressChannel,
        statement: str,
        columns: List[str]
    ) -> AsyncIterator[TransferEvent]:
        output_path = self._create_output_path()
        estimator = ProgressEstimator()
        chunks = self.client.stream(statement, chunk_size=self.chunk_size)
        # Lines are copied as raw bytes; String columns need not be valid UTF-8
        pending = b""
        header_skipped = False
        line_count = 0

        try:
            with open(output_path, "wb") as sink:
                sink.write((",".join(columns) + "\n").encode("utf-8"))

                async for chunk in chunks:
                    estimator.add_bytes(len(chunk))
                    yield channel.progress(estimator.percent)

                    pending += chunk
                    *lines, pending = pending.split(b"\n")
                    for line in lines:
                        if not line.strip():
                            continue
                        if not header_skipped:
                            header_skipped = True
                            continue

                        sink.write(line + b"\n")
                        line_count += 1
                        channel.job.records_processed = line_count

                        if line_count % ESTIMATE_EVERY_LINES == 0:
                            estimator.reestimate(line_count)
                            yield channel.progress(estimator.percent)

                if pending.strip():
                    if header_skipped:
                        sink.write(pending + b"\n")
                        line_count += 1
                    else:
                        header_skipped = True
        finally:
            await chunks.aclose()

        yield channel.complete(line_count, str(output_path))
