"""Progress reporting for a single transfer job.

A ``ProgressChannel`` turns the state of a ``TransferJob`` into the events the
caller sees. Progress values never go backwards, stay below 100 until the job
completes, and exactly one terminal event (``complete`` or ``error``) closes
the channel.
"""

from typing import AsyncIterator
import json
import logging

from ..models.transfer import (
    CompleteEvent,
    ErrorEvent,
    JobStatus,
    ProgressEvent,
    TransferEvent,
    TransferJob,
)

logger = logging.getLogger(__name__)


class ProgressChannel:
    """Builds the ordered event sequence for one transfer job."""

    def __init__(self, job: TransferJob):
        self.job = job
        self.closed = False

    def _check_open(self) -> None:
        if self.closed:
            raise RuntimeError(
                f"Progress channel for job {self.job.job_id} is already closed"
            )

    def progress(self, value: float) -> ProgressEvent:
        """Report an intermediate percentage, clamped to the 0..99 range."""
        self._check_open()
        percent = max(0, min(99, int(round(value))))
        percent = max(percent, self.job.percent_complete)
        self.job.percent_complete = percent
        return ProgressEvent(progress=percent)

    def complete(self, record_count: int, output_location: str) -> CompleteEvent:
        self._check_open()
        self.closed = True
        self.job.records_processed = record_count
        self.job.percent_complete = 100
        self.job.status = JobStatus.SUCCEEDED
        logger.info(
            f"Job {self.job.job_id} ({self.job.direction.value}) completed: "
            f"{record_count} records -> {output_location}"
        )
        return CompleteEvent(record_count=record_count, output_location=output_location)

    def fail(self, message: str) -> ErrorEvent:
        self._check_open()
        self.closed = True
        self.job.status = JobStatus.FAILED
        logger.error(f"Job {self.job.job_id} ({self.job.direction.value}) failed: {message}")
        return ErrorEvent(error=message)


async def relay(
    channel: ProgressChannel,
    source: AsyncIterator[TransferEvent]
) -> AsyncIterator[TransferEvent]:
    """Forward engine events, ending with the error event if the engine raises.

    Closing the returned iterator closes ``source`` too, so the engine's
    cleanup runs when the caller stops listening.
    """
    try:
        async for event in source:
            yield event
    except Exception as e:
        logger.exception(f"Transfer job {channel.job.job_id} raised")
        if not channel.closed:
            yield channel.fail(str(e))
    finally:
        await source.aclose()

    if not channel.closed:
        yield channel.fail("Transfer ended without a result")


def to_sse(event: TransferEvent) -> str:
    """Render an event as a Server-Sent Events frame."""
    payload = event.model_dump(by_alias=True)
    return f"data: {json.dumps(payload)}\n\n"
