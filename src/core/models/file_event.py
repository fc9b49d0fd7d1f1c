"""
FileEvent, ProcessingJob and FileContent models used by the file event source.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

FileEventType = Literal["added", "changed", "removed", "error"]
ProcessingStatus = Literal["pending", "processing", "completed", "error"]
JobStatus = Literal["queued", "processing", "completed", "failed"]

# Allowed processing_status moves; staying in "processing" covers in-place retries
_STATUS_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"processing", "error"},
    "processing": {"processing", "completed", "error"},
    "completed": set(),
    "error": set(),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FileEvent(BaseModel):
    """
    A detected file system change.

    Created on first detection and mutated only by the file event source
    as the file moves through processing.

    Attributes:
        event_id: Unique identifier
        endpoint_id: Endpoint whose watcher saw the change
        event_type: added, changed, removed or error
        file_path: Absolute path at detection time
        file_name: Base name
        file_size: Size in bytes at detection (0 for removals)
        checksum: MD5 of the content for files under 10 MiB
        extension: Lower-cased extension with the dot
        directory: Parent directory
        last_modified: File mtime
        processing_status: pending -> processing -> completed | error
        error_message: Last processing error
    """

    event_id: str
    endpoint_id: str
    event_type: FileEventType
    file_path: str
    file_name: str
    file_size: int = 0
    timestamp: datetime = Field(default_factory=_now)
    checksum: str | None = None
    extension: str = ""
    directory: str = ""
    last_modified: datetime | None = None
    processing_status: ProcessingStatus = "pending"
    error_message: str | None = None

    def transition(self, status: ProcessingStatus) -> None:
        """
        Move to a new processing status.

        Raises:
            ValueError: If the move would go backwards
        """
        if status not in _STATUS_TRANSITIONS[self.processing_status]:
            raise ValueError(
                f"Illegal status transition for {self.file_name}: "
                f"{self.processing_status} -> {status}"
            )
        self.processing_status = status


class ProcessingJob(BaseModel):
    """
    Processing of one FileEvent.

    A failed attempt is retried in place: same job_id, attempts + 1.

    Attributes:
        job_id: Unique identifier
        file_event: The event being processed
        status: queued, processing, completed or failed
        attempts: Attempts started so far
        start_time: Start of the latest attempt
        end_time: When the job reached completed or failed
        result: Handler result on success
        error: Last error message
        final_path: Where the file ended up after post-processing
    """

    job_id: str
    file_event: FileEvent
    status: JobStatus = "queued"
    attempts: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    result: Any = None
    error: str | None = None
    final_path: str | None = None

    @property
    def processing_time_ms(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds() * 1000


class FileContent(BaseModel):
    """
    Content read from a watched file.

    Attributes:
        file_path: Path read
        content: Text (utf8/base64 encodings) or bytes (binary)
        encoding: Encoding used for the read
        size: Size in bytes
        checksum: MD5 of the raw bytes
        mime_type: Guessed from the extension
        modified_at: File mtime
    """

    file_path: str
    content: str | bytes
    encoding: str
    size: int
    checksum: str
    mime_type: str = "application/octet-stream"
    modified_at: datetime | None = None

    def as_text(self) -> str:
        if isinstance(self.content, bytes):
            return self.content.decode("utf-8", errors="replace")
        return self.content
