"""
File reading: size limits, encodings, checksums and MIME types.

Everything here is blocking and meant to run in a worker thread
(``asyncio.to_thread``).
"""

import base64
import hashlib
from datetime import datetime, timezone
from pathlib import Path

from src.core.models import FileContent

CHECKSUM_MAX_BYTES = 10 * 1024 * 1024
_CHUNK_SIZE = 1024 * 1024

MIME_TYPES = {
    ".txt": "text/plain",
    ".csv": "text/csv",
    ".json": "application/json",
    ".xml": "application/xml",
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".zip": "application/zip",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


class FileReadError(Exception):
    """Raised when a file is too large or cannot be decoded with its encoding."""

    def __init__(self, file_path: str, message: str):
        self.file_path = file_path
        self.message = message
        super().__init__(f"{file_path}: {message}")


def guess_mime_type(extension: str) -> str:
    return MIME_TYPES.get(extension.lower(), "application/octet-stream")


def file_checksum(path: Path) -> str | None:
    """MD5 of a non-empty file smaller than 10 MiB, else None."""
    size = path.stat().st_size
    if size == 0 or size >= CHECKSUM_MAX_BYTES:
        return None
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def read_file(path: Path, encoding: str = "utf8", max_size: int = CHECKSUM_MAX_BYTES) -> FileContent:
    """
    Read a file with a per-type encoding.

    Args:
        path: File to read
        encoding: utf8 (text), binary (bytes) or base64 (base64 text)
        max_size: Largest accepted size in bytes, checked before reading

    Raises:
        FileReadError: If the file is too large or not valid UTF-8
        OSError: If the file cannot be read
    """
    stat = path.stat()
    if stat.st_size > max_size:
        raise FileReadError(str(path), f"File too large: {stat.st_size} > {max_size} bytes")

    raw = path.read_bytes()

    if encoding == "binary":
        content: str | bytes = raw
    elif encoding == "base64":
        content = base64.b64encode(raw).decode("ascii")
    else:
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FileReadError(str(path), f"Not valid UTF-8: {e}")

    return FileContent(
        file_path=str(path),
        content=content,
        encoding=encoding,
        size=len(raw),
        checksum=hashlib.md5(raw).hexdigest(),
        mime_type=guess_mime_type(path.suffix),
        modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )
