"""
Per-type file handlers.

Dispatch is exhaustive over FileProcessorKind; each handler returns a
JSON-ready summary of the file.
"""

import base64
import csv
import json
from typing import Any, Callable

from src.core.codecs import CsvCodec
from src.core.models import FileContent, FileProcessorKind


def handle_csv(content: FileContent) -> dict[str, Any]:
    text = content.as_text()
    first_line = next((line for line in text.splitlines() if line.strip()), "")
    headers = [h.strip() for h in next(csv.reader([first_line]))] if first_line else []
    rows = CsvCodec().decode(text)
    return {"type": "csv", "headers": headers, "rows": rows, "total_rows": len(rows)}


def handle_xml(content: FileContent) -> dict[str, Any]:
    return {"type": "xml", "content": content.as_text(), "size": content.size}


def handle_json(content: FileContent) -> dict[str, Any]:
    try:
        data = json.loads(content.as_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}")
    return {"type": "json", "data": data, "keys": list(data.keys()) if isinstance(data, dict) else []}


def handle_text(content: FileContent) -> dict[str, Any]:
    text = content.as_text()
    return {
        "type": "text",
        "content": text,
        "line_count": len(text.split("\n")),
        "word_count": len(text.split()),
        "char_count": len(text),
    }


def handle_image(content: FileContent) -> dict[str, Any]:
    data = content.content
    encoded = base64.b64encode(data).decode("ascii") if isinstance(data, bytes) else data
    return {"type": "image", "size": content.size, "base64": encoded}


def handle_generic(content: FileContent) -> dict[str, Any]:
    return {"type": "generic", "size": content.size, "encoding": content.encoding, "checksum": content.checksum}


HANDLERS: dict[FileProcessorKind, Callable[[FileContent], dict[str, Any]]] = {
    FileProcessorKind.CSV: handle_csv,
    FileProcessorKind.XML: handle_xml,
    FileProcessorKind.JSON: handle_json,
    FileProcessorKind.TEXT: handle_text,
    FileProcessorKind.IMAGE: handle_image,
    FileProcessorKind.GENERIC: handle_generic,
}


def dispatch(kind: FileProcessorKind, content: FileContent) -> dict[str, Any]:
    """
    Run the handler for a processor kind.

    Raises:
        ValueError: If the content is malformed for its type
        CodecError: If a CSV file cannot be parsed
    """
    return HANDLERS[kind](content)
