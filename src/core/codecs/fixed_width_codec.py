"""
FixedWidthCodec - positional text records.
"""

import json
from typing import Any

from .base_codec import BaseCodec, CodecError


class FixedWidthCodec(BaseCodec):
    """
    Fixed width payloads.

    Without ``field_widths`` the text is passed through as a single
    ``{"raw_data": text}`` record and encoding writes one JSON line per
    record. With ``field_widths`` (ordered ``(name, width)`` pairs) each
    line is sliced into trimmed fields and encoding pads them back.
    """

    def __init__(self, field_widths: list[tuple[str, int]] | None = None):
        self.field_widths = field_widths or []

    def decode(self, raw: Any) -> list[dict[str, Any]]:
        text = self.as_text(raw, self.format_name)
        if not self.field_widths:
            return [{"raw_data": text}]

        records = []
        for line in text.splitlines():
            if not line.strip():
                continue
            record = {}
            position = 0
            for name, width in self.field_widths:
                chunk = line[position:position + width]
                record[name] = chunk.strip() or None
                position += width
            records.append(record)
        return records

    def encode(self, records: list[dict[str, Any]]) -> str:
        if not self.field_widths:
            return "\n".join(json.dumps(record, default=str) for record in records)

        lines = []
        for record in records:
            line = ""
            for name, width in self.field_widths:
                value = "" if record.get(name) is None else str(record[name])
                if len(value) > width:
                    raise CodecError(
                        self.format_name,
                        f"Value for '{name}' is {len(value)} characters, field width is {width}"
                    )
                line += value.ljust(width)
            lines.append(line)
        return "\n".join(lines)

    @property
    def format_name(self) -> str:
        return "fixed_width"
