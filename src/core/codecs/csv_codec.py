"""
CsvCodec - comma separated text with a header line.
"""

from typing import Any

from .base_codec import BaseCodec


class CsvCodec(BaseCodec):
    """
    CSV payloads.

    The first non-blank line holds the headers. Lines are split on the
    delimiter with no quoting or escaping; headers and values are trimmed,
    blank lines are skipped and missing trailing values decode as None.
    Encoding takes the headers from the first record's keys, joins values
    with the delimiter and writes None as an empty cell.
    """

    def __init__(self, delimiter: str = ","):
        self.delimiter = delimiter

    def decode(self, raw: Any) -> list[dict[str, Any]]:
        text = self.as_text(raw, self.format_name)
        lines = [line for line in text.splitlines() if line.strip()]
        if not lines:
            return []

        headers = [h.strip() for h in lines[0].split(self.delimiter)]
        records = []
        for line in lines[1:]:
            values = line.split(self.delimiter)
            record: dict[str, Any] = {}
            for index, header in enumerate(headers):
                record[header] = values[index].strip() if index < len(values) else None
            records.append(record)
        return records

    def encode(self, records: list[dict[str, Any]]) -> str:
        if not records:
            return ""

        headers = list(records[0].keys())
        lines = [self.delimiter.join(headers)]
        for record in records:
            lines.append(self.delimiter.join("" if record.get(h) is None else str(record.get(h)) for h in headers))
        return "\n".join(lines)

    @property
    def format_name(self) -> str:
        return "csv"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(delimiter={self.delimiter!r})"
