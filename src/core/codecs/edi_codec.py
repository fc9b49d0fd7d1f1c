"""
EdiCodec - EDIFACT-style segment text.
"""

import json
from typing import Any

from .base_codec import BaseCodec

SEGMENT_TERMINATOR = "~"
ELEMENT_SEPARATOR = "+"


class EdiCodec(BaseCodec):
    """
    Segments are separated by ``~`` and elements by ``+``.

    ``UNH+1+ORDERS~BGM+220`` decodes to
    ``[{"segment": "UNH", "elements": ["1", "ORDERS"]}, {"segment": "BGM", "elements": ["220"]}]``.
    """

    def decode(self, raw: Any) -> list[dict[str, Any]]:
        text = self.as_text(raw, self.format_name)
        records = []
        for segment in text.split(SEGMENT_TERMINATOR):
            segment = segment.strip()
            if not segment:
                continue
            parts = segment.split(ELEMENT_SEPARATOR)
            records.append({"segment": parts[0], "elements": parts[1:]})
        return records

    def encode(self, records: list[dict[str, Any]]) -> str:
        segments = []
        for record in records:
            if "segment" in record:
                segments.append(ELEMENT_SEPARATOR.join(
                    [str(record["segment"])] + [str(e) for e in record.get("elements") or []]
                ))
            else:
                segments.append(json.dumps(record, default=str))
        return SEGMENT_TERMINATOR.join(segments)

    @property
    def format_name(self) -> str:
        return "edi"
