"""
JsonCodec - JSON text or already-decoded objects.
"""

import base64
import json
from typing import Any

from .base_codec import BaseCodec, CodecError


class JsonCodec(BaseCodec):
    """
    JSON payloads.

    A top-level object decodes to one record, an array to one record per
    element. Already-decoded dicts/lists are accepted as is. Encoding
    returns the record list itself; ``encode_text`` gives the JSON string.
    """

    def decode(self, raw: Any) -> list[dict[str, Any]]:
        if isinstance(raw, (str, bytes)):
            text = self.as_text(raw, self.format_name)
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError as e:
                raise CodecError(self.format_name, f"Invalid JSON: {e}")
        else:
            parsed = raw

        if isinstance(parsed, dict):
            return [parsed]
        if isinstance(parsed, list):
            records = []
            for index, item in enumerate(parsed):
                if not isinstance(item, dict):
                    raise CodecError(
                        self.format_name,
                        f"Array element {index} is {type(item).__name__}, expected an object"
                    )
                records.append(item)
            return records
        raise CodecError(self.format_name, f"Expected object or array, got {type(parsed).__name__}")

    def encode(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        # Fail here rather than at delivery time if a record is not serializable
        self.encode_text(records)
        return records

    def encode_text(self, records: list[dict[str, Any]]) -> str:
        try:
            return json.dumps(records, ensure_ascii=False, default=json_default)
        except (TypeError, ValueError) as e:
            raise CodecError(self.format_name, f"Records are not JSON serializable: {e}")

    @property
    def format_name(self) -> str:
        return "json"


def json_default(value: Any) -> Any:
    """
    ``default`` hook for json.dumps.

    Binary payloads become base64 text; datetime and Decimal values returned
    by custom transforms become ISO strings and floats.
    """
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode("ascii")
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "__float__"):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
