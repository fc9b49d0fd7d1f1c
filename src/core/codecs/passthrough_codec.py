"""
PassthroughCodec - binary and custom payloads handed over untouched.
"""

from typing import Any

from .base_codec import BaseCodec


class PassthroughCodec(BaseCodec):
    """
    Opaque payloads.

    Decoding wraps the raw value as ``{"data": raw}`` unless it is already
    a record or list of records; encoding returns the record list.
    """

    def __init__(self, name: str = "binary"):
        self._name = name

    def decode(self, raw: Any) -> list[dict[str, Any]]:
        if isinstance(raw, dict):
            return [raw]
        if isinstance(raw, list) and all(isinstance(item, dict) for item in raw):
            return list(raw)
        return [{"data": raw}]

    def encode(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return records

    @property
    def format_name(self) -> str:
        return self._name
