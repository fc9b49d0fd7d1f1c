"""
Base codec interface for all payload formats.

All codecs inherit from BaseCodec and implement decode() and encode().
"""

from abc import ABC, abstractmethod
from typing import Any


class CodecError(Exception):
    """Raised when a payload cannot be decoded or records cannot be encoded."""

    def __init__(self, format_name: str, message: str):
        self.format_name = format_name
        self.message = message
        super().__init__(f"[{format_name}] {message}")


class BaseCodec(ABC):
    """
    Abstract base class for all codecs.

    ``decode`` turns a raw payload into a list of generic records,
    ``encode`` turns a list of records into the wire payload.
    """

    @abstractmethod
    def decode(self, raw: Any) -> list[dict[str, Any]]:
        """
        Decode a raw payload.

        Raises:
            CodecError: If the payload is malformed
        """

    @abstractmethod
    def encode(self, records: list[dict[str, Any]]) -> Any:
        """
        Encode records.

        Raises:
            CodecError: If the records cannot be represented
        """

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Return the format identifier."""

    @staticmethod
    def as_text(raw: Any, format_name: str) -> str:
        if isinstance(raw, bytes):
            try:
                return raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise CodecError(format_name, f"Payload is not valid UTF-8: {e}")
        if not isinstance(raw, str):
            raise CodecError(format_name, f"Expected text payload, got {type(raw).__name__}")
        return raw

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
