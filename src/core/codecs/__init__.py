"""
Format codecs.

Convert raw payloads (JSON, XML, CSV, EDI, fixed width, binary) into
generic records and back.
"""

from ..models.processing_config import DataFormat
from .base_codec import BaseCodec, CodecError
from .csv_codec import CsvCodec
from .edi_codec import EdiCodec
from .fixed_width_codec import FixedWidthCodec
from .json_codec import JsonCodec
from .passthrough_codec import PassthroughCodec
from .xml_codec import XmlCodec

CODEC_REGISTRY: dict[DataFormat, type[BaseCodec]] = {
    DataFormat.JSON: JsonCodec,
    DataFormat.XML: XmlCodec,
    DataFormat.CSV: CsvCodec,
    DataFormat.EDI: EdiCodec,
    DataFormat.FIXED_WIDTH: FixedWidthCodec,
}


def get_codec(data_format: DataFormat | str) -> BaseCodec:
    """
    Return a codec for a format.

    Raises:
        CodecError: If the format is unknown
    """
    try:
        data_format = DataFormat(data_format)
    except ValueError:
        raise CodecError(str(data_format), "Unsupported data format")

    if data_format in (DataFormat.BINARY, DataFormat.CUSTOM):
        return PassthroughCodec(data_format.value)
    return CODEC_REGISTRY[data_format]()


__all__ = [
    "BaseCodec",
    "CodecError",
    "CsvCodec",
    "EdiCodec",
    "FixedWidthCodec",
    "JsonCodec",
    "PassthroughCodec",
    "XmlCodec",
    "CODEC_REGISTRY",
    "get_codec",
]
