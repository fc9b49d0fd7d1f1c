"""
XmlCodec - XML documents to nested mappings and back.
"""

import xml.etree.ElementTree as ET
from typing import Any

from .base_codec import BaseCodec, CodecError


class XmlCodec(BaseCodec):
    """
    XML payloads.

    Each element becomes a mapping of its children; attributes are merged
    into that mapping, repeated children become lists and text-only
    elements become strings. The decoded document is one record keyed by
    the root tag.

    Encoding wraps the records as ``<root><items>...</items></root>``.
    """

    def __init__(self, root_tag: str = "root", item_tag: str = "items"):
        self.root_tag = root_tag
        self.item_tag = item_tag

    def decode(self, raw: Any) -> list[dict[str, Any]]:
        text = self.as_text(raw, self.format_name)
        try:
            root = ET.fromstring(text.strip())
        except ET.ParseError as e:
            raise CodecError(self.format_name, f"Invalid XML: {e}")
        return [{root.tag: _element_to_value(root)}]

    def encode(self, records: list[dict[str, Any]]) -> str:
        root = ET.Element(self.root_tag)
        for record in records:
            item = ET.SubElement(root, self.item_tag)
            _fill_element(item, record)
        try:
            return ET.tostring(root, encoding="unicode")
        except (TypeError, ValueError) as e:
            raise CodecError(self.format_name, f"Records cannot be written as XML: {e}")

    @property
    def format_name(self) -> str:
        return "xml"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(root_tag={self.root_tag!r}, item_tag={self.item_tag!r})"


def _element_to_value(element: ET.Element) -> Any:
    children = list(element)
    text = (element.text or "").strip()

    if not children and not element.attrib:
        return text

    value: dict[str, Any] = dict(element.attrib)
    for child in children:
        child_value = _element_to_value(child)
        if child.tag in value:
            existing = value[child.tag]
            if isinstance(existing, list):
                existing.append(child_value)
            else:
                value[child.tag] = [existing, child_value]
        else:
            value[child.tag] = child_value
    if text:
        value["_text"] = text
    return value


def _fill_element(element: ET.Element, value: Any) -> None:
    if isinstance(value, dict):
        for key, child_value in value.items():
            if isinstance(child_value, list):
                for entry in child_value:
                    _fill_element(ET.SubElement(element, str(key)), entry)
            else:
                _fill_element(ET.SubElement(element, str(key)), child_value)
    elif value is not None:
        element.text = str(value)
