"""Envelope serialization per subscription content type.

The signer signs the exact bytes produced here, so serialization is
deterministic: JSON keys keep insertion order with compact separators, and
form fields are flattened in a stable order.
"""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import urlencode
from xml.etree import ElementTree as ET

from hookrelay.exceptions import ConfigurationError

XML_ROOT_TAG = "webhook"


def _to_json(body: dict[str, Any]) -> bytes:
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _xml_tag(key: str) -> str:
    """Make a dict key usable as an XML element name."""
    tag = "".join(c if c.isalnum() or c in "_-." else "_" for c in str(key))
    if not tag or not (tag[0].isalpha() or tag[0] == "_"):
        tag = f"_{tag}"
    return tag


def _append_xml(parent: ET.Element, key: str, value: Any) -> None:
    element = ET.SubElement(parent, _xml_tag(key))
    if isinstance(value, dict):
        for child_key, child_value in value.items():
            _append_xml(element, child_key, child_value)
    elif isinstance(value, list | tuple):
        for item in value:
            _append_xml(element, "item", item)
    elif value is None:
        element.set("nil", "true")
    elif isinstance(value, bool):
        element.text = "true" if value else "false"
    else:
        element.text = str(value)


def _to_xml(body: dict[str, Any]) -> bytes:
    root = ET.Element(XML_ROOT_TAG)
    for key, value in body.items():
        _append_xml(root, key, value)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def _flatten(prefix: str, value: Any, out: list[tuple[str, str]]) -> None:
    """Flatten nested data into bracketed form keys, e.g. data[items][0][sku]."""
    if isinstance(value, dict):
        for key, child in value.items():
            _flatten(f"{prefix}[{key}]" if prefix else str(key), child, out)
    elif isinstance(value, list | tuple):
        for index, child in enumerate(value):
            _flatten(f"{prefix}[{index}]", child, out)
    elif value is None:
        out.append((prefix, ""))
    elif isinstance(value, bool):
        out.append((prefix, "true" if value else "false"))
    else:
        out.append((prefix, str(value)))


def _to_form(body: dict[str, Any]) -> bytes:
    pairs: list[tuple[str, str]] = []
    _flatten("", body, pairs)
    return urlencode(pairs).encode("ascii")


def _to_text(body: dict[str, Any]) -> bytes:
    return json.dumps(body, indent=2, ensure_ascii=False).encode("utf-8")


_SERIALIZERS = {
    "application/json": _to_json,
    "application/xml": _to_xml,
    "application/x-www-form-urlencoded": _to_form,
    "text/plain": _to_text,
}


def serialize_body(body: dict[str, Any], content_type: str) -> bytes:
    """Serialize a JSON-compatible envelope for the given content type.

    Args:
        body: Envelope as produced by ``WebhookEnvelope.to_body()``.
        content_type: One of the supported subscription content types.

    Returns:
        Request body bytes.

    Raises:
        ConfigurationError: Unsupported content type.
    """
    try:
        serializer = _SERIALIZERS[content_type]
    except KeyError:
        raise ConfigurationError(f"Unsupported content type: {content_type}") from None
    return serializer(body)


__all__ = ["XML_ROOT_TAG", "serialize_body"]
