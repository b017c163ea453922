"""
Conversion between plain Python records and Firestore typed values.

Every value on the wire is a JSON object with exactly one key naming its type,
for example ``{"integerValue": "14"}`` or ``{"mapValue": {"fields": {...}}}``.
Only the closed set of types in ``ValueKind`` is understood; anything else is a
SerializationError rather than a silently dropped field.
"""

import base64
import binascii
import math
import re
from collections.abc import Mapping
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from firestore_auth.documents.schemas import Document
from firestore_auth.exceptions import SerializationError

ModelT = TypeVar("ModelT", bound=BaseModel)

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
INTEGER_PATTERN = re.compile(r"-?[0-9]+")
DOUBLE_PATTERN = re.compile(r"-?[0-9]+(\.[0-9]*)?([eE][+-]?[0-9]+)?|NaN|-?Infinity")


class ValueKind(str, Enum):
    """Wire tags of Firestore values."""

    STRING = "stringValue"
    INTEGER = "integerValue"
    DOUBLE = "doubleValue"
    BOOLEAN = "booleanValue"
    NULL = "nullValue"
    TIMESTAMP = "timestampValue"
    BYTES = "bytesValue"
    ARRAY = "arrayValue"
    MAP = "mapValue"
    REFERENCE = "referenceValue"
    GEO_POINT = "geoPointValue"


_KINDS = {kind.value: kind for kind in ValueKind}


def _encode_double(value: float) -> dict[str, Any]:
    if math.isnan(value):
        return {ValueKind.DOUBLE.value: "NaN"}
    if math.isinf(value):
        return {ValueKind.DOUBLE.value: "Infinity" if value > 0 else "-Infinity"}
    return {ValueKind.DOUBLE.value: value}


def encode_value(value: Any, _path: tuple[int, ...] = ()) -> dict[str, Any]:
    """
    Encode a Python value as a Firestore typed value.

    Raises:
        SerializationError: For unsupported types, integers outside the signed
            64-bit range, non-string map keys and self-containing containers
    """
    # bool is a subclass of int and must be matched first
    if isinstance(value, bool):
        return {ValueKind.BOOLEAN.value: value}
    if isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise SerializationError(f"Integer {value} does not fit into 64 bits")
        return {ValueKind.INTEGER.value: str(value)}
    if isinstance(value, float):
        return _encode_double(value)
    if isinstance(value, str):
        return {ValueKind.STRING.value: value}
    if value is None:
        return {ValueKind.NULL.value: None}
    if isinstance(value, (bytes, bytearray)):
        return {ValueKind.BYTES.value: base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, BaseModel):
        return encode_value(value.model_dump(), _path)

    if isinstance(value, (Mapping, list, tuple)):
        if id(value) in _path:
            raise SerializationError("Cannot encode a container that contains itself")
        path = (*_path, id(value))

        if isinstance(value, Mapping):
            fields = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise SerializationError(
                        f"Map keys must be strings, got {type(key).__name__}"
                    )
                fields[key] = encode_value(item, path)
            return {ValueKind.MAP.value: {"fields": fields}}

        return {ValueKind.ARRAY.value: {"values": [encode_value(item, path) for item in value]}}

    raise SerializationError(f"Cannot encode value of type {type(value).__name__}")


def decode_value(wire: Any, document_name: str | None = None) -> Any:
    """
    Decode a Firestore typed value into a plain Python value.

    Timestamps and references stay strings, bytes become ``bytes`` and geo
    points become ``{"latitude": ..., "longitude": ...}`` dicts.

    Raises:
        SerializationError: If the value does not carry exactly one known tag
            or its payload is malformed
    """
    if not isinstance(wire, Mapping) or len(wire) != 1:
        raise SerializationError("A value must carry exactly one type tag", document_name)

    tag, payload = next(iter(wire.items()))
    kind = _KINDS.get(tag)
    if kind is None:
        raise SerializationError(f"Unknown value type '{tag}'", document_name)

    if kind is ValueKind.NULL:
        return None
    if kind is ValueKind.BOOLEAN:
        if not isinstance(payload, bool):
            raise SerializationError(f"Invalid boolean value {payload!r}", document_name)
        return payload
    if kind is ValueKind.INTEGER:
        # int64 travels as a decimal string
        if not isinstance(payload, str) or not INTEGER_PATTERN.fullmatch(payload):
            raise SerializationError(f"Invalid integer value {payload!r}", document_name)
        value = int(payload)
        if not INT64_MIN <= value <= INT64_MAX:
            raise SerializationError(f"Integer {payload} does not fit into 64 bits", document_name)
        return value
    if kind is ValueKind.DOUBLE:
        if isinstance(payload, bool) or not isinstance(payload, (int, float, str)):
            raise SerializationError(f"Invalid double value {payload!r}", document_name)
        if isinstance(payload, str) and not DOUBLE_PATTERN.fullmatch(payload):
            raise SerializationError(f"Invalid double value {payload!r}", document_name)
        return float(payload)
    if kind in (ValueKind.STRING, ValueKind.TIMESTAMP, ValueKind.REFERENCE):
        if not isinstance(payload, str):
            raise SerializationError(f"Invalid {tag} {payload!r}", document_name)
        return payload
    if kind is ValueKind.BYTES:
        try:
            return base64.b64decode(payload, validate=True)
        except (TypeError, ValueError, binascii.Error) as e:
            raise SerializationError(f"Invalid bytes value {payload!r}", document_name) from e

    # Composite kinds; empty arrays and maps arrive as {}
    if not isinstance(payload, Mapping):
        raise SerializationError(f"Invalid {tag} {payload!r}", document_name)
    if kind is ValueKind.GEO_POINT:
        try:
            return {
                "latitude": float(payload.get("latitude", 0.0)),
                "longitude": float(payload.get("longitude", 0.0)),
            }
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Invalid geo point {payload!r}", document_name) from e
    if kind is ValueKind.ARRAY:
        return [decode_value(item, document_name) for item in payload.get("values", [])]

    # ValueKind.MAP
    return decode_fields(payload.get("fields", {}), document_name)


def encode_fields(record: Mapping[str, Any] | BaseModel) -> dict[str, dict[str, Any]]:
    """
    Encode a record into the ``fields`` map of a document.

    Raises:
        SerializationError: If the record is not a mapping or model, or any
            value cannot be encoded
    """
    encoded = encode_value(record)
    if ValueKind.MAP.value not in encoded:
        raise SerializationError(
            f"A document record must be a mapping or model, got {type(record).__name__}"
        )
    return encoded[ValueKind.MAP.value]["fields"]


def decode_fields(fields: Mapping[str, Any], document_name: str | None = None) -> dict[str, Any]:
    """Decode the ``fields`` map of a document into a plain dict."""
    return {key: decode_value(value, document_name) for key, value in fields.items()}


def record_to_document(
    record: Mapping[str, Any] | BaseModel, *, only_set_fields: bool = False
) -> Document:
    """
    Build a document from a record.

    Args:
        record: Mapping with string keys, or a pydantic model
        only_set_fields: For models, leave out fields that were never set
            explicitly (used for merge writes)
    """
    if isinstance(record, BaseModel):
        record = record.model_dump(exclude_unset=only_set_fields)
    return Document(fields=encode_fields(record))


def document_to_record(document: Document, model: type[ModelT] | None = None) -> Any:
    """
    Decode a document's fields, optionally validating them into ``model``.

    Raises:
        SerializationError: If a value cannot be decoded or the fields do not
            validate against ``model``; carries the document name
    """
    record = decode_fields(document.fields or {}, document.name)
    if model is None:
        return record
    try:
        return model.model_validate(record)
    except ValidationError as e:
        raise SerializationError(
            f"Document does not match {model.__name__}: {e}", document.name
        ) from e
