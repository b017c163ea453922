"""Firestore documents: typed value codec and REST operations."""

from firestore_auth.documents.codec import (
    ValueKind,
    decode_fields,
    decode_value,
    document_to_record,
    encode_fields,
    encode_value,
    record_to_document,
)
from firestore_auth.documents.operations import (
    abs_to_rel,
    contents,
    delete,
    document_name,
    list_documents,
    query,
    read,
    read_by_name,
    write,
)
from firestore_auth.documents.schemas import (
    Document,
    FieldOperator,
    WriteOptions,
    WriteResult,
)

__all__ = [
    "ValueKind",
    "decode_fields",
    "decode_value",
    "document_to_record",
    "encode_fields",
    "encode_value",
    "record_to_document",
    "abs_to_rel",
    "contents",
    "delete",
    "document_name",
    "list_documents",
    "query",
    "read",
    "read_by_name",
    "write",
    "Document",
    "FieldOperator",
    "WriteOptions",
    "WriteResult",
]
