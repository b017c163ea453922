"""
Firestore document operations over the REST API.

All functions take an ``AuthBearer`` (service account or user session) and
use its HTTP client and access token. Errors of the API are raised as
RemoteAPIError with the document path or collection as context.
"""

import logging
import re
from collections.abc import AsyncIterator, Mapping
from datetime import datetime, timezone
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from firestore_auth.auth.sessions import AuthBearer
from firestore_auth.config import settings
from firestore_auth.documents.codec import document_to_record, encode_value, record_to_document
from firestore_auth.documents.schemas import (
    Document,
    FieldOperator,
    ListDocumentsResponse,
    RunQueryResponse,
    WriteOptions,
    WriteResult,
)
from firestore_auth.exceptions import UnexpectedResponseError
from firestore_auth.http import parse_json, send

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DOCUMENTS_ROOT = "projects/{project_id}/databases/(default)/documents"
SIMPLE_FIELD_PATH = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
RFC3339_FRACTION = re.compile(r"\.(\d+)")


def documents_root(project_id: str) -> str:
    """Relative name of the documents root of a project's default database."""
    return DOCUMENTS_ROOT.format(project_id=project_id)


def document_name(project_id: str, path: str, document_id: str) -> str:
    """
    Absolute document name for a collection path and document id.

    Example:
        >>> document_name("p", "users/u1/posts", "first")
        'projects/p/databases/(default)/documents/users/u1/posts/first'
    """
    return f"{documents_root(project_id)}/{path.strip('/')}/{document_id}"


def abs_to_rel(name: str) -> str:
    """
    Convert an absolute document name to a path relative to the documents root.

    Names returned by ``list_documents`` and ``query`` are absolute; ``read``,
    ``write`` and ``delete`` take relative paths. Relative paths are returned
    unchanged.

    Example:
        >>> abs_to_rel("projects/p/databases/(default)/documents/tests/service_test")
        'tests/service_test'
    """
    _, separator, relative = name.partition("/documents/")
    return relative if separator else name


def _url(name: str) -> str:
    return f"{settings.firestore_base_url.rstrip('/')}/{name}"


def _field_path(field: str) -> str:
    """Quote a field name with backticks unless it is a plain identifier."""
    if SIMPLE_FIELD_PATH.fullmatch(field):
        return field
    escaped = field.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


def parse_timestamp(value: str | None) -> datetime | None:
    """
    Parse an RFC3339 timestamp as sent by Firestore into an aware datetime.

    Nanosecond precision is truncated to microseconds; shorter fractions are
    padded so every fraction has six digits.

    Raises:
        ValueError: If the string is not a valid timestamp
    """
    if value is None:
        return None
    normalized = RFC3339_FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value)
    if normalized.endswith(("Z", "z")):
        normalized = normalized[:-1] + "+00:00"
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


async def _request(
    auth: AuthBearer, method: str, url: str, context: str, **kwargs: Any
) -> httpx.Response:
    token = await auth.access_token()
    headers = {"Authorization": f"Bearer {token}"}
    return await send(auth.client, method, url, context=context, headers=headers, **kwargs)


def _parse_document(response: httpx.Response, context: str) -> Document:
    try:
        return Document.model_validate(parse_json(response, context))
    except ValidationError as e:
        raise UnexpectedResponseError(response.status_code, response.text, context) from e


async def read_by_name(
    auth: AuthBearer, name: str, model: type[ModelT] | None = None
) -> Any:
    """
    Read a document by its absolute name.

    Args:
        auth: Session to authorize the request
        name: Absolute name, e.g. ``projects/p/databases/(default)/documents/c/id``
        model: Pydantic model to validate the fields into (plain dict if None)

    Raises:
        RemoteAPIError: If the document does not exist (code 404) or access is denied
        SerializationError: If the fields cannot be decoded into ``model``
    """
    response = await _request(auth, "GET", _url(name), context=name)
    return document_to_record(_parse_document(response, name), model)


async def read(
    auth: AuthBearer, path: str, document_id: str, model: type[ModelT] | None = None
) -> Any:
    """
    Read a document from a collection.

    Example:
        >>> user = await read(session, "users", "u1", model=UserProfile)
    """
    return await read_by_name(auth, document_name(auth.project_id, path, document_id), model)


async def contents(auth: AuthBearer, path: str, document_id: str) -> str:
    """Return the raw JSON text of a document, as sent by Firestore."""
    name = document_name(auth.project_id, path, document_id)
    response = await _request(auth, "GET", _url(name), context=name)
    return response.text


async def write(
    auth: AuthBearer,
    path: str,
    document_id: str | None,
    record: Mapping[str, Any] | BaseModel,
    options: WriteOptions | None = None,
) -> WriteResult:
    """
    Create or replace a document, or update some of its fields.

    Without ``document_id`` Firestore creates a document with a generated id.
    With ``options.merge`` only the fields present in the record (the
    explicitly set fields for models) are written, and the document must
    already exist. A merge without fields changes nothing and only checks
    that the document exists.

    Args:
        auth: Session to authorize the request
        path: Collection path, e.g. ``"users"`` or ``"users/u1/posts"``
        document_id: Document id, or None for a generated one
        record: Mapping with string keys, or a pydantic model
        options: Write options

    Returns:
        The document id and its create and update time

    Raises:
        SerializationError: If the record cannot be encoded
        RemoteAPIError: If the write is rejected (e.g. 404 for a merge on a
            missing document)
    """
    options = options or WriteOptions()
    document = record_to_document(record, only_set_fields=options.merge)

    if document_id is not None:
        name = document_name(auth.project_id, path, document_id)
        method = "PATCH"
    else:
        name = f"{documents_root(auth.project_id)}/{path.strip('/')}"
        method = "POST"

    context = name if document_id is not None else path
    fields = document.fields or {}
    params: list[tuple[str, str]] = []
    if options.merge:
        params.append(("currentDocument.exists", "true"))
        params.extend(("updateMask.fieldPaths", _field_path(field)) for field in fields)

    if options.merge and not fields and document_id is not None:
        # A PATCH without update mask replaces the whole document
        response = await _request(auth, "GET", _url(name), context=context)
    else:
        response = await _request(
            auth,
            method,
            _url(name),
            context=context,
            params=params,
            json={"fields": fields},
        )
    written = _parse_document(response, context)
    if not written.name:
        raise UnexpectedResponseError(response.status_code, response.text, context)

    try:
        result = WriteResult(
            document_id=written.document_id,
            create_time=parse_timestamp(written.create_time),
            update_time=parse_timestamp(written.update_time),
        )
    except ValueError as e:
        raise UnexpectedResponseError(response.status_code, response.text, context) from e

    logger.debug(
        "Document written",
        extra={"document": written.name, "merge": options.merge},
    )
    return result


async def delete(auth: AuthBearer, path: str, fail_if_not_existing: bool = False) -> None:
    """
    Delete a document.

    Args:
        auth: Session to authorize the request
        path: Relative path of the document, e.g. ``"tests/service_test"``
        fail_if_not_existing: Raise instead of succeeding silently if the
            document does not exist

    Raises:
        RemoteAPIError: Code 404 if ``fail_if_not_existing`` and the document is missing
    """
    name = f"{documents_root(auth.project_id)}/{path.strip('/')}"
    params = {"currentDocument.exists": "true"} if fail_if_not_existing else {}
    await _request(auth, "DELETE", _url(name), context=path, params=params)
    logger.debug("Document deleted", extra={"document": name})


async def query(
    auth: AuthBearer,
    collection_id: str,
    value: Any,
    operator: FieldOperator,
    field: str,
) -> list[Document]:
    """
    Find the documents of a collection whose ``field`` compares to ``value``.

    Args:
        auth: Session to authorize the request
        collection_id: Collection to search
        value: Plain value to compare with; encoded like a document field
        operator: Comparison operator
        field: Field path to filter on

    Returns:
        Matching documents; use ``document_to_record`` to decode their fields

    Example:
        >>> docs = await query(session, "users", "Sam", FieldOperator.EQUAL, "name")
    """
    url = f"{_url(documents_root(auth.project_id))}:runQuery"
    body = {
        "structuredQuery": {
            "from": [{"collectionId": collection_id}],
            "where": {
                "fieldFilter": {
                    "field": {"fieldPath": field},
                    "op": operator.value,
                    "value": encode_value(value),
                }
            },
        }
    }
    response = await _request(auth, "POST", url, context=collection_id, json=body)

    payload = parse_json(response, collection_id) or []
    try:
        results = [RunQueryResponse.model_validate(entry) for entry in payload]
    except (ValidationError, TypeError) as e:
        raise UnexpectedResponseError(response.status_code, response.text, collection_id) from e

    return [result.document for result in results if result.document is not None]


async def list_documents(
    auth: AuthBearer,
    collection_id: str,
    model: type[ModelT] | None = None,
    page_size: int | None = None,
) -> AsyncIterator[tuple[Any, Document]]:
    """
    Iterate over all documents of a collection, fetching pages on demand.

    Yields:
        Tuples of the decoded record and the document metadata (name and
        timestamps, without fields)

    Example:
        >>> async for record, meta in list_documents(session, "users"):
        ...     print(abs_to_rel(meta.name), record)
    """
    url = _url(f"{documents_root(auth.project_id)}/{collection_id.strip('/')}")
    page_token: str | None = None

    while True:
        params: dict[str, Any] = {}
        if page_size is not None:
            params["pageSize"] = page_size
        if page_token:
            params["pageToken"] = page_token

        response = await _request(auth, "GET", url, context=collection_id, params=params)
        try:
            page = ListDocumentsResponse.model_validate(parse_json(response, collection_id))
        except ValidationError as e:
            raise UnexpectedResponseError(
                response.status_code, response.text, collection_id
            ) from e

        for document in page.documents:
            record = document_to_record(document, model)
            yield record, document.model_copy(update={"fields": None})

        page_token = page.next_page_token
        if not page.documents or not page_token:
            return
