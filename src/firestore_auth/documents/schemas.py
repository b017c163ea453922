"""Wire models of the Firestore REST API v1."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Document(BaseModel):
    """
    A Firestore document as sent over the wire.

    ``fields`` holds typed values (``{"stringValue": "abc"}``, ...); use the
    codec to convert from and to plain records. Timestamps stay RFC3339 strings.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    fields: dict[str, dict[str, Any]] | None = None
    create_time: str | None = Field(default=None, alias="createTime")
    update_time: str | None = Field(default=None, alias="updateTime")

    @property
    def document_id(self) -> str | None:
        """Last path segment of ``name``."""
        if not self.name:
            return None
        return self.name.rsplit("/", 1)[-1]


class WriteOptions(BaseModel):
    """
    Options for ``write``.

    Attributes:
        merge: Update only the fields present in the record. The document must
            already exist.
    """

    merge: bool = False


class WriteResult(BaseModel):
    """Outcome of a successful ``write``."""

    document_id: str
    create_time: datetime | None = None
    update_time: datetime | None = None


class FieldOperator(str, Enum):
    """Comparison operators of a field filter."""

    OPERATOR_UNSPECIFIED = "OPERATOR_UNSPECIFIED"
    LESS_THAN = "LESS_THAN"
    LESS_THAN_OR_EQUAL = "LESS_THAN_OR_EQUAL"
    GREATER_THAN = "GREATER_THAN"
    GREATER_THAN_OR_EQUAL = "GREATER_THAN_OR_EQUAL"
    EQUAL = "EQUAL"
    ARRAY_CONTAINS = "ARRAY_CONTAINS"


class ListDocumentsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    documents: list[Document] = []
    next_page_token: str | None = Field(default=None, alias="nextPageToken")


class RunQueryResponse(BaseModel):
    """One streamed element of a runQuery answer; may carry no document."""

    model_config = ConfigDict(populate_by_name=True)

    document: Document | None = None
    read_time: str | None = Field(default=None, alias="readTime")
    skipped_results: int | None = Field(default=None, alias="skippedResults")
