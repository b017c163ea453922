"""Custom exceptions for credentials, tokens and document access."""

from typing import Any


class FirestoreAuthError(Exception):
    """Base exception for all errors raised by this library."""

    pass


class ConfigError(FirestoreAuthError):
    """Raised for malformed credentials, PEM data or a missing private key."""

    pass


class CryptoError(FirestoreAuthError):
    """Raised when a key is rejected or a signature cannot be produced or checked."""

    pass


class NoKeyIdError(CryptoError):
    """Raised when a token header carries no 'kid'."""

    pass


class UnknownKeyError(CryptoError):
    """Raised when no verification key matches a token's 'kid'."""

    def __init__(self, kid: str, known_kids: list[str] | None = None):
        self.kid = kid
        self.known_kids = known_kids or []
        super().__init__(f"Key ID '{kid}' not found. Known keys: {self.known_kids}")


class BadSignatureError(CryptoError):
    """Raised when a token signature does not match the resolved key."""

    pass


class ClaimValidationError(FirestoreAuthError):
    """Raised when required claims are missing or time-based claims fail."""

    def __init__(self, missing: list[str] | None = None, expired: list[str] | None = None):
        self.missing = missing or []
        self.expired = expired or []
        parts = []
        if self.missing:
            parts.append(f"missing claims: {', '.join(self.missing)}")
        if self.expired:
            parts.append(f"invalid time claims: {', '.join(self.expired)}")
        super().__init__("Claim validation failed (" + "; ".join(parts) + ")")


class TransportError(FirestoreAuthError):
    """Raised when the HTTP layer fails before a response could be interpreted."""

    pass


class RemoteAPIError(FirestoreAuthError):
    """
    Raised when a Google API answers with its error envelope.

    Attributes:
        code: Numeric error code (mirrors the HTTP status, e.g. 404)
        message: Error message from the service
        context: Request context such as a document path or user id
        errors: Optional detailed error entries from the envelope
    """

    def __init__(
        self,
        code: int,
        message: str,
        context: str = "",
        errors: list[dict[str, Any]] | None = None,
    ):
        self.code = code
        self.message = message
        self.context = context
        self.errors = errors or []
        super().__init__(f"API error {code} ({context}): {message}")


class SerializationError(FirestoreAuthError):
    """Raised when a record cannot be mapped to or from the typed value tree."""

    def __init__(self, message: str, document: str | None = None):
        self.document = document
        if document:
            message = f"{message} (document: {document})"
        super().__init__(message)


class UnexpectedResponseError(FirestoreAuthError):
    """Raised for a non-success response without a recognizable error envelope."""

    def __init__(self, status_code: int, body: str, context: str = ""):
        self.status_code = status_code
        self.body = body
        self.context = context
        super().__init__(f"Unexpected response {status_code} ({context}): {body}")
