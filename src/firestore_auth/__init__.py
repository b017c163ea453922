"""Firestore REST client: service account and user authentication, document access."""

from firestore_auth.auth import (
    AuthBearer,
    Credentials,
    OAuth2Provider,
    ServiceSession,
    UserSession,
)
from firestore_auth.exceptions import (
    ClaimValidationError,
    ConfigError,
    CryptoError,
    FirestoreAuthError,
    RemoteAPIError,
    SerializationError,
    TransportError,
    UnexpectedResponseError,
)

__version__ = "0.1.0"

__all__ = [
    "AuthBearer",
    "Credentials",
    "OAuth2Provider",
    "ServiceSession",
    "UserSession",
    "ClaimValidationError",
    "ConfigError",
    "CryptoError",
    "FirestoreAuthError",
    "RemoteAPIError",
    "SerializationError",
    "TransportError",
    "UnexpectedResponseError",
]
