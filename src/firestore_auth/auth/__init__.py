"""Service account credentials, JWTs and authentication sessions."""

from firestore_auth.auth.credentials import Credentials
from firestore_auth.auth.dependencies import (
    get_credentials,
    get_current_user,
    get_user_session,
    set_credentials,
)
from firestore_auth.auth.jwt import (
    JWT_AUDIENCE_FIRESTORE,
    JWT_AUDIENCE_IDENTITY,
    TokenValidationResult,
    create_jwt,
    create_jwt_encoded,
    is_expired,
    sign,
    verify_access_token,
)
from firestore_auth.auth.keys import JWKSet, SigningKey, VerificationKeys, pem_to_der
from firestore_auth.auth.models import FirebaseAuthUserResponse, FirebaseUser
from firestore_auth.auth.session_cookie import create_session_cookie
from firestore_auth.auth.sessions import AuthBearer, OAuth2Provider, ServiceSession, UserSession
from firestore_auth.auth.users import user_info, user_remove

__all__ = [
    "Credentials",
    "get_credentials",
    "get_current_user",
    "get_user_session",
    "set_credentials",
    "JWT_AUDIENCE_FIRESTORE",
    "JWT_AUDIENCE_IDENTITY",
    "TokenValidationResult",
    "create_jwt",
    "create_jwt_encoded",
    "is_expired",
    "sign",
    "verify_access_token",
    "JWKSet",
    "SigningKey",
    "VerificationKeys",
    "pem_to_der",
    "FirebaseAuthUserResponse",
    "FirebaseUser",
    "create_session_cookie",
    "AuthBearer",
    "OAuth2Provider",
    "ServiceSession",
    "UserSession",
    "user_info",
    "user_remove",
]
