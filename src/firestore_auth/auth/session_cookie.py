"""
Firebase session cookies for server-rendered websites.

A session cookie is a JWT with the same claims as the ID token it was created
from, but with a custom lifetime between five minutes and two weeks. It can be
verified like any Firebase ID token.

See https://firebase.google.com/docs/auth/admin/manage-cookies
"""

import logging
from datetime import timedelta

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from firestore_auth.auth.credentials import Credentials
from firestore_auth.auth.jwt import create_jwt_encoded
from firestore_auth.exceptions import ConfigError, UnexpectedResponseError
from firestore_auth.http import create_http_client, parse_json, send

logger = logging.getLogger(__name__)

GOOGLE_OAUTH2_URL = "https://accounts.google.com/o/oauth2/token"
CREATE_SESSION_COOKIE_URL = (
    "https://identitytoolkit.googleapis.com/v1/projects/{project_id}:createSessionCookie"
)
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

SESSION_COOKIE_SCOPES = (
    "https://www.googleapis.com/auth/identitytoolkit",
    "https://www.googleapis.com/auth/firebase",
    "https://www.googleapis.com/auth/cloud-platform",
)
MIN_DURATION = timedelta(minutes=5)
MAX_DURATION = timedelta(days=14)
ASSERTION_LIFETIME = timedelta(hours=1)


class OAuth2TokenResponse(BaseModel):
    access_token: str
    token_type: str | None = None
    expires_in: int | None = None


class SessionCookieRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id_token: str = Field(alias="idToken")
    valid_duration: int = Field(alias="validDuration")


class SessionCookieResponse(BaseModel):
    session_cookie: str = Field(alias="sessionCookie")


async def create_session_cookie(
    credentials: Credentials,
    id_token: str,
    duration: timedelta,
    client: httpx.AsyncClient | None = None,
) -> str:
    """
    Create a session cookie from a Firebase ID token.

    The service account first trades a signed assertion for a Google OAuth2
    access token, which then authorizes the createSessionCookie call.

    Args:
        credentials: Service account credentials with signing key
        id_token: A valid Firebase ID token of the user
        duration: Cookie lifetime, between 5 minutes and 14 days
        client: HTTP client to use (a temporary one is created if None)

    Returns:
        The session cookie, a JWT whose ``sub`` is the Firebase user id

    Raises:
        ConfigError: If the duration is out of range
        TransportError: If a request fails
        RemoteAPIError: If Google rejects the assertion or the ID token
    """
    if not MIN_DURATION <= duration <= MAX_DURATION:
        raise ConfigError(
            f"Session cookie duration must be between 5 minutes and 14 days, got {duration}"
        )

    if client is None:
        async with create_http_client() as owned_client:
            return await create_session_cookie(credentials, id_token, duration, owned_client)

    context = credentials.client_email
    assertion = create_jwt_encoded(
        credentials, SESSION_COOKIE_SCOPES, ASSERTION_LIFETIME, GOOGLE_OAUTH2_URL
    )
    response = await send(
        client,
        "POST",
        GOOGLE_OAUTH2_URL,
        context=context,
        data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
    )
    try:
        oauth = OAuth2TokenResponse.model_validate(parse_json(response, context))
    except ValidationError as e:
        raise UnexpectedResponseError(response.status_code, response.text, context) from e

    body = SessionCookieRequest(id_token=id_token, valid_duration=int(duration.total_seconds()))
    response = await send(
        client,
        "POST",
        CREATE_SESSION_COOKIE_URL.format(project_id=credentials.project_id),
        context=context,
        headers={"Authorization": f"Bearer {oauth.access_token}"},
        json=body.model_dump(by_alias=True),
    )
    try:
        cookie = SessionCookieResponse.model_validate(parse_json(response, context))
    except ValidationError as e:
        raise UnexpectedResponseError(response.status_code, response.text, context) from e

    logger.info(
        "Session cookie created",
        extra={"project_id": credentials.project_id, "valid_seconds": body.valid_duration},
    )
    return cookie.session_cookie
