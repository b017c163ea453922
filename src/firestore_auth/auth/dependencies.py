"""FastAPI dependencies for Firebase ID token authentication."""

import logging
from collections.abc import AsyncIterator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from firestore_auth.auth.credentials import Credentials
from firestore_auth.auth.models import FirebaseUser
from firestore_auth.auth.sessions import UserSession
from firestore_auth.exceptions import FirestoreAuthError

security = HTTPBearer()
logger = logging.getLogger(__name__)

# Global credentials instance (registered during application startup)
_credentials: Credentials | None = None


def set_credentials(credentials: Credentials | None) -> None:
    """
    Register the credentials used to verify bearer tokens.

    Called during application startup, typically after
    ``await credentials.download_jwkset()``.

    Args:
        credentials: Credentials instance, or None to unregister
    """
    global _credentials
    _credentials = credentials


def get_credentials() -> Credentials:
    """
    Get the registered credentials.

    Raises:
        RuntimeError: If no credentials were registered
    """
    if _credentials is None:
        raise RuntimeError(
            "Credentials not initialized. "
            "Ensure application startup calls set_credentials()."
        )
    return _credentials


async def get_current_user(
    authorization: HTTPAuthorizationCredentials = Depends(security),
) -> FirebaseUser:
    """
    Verify the bearer token locally and return the Firebase user.

    Args:
        authorization: Bearer token from the Authorization header

    Returns:
        FirebaseUser with user id, project id and scopes

    Raises:
        HTTPException: 401 if the token is invalid, expired or signed by an unknown key

    Example:
        @router.get("/me")
        async def get_profile(user: FirebaseUser = Depends(get_current_user)):
            return {"user_id": user.user_id}
    """
    credentials = get_credentials()
    try:
        result = await credentials.verify_token(authorization.credentials)
    except FirestoreAuthError as e:
        logger.warning(
            f"Token verification failed: {e}",
            extra={"error_type": type(e).__name__},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    logger.info(f"User authenticated: {result.subject}")
    return FirebaseUser(user_id=result.subject, project_id=result.audience, scopes=result.scopes)


async def get_user_session(
    authorization: HTTPAuthorizationCredentials = Depends(security),
) -> AsyncIterator[UserSession]:
    """
    Verify the bearer token and wrap it in a user session.

    Lets a route access Firestore on behalf of the calling user, with the
    project's security rules applied. The session cannot renew the token and
    is closed when the request is done.

    Raises:
        HTTPException: 401 if the token does not verify
    """
    credentials = get_credentials()
    try:
        session = await UserSession.by_access_token(credentials, authorization.credentials)
    except FirestoreAuthError as e:
        logger.warning(
            f"Token verification failed: {e}",
            extra={"error_type": type(e).__name__},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    async with session:
        yield session
