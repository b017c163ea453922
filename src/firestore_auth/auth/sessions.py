"""
Authentication sessions.

A session is either a service account session (self-signed JWT, renewed
locally) or an impersonated user session (Firebase ID token, renewed via a
refresh token). Both expose the ``AuthBearer`` interface consumed by the
document functions.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from enum import Enum
from types import TracebackType

import httpx
from pydantic import ValidationError

from firestore_auth.auth.credentials import Credentials
from firestore_auth.auth.jwt import (
    JWT_AUDIENCE_FIRESTORE,
    JWT_AUDIENCE_IDENTITY,
    TokenValidationResult,
    UnsignedToken,
    create_jwt,
    create_jwt_encoded,
    is_expired,
    sign,
    update_expiry_if_stale,
)
from firestore_auth.auth.models import (
    CustomTokenRequest,
    CustomTokenResponse,
    OAuthResponse,
    RefreshTokenResponse,
    SignInWithIdpRequest,
)
from firestore_auth.config import settings
from firestore_auth.exceptions import (
    ConfigError,
    CryptoError,
    FirestoreAuthError,
    UnexpectedResponseError,
)
from firestore_auth.http import create_http_client, parse_json, send

logger = logging.getLogger(__name__)

CUSTOM_TOKEN_URL = (
    "https://www.googleapis.com/identitytoolkit/v3/relyingparty/verifyCustomToken?key={api_key}"
)
REFRESH_TOKEN_URL = "https://securetoken.googleapis.com/v1/token?key={api_key}"
SIGN_IN_WITH_IDP_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signInWithIdp?key={api_key}"


class OAuth2Provider(str, Enum):
    """OAuth2 identity providers supported by Firebase Auth, by provider id."""

    APPLE = "apple.com"
    APPLE_GAME_CENTER = "gc.apple.com"
    FACEBOOK = "facebook.com"
    GITHUB = "github.com"
    GOOGLE = "google.com"
    GOOGLE_PLAY_GAMES = "playgames.google.com"
    LINKEDIN = "linkedin.com"
    MICROSOFT = "microsoft.com"
    TWITTER = "twitter.com"
    YAHOO = "yahoo.com"


class AuthBearer(ABC):
    """
    Anything that can authorize Firestore REST requests.

    Document functions only rely on this interface, so a custom implementation
    (for example one wrapping a token obtained elsewhere) works as well.

    The HTTP client is reused for all requests of the session. A client created
    by the session is closed with it; a client passed in stays open.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client or create_http_client()
        self._owns_client = client is None

    @property
    @abstractmethod
    def project_id(self) -> str:
        """Firestore project id."""

    @abstractmethod
    async def access_token(self) -> str:
        """Current bearer token, renewed first if it is stale."""

    @abstractmethod
    async def access_token_unchecked(self) -> str:
        """Current bearer token without any renewal; may be expired."""

    @property
    def client(self) -> httpx.AsyncClient:
        """HTTP client for requests made on behalf of this session."""
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this session created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AuthBearer":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()


class ServiceSession(AuthBearer):
    """
    Service account session.

    A JWT for the Firestore audience is signed with the service account key
    and used directly as bearer token. No network call is ever needed to renew
    it: once the token is older than the renewal threshold it is signed again.

    See https://developers.google.com/identity/protocols/OAuth2ServiceAccount

    Example:
        >>> session = ServiceSession(Credentials.from_file("service-account.json"))
        >>> token = await session.access_token()
    """

    def __init__(self, credentials: Credentials, client: httpx.AsyncClient | None = None):
        """
        Create the session and sign the first token.

        Raises:
            ConfigError: If the credentials have no signing key
            CryptoError: If signing fails
        """
        self.credentials = credentials
        self._lifetime = timedelta(minutes=settings.token_lifetime_minutes)
        self._token = create_jwt(credentials, None, self._lifetime, JWT_AUDIENCE_FIRESTORE)
        self._access_token = sign(self._token, credentials.signing_key)
        self._lock = asyncio.Lock()
        super().__init__(client)

        logger.info(
            "Service account session created",
            extra={"client_email": credentials.client_email, "project_id": credentials.project_id},
        )

    @classmethod
    async def create(
        cls, credentials: Credentials, client: httpx.AsyncClient | None = None
    ) -> "ServiceSession":
        """
        Create the session and make sure tokens can be verified.

        Downloads the verification keys first if the credentials have none and
        automatic downloads are enabled.
        """
        session = cls(credentials, client)
        if settings.auto_download_jwks and not len(credentials.verification_keys):
            try:
                await credentials.download_jwkset(session.client)
            except Exception:
                await session.close()
                raise
        return session

    @property
    def project_id(self) -> str:
        return self.credentials.project_id

    async def access_token(self) -> str:
        """
        Return the signed JWT, re-signing it first if it is older than the threshold.

        Check and renewal happen inside one critical section so concurrent
        callers never sign twice for the same renewal.
        """
        async with self._lock:
            renewed = UnsignedToken(
                claims=self._token.claims.model_copy(), header=dict(self._token.header)
            )
            if update_expiry_if_stale(
                renewed, settings.token_renew_threshold_minutes, self._lifetime
            ):
                self._access_token = sign(renewed, self.credentials.signing_key)
                self._token = renewed
                logger.debug(
                    "Service account token re-signed",
                    extra={"client_email": self.credentials.client_email},
                )
            return self._access_token

    async def access_token_unchecked(self) -> str:
        return self._access_token

    async def verify_token(self, token: str) -> TokenValidationResult:
        """Verify a token with the session's credentials."""
        return await self.credentials.verify_token(token)


class UserSession(AuthBearer):
    """
    Impersonated Firebase user session.

    Firestore security rules apply to requests of this session. Use one of the
    ``by_*`` constructors or ``new`` to create it.

    Attributes:
        user_id: Firebase Auth user id
        refresh_token: Refresh token, if any; used to renew expired access tokens
        api_key: The project's web API key
    """

    def __init__(
        self,
        user_id: str,
        access_token: str,
        project_id: str,
        api_key: str,
        refresh_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(client)
        self.user_id = user_id
        self.refresh_token = refresh_token
        self.api_key = api_key
        self._access_token = access_token
        self._project_id = project_id
        self._lock = asyncio.Lock()

    @property
    def project_id(self) -> str:
        return self._project_id

    async def access_token(self) -> str:
        """
        Return the access token, refreshing it first if it has expired.

        The expiry check and the refresh run as one critical section: callers
        that arrive during a refresh wait for it and get its result instead of
        starting their own exchange.

        Returns:
            The valid token, or an empty string if it expired and no refresh
            token is available

        Raises:
            TransportError: If the refresh request fails (the old token is kept)
            RemoteAPIError: If the refresh token is rejected (the old token is kept)
        """
        async with self._lock:
            if not self._needs_refresh(self._access_token):
                return self._access_token

            if not self.refresh_token:
                logger.warning(
                    "Access token expired and no refresh token available",
                    extra={"user_id": self.user_id},
                )
                return ""

            response = await self._exchange_refresh_token(self.refresh_token)
            self._access_token = response.id_token
            if response.refresh_token:
                self.refresh_token = response.refresh_token

            logger.info("User access token refreshed", extra={"user_id": self.user_id})
            return self._access_token

    async def access_token_unchecked(self) -> str:
        return self._access_token

    def _needs_refresh(self, token: str) -> bool:
        if not token:
            return True
        try:
            return is_expired(token)
        except CryptoError:
            logger.warning(
                "Access token is not a JWT, treating it as expired",
                extra={"user_id": self.user_id},
            )
            return True

    async def _exchange_refresh_token(self, refresh_token: str) -> RefreshTokenResponse:
        """Trade a refresh token for a new ID token at the securetoken endpoint."""
        response = await send(
            self.client,
            "POST",
            REFRESH_TOKEN_URL.format(api_key=self.api_key),
            context=self.user_id,
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        try:
            return RefreshTokenResponse.model_validate(parse_json(response, self.user_id))
        except ValidationError as e:
            raise UnexpectedResponseError(response.status_code, response.text, self.user_id) from e

    @staticmethod
    def _require_api_key(credentials: Credentials) -> str:
        if not credentials.api_key:
            raise ConfigError("Credentials contain no api_key, required for user sessions")
        return credentials.api_key

    @classmethod
    async def by_refresh_token(
        cls,
        credentials: Credentials,
        refresh_token: str,
        client: httpx.AsyncClient | None = None,
    ) -> "UserSession":
        """
        Create a session from a refresh token.

        Raises:
            ConfigError: If the credentials have no API key
            TransportError: If the exchange request fails
            RemoteAPIError: If the refresh token is rejected
        """
        session = cls(
            user_id="",
            access_token="",
            project_id=credentials.project_id,
            api_key=cls._require_api_key(credentials),
            client=client,
        )
        try:
            response = await session._exchange_refresh_token(refresh_token)
        except Exception:
            await session.close()
            raise

        session.user_id = response.user_id
        session.refresh_token = response.refresh_token or refresh_token
        session._access_token = response.id_token
        logger.info("User session created from refresh token", extra={"user_id": session.user_id})
        return session

    @classmethod
    async def by_user_id(
        cls,
        credentials: Credentials,
        user_id: str,
        with_refresh_token: bool = True,
        client: httpx.AsyncClient | None = None,
    ) -> "UserSession":
        """
        Create a session for a Firebase user with a fresh access token.

        A custom token is signed with the service account and exchanged for an
        ID token.

        Args:
            credentials: Service account credentials with signing key and API key
            user_id: Firebase Auth user id
            with_refresh_token: Also request a refresh token. Persist it for
                reuse; Google only keeps a few dozen refresh tokens alive per
                account, so short-lived services should pass False.
            client: HTTP client to use

        Raises:
            ConfigError: If the credentials have no API key or signing key
            TransportError: If the exchange request fails
            RemoteAPIError: If the exchange is rejected
        """
        api_key = cls._require_api_key(credentials)
        custom_token = create_jwt_encoded(
            credentials, None, timedelta(hours=1), JWT_AUDIENCE_IDENTITY, user_id=user_id
        )
        session = cls(
            user_id=user_id,
            access_token="",
            project_id=credentials.project_id,
            api_key=api_key,
            client=client,
        )
        body = CustomTokenRequest(token=custom_token, return_secure_token=with_refresh_token)
        try:
            response = await send(
                session.client,
                "POST",
                CUSTOM_TOKEN_URL.format(api_key=api_key),
                context=user_id,
                json=body.model_dump(by_alias=True),
            )
            payload = CustomTokenResponse.model_validate(parse_json(response, user_id))
        except ValidationError as e:
            await session.close()
            raise UnexpectedResponseError(response.status_code, response.text, user_id) from e
        except Exception:
            await session.close()
            raise

        session._access_token = payload.id_token
        session.refresh_token = payload.refresh_token
        logger.info("User session created from custom token", extra={"user_id": user_id})
        return session

    @classmethod
    async def by_access_token(
        cls,
        credentials: Credentials,
        access_token: str,
        client: httpx.AsyncClient | None = None,
    ) -> "UserSession":
        """
        Create a session from a valid Firebase ID token.

        The token is only verified locally; no exchange happens. Such a session
        cannot renew itself once the token expires.

        Raises:
            CryptoError: If the token signature or key cannot be verified
            ClaimValidationError: If the token is expired or incomplete
        """
        result = await credentials.verify_token(access_token)
        return cls(
            user_id=result.subject,
            access_token=access_token,
            project_id=result.audience,
            api_key=credentials.api_key,
            client=client,
        )

    @classmethod
    async def new(
        cls,
        credentials: Credentials,
        user_id: str | None = None,
        id_token: str | None = None,
        refresh_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> "UserSession":
        """
        Create a session from whatever is available.

        Tries, in order: the ID token if still valid, the refresh token, and a
        new custom token for ``user_id``. Failures of the earlier options fall
        through to the next one; the last attempted option's error is raised.

        Raises:
            ConfigError: If none of the three arguments is given
        """
        last_error: FirestoreAuthError | None = None

        if id_token:
            try:
                session = await cls.by_access_token(credentials, id_token, client)
                session.refresh_token = refresh_token
                return session
            except FirestoreAuthError as e:
                logger.info(f"ID token not usable, trying next option: {e}")
                last_error = e

        if refresh_token:
            try:
                return await cls.by_refresh_token(credentials, refresh_token, client)
            except FirestoreAuthError as e:
                logger.info(f"Refresh token not usable, trying next option: {e}")
                last_error = e

        if user_id:
            return await cls.by_user_id(credentials, user_id, True, client)

        if last_error is not None:
            raise last_error
        raise ConfigError("One of user_id, id_token or refresh_token is required")

    @classmethod
    async def by_oauth2(
        cls,
        credentials: Credentials,
        access_token: str,
        provider: OAuth2Provider,
        request_uri: str,
        with_refresh_token: bool = True,
        client: httpx.AsyncClient | None = None,
    ) -> "UserSession":
        """
        Sign in with an OAuth2 provider access token.

        Firebase creates the user if it does not exist yet; the session is then
        created for the returned user id like ``by_user_id``.

        Args:
            credentials: Service account credentials
            access_token: Access token issued by the provider
            provider: The provider that issued the token
            request_uri: The URI the provider redirects back to
            with_refresh_token: Also request a refresh token
            client: HTTP client to use
        """
        api_key = cls._require_api_key(credentials)
        body = SignInWithIdpRequest(
            post_body=f"access_token={access_token}&providerId={provider.value}",
            request_uri=request_uri,
        )

        idp_client = client or create_http_client()
        try:
            response = await send(
                idp_client,
                "POST",
                SIGN_IN_WITH_IDP_URL.format(api_key=api_key),
                context=provider.value,
                json=body.model_dump(by_alias=True),
            )
        finally:
            if client is None:
                await idp_client.aclose()

        try:
            oauth = OAuthResponse.model_validate(parse_json(response, provider.value))
        except ValidationError as e:
            raise UnexpectedResponseError(response.status_code, response.text, provider.value) from e

        return await cls.by_user_id(credentials, oauth.local_id, with_refresh_token, client)
