"""Tests for service account and user sessions."""

import asyncio
import json
import time
from urllib.parse import parse_qs
from unittest.mock import patch

import httpx
import pytest
from jose import jwt

from firestore_auth.auth.credentials import Credentials
from firestore_auth.auth.jwt import JWT_AUDIENCE_FIRESTORE, JWT_AUDIENCE_IDENTITY, sign
from firestore_auth.auth.sessions import OAuth2Provider, ServiceSession, UserSession
from firestore_auth.exceptions import (
    ClaimValidationError,
    ConfigError,
    RemoteAPIError,
    TransportError,
)


@pytest.fixture
def expired_id_token(sign_claims, user_claims) -> str:
    """Provide a correctly signed but expired ID token."""
    now = int(time.time())
    return sign_claims({**user_claims, "iat": now - 7200, "exp": now - 3600})


@pytest.fixture
def fake_identity(sign_claims, user_claims):
    """
    Provide a handler emulating the securetoken and identity toolkit endpoints.

    Every exchange hands out a freshly signed ID token and counts the call.
    """

    class FakeIdentity:
        def __init__(self):
            self.refresh_calls = 0
            self.custom_token_calls = 0
            self.idp_calls = 0
            self.requests: list[httpx.Request] = []
            self.fail_refresh_with: httpx.Response | None = None
            self.delay = 0.0

        def _id_token(self, counter: int) -> str:
            return sign_claims({**user_claims, "jti": f"token-{counter}"})

        async def __call__(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if self.delay:
                await asyncio.sleep(self.delay)

            if request.url.host == "securetoken.googleapis.com":
                self.refresh_calls += 1
                if self.fail_refresh_with is not None:
                    return self.fail_refresh_with
                form = parse_qs(request.content.decode())
                assert form["grant_type"] == ["refresh_token"]
                return httpx.Response(
                    200,
                    json={
                        "id_token": self._id_token(self.refresh_calls),
                        "refresh_token": f"refresh-{self.refresh_calls}",
                        "expires_in": "3600",
                        "token_type": "Bearer",
                        "user_id": "user-1",
                        "project_id": "p",
                    },
                )

            if request.url.path.endswith("verifyCustomToken"):
                self.custom_token_calls += 1
                body = json.loads(request.content)
                return httpx.Response(
                    200,
                    json={
                        "kind": "identitytoolkit#VerifyCustomTokenResponse",
                        "idToken": self._id_token(100 + self.custom_token_calls),
                        "refreshToken": "refresh-custom" if body["returnSecureToken"] else None,
                        "expiresIn": "3600",
                    },
                )

            if request.url.path.endswith("accounts:signInWithIdp"):
                self.idp_calls += 1
                return httpx.Response(
                    200, json={"localId": "user-1", "providerId": "github.com"}
                )

            return httpx.Response(404, json={"error": {"code": 404, "message": "Not found"}})

    return FakeIdentity()


@pytest.mark.asyncio
class TestServiceSession:
    """Tests for ServiceSession class."""

    async def test_token_verifies_with_credentials(self, credentials):
        """Test that the session token is a valid Firestore audience JWT."""
        # Arrange
        session = ServiceSession(credentials)

        # Act
        token = await session.access_token()
        result = await session.verify_token(token)

        # Assert
        assert result.audience == JWT_AUDIENCE_FIRESTORE
        assert result.subject == credentials.client_email
        assert session.project_id == "p"
        await session.close()

    async def test_young_token_is_not_resigned(self, credentials):
        """Test that repeated calls within the threshold reuse the token."""
        session = ServiceSession(credentials)

        with patch("firestore_auth.auth.sessions.sign", wraps=sign) as mock_sign:
            first = await session.access_token()
            second = await session.access_token()

        assert first == second
        mock_sign.assert_not_called()
        await session.close()

    async def test_old_token_is_resigned_once(self, credentials):
        """Test that concurrent callers of a stale session share one re-signing."""
        # Arrange
        session = ServiceSession(credentials)
        session._token.claims.iat -= 51 * 60
        session._token.claims.exp -= 51 * 60

        # Act
        with patch("firestore_auth.auth.sessions.sign", wraps=sign) as mock_sign:
            tokens = await asyncio.gather(*(session.access_token() for _ in range(5)))

        # Assert
        assert mock_sign.call_count == 1
        assert len(set(tokens)) == 1
        claims = jwt.get_unverified_claims(tokens[0])
        assert claims["exp"] - claims["iat"] == 3600
        assert claims["iat"] >= int(time.time()) - 5
        await session.close()

    async def test_create_downloads_missing_keys(self, service_account_info, mock_client):
        """Test that create fetches verification keys for bare credentials."""
        credentials = Credentials.from_json(json.dumps(service_account_info))
        own_jwks = {"keys": [credentials.signing_key.public_jwk().model_dump(exclude_none=True)]}
        client = mock_client(lambda request: httpx.Response(200, json=own_jwks))

        session = await ServiceSession.create(credentials, client)
        result = await session.verify_token(await session.access_token())

        assert result.audience == JWT_AUDIENCE_FIRESTORE

    async def test_context_manager_closes_owned_client(self, credentials):
        """Test that a session closes the client it created."""
        async with ServiceSession(credentials) as session:
            client = session.client

        assert client.is_closed

    async def test_context_manager_keeps_foreign_client(self, credentials, mock_client):
        """Test that a passed in client stays open."""
        client = mock_client(lambda request: httpx.Response(200))

        async with ServiceSession(credentials, client):
            pass

        assert not client.is_closed


@pytest.mark.asyncio
class TestUserSessionCreation:
    """Tests for the UserSession constructors."""

    async def test_by_user_id_exchanges_custom_token(self, credentials, fake_identity, mock_client):
        """Test the custom token exchange and its request contents."""
        # Act
        session = await UserSession.by_user_id(
            credentials, "user-1", client=mock_client(fake_identity)
        )

        # Assert
        assert session.user_id == "user-1"
        assert session.refresh_token == "refresh-custom"
        assert session.project_id == "p"

        request = fake_identity.requests[0]
        assert request.url.params["key"] == "test-api-key"
        body = json.loads(request.content)
        assert body["returnSecureToken"] is True
        custom_claims = jwt.get_unverified_claims(body["token"])
        assert custom_claims["uid"] == "user-1"
        assert custom_claims["aud"] == JWT_AUDIENCE_IDENTITY

    async def test_by_user_id_without_refresh_token(self, credentials, fake_identity, mock_client):
        """Test that the refresh token can be declined."""
        session = await UserSession.by_user_id(
            credentials, "user-1", with_refresh_token=False, client=mock_client(fake_identity)
        )

        assert session.refresh_token is None

    async def test_by_user_id_requires_api_key(self, credentials):
        """Test that an API key is mandatory for exchanges."""
        credentials.api_key = ""

        with pytest.raises(ConfigError, match="api_key"):
            await UserSession.by_user_id(credentials, "user-1")

    async def test_by_refresh_token(self, credentials, fake_identity, mock_client):
        """Test session creation from a refresh token."""
        session = await UserSession.by_refresh_token(
            credentials, "refresh-0", client=mock_client(fake_identity)
        )

        assert session.user_id == "user-1"
        assert session.refresh_token == "refresh-1"
        assert fake_identity.refresh_calls == 1
        form = parse_qs(fake_identity.requests[0].content.decode())
        assert form["refresh_token"] == ["refresh-0"]

    async def test_by_refresh_token_rejected(self, credentials, fake_identity, mock_client):
        """Test that a revoked refresh token surfaces the API error."""
        fake_identity.fail_refresh_with = httpx.Response(
            400, json={"error": {"code": 400, "message": "TOKEN_EXPIRED"}}
        )

        with pytest.raises(RemoteAPIError) as exc_info:
            await UserSession.by_refresh_token(
                credentials, "revoked", client=mock_client(fake_identity)
            )

        assert exc_info.value.code == 400
        assert exc_info.value.message == "TOKEN_EXPIRED"

    async def test_by_access_token_is_offline(
        self, credentials, sign_claims, user_claims, mock_client
    ):
        """Test that an ID token is only verified, never exchanged."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        token = sign_claims(user_claims)

        session = await UserSession.by_access_token(credentials, token, mock_client(handler))

        assert session.user_id == "user-1"
        assert session.project_id == "p"
        assert session.refresh_token is None
        assert await session.access_token() == token

    async def test_new_prefers_valid_id_token(
        self, credentials, sign_claims, user_claims, fake_identity, mock_client
    ):
        """Test that a valid ID token avoids any exchange."""
        session = await UserSession.new(
            credentials,
            user_id="user-1",
            id_token=sign_claims(user_claims),
            refresh_token="refresh-0",
            client=mock_client(fake_identity),
        )

        assert fake_identity.requests == []
        assert session.refresh_token == "refresh-0"

    async def test_new_falls_back_to_refresh_token(
        self, credentials, expired_id_token, fake_identity, mock_client
    ):
        """Test that an expired ID token falls through to the refresh token."""
        session = await UserSession.new(
            credentials,
            id_token=expired_id_token,
            refresh_token="refresh-0",
            client=mock_client(fake_identity),
        )

        assert fake_identity.refresh_calls == 1
        assert session.user_id == "user-1"

    async def test_new_falls_back_to_user_id(self, credentials, fake_identity, mock_client):
        """Test that a rejected refresh token falls through to a custom token."""
        fake_identity.fail_refresh_with = httpx.Response(
            400, json={"error": {"code": 400, "message": "INVALID_REFRESH_TOKEN"}}
        )

        session = await UserSession.new(
            credentials,
            user_id="user-1",
            refresh_token="revoked",
            client=mock_client(fake_identity),
        )

        assert fake_identity.custom_token_calls == 1
        assert session.refresh_token == "refresh-custom"

    async def test_new_raises_last_error(self, credentials, expired_id_token):
        """Test that the failure of the last option is surfaced."""
        with pytest.raises(ClaimValidationError):
            await UserSession.new(credentials, id_token=expired_id_token)

    async def test_new_without_arguments(self, credentials):
        """Test that at least one way to authenticate is required."""
        with pytest.raises(ConfigError):
            await UserSession.new(credentials)

    async def test_by_oauth2_signs_in_with_provider(
        self, credentials, fake_identity, mock_client
    ):
        """Test provider sign-in followed by the custom token exchange."""
        session = await UserSession.by_oauth2(
            credentials,
            "provider-access-token",
            OAuth2Provider.GITHUB,
            "http://localhost",
            client=mock_client(fake_identity),
        )

        assert session.user_id == "user-1"
        assert fake_identity.idp_calls == 1
        assert fake_identity.custom_token_calls == 1
        idp_body = json.loads(fake_identity.requests[0].content)
        assert idp_body["postBody"] == "access_token=provider-access-token&providerId=github.com"
        assert idp_body["requestUri"] == "http://localhost"


@pytest.mark.asyncio
class TestUserSessionAccessToken:
    """Tests for token refresh of user sessions."""

    def _session(self, token: str, refresh_token: str | None, client: httpx.AsyncClient):
        return UserSession(
            user_id="user-1",
            access_token=token,
            project_id="p",
            api_key="test-api-key",
            refresh_token=refresh_token,
            client=client,
        )

    async def test_valid_token_is_returned_unchanged(
        self, sign_claims, user_claims, fake_identity, mock_client
    ):
        """Test that a valid token needs no network call."""
        token = sign_claims(user_claims)
        session = self._session(token, "refresh-0", mock_client(fake_identity))

        assert await session.access_token() == token
        assert fake_identity.refresh_calls == 0

    async def test_expired_token_is_refreshed(
        self, expired_id_token, fake_identity, mock_client
    ):
        """Test that an expired token is exchanged and replaced."""
        session = self._session(expired_id_token, "refresh-0", mock_client(fake_identity))

        token = await session.access_token()

        assert token != expired_id_token
        assert session.refresh_token == "refresh-1"
        assert await session.access_token_unchecked() == token

    async def test_refreshed_token_is_reused(
        self, user_claims, expired_id_token, fake_identity, mock_client
    ):
        """Test that a refreshed token is valid and not exchanged again."""
        session = self._session(expired_id_token, "refresh-0", mock_client(fake_identity))

        first = await session.access_token()
        second = await session.access_token()

        assert user_claims["exp"] > time.time()
        assert jwt.get_unverified_claims(first)["exp"] > time.time()
        assert second == first
        assert fake_identity.refresh_calls == 1

    async def test_concurrent_callers_share_one_refresh(
        self, expired_id_token, fake_identity, mock_client
    ):
        """Test single-flight refresh under concurrency."""
        # Arrange
        fake_identity.delay = 0.05
        session = self._session(expired_id_token, "refresh-0", mock_client(fake_identity))

        # Act
        tokens = await asyncio.gather(*(session.access_token() for _ in range(10)))

        # Assert
        assert fake_identity.refresh_calls == 1
        assert len(set(tokens)) == 1
        assert tokens[0] != expired_id_token

    async def test_expired_without_refresh_token_returns_empty(
        self, expired_id_token, mock_client, caplog
    ):
        """Test the degraded state of a session that cannot refresh."""
        session = self._session(
            expired_id_token, None, mock_client(lambda request: httpx.Response(500))
        )

        with caplog.at_level("WARNING"):
            token = await session.access_token()

        assert token == ""
        assert "no refresh token" in caplog.text

    async def test_failed_refresh_keeps_previous_token(
        self, expired_id_token, mock_client
    ):
        """Test that a transport failure propagates and the old token survives."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        session = self._session(expired_id_token, "refresh-0", mock_client(handler))

        with pytest.raises(TransportError):
            await session.access_token()

        assert await session.access_token_unchecked() == expired_id_token
        assert session.refresh_token == "refresh-0"

    async def test_opaque_token_is_refreshed(self, fake_identity, mock_client):
        """Test that a token that is not a JWT is replaced via refresh."""
        session = self._session("opaque", "refresh-0", mock_client(fake_identity))

        token = await session.access_token()

        assert token.count(".") == 2
        assert fake_identity.refresh_calls == 1
