"""Pytest configuration and shared fixtures."""

import json
import time
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt

from firestore_auth.auth.credentials import Credentials
from firestore_auth.auth.keys import JWKSet
from firestore_auth.config import settings


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """Generate one RSA key for the whole test session."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_private_key: rsa.RSAPrivateKey) -> str:
    """Provide the test key as PKCS8 PEM, the format of service account files."""
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def service_account_info(private_key_pem: str) -> dict[str, Any]:
    """Provide a service account document as downloaded from the console."""
    return {
        "type": "service_account",
        "project_id": "p",
        "private_key_id": "test-key-id",
        "private_key": private_key_pem,
        "client_email": "svc@p.iam.gserviceaccount.com",
        "client_id": "1234567890",
        "api_key": "test-api-key",
        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
        "token_uri": "https://oauth2.googleapis.com/token",
    }


@pytest.fixture
def credentials(service_account_info: dict[str, Any]) -> Credentials:
    """
    Provide credentials whose verification table holds their own public key.

    Tokens signed by these credentials verify without any download.
    """
    creds = Credentials.from_json(json.dumps(service_account_info))
    creds.add_jwks_public_keys(JWKSet(keys=[creds.signing_key.public_jwk()]))
    return creds


@pytest.fixture
def sign_claims(credentials: Credentials) -> Callable[..., str]:
    """
    Provide a helper signing arbitrary claims with the test key.

    Example:
        >>> token = sign_claims({"sub": "user-1"}, kid="other-kid")
    """

    def _sign(claims: dict[str, Any], kid: str | None = "test-key-id") -> str:
        headers = {"kid": kid} if kid else {}
        return jwt.encode(
            claims, credentials.signing_key.jose_key, algorithm="RS256", headers=headers
        )

    return _sign


@pytest.fixture
def user_claims() -> dict[str, Any]:
    """Provide claims of a valid Firebase ID token for user 'user-1'."""
    now = int(time.time())
    return {
        "iss": "https://securetoken.google.com/p",
        "aud": "p",
        "sub": "user-1",
        "iat": now,
        "exp": now + 3600,
        "auth_time": now,
    }


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """
    Provide a factory for HTTP clients answering through a handler function.

    Example:
        >>> client = mock_client(lambda request: httpx.Response(200, json={}))
    """

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch):
    """Keep tests independent from environment configuration."""
    monkeypatch.setattr(settings, "credentials_file", None)
    monkeypatch.setattr(settings, "jwks_cache_file", None)
    monkeypatch.setattr(settings, "auto_download_jwks", True)
    monkeypatch.setattr(settings, "jwks_default_ttl_seconds", 7200)
    monkeypatch.setattr(settings, "jwks_refresh_tolerance_seconds", 600)
    monkeypatch.setattr(settings, "token_lifetime_minutes", 60)
    monkeypatch.setattr(settings, "token_renew_threshold_minutes", 50)
    monkeypatch.setattr(settings, "firestore_base_url", "https://firestore.googleapis.com/v1")
    yield
