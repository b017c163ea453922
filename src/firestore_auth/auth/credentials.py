"""Service account credentials with signing key and verification key table."""

import asyncio
import logging
from datetime import timedelta
from pathlib import Path

import httpx
from jose.backends.base import Key
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError

from firestore_auth.auth.jwks import download_service_account_jwks, load_or_download_jwks
from firestore_auth.auth.jwt import (
    JWT_AUDIENCE_FIRESTORE,
    TokenValidationResult,
    create_jwt_encoded,
    verify_access_token,
)
from firestore_auth.auth.keys import JWKSet, SigningKey, VerificationKeys
from firestore_auth.config import settings
from firestore_auth.exceptions import (
    ClaimValidationError,
    ConfigError,
    CryptoError,
    FirestoreAuthError,
    UnknownKeyError,
)

logger = logging.getLogger(__name__)


class Credentials(BaseModel):
    """
    Service account credentials.

    The service account email is required to fetch the public keys for
    verifying Firebase tokens, the API key to talk to the Firebase Auth REST
    API, and the private key to sign JWTs that are used as bearer tokens or
    exchanged for user tokens.

    The signing key and the verification key table are computed state and are
    never serialized.

    Example:
        >>> credentials = Credentials.from_file("firebase-service-account.json")
        >>> await credentials.download_jwkset()
        >>> await credentials.verify()
    """

    model_config = ConfigDict(extra="ignore")

    project_id: str
    private_key_id: str
    private_key: str = Field(default="", repr=False)
    client_email: str
    client_id: str = ""
    api_key: str = ""

    _signing_key: SigningKey | None = PrivateAttr(default=None)
    _verification_keys: VerificationKeys = PrivateAttr(default_factory=VerificationKeys)
    _keys_lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)
    _http_client: httpx.AsyncClient | None = PrivateAttr(default=None)

    @classmethod
    def from_json(cls, data: str | bytes) -> "Credentials":
        """
        Parse a service account JSON document and compute the signing key.

        Raises:
            ConfigError: If the document or its private key is malformed
            CryptoError: If the private key is rejected
        """
        try:
            credentials = cls.model_validate_json(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid service account credentials: {e}") from e

        credentials.compute_secret()
        return credentials

    @classmethod
    def from_file(cls, path: str | Path) -> "Credentials":
        """
        Read a service account JSON file and compute the signing key.

        Raises:
            ConfigError: If the file cannot be read or is malformed
        """
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            raise ConfigError(f"Cannot read credentials file {path}: {e}") from e
        return cls.from_json(data)

    @classmethod
    async def from_settings(cls, client: httpx.AsyncClient | None = None) -> "Credentials":
        """
        Load the credentials file named in the settings.

        If a JWKS cache file is configured, its keys are added right away (the
        file is created from a download when missing).

        Raises:
            ConfigError: If no credentials file is configured or it is malformed
        """
        if not settings.credentials_file:
            raise ConfigError("No credentials file configured (FIRESTORE_AUTH_CREDENTIALS_FILE)")
        credentials = cls.from_file(settings.credentials_file)

        if settings.jwks_cache_file:
            jwkset = await load_or_download_jwks(
                settings.jwks_cache_file, credentials.client_email, client
            )
            credentials.add_jwks_public_keys(jwkset)
        return credentials

    def compute_secret(self) -> None:
        """
        Derive and validate the signing key from ``private_key``.

        Raises:
            ConfigError: If no private key is present or the PEM is malformed
            CryptoError: If the key is not a usable RSA key
        """
        if not self.private_key:
            raise ConfigError("Credentials contain no private key")
        self._signing_key = SigningKey.from_pem(self.private_key, self.private_key_id)

    @property
    def signing_key(self) -> SigningKey:
        """
        The signing key.

        Raises:
            ConfigError: If ``compute_secret`` has not run
        """
        if self._signing_key is None:
            raise ConfigError("No signing key available. Call compute_secret() first.")
        return self._signing_key

    @property
    def verification_keys(self) -> VerificationKeys:
        """Current verification key table."""
        return self._verification_keys

    def set_http_client(self, client: httpx.AsyncClient | None) -> None:
        """Use ``client`` for key downloads instead of a temporary client."""
        self._http_client = client

    def add_jwks_public_keys(self, jwkset: JWKSet, max_age: int | None = None) -> None:
        """
        Add public keys, for example from a cached JWKS file.

        Args:
            jwkset: Keys to add
            max_age: Seconds the keys stay fresh (defaults to the configured TTL)
        """
        ttl = max_age if max_age is not None else settings.jwks_default_ttl_seconds
        self._verification_keys = self._verification_keys.merged(jwkset, ttl)
        logger.info(
            "Verification keys added",
            extra={"key_count": len(jwkset.keys), "ttl_seconds": ttl},
        )

    async def download_jwkset(self, client: httpx.AsyncClient | None = None) -> None:
        """
        Download the service account's and the securetoken system account's keys.

        Raises:
            TransportError: If the download fails
            RemoteAPIError: If Google answers with an error
        """
        async with self._keys_lock:
            await self._download_locked(client)

    async def _download_locked(self, client: httpx.AsyncClient | None) -> None:
        try:
            jwkset, max_age = await download_service_account_jwks(
                self.client_email, client or self._http_client
            )
        except FirestoreAuthError as e:
            logger.error(
                f"Failed to download JWKS: {e}",
                exc_info=True,
                extra={"error_type": "jwks_download_failed", "client_email": self.client_email},
            )
            raise
        self.add_jwks_public_keys(jwkset, max_age)

    async def decode_secret(self, kid: str) -> Key:
        """
        Resolve the verification key for ``kid``.

        On a miss, a table that expires within the configured tolerance is
        downloaded again before the miss is reported. A fresh table is never
        refreshed for an unknown kid.

        Raises:
            UnknownKeyError: If the key is still unknown
            TransportError: If a needed refresh fails
        """
        key = self._verification_keys.get(kid)
        if key is not None:
            return key

        tolerance = settings.jwks_refresh_tolerance_seconds
        if settings.auto_download_jwks and self._verification_keys.is_stale(tolerance):
            async with self._keys_lock:
                # Another caller may have refreshed while this one waited.
                table = self._verification_keys
                if kid not in table and table.is_stale(tolerance):
                    logger.warning(
                        f"Key ID '{kid}' not found in stale key table, refreshing JWKS",
                        extra={"kid": kid, "cached_kids": table.kids},
                    )
                    await self._download_locked(None)
            key = self._verification_keys.get(kid)

        if key is None:
            raise UnknownKeyError(kid, self._verification_keys.kids)
        return key

    async def verify_token(self, token: str) -> TokenValidationResult:
        """Verify a third-party or self-issued token with this key table."""
        return await verify_access_token(self, token)

    async def verify(self) -> None:
        """
        Self-test: sign a short-lived admin token and verify it.

        Surfaces a wrong key pair or missing public keys at startup instead of
        on the first real request.

        Raises:
            ConfigError: If the token does not verify
        """
        token = create_jwt_encoded(self, ["admin"], timedelta(minutes=5), JWT_AUDIENCE_FIRESTORE)
        try:
            await verify_access_token(self, token)
        except (CryptoError, ClaimValidationError) as e:
            raise ConfigError(f"Credentials failed self-verification: {e}") from e
        logger.info("Credentials verified", extra={"client_email": self.client_email})
