"""Key material: PEM parsing, signing key pairs and verification key tables."""

import base64
import binascii
import logging
import re
import time
from dataclasses import dataclass, field

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk
from jose.backends.base import Key
from jose.exceptions import JWKError
from pydantic import BaseModel, ConfigDict, ValidationError

from firestore_auth.exceptions import ConfigError, CryptoError

logger = logging.getLogger(__name__)

PEM_PATTERN = re.compile(
    r"-----BEGIN (?P<label>[A-Z0-9 ]+)-----(?P<body>.*?)-----END (?P=label)-----",
    re.DOTALL,
)
MAX_AGE_PATTERN = re.compile(r"max-age=(\d+)")


def pem_to_der(pem: str | bytes) -> bytes:
    """
    Convert a PEM document into its binary DER body.

    Locates the BEGIN/END markers, drops them together with all line breaks
    and base64-decodes what remains.

    Args:
        pem: PEM text, for example the ``private_key`` of a service account file

    Returns:
        DER bytes

    Raises:
        ConfigError: If the markers are missing or the body is not valid base64

    Example:
        >>> der = pem_to_der(credentials_json["private_key"])
    """
    if isinstance(pem, bytes):
        try:
            pem = pem.decode("ascii")
        except UnicodeDecodeError as e:
            raise ConfigError("PEM data is not ASCII text") from e

    match = PEM_PATTERN.search(pem)
    if match is None:
        raise ConfigError("PEM data is missing matching BEGIN/END markers")

    body = "".join(match.group("body").split())
    if not body:
        raise ConfigError("PEM body is empty")

    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigError(f"PEM body is not valid base64: {e}") from e


def _b64url_uint(value: int) -> str:
    raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


class JWK(BaseModel):
    """A single RSA JSON Web Key as published by Google."""

    model_config = ConfigDict(extra="allow")

    kid: str | None = None
    kty: str = "RSA"
    alg: str | None = "RS256"
    use: str | None = None
    n: str
    e: str


class JWKSet(BaseModel):
    """A JSON Web Key Set."""

    keys: list[JWK] = []

    @classmethod
    def from_json(cls, data: str | bytes) -> "JWKSet":
        """
        Parse a JWKS document.

        Raises:
            ConfigError: If the document is not a valid key set
        """
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid JWK set: {e}") from e

    def merged(self, other: "JWKSet") -> "JWKSet":
        """Return a new set with the keys of both sets, later entries winning per kid."""
        by_kid: dict[str | None, JWK] = {}
        anonymous: list[JWK] = []
        for entry in [*self.keys, *other.keys]:
            if entry.kid is None:
                anonymous.append(entry)
            else:
                by_kid[entry.kid] = entry
        return JWKSet(keys=[*by_kid.values(), *anonymous])


@dataclass(frozen=True)
class SigningKey:
    """
    Validated RSA signing key pair of a service account.

    Attributes:
        key_id: The service account's ``private_key_id``, used as JWT ``kid``
        der: Binary DER form of the private key
        private_key: Parsed private key
        jose_key: The same key wrapped for python-jose signing
    """

    key_id: str
    der: bytes = field(repr=False)
    private_key: rsa.RSAPrivateKey = field(repr=False)
    jose_key: Key = field(repr=False)

    @classmethod
    def from_pem(cls, pem: str | bytes, key_id: str) -> "SigningKey":
        """
        Build and validate a key pair from PEM text.

        Raises:
            ConfigError: If the PEM text is malformed
            CryptoError: If the decoded key is rejected
        """
        return cls.from_der(pem_to_der(pem), key_id)

    @classmethod
    def from_der(cls, der: bytes, key_id: str) -> "SigningKey":
        """
        Build and validate a key pair from DER bytes.

        The key is parsed right away so that a broken key fails at startup
        rather than on the first signature.

        Raises:
            CryptoError: If the bytes are not an RSA private key
        """
        try:
            private_key = serialization.load_der_private_key(der, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise CryptoError(f"Private key rejected: {e}") from e

        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise CryptoError(
                f"Private key rejected: expected RSA, got {type(private_key).__name__}"
            )

        pkcs8_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        try:
            jose_key = jwk.construct(pkcs8_pem, algorithm="RS256")
        except JWKError as e:
            raise CryptoError(f"Private key rejected by JWT backend: {e}") from e

        return cls(key_id=key_id, der=der, private_key=private_key, jose_key=jose_key)

    def public_jwk(self) -> JWK:
        """Return the public half of this key pair as a JWK carrying ``key_id``."""
        numbers = self.private_key.public_key().public_numbers()
        return JWK(
            kid=self.key_id,
            kty="RSA",
            alg="RS256",
            use="sig",
            n=_b64url_uint(numbers.n),
            e=_b64url_uint(numbers.e),
        )


def parse_max_age(cache_control: str | None) -> int | None:
    """
    Extract ``max-age`` seconds from a Cache-Control header.

    Example:
        >>> parse_max_age("public, max-age=19766, must-revalidate")
        19766
    """
    if not cache_control:
        return None
    match = MAX_AGE_PATTERN.search(cache_control)
    return int(match.group(1)) if match else None


class VerificationKeys:
    """
    Immutable table of public verification keys indexed by key id.

    The table carries an absolute expiry. Updates produce a new table so the
    owner can swap it in a single assignment; readers never see a table that
    is half written.
    """

    def __init__(self, keys: dict[str, Key] | None = None, expires_at: float | None = None):
        self._keys: dict[str, Key] = dict(keys or {})
        self.expires_at = expires_at

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, kid: str) -> bool:
        return kid in self._keys

    @property
    def kids(self) -> list[str]:
        """Known key ids."""
        return list(self._keys)

    def get(self, kid: str) -> Key | None:
        """Look up the key for ``kid``."""
        return self._keys.get(kid)

    def is_stale(self, tolerance_seconds: float, now: float | None = None) -> bool:
        """
        True if the table expires within ``tolerance_seconds``.

        A table that was never loaded has no expiry and is always stale.
        """
        if self.expires_at is None:
            return True
        now = time.time() if now is None else now
        return self.expires_at - now <= tolerance_seconds

    def merged(self, jwkset: JWKSet, ttl_seconds: float) -> "VerificationKeys":
        """
        Return a new table with the keys of ``jwkset`` added.

        Entries without a ``kid`` cannot be selected and are skipped.

        Raises:
            ConfigError: If an entry is not a usable RSA public key
        """
        keys = dict(self._keys)
        for entry in jwkset.keys:
            if not entry.kid:
                logger.warning("JWKS key missing 'kid', skipping")
                continue
            try:
                keys[entry.kid] = jwk.construct(
                    entry.model_dump(exclude_none=True), algorithm=entry.alg or "RS256"
                )
            except JWKError as e:
                raise ConfigError(f"Invalid verification key '{entry.kid}': {e}") from e

        return VerificationKeys(keys, expires_at=time.time() + ttl_seconds)
