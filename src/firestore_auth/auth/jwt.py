"""Creation, signing, renewal and verification of service-account JWTs."""

import json
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from jose import jws, jwt
from jose.exceptions import JWKError, JWSError, JWTError
from pydantic import BaseModel

from firestore_auth.auth.keys import SigningKey
from firestore_auth.exceptions import (
    BadSignatureError,
    ClaimValidationError,
    CryptoError,
    NoKeyIdError,
)

if TYPE_CHECKING:
    from firestore_auth.auth.credentials import Credentials

logger = logging.getLogger(__name__)

JWT_AUDIENCE_FIRESTORE = "https://firestore.googleapis.com/google.firestore.v1.Firestore"
JWT_AUDIENCE_IDENTITY = (
    "https://identitytoolkit.googleapis.com/google.identity.identitytoolkit.v1.IdentityToolkit"
)

ALGORITHM = "RS256"
REQUIRED_CLAIMS = ("iat", "exp", "iss", "aud", "sub")


class PrivateClaims(BaseModel):
    """Private claims carried by tokens of this library."""

    scope: str | None = None
    client_id: str | None = None
    uid: str | None = None  # Firebase user id for custom tokens


class JWTClaims(PrivateClaims):
    """Registered plus private claims of a token created by ``create_jwt``."""

    iss: str
    sub: str
    aud: str
    iat: int | None = None
    exp: int | None = None

    def to_payload(self) -> dict[str, Any]:
        """Claims as a JWT payload, absent private claims omitted."""
        return self.model_dump(exclude_none=True)


@dataclass
class UnsignedToken:
    """A header and claim set that still needs signing."""

    claims: JWTClaims
    header: dict[str, str] = field(default_factory=dict)


class TokenValidationResult(BaseModel):
    """
    Outcome of a successful token verification.

    Attributes:
        claims: Private claims (scope, client_id, uid)
        audience: Token audience (the first one if the token lists several)
        subject: Token subject, the user id for Firebase ID tokens
    """

    claims: PrivateClaims
    audience: str
    subject: str

    @property
    def scopes(self) -> set[str]:
        """Scopes from the space separated ``scope`` claim."""
        if not self.claims.scope:
            return set()
        return set(self.claims.scope.split())


def create_jwt(
    credentials: "Credentials",
    scopes: Iterable[str] | None,
    duration: timedelta,
    audience: str,
    client_id: str | None = None,
    user_id: str | None = None,
) -> UnsignedToken:
    """
    Build an unsigned token for the given service account.

    Issuer and subject are always the service account email. ``iat`` is now
    and ``exp`` is now plus ``duration``.

    Args:
        credentials: Service account credentials
        scopes: OAuth scopes, space joined into the ``scope`` claim if non-empty
        duration: Token lifetime
        audience: One of the ``JWT_AUDIENCE_*`` constants or an OAuth token URL
        client_id: Optional ``client_id`` claim
        user_id: Optional ``uid`` claim (custom tokens)

    Returns:
        Unsigned token with an RS256 header naming ``private_key_id``
    """
    now = int(time.time())
    scope = " ".join(scopes) if scopes else None

    claims = JWTClaims(
        iss=credentials.client_email,
        sub=credentials.client_email,
        aud=audience,
        iat=now,
        exp=now + int(duration.total_seconds()),
        scope=scope or None,
        client_id=client_id,
        uid=user_id,
    )
    header = {"alg": ALGORITHM, "kid": credentials.private_key_id}
    return UnsignedToken(claims=claims, header=header)


def sign(token: UnsignedToken, signing_key: SigningKey) -> str:
    """
    Sign a token and return its compact serialization.

    Raises:
        CryptoError: If the JWT backend fails to sign
    """
    try:
        return jwt.encode(
            token.claims.to_payload(),
            signing_key.jose_key,
            algorithm=ALGORITHM,
            headers=token.header,
        )
    except (JWSError, JWKError, JWTError) as e:
        raise CryptoError(f"Failed to sign token: {e}") from e


def create_jwt_encoded(
    credentials: "Credentials",
    scopes: Iterable[str] | None,
    duration: timedelta,
    audience: str,
    client_id: str | None = None,
    user_id: str | None = None,
) -> str:
    """Create and sign a token in one step with the credentials' signing key."""
    token = create_jwt(credentials, scopes, duration, audience, client_id, user_id)
    return sign(token, credentials.signing_key)


def is_expired(access_token: str, tolerance_minutes: int = 0) -> bool:
    """
    Check the ``exp`` claim of a token without verifying its signature.

    A token without ``exp`` counts as expired.

    Raises:
        CryptoError: If the string is not a JWT
    """
    try:
        claims = jwt.get_unverified_claims(access_token)
    except JWTError as e:
        raise CryptoError(f"Access token is not a JWT: {e}") from e

    expiry = claims.get("exp")
    if not isinstance(expiry, (int, float)):
        return True
    return time.time() - expiry > tolerance_minutes * 60


def update_expiry_if_stale(
    token: UnsignedToken,
    threshold_minutes: int = 50,
    duration: timedelta = timedelta(minutes=60),
    now: float | None = None,
) -> bool:
    """
    Move ``iat`` and ``exp`` forward if the token was issued too long ago.

    Args:
        token: Token to update in place
        threshold_minutes: Age after which the token is renewed
        duration: New lifetime counted from now
        now: Current unix time (defaults to the clock)

    Returns:
        True if the token changed and must be signed again
    """
    now = int(time.time() if now is None else now)
    issued_at = token.claims.iat
    if issued_at is not None and now - issued_at <= threshold_minutes * 60:
        return False

    token.claims.iat = now
    token.claims.exp = now + int(duration.total_seconds())
    return True


def validate_claims(claims: dict[str, Any], leeway: int = 0, now: float | None = None) -> None:
    """
    Check presence of the required claims and the time-based ones.

    ``iat``, ``exp``, ``iss``, ``aud`` and ``sub`` are required; ``nbf`` and
    ``jti`` are optional but ``nbf`` must not lie in the future.

    Raises:
        ClaimValidationError: Listing missing claims and failed time claims
    """
    now = time.time() if now is None else now
    missing = [name for name in REQUIRED_CLAIMS if claims.get(name) in (None, "", [])]
    invalid: list[str] = []

    expiry = claims.get("exp")
    if expiry is not None:
        if not isinstance(expiry, (int, float)) or expiry <= now - leeway:
            invalid.append("exp")

    not_before = claims.get("nbf")
    if not_before is not None:
        if not isinstance(not_before, (int, float)) or not_before > now + leeway:
            invalid.append("nbf")

    issued_at = claims.get("iat")
    if issued_at is not None and not isinstance(issued_at, (int, float)):
        invalid.append("iat")

    if missing or invalid:
        raise ClaimValidationError(missing=missing, expired=invalid)


async def verify_access_token(
    credentials: "Credentials", access_token: str, leeway: int = 0
) -> TokenValidationResult:
    """
    Verify a token against the credentials' verification key table.

    Performs, in order:
    1. Read the unverified header and extract ``kid``
    2. Resolve the key (refreshing a stale key table first)
    3. Verify the RS256 signature
    4. Validate claim presence and expiry

    Args:
        credentials: Credentials holding the verification keys
        access_token: Compact JWT
        leeway: Clock skew tolerance in seconds

    Returns:
        Private claims, audience and subject of the token

    Raises:
        NoKeyIdError: If the header has no ``kid``
        UnknownKeyError: If no key matches ``kid``
        BadSignatureError: If the signature does not verify
        ClaimValidationError: If claims are missing or expired
        CryptoError: If the token cannot be parsed
    """
    try:
        header = jwt.get_unverified_header(access_token)
    except JWTError as e:
        raise CryptoError(f"Malformed token: {e}") from e

    kid = header.get("kid")
    if not kid:
        raise NoKeyIdError("JWT header missing 'kid' (key ID)")

    key = await credentials.decode_secret(kid)

    if header.get("alg") != ALGORITHM:
        raise BadSignatureError(f"Unsupported token algorithm: {header.get('alg')}")

    try:
        payload = jws.verify(access_token, key, algorithms=[ALGORITHM])
    except JWSError as e:
        logger.warning(
            f"JWT signature verification failed: {e}",
            extra={"error_type": "jwt_bad_signature", "kid": kid},
        )
        raise BadSignatureError(f"Signature verification failed: {e}") from e

    try:
        claims = json.loads(payload)
    except ValueError as e:
        raise CryptoError(f"Token payload is not JSON: {e}") from e
    if not isinstance(claims, dict):
        raise CryptoError("Token payload is not a JSON object")

    validate_claims(claims, leeway=leeway)

    audience = claims["aud"]
    if isinstance(audience, list):
        audience = audience[0]

    logger.debug("JWT verified successfully", extra={"kid": kid, "sub": claims["sub"]})
    return TokenValidationResult(
        claims=PrivateClaims.model_validate(claims),
        audience=str(audience),
        subject=str(claims["sub"]),
    )
