"""JWKS (JSON Web Key Set) downloads for Google service accounts."""

import logging
from pathlib import Path

import httpx
from pydantic import ValidationError

from firestore_auth.auth.keys import JWKSet, parse_max_age
from firestore_auth.exceptions import UnexpectedResponseError
from firestore_auth.http import create_http_client, parse_json, send

logger = logging.getLogger(__name__)

GOOGLE_JWKS_URL = "https://www.googleapis.com/service_accounts/v1/jwk/{account}"
SECURETOKEN_ACCOUNT = "securetoken@system.gserviceaccount.com"


async def download_google_jwks(
    account_email: str, client: httpx.AsyncClient | None = None
) -> tuple[JWKSet, int | None]:
    """
    Download the public key set of a Google service account.

    Args:
        account_email: Service account email, e.g. ``svc@p.iam.gserviceaccount.com``
        client: HTTP client to use (a temporary one is created if None)

    Returns:
        Tuple of the key set and the ``Cache-Control`` max-age in seconds, if any

    Raises:
        TransportError: If the request fails
        RemoteAPIError: If Google answers with an error envelope
        UnexpectedResponseError: If the body is not a key set

    Example:
        >>> jwkset, max_age = await download_google_jwks("svc@p.iam.gserviceaccount.com")
    """
    if client is None:
        async with create_http_client() as owned_client:
            return await download_google_jwks(account_email, owned_client)

    url = GOOGLE_JWKS_URL.format(account=account_email)
    logger.info(f"Fetching JWKS from {url}")
    response = await send(client, "GET", url, context=account_email)

    try:
        jwkset = JWKSet.model_validate(parse_json(response, account_email))
    except ValidationError as e:
        raise UnexpectedResponseError(response.status_code, response.text, account_email) from e

    max_age = parse_max_age(response.headers.get("cache-control"))
    logger.info(
        "JWKS downloaded",
        extra={"account": account_email, "key_count": len(jwkset.keys), "max_age": max_age},
    )
    return jwkset, max_age


async def download_service_account_jwks(
    client_email: str, client: httpx.AsyncClient | None = None
) -> tuple[JWKSet, int | None]:
    """
    Download and merge the key sets needed to verify Firebase tokens.

    These are the service account's own keys plus the keys of the
    ``securetoken`` system account that signs Firebase ID tokens.

    Returns:
        Tuple of the merged key set and the smaller of both max-age values
    """
    if client is None:
        async with create_http_client() as owned_client:
            return await download_service_account_jwks(client_email, owned_client)

    own_keys, own_max_age = await download_google_jwks(client_email, client)
    system_keys, system_max_age = await download_google_jwks(SECURETOKEN_ACCOUNT, client)

    max_ages = [age for age in (own_max_age, system_max_age) if age is not None]
    return own_keys.merged(system_keys), min(max_ages) if max_ages else None


async def load_or_download_jwks(
    cache_file: str | Path, client_email: str, client: httpx.AsyncClient | None = None
) -> JWKSet:
    """
    Read a key set from a cache file, downloading and storing it if absent.

    Only point this at a persistent path; the file is never refreshed by this
    function. Keys added this way can be supplemented later with
    ``Credentials.add_jwks_public_keys``.

    Args:
        cache_file: Path of the JWKS cache file
        client_email: Service account email whose keys are downloaded
        client: HTTP client to use for the download

    Returns:
        The cached or freshly downloaded key set

    Raises:
        ConfigError: If the cache file does not contain a valid key set
    """
    path = Path(cache_file)
    if path.exists():
        logger.info(f"Loading JWKS from cache file {path}")
        return JWKSet.from_json(path.read_bytes())

    jwkset, _ = await download_service_account_jwks(client_email, client)
    path.write_text(jwkset.model_dump_json(indent=2, exclude_none=True), encoding="utf-8")
    logger.info(f"JWKS cached to {path}", extra={"key_count": len(jwkset.keys)})
    return jwkset
