"""HTTP helpers shared by the credential, session and document layers."""

import logging
from typing import Any

import httpx

from firestore_auth.config import settings
from firestore_auth.exceptions import RemoteAPIError, TransportError, UnexpectedResponseError

logger = logging.getLogger(__name__)


def create_http_client() -> httpx.AsyncClient:
    """
    Create an HTTP client with the configured timeouts.

    Timeouts are the transport's responsibility; nothing above this layer
    cancels a request.

    Returns:
        New httpx.AsyncClient owned by the caller
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            settings.http_timeout_seconds,
            connect=settings.http_connect_timeout_seconds,
        )
    )


def raise_for_api_error(response: httpx.Response, context: str = "") -> None:
    """
    Raise if the response is not a success.

    A body of the form ``{"error": {"code", "message", "errors"?}}`` becomes a
    RemoteAPIError. OAuth endpoints answer with ``{"error": "...",
    "error_description": "..."}`` which is mapped the same way using the HTTP
    status as code. Everything else is an UnexpectedResponseError carrying the
    raw body.

    Args:
        response: HTTP response to inspect
        context: Request context for diagnostics (document path, user id, ...)

    Raises:
        RemoteAPIError: If the body contains a recognized error envelope
        UnexpectedResponseError: If the status is not 200 and no envelope is found
    """
    if response.status_code == 200:
        return

    try:
        body: Any = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and "message" in error:
            code = error.get("code")
            if isinstance(code, str) and code.isdecimal():
                code = int(code)
            if not isinstance(code, int) or isinstance(code, bool):
                code = response.status_code
            raise RemoteAPIError(
                code=code,
                message=str(error["message"]),
                context=context,
                errors=error.get("errors"),
            )
        if isinstance(error, str):
            raise RemoteAPIError(
                code=response.status_code,
                message=str(body.get("error_description", error)),
                context=context,
            )

    raise UnexpectedResponseError(response.status_code, response.text, context)


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    context: str = "",
    **kwargs: Any,
) -> httpx.Response:
    """
    Perform one request and interpret the response status.

    Args:
        client: HTTP client to send with
        method: HTTP method
        url: Target URL
        context: Request context attached to errors
        **kwargs: Forwarded to ``httpx.AsyncClient.request``

    Returns:
        The successful response

    Raises:
        TransportError: If the HTTP library fails (connection, timeout, ...)
        RemoteAPIError: If the service answered with its error envelope
        UnexpectedResponseError: If the service answered with anything else
    """
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        logger.error(
            f"HTTP {method} failed: {e}",
            extra={"error_type": "transport_failed", "context": context},
        )
        raise TransportError(f"{method} request failed ({context}): {e}") from e

    raise_for_api_error(response, context)
    return response


def parse_json(response: httpx.Response, context: str = "") -> Any:
    """
    Decode a JSON body.

    Raises:
        UnexpectedResponseError: If the body is not valid JSON
    """
    try:
        return response.json()
    except ValueError as e:
        raise UnexpectedResponseError(response.status_code, response.text, context) from e
