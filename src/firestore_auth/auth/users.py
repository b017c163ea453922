"""Firebase Auth account information and removal for the user of a session."""

import logging

from pydantic import ValidationError

from firestore_auth.auth.models import FirebaseAuthUserResponse
from firestore_auth.auth.sessions import UserSession
from firestore_auth.exceptions import UnexpectedResponseError
from firestore_auth.http import parse_json, send

logger = logging.getLogger(__name__)

FIREBASE_AUTH_URL = "https://www.googleapis.com/identitytoolkit/v3/relyingparty/{method}?key={api_key}"


async def user_info(session: UserSession) -> FirebaseAuthUserResponse:
    """
    Retrieve the Firebase Auth account of the session's user.

    Raises:
        TransportError: If the request fails
        RemoteAPIError: If the ID token is rejected
    """
    url = FIREBASE_AUTH_URL.format(method="getAccountInfo", api_key=session.api_key)
    id_token = await session.access_token()
    response = await send(
        session.client, "POST", url, context=session.user_id, json={"idToken": id_token}
    )
    try:
        return FirebaseAuthUserResponse.model_validate(parse_json(response, session.user_id))
    except ValidationError as e:
        raise UnexpectedResponseError(response.status_code, response.text, session.user_id) from e


async def user_remove(session: UserSession) -> None:
    """
    Delete the Firebase Auth account of the session's user.

    The session is unusable afterwards.

    Raises:
        TransportError: If the request fails
        RemoteAPIError: If the account cannot be deleted
    """
    url = FIREBASE_AUTH_URL.format(method="deleteAccount", api_key=session.api_key)
    id_token = await session.access_token()
    await send(
        session.client,
        "POST",
        url,
        context=session.user_id,
        headers={"Authorization": f"Bearer {id_token}"},
        json={"idToken": id_token},
    )
    logger.info("Firebase user removed", extra={"user_id": session.user_id})
