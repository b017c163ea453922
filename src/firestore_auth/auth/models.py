"""Data models for the Firebase Auth and Google token endpoints."""

from pydantic import BaseModel, ConfigDict, Field


class RefreshTokenResponse(BaseModel):
    """Response of the securetoken refresh-token exchange."""

    id_token: str
    refresh_token: str | None = None
    expires_in: str | None = None
    token_type: str | None = None
    user_id: str
    project_id: str | None = None


class CustomTokenRequest(BaseModel):
    """Body of the verifyCustomToken exchange."""

    model_config = ConfigDict(populate_by_name=True)

    token: str
    return_secure_token: bool = Field(alias="returnSecureToken")


class CustomTokenResponse(BaseModel):
    """Response of the verifyCustomToken exchange."""

    model_config = ConfigDict(populate_by_name=True)

    kind: str | None = None
    id_token: str = Field(alias="idToken")
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    expires_in: str | None = Field(default=None, alias="expiresIn")


class SignInWithIdpRequest(BaseModel):
    """Body of accounts:signInWithIdp for OAuth2 provider sign-in."""

    model_config = ConfigDict(populate_by_name=True)

    post_body: str = Field(alias="postBody")
    request_uri: str = Field(alias="requestUri")
    return_idp_credential: bool = Field(default=True, alias="returnIdpCredential")
    return_secure_token: bool = Field(default=True, alias="returnSecureToken")


class OAuthResponse(BaseModel):
    """Relevant part of the accounts:signInWithIdp response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    local_id: str = Field(alias="localId")
    email: str | None = None
    provider_id: str | None = Field(default=None, alias="providerId")
    id_token: str | None = Field(default=None, alias="idToken")
    refresh_token: str | None = Field(default=None, alias="refreshToken")


class ProviderUserInfo(BaseModel):
    """A federated identity (GitHub, Google, ...) linked to a Firebase user."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    provider_id: str = Field(alias="providerId")
    federated_id: str | None = Field(default=None, alias="federatedId")
    display_name: str | None = Field(default=None, alias="displayName")
    photo_url: str | None = Field(default=None, alias="photoUrl")


class FirebaseAuthUser(BaseModel):
    """
    Firebase Auth account information.

    Attributes:
        local_id: Firebase user id
        email_verified: True if the user verified the email address
        provider_user_info: Federated services linked to this account
        disabled: A disabled account cannot sign in anymore
        last_login_at: Last login time in UTC (milliseconds, as sent by the API)
        created_at: Creation time in UTC (milliseconds, as sent by the API)
        custom_auth: True if the account signed in with a custom token
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    local_id: str | None = Field(default=None, alias="localId")
    email: str | None = None
    email_verified: bool | None = Field(default=None, alias="emailVerified")
    display_name: str | None = Field(default=None, alias="displayName")
    provider_user_info: list[ProviderUserInfo] | None = Field(
        default=None, alias="providerUserInfo"
    )
    photo_url: str | None = Field(default=None, alias="photoUrl")
    disabled: bool | None = None
    last_login_at: str | None = Field(default=None, alias="lastLoginAt")
    created_at: str | None = Field(default=None, alias="createdAt")
    custom_auth: bool | None = Field(default=None, alias="customAuth")


class FirebaseAuthUserResponse(BaseModel):
    """Response of getAccountInfo; zero or more users."""

    kind: str | None = None
    users: list[FirebaseAuthUser] = []


class FirebaseUser(BaseModel):
    """
    User identity extracted from a verified Firebase ID token.

    Attributes:
        user_id: Firebase user id from the 'sub' claim
        project_id: Project id from the 'aud' claim
        scopes: Scopes from the 'scope' claim, if any
    """

    user_id: str
    project_id: str
    scopes: set[str] = set()
