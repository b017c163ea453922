"""Library configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables prefixed with FIRESTORE_AUTH_."""

    model_config = SettingsConfigDict(
        env_prefix="FIRESTORE_AUTH_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Credential sources
    credentials_file: str | None = None
    jwks_cache_file: str | None = None

    # Firestore REST endpoint
    firestore_base_url: str = "https://firestore.googleapis.com/v1"

    # HTTP client timeouts
    http_timeout_seconds: float = 30.0
    http_connect_timeout_seconds: float = 10.0

    # Verification key table
    jwks_default_ttl_seconds: int = 7200  # 2 hours, used when Cache-Control has no max-age
    jwks_refresh_tolerance_seconds: int = 600  # 10 minutes before expiry counts as stale
    auto_download_jwks: bool = True

    # Service account token lifecycle
    token_lifetime_minutes: int = 60
    token_renew_threshold_minutes: int = 50


settings = Settings()
