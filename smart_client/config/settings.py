"""
Client settings using pydantic-settings.

Environment variables are prefixed with SMART_CLIENT_.
"""

from functools import lru_cache
from typing import Any

from dotenv import load_dotenv
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from smart_client.constants import DEFAULT_PAGE_SIZE, REQUEST_TIMEOUT_SECONDS

load_dotenv()


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SMART_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_callback_port(self) -> "Settings":
        """Reject callback ports outside the valid TCP range."""
        if not 0 < self.callback_port < 65536:
            raise ValueError(
                f"SMART_CLIENT_CALLBACK_PORT must be between 1 and 65535, got {self.callback_port}"
            )
        return self

    # Server
    base_url: str = ""

    # OAuth client registration
    client_id: str | None = None
    client_secret: str | None = None
    client_name: str | None = None
    redirect_uri: str = "http://localhost:8765/oauth/callback"
    scope: str | None = None
    authorize_type: str | None = None  # none, implicit, authorization_code, client_credentials

    # Explicit endpoints; when set, the server's metadata is not consulted for them
    authorize_uri: str | None = None
    token_uri: str | None = None
    registration_uri: str | None = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    verbose: bool = False

    # Requests
    request_timeout: int = REQUEST_TIMEOUT_SECONDS
    page_size: int = DEFAULT_PAGE_SIZE

    # Loopback redirect receiver
    callback_host: str = "127.0.0.1"
    callback_port: int = 8765

    # Tokens
    token_expiry_buffer_seconds: int = 60  # Treat tokens as expired this many seconds early

    def to_auth_settings(self) -> dict[str, Any]:
        """Build the auth settings dictionary handed to the client."""
        values: dict[str, Any] = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "client_name": self.client_name,
            "redirect": self.redirect_uri,
            "scope": self.scope,
            "authorize_type": self.authorize_type,
            "authorize_uri": self.authorize_uri,
            "token_uri": self.token_uri,
            "registration_uri": self.registration_uri,
            "verbose": self.verbose,
        }
        return {k: v for k, v in values.items() if v is not None}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear the cached settings instance (used by tests)."""
    get_settings.cache_clear()
