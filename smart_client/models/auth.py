"""
Pydantic models for authentication.
"""

import time
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from smart_client.constants import DEFAULT_AUTH_TITLE

if TYPE_CHECKING:
    from smart_client.models.patient import Patient


class AuthStrategyKind(Enum):
    """OAuth2 grant type used against a server."""

    NONE = "none"
    IMPLICIT_GRANT = "implicit"
    CODE_GRANT = "authorization_code"
    CLIENT_CREDENTIALS = "client_credentials"


class GranularityPolicy(Enum):
    """How much launch context the authorization flow should obtain."""

    TOKEN_ONLY = "token_only"
    LAUNCH_CONTEXT = "launch_context"
    PATIENT_SELECT_WEB = "patient_select_web"
    PATIENT_SELECT_NATIVE = "patient_select_native"


@dataclass
class AuthProperties:
    """Properties for one authorization flow."""

    embedded: bool = True  # Hint for the login presenter; False means the system browser
    granularity: GranularityPolicy = GranularityPolicy.PATIENT_SELECT_NATIVE


@dataclass
class AuthResult:
    """
    Outcome of an authorization attempt.

    An aborted result carries neither parameters nor an error, so callers can
    tell a cancelled authorization from a failed one (failures raise).
    """

    parameters: dict[str, Any] | None = None
    patient: "Patient | None" = None
    aborted: bool = False

    @classmethod
    def aborted_result(cls) -> "AuthResult":
        return cls(aborted=True)


class AuthSettings(BaseModel):
    """
    Settings used to configure the OAuth2 engine.

    The settings map is open: unknown keys are kept and passed along.
    """

    model_config = ConfigDict(extra="allow")

    client_id: str | None = None
    client_secret: str | None = None
    client_name: str | None = None
    logo_uri: str | None = None
    redirect: str | None = None
    redirect_uris: list[str] = Field(default_factory=list)
    scope: str | None = None
    authorize_uri: str | None = None
    token_uri: str | None = None
    registration_uri: str | None = None
    authorize_type: str | None = None
    title: str = DEFAULT_AUTH_TITLE
    verbose: bool = False

    @model_validator(mode="after")
    def add_redirect_to_redirect_uris(self) -> "AuthSettings":
        """A single ``redirect`` becomes the first entry of ``redirect_uris``."""
        if self.redirect and self.redirect not in self.redirect_uris:
            self.redirect_uris = [self.redirect, *self.redirect_uris]
        return self

    @classmethod
    def from_mapping(cls, settings: "Mapping[str, Any] | AuthSettings | None") -> "AuthSettings":
        if isinstance(settings, AuthSettings):
            return settings.model_copy(deep=True)
        return cls.model_validate(dict(settings or {}))

    @property
    def redirect_uri(self) -> str | None:
        """The redirect URI sent with authorize and token requests."""
        return self.redirect_uris[0] if self.redirect_uris else None

    def with_defaults(self, values: Mapping[str, Any]) -> "AuthSettings":
        """Return a copy where ``values`` fill in every setting that is not yet set."""
        merged = self.model_dump()
        for key, value in values.items():
            if value is not None and merged.get(key) is None:
                merged[key] = value
        return AuthSettings.model_validate(merged)


class OAuthToken(BaseModel):
    """OAuth token with expiration tracking."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None
    id_token: str | None = None
    expires_at: float | None = None
    created_at: float = Field(default_factory=time.time)

    def model_post_init(self, __context: Any) -> None:
        """Compute expiration timestamp from expires_in if provided."""
        if self.expires_in is not None and self.expires_at is None:
            self.expires_at = self.created_at + self.expires_in

    @classmethod
    def from_response(cls, data: Mapping[str, Any], refresh_token: str | None = None) -> "OAuthToken":
        """Build a token from a token endpoint response or redirect fragment."""
        expires_in = data.get("expires_in")
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type") or "Bearer",
            expires_in=int(expires_in) if expires_in not in (None, "") else None,
            refresh_token=data.get("refresh_token", refresh_token),
            scope=data.get("scope"),
            id_token=data.get("id_token"),
        )

    def seconds_until_expiry(self) -> float | None:
        """Get seconds remaining until token expires."""
        if self.expires_at is None:
            return None
        return self.expires_at - time.time()

    def has_expired(self, buffer_seconds: int = 120) -> bool:
        """Check if token has expired or will expire soon."""
        remaining = self.seconds_until_expiry()
        if remaining is None:
            return False
        return remaining < buffer_seconds

    @property
    def is_expired(self) -> bool:
        """Check if the token is expired (with default buffer)."""
        return self.has_expired()

    @property
    def authorization_header(self) -> str:
        # Servers expect "Bearer" capitalized even when the token response says "bearer"
        token_type = "Bearer" if self.token_type.lower() == "bearer" else self.token_type
        return f"{token_type} {self.access_token}"
