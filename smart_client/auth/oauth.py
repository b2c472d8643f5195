"""
OAuth2 engines for the SMART client.

One engine per grant type:
- Authorization Code with PKCE
- Implicit grant
- Client credentials

An engine builds the authorize request, hands the URL to a login presenter,
processes the redirect, talks to the token and registration endpoints, and
keeps the resulting token in memory.
"""

import asyncio
import base64
import hashlib
import json
import os
import webbrowser
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar
from urllib.parse import parse_qsl, urlencode, urlparse

import aiohttp

from smart_client.config.logging import get_logger
from smart_client.constants import OAUTH_REQUEST_TIMEOUT_SECONDS
from smart_client.errors import (
    BodyParseError,
    MissingConfigurationError,
    OAuthFlowError,
    StateMismatchError,
    TransportError,
)
from smart_client.models.auth import AuthSettings, AuthStrategyKind, OAuthToken

logger = get_logger(__name__)

# RFC 7636 PKCE constants
_PKCE_VERIFIER_MIN_LENGTH = 43
_PKCE_VERIFIER_MAX_LENGTH = 128


@dataclass
class PKCEChallenge:
    """PKCE code verifier and challenge pair."""

    code_verifier: str
    code_challenge: str
    code_challenge_method: str = "S256"


def _base64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def create_pkce_pair(verifier_length: int = 64) -> PKCEChallenge:
    """
    Create a PKCE code verifier and S256 challenge pair.

    Args:
        verifier_length: Length of code verifier (43-128 per RFC 7636)

    Raises:
        ValueError: If verifier_length is outside valid range
    """
    if not (_PKCE_VERIFIER_MIN_LENGTH <= verifier_length <= _PKCE_VERIFIER_MAX_LENGTH):
        raise ValueError(
            f"Verifier length must be {_PKCE_VERIFIER_MIN_LENGTH}-{_PKCE_VERIFIER_MAX_LENGTH}, "
            f"got {verifier_length}"
        )

    # base64url output only uses RFC 7636 unreserved characters
    verifier = _base64url(os.urandom(verifier_length))[:verifier_length]
    challenge = _base64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return PKCEChallenge(code_verifier=verifier, code_challenge=challenge)


class LoginPresenter(ABC):
    """Shows the authorization server's login page to the user."""

    @abstractmethod
    async def present_login(self, url: str, embedded: bool, context: Any) -> None:
        """
        Present the login page at ``url``.

        Args:
            url: The fully built authorize URL
            embedded: Whether an embedded view was requested
            context: Opaque presentation context supplied by the application
        """


class BrowserLoginPresenter(LoginPresenter):
    """Opens the login page in the system browser."""

    def __init__(self):
        self.last_url: str | None = None

    async def present_login(self, url: str, embedded: bool, context: Any) -> None:
        self.last_url = url
        if embedded:
            logger.debug("No embedded login view available, using the system browser")
        if not webbrowser.open(url):
            raise OAuthFlowError("browser_unavailable", "Could not open the system browser")


class OAuth2Engine(ABC):
    """
    Base OAuth2 engine.

    Subclasses implement ``authorize`` and, for redirect based flows,
    ``handle_redirect_url``.
    """

    kind: ClassVar[AuthStrategyKind]
    grant_types: ClassVar[list[str]] = []
    response_types: ClassVar[list[str]] = []

    def __init__(
        self,
        settings: AuthSettings,
        expiry_buffer_seconds: int = 60,
        timeout: float = OAUTH_REQUEST_TIMEOUT_SECONDS,
    ):
        self.settings = settings
        self.expiry_buffer_seconds = expiry_buffer_seconds
        self.timeout = timeout
        self.token: OAuthToken | None = None
        self._pending_state: str | None = None

    @property
    def client_id(self) -> str | None:
        return self.settings.client_id

    @property
    def scope(self) -> str | None:
        return self.settings.scope

    def has_unexpired_access_token(self) -> bool:
        return self.token is not None and not self.token.has_expired(self.expiry_buffer_seconds)

    def can_refresh(self) -> bool:
        return (
            self.token is not None
            and self.token.refresh_token is not None
            and self.settings.token_uri is not None
        )

    def authorization_header(self) -> str | None:
        """Authorization header value for the stored token, if it is still valid."""
        if not self.has_unexpired_access_token():
            return None
        return self.token.authorization_header

    def forget_tokens(self) -> None:
        """Discard the stored access and refresh tokens."""
        if self.token is not None:
            logger.debug("Forgetting tokens", kind=self.kind.value)
        self.token = None
        self._pending_state = None

    def forget_client(self) -> None:
        """Discard the client registration (client id and secret)."""
        self.settings.client_id = None
        self.settings.client_secret = None

    def _generate_state(self) -> str:
        """Generate a cryptographically secure state parameter."""
        self._pending_state = os.urandom(24).hex()
        return self._pending_state

    def _check_redirect_params(self, params: dict[str, str]) -> None:
        if "error" in params:
            raise OAuthFlowError(params["error"], params.get("error_description"))
        if self._pending_state is None:
            raise OAuthFlowError("invalid_request", "No authorization request is pending")
        if params.get("state") != self._pending_state:
            raise StateMismatchError()

    def _require(self, key: str) -> str:
        value = getattr(self.settings, key)
        if not value:
            raise MissingConfigurationError(key, f"Required for the {self.kind.value} grant")
        return value

    @abstractmethod
    async def authorize(
        self,
        scope: str,
        aud: str | None,
        presenter: LoginPresenter | None,
        embedded: bool = True,
        context: Any = None,
    ) -> dict[str, Any] | None:
        """
        Start the authorization flow.

        Returns:
            The authorization parameters when the flow completed without a
            redirect, or None when the result arrives via ``handle_redirect_url``
        """

    async def handle_redirect_url(self, url: str) -> dict[str, Any]:
        """Process the redirect; only redirect based grants support this."""
        raise OAuthFlowError("unsupported_redirect", f"The {self.kind.value} grant does not use redirects")

    async def _request_json(
        self,
        url: str,
        data: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        auth: aiohttp.BasicAuth | None = None,
    ) -> dict[str, Any]:
        """POST to an OAuth2 endpoint and return the parsed JSON response."""
        headers = {"Accept": "application/json"}
        if data is not None:
            headers["Content-Type"] = "application/x-www-form-urlencoded"

        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.post(
                    url, data=data, json=json_body, headers=headers, auth=auth
                ) as resp:
                    body = await resp.text()
                    status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("OAuth2 request failed", url=url, error=str(e))
            raise TransportError(url, str(e)) from e

        try:
            payload = _parse_json(body)
        except ValueError as e:
            if status >= 400:
                raise OAuthFlowError("request_failed", f"{status}: {body[:200]}") from e
            logger.error("Invalid JSON in OAuth2 response", url=url, body=body[:200])
            raise BodyParseError(body, str(e)) from e

        if status >= 400 or "error" in payload:
            logger.error("OAuth2 endpoint returned an error", url=url, status_code=status)
            raise OAuthFlowError(
                payload.get("error", "request_failed"),
                payload.get("error_description") or f"Status {status}",
            )
        return payload

    def _client_auth(self) -> aiohttp.BasicAuth | None:
        if self.settings.client_id and self.settings.client_secret:
            return aiohttp.BasicAuth(self.settings.client_id, self.settings.client_secret)
        return None

    def _store_token(self, data: dict[str, Any], refresh_token: str | None = None) -> dict[str, Any]:
        if not data.get("access_token"):
            raise OAuthFlowError("invalid_response", "No access token in response")
        self.token = OAuthToken.from_response(data, refresh_token=refresh_token)
        self._pending_state = None
        logger.info("Did get access token", kind=self.kind.value, expires_in=self.token.expires_in)
        return data

    async def refresh_access_token(self) -> dict[str, Any]:
        """
        Refresh the access token using the stored refresh token.

        Raises:
            OAuthFlowError: If no refresh is possible or the server refuses
        """
        if not self.can_refresh():
            raise OAuthFlowError("invalid_grant", "No refresh token available")

        data = {
            "grant_type": "refresh_token",
            "refresh_token": self.token.refresh_token,
            "client_id": self.settings.client_id,
        }
        payload = await self._request_json(
            self.settings.token_uri, data=data, auth=self._client_auth()
        )
        logger.info("Token refresh successful")
        return self._store_token(payload, refresh_token=self.token.refresh_token)

    async def register_client_if_needed(self) -> dict[str, Any] | None:
        """
        Register the client dynamically (RFC 7591) unless it has a client id.

        Returns:
            The registration response, or None if no registration was attempted
        """
        if self.settings.client_id or not self.settings.registration_uri:
            return None

        body: dict[str, Any] = {
            "client_name": self.settings.client_name or self.settings.title,
            "redirect_uris": self.settings.redirect_uris,
            "grant_types": self.grant_types,
            "response_types": self.response_types,
            "token_endpoint_auth_method": "client_secret_basic" if self.settings.client_secret else "none",
        }
        if self.settings.scope:
            body["scope"] = self.settings.scope
        if self.settings.logo_uri:
            body["logo_uri"] = self.settings.logo_uri

        payload = await self._request_json(self.settings.registration_uri, json_body=body)
        if not payload.get("client_id"):
            raise OAuthFlowError("invalid_client_metadata", "Registration returned no client_id")

        self.settings.client_id = payload["client_id"]
        if payload.get("client_secret"):
            self.settings.client_secret = payload["client_secret"]
        logger.info("Registered client dynamically", client_id=self.settings.client_id)
        return payload


def _parse_json(body: str) -> dict[str, Any]:
    payload = json.loads(body)
    if not isinstance(payload, dict):
        raise ValueError("Expected a JSON object")
    return payload


class CodeGrantEngine(OAuth2Engine):
    """Authorization Code grant with PKCE."""

    kind = AuthStrategyKind.CODE_GRANT
    grant_types = ["authorization_code", "refresh_token"]
    response_types = ["code"]

    def __init__(self, settings: AuthSettings, **kwargs: Any):
        super().__init__(settings, **kwargs)
        self._pending_pkce: PKCEChallenge | None = None

    def build_authorization_url(self, scope: str, aud: str | None = None) -> str:
        """Build the authorize URL, generating fresh state and PKCE values."""
        authorize_uri = self._require("authorize_uri")
        self._pending_pkce = create_pkce_pair(64)

        params = {
            "response_type": "code",
            "client_id": self._require("client_id"),
            "redirect_uri": self._require("redirect_uri"),
            "scope": scope,
            "state": self._generate_state(),
            "code_challenge": self._pending_pkce.code_challenge,
            "code_challenge_method": self._pending_pkce.code_challenge_method,
        }
        if aud:
            params["aud"] = aud

        separator = "&" if "?" in authorize_uri else "?"
        return f"{authorize_uri}{separator}{urlencode(params)}"

    async def authorize(
        self,
        scope: str,
        aud: str | None,
        presenter: LoginPresenter | None,
        embedded: bool = True,
        context: Any = None,
    ) -> dict[str, Any] | None:
        await self.register_client_if_needed()
        url = self.build_authorization_url(scope, aud)
        if presenter is None:
            raise MissingConfigurationError("presenter", "A login presenter is required")
        logger.debug("Presenting login", authorize_uri=self.settings.authorize_uri, scope=scope)
        await presenter.present_login(url, embedded, context)
        return None

    async def handle_redirect_url(self, url: str) -> dict[str, Any]:
        """Exchange the authorization code in the redirect URL for a token."""
        params = dict(parse_qsl(urlparse(url).query))
        self._check_redirect_params(params)

        code = params.get("code")
        if not code:
            raise OAuthFlowError("invalid_request", "No authorization code in redirect")
        if self._pending_pkce is None:
            raise OAuthFlowError("invalid_request", "No PKCE verifier pending")

        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._require("redirect_uri"),
            "client_id": self._require("client_id"),
            "code_verifier": self._pending_pkce.code_verifier,
        }
        payload = await self._request_json(
            self._require("token_uri"), data=data, auth=self._client_auth()
        )
        self._pending_pkce = None
        logger.info("Authorization code exchange successful")
        return self._store_token(payload)


class ImplicitGrantEngine(OAuth2Engine):
    """Implicit grant; the token arrives in the redirect URL's fragment."""

    kind = AuthStrategyKind.IMPLICIT_GRANT
    grant_types = ["implicit"]
    response_types = ["token"]

    def build_authorization_url(self, scope: str, aud: str | None = None) -> str:
        authorize_uri = self._require("authorize_uri")
        params = {
            "response_type": "token",
            "client_id": self._require("client_id"),
            "redirect_uri": self._require("redirect_uri"),
            "scope": scope,
            "state": self._generate_state(),
        }
        if aud:
            params["aud"] = aud

        separator = "&" if "?" in authorize_uri else "?"
        return f"{authorize_uri}{separator}{urlencode(params)}"

    async def authorize(
        self,
        scope: str,
        aud: str | None,
        presenter: LoginPresenter | None,
        embedded: bool = True,
        context: Any = None,
    ) -> dict[str, Any] | None:
        await self.register_client_if_needed()
        url = self.build_authorization_url(scope, aud)
        if presenter is None:
            raise MissingConfigurationError("presenter", "A login presenter is required")
        await presenter.present_login(url, embedded, context)
        return None

    async def handle_redirect_url(self, url: str) -> dict[str, Any]:
        """Read the access token from the redirect URL's fragment."""
        parsed = urlparse(url)
        # Some servers put errors in the query instead of the fragment
        params = dict(parse_qsl(parsed.query))
        params.update(parse_qsl(parsed.fragment))
        self._check_redirect_params(params)
        return self._store_token(params)


class ClientCredentialsEngine(OAuth2Engine):
    """Client credentials grant (two-legged, no user interaction)."""

    kind = AuthStrategyKind.CLIENT_CREDENTIALS
    grant_types = ["client_credentials"]
    response_types = []

    async def authorize(
        self,
        scope: str,
        aud: str | None,
        presenter: LoginPresenter | None,
        embedded: bool = True,
        context: Any = None,
    ) -> dict[str, Any] | None:
        await self.register_client_if_needed()
        client_id = self._require("client_id")
        self._require("client_secret")

        data = {"grant_type": "client_credentials", "scope": scope}
        payload = await self._request_json(
            self._require("token_uri"),
            data=data,
            auth=aiohttp.BasicAuth(client_id, self.settings.client_secret),
        )
        return self._store_token(payload)
