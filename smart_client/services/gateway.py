"""
Request gateway for a FHIR server.

Resolves paths against the server's base URL, signs requests with the active
authorization when one is available, and normalizes every failure into the
client's error taxonomy. Each call is exactly one attempt.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urljoin, urlparse

import aiohttp

from smart_client.config.logging import get_logger, set_request_id
from smart_client.constants import FHIR_JSON_CONTENT_TYPE, REQUEST_TIMEOUT_SECONDS
from smart_client.errors import (
    BodyParseError,
    HttpStatusError,
    NonHttpResponseError,
    ResourceLocationUnknownError,
    TransportError,
)

logger = get_logger(__name__)

_WRITE_METHODS = {"PUT", "POST", "PATCH"}


class RequestSigner(Protocol):
    """Anything that can provide an Authorization header for the current credential."""

    def authorization_header(self) -> str | None: ...


@dataclass
class ServerResponse:
    """A successful response; ``json`` is None when the server sent no body."""

    status: int
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    json: Any = None

    @property
    def has_body(self) -> bool:
        return bool(self.body)

    @property
    def location(self) -> str | None:
        """Location header of create and update responses."""
        return self.headers.get("Location") or self.headers.get("Content-Location")


def fhir_request_headers(
    accept: str = FHIR_JSON_CONTENT_TYPE,
    content_type: str | None = None,
) -> dict[str, str]:
    """
    Build HTTP headers for FHIR API requests.

    Args:
        accept: Accept header value for response format
        content_type: Content-Type header for request body (None to omit)

    Returns:
        Dictionary of HTTP headers for FHIR requests
    """
    headers = {"Accept": accept}
    if content_type:
        headers["Content-Type"] = content_type
    return headers


def _reason_from_body(body: bytes) -> str | None:
    """Pull the first diagnostics text out of an OperationOutcome body."""
    try:
        outcome = json.loads(body)
    except ValueError:
        return None
    if not isinstance(outcome, dict) or outcome.get("resourceType") != "OperationOutcome":
        return None
    for issue in outcome.get("issue", []):
        text = issue.get("diagnostics") or (issue.get("details") or {}).get("text")
        if text:
            return text
    return None


class RequestGateway:
    """
    Performs requests against one FHIR server.

    The underlying aiohttp session is created on first use and owned by the
    gateway unless one is injected.
    """

    def __init__(
        self,
        base_url: str,
        signer: RequestSigner | None = None,
        timeout: float | None = None,
        session: aiohttp.ClientSession | None = None,
        media_type: str = FHIR_JSON_CONTENT_TYPE,
    ):
        """
        Initialize the gateway.

        Args:
            base_url: Base URL of the FHIR server
            signer: Provides the Authorization header, if any
            timeout: Request timeout in seconds
            session: Optional aiohttp session to use instead of an owned one
            media_type: Media type used for Accept and Content-Type headers
        """
        if not urlparse(base_url).scheme:
            raise ResourceLocationUnknownError(base_url)

        self.aud = base_url
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.signer = signer
        self.timeout = timeout or REQUEST_TIMEOUT_SECONDS
        self.media_type = media_type
        self._session = session
        self._owns_session = session is None

    def url_for(self, path: str) -> str:
        """Resolve ``path`` against the base URL; absolute URLs are kept as-is."""
        if urlparse(path).scheme:
            return path
        return urljoin(self.base_url, path.lstrip("/"))

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    def _headers(self, method: str, accept: str | None, signed: bool) -> dict[str, str]:
        content_type = self.media_type if method in _WRITE_METHODS else None
        headers = fhir_request_headers(accept=accept or self.media_type, content_type=content_type)
        if signed and self.signer is not None:
            authorization = self.signer.authorization_header()
            if authorization:
                headers["Authorization"] = authorization
        return headers

    async def perform(
        self,
        method: str,
        path: str,
        body: Any = None,
        accept: str | None = None,
        parse_json: bool = True,
        signed: bool = True,
    ) -> ServerResponse:
        """
        Perform one request against the server.

        Args:
            method: HTTP method (GET, PUT, POST, DELETE)
            path: Path relative to the base URL, or an absolute URL
            body: JSON-serializable body for write requests
            accept: Accept header override
            parse_json: Parse a non-empty body as JSON
            signed: Add the Authorization header when a credential is available

        Returns:
            ServerResponse for any status below 400

        Raises:
            TransportError: The request could not be delivered
            NonHttpResponseError: The server's answer was not valid HTTP
            HttpStatusError: The server responded with status >= 400
            BodyParseError: The body could not be parsed as JSON
        """
        method = method.upper()
        url = self.url_for(path)
        headers = self._headers(method, accept, signed)
        data = json.dumps(body).encode("utf-8") if body is not None else None

        set_request_id()
        logger.debug("--->", method=method, url=url, signed="Authorization" in headers)

        try:
            async with self._get_session().request(
                method, url, headers=headers, data=data
            ) as resp:
                status = resp.status
                reason = resp.reason or ""
                response_headers = dict(resp.headers)
                raw = await resp.read()
        except (
            aiohttp.ServerDisconnectedError,
            aiohttp.ClientPayloadError,
            aiohttp.ClientResponseError,
        ) as e:
            logger.warning("Invalid response from server", url=url, error=str(e))
            raise NonHttpResponseError(url, str(e)) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Request failed", url=url, error=str(e) or e.__class__.__name__)
            raise TransportError(url, str(e) or e.__class__.__name__) from e

        logger.debug("<---", status=status, size=len(raw))

        if status >= 400:
            body_text = raw.decode("utf-8", errors="replace")
            raise HttpStatusError(
                status=status,
                reason=_reason_from_body(raw) or reason or "Request failed",
                url=url,
                body=body_text[:1000],
            )

        parsed = None
        if parse_json and raw.strip():
            try:
                parsed = json.loads(raw)
            except ValueError as e:
                logger.warning("Invalid JSON in response", url=url, error=str(e))
                raise BodyParseError(raw, str(e)) from e

        return ServerResponse(
            status=status,
            url=url,
            headers=response_headers,
            body=raw,
            json=parsed,
        )

    async def get_json(self, path: str) -> ServerResponse:
        """GET a JSON resource at ``path``."""
        return await self.perform("GET", path)

    async def put_json(self, path: str, body: dict[str, Any]) -> ServerResponse:
        """PUT a JSON body to ``path``."""
        return await self.perform("PUT", path, body=body)

    async def post_json(self, path: str, body: dict[str, Any]) -> ServerResponse:
        """POST a JSON body to ``path``."""
        return await self.perform("POST", path, body=body)

    async def get_data(self, url: str, accept: str) -> ServerResponse:
        """
        GET raw data, e.g. an attachment such as Patient.photo.url.

        Relative URLs are resolved against the server. Absolute URLs on other
        hosts are requested unsigned so the credential never leaves the server.
        """
        target = self.url_for(url)
        same_host = urlparse(target).netloc == urlparse(self.base_url).netloc
        return await self.perform("GET", target, accept=accept, parse_json=False, signed=same_host)

    def abort_session(self) -> None:
        """
        Drop the current session so in-flight requests are cancelled.

        The next request opens a new session.
        """
        session = self._session
        if session is None or not self._owns_session:
            return
        self._session = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, session will be closed on next close()")
            self._session = session
            return
        loop.create_task(session.close())
        logger.debug("Aborted request session")

    async def close(self) -> None:
        """Close the owned aiohttp session."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
