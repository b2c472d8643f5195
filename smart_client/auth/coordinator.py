"""
Authorization coordinator.

Owns the OAuth2 engine of one server and drives the authorization
lifecycle:
- derives the grant type from settings or the capability statement
- keeps at most one authorization session active
- forwards redirects to the engine
- runs native patient selection after a successful flow

Every ``authorize`` call completes exactly once: with parameters, with an
error, or as aborted when ``abort`` is called or a newer ``authorize``
supersedes it.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from smart_client.auth.oauth import BrowserLoginPresenter, LoginPresenter, OAuth2Engine
from smart_client.auth.selection import PatientSelector
from smart_client.auth.smart import scope_for_granularity
from smart_client.auth.strategy import create_engine, derive_strategy, strategy_from_settings
from smart_client.config.logging import get_logger
from smart_client.errors import NoAuthorizationMethodError, SMARTClientError
from smart_client.models.auth import (
    AuthProperties,
    AuthResult,
    AuthSettings,
    AuthStrategyKind,
    GranularityPolicy,
)
from smart_client.services.capability import CapabilityStore

logger = get_logger(__name__)


@dataclass
class AuthSession:
    """State of the authorization in progress."""

    properties: AuthProperties
    future: asyncio.Future
    context: Any = None
    tasks: set[asyncio.Task] = field(default_factory=set)


class AuthCoordinator:
    """Coordinates authorization against one FHIR server."""

    def __init__(
        self,
        capability_store: CapabilityStore,
        settings: Mapping[str, Any] | AuthSettings | None = None,
        aud: str | None = None,
        presenter: LoginPresenter | None = None,
        selector: PatientSelector | None = None,
        expiry_buffer_seconds: int = 60,
    ):
        """
        Initialize the coordinator.

        Args:
            capability_store: Store providing the server's capability statement
            settings: Auth settings; the strategy is derived from them right
                away if they are sufficient
            aud: Audience parameter sent with authorize requests
            presenter: Shows the login page; defaults to the system browser
            selector: Runs native patient selection
            expiry_buffer_seconds: Tokens expiring sooner count as expired
        """
        self.capability_store = capability_store
        self.settings = AuthSettings.from_mapping(settings)
        self.aud = aud
        self.presenter = presenter or BrowserLoginPresenter()
        self.selector = selector
        self.expiry_buffer_seconds = expiry_buffer_seconds

        self.kind: AuthStrategyKind | None = None
        self.engine: OAuth2Engine | None = None
        self.presentation_context: Any = None

        self._session: AuthSession | None = None
        self._must_abort = False

    @property
    def has_strategy(self) -> bool:
        return self.kind is not None

    @property
    def awaiting_callback(self) -> bool:
        """Whether an authorization session is active and waiting for completion."""
        return self._session is not None

    def authorization_header(self) -> str | None:
        """Authorization header for signed requests; None without a live token."""
        if self.engine is None:
            return None
        return self.engine.authorization_header()

    def _set_strategy(self, kind: AuthStrategyKind, settings: AuthSettings) -> None:
        self.kind = kind
        self.engine = create_engine(kind, settings, expiry_buffer_seconds=self.expiry_buffer_seconds)
        logger.info("Authorization strategy set", kind=kind.value)

    async def ready(self) -> None:
        """
        Make sure an authorization strategy exists.

        Uses the settings if they determine the strategy, otherwise fetches
        the capability statement and derives it from its security block.

        Raises:
            CapabilityFetchError: If the capability statement cannot be fetched
            NoAuthorizationMethodError: If no strategy can be derived
        """
        if self.has_strategy:
            return

        kind = strategy_from_settings(self.settings)
        if kind is not None:
            self._set_strategy(kind, self.settings)
            return

        capability = await self.capability_store.get_capability()
        if self.has_strategy:
            return

        rest = capability.best_rest()
        if rest is None:
            raise NoAuthorizationMethodError()
        kind, merged = derive_strategy(rest.security, self.settings)
        if kind == AuthStrategyKind.NONE:
            logger.debug("Server seems to be open, proceeding with none-type auth")
        self._set_strategy(kind, merged)

    async def authorize(self, properties: AuthProperties | None = None) -> AuthResult:
        """
        Authorize, becoming ready first if needed.

        A session that is still active is completed as aborted before the new
        one starts.

        Args:
            properties: Embedded presentation hint and granularity

        Returns:
            The result; ``aborted`` is set if the authorization was cancelled

        Raises:
            CapabilityFetchError: If becoming ready failed
            NoAuthorizationMethodError: If no strategy can be derived
            SMARTClientError: Errors from the OAuth2 engine, unchanged
        """
        properties = properties or AuthProperties()
        self._must_abort = False

        await self.ready()
        if self._consume_abort():
            return AuthResult.aborted_result()

        result = await self._authorize_with_strategy(properties)
        if self._consume_abort():
            return AuthResult.aborted_result()
        return result

    def _consume_abort(self) -> bool:
        if self._must_abort:
            self._must_abort = False
            return True
        return False

    async def _authorize_with_strategy(self, properties: AuthProperties) -> AuthResult:
        if self._session is not None:
            logger.debug("Authorization already in progress, aborting it")
            self._complete(self._session, AuthResult.aborted_result())

        session = AuthSession(
            properties=properties,
            future=asyncio.get_running_loop().create_future(),
            context=self.presentation_context,
        )
        self._session = session

        engine = self.engine
        if engine is not None and properties.granularity == GranularityPolicy.PATIENT_SELECT_WEB:
            if engine.token is not None:
                logger.debug("Have a stored token but want web patient selection: starting auth flow")
                engine.forget_tokens()
        elif engine is not None and engine.has_unexpired_access_token():
            logger.debug("Have an unexpired access token, not requesting a new one")

        self._spawn(session, self._run_flow(session))
        try:
            return await session.future
        finally:
            if self._session is session:
                self._session = None

    def _spawn(self, session: AuthSession, coro) -> None:
        task = asyncio.create_task(coro)
        session.tasks.add(task)
        task.add_done_callback(session.tasks.discard)

    async def _run_flow(self, session: AuthSession) -> None:
        try:
            parameters = await self._obtain_parameters(session)
        except Exception as e:
            self._did_fail(session, e)
            return
        if parameters is not None:
            await self._did_succeed(session, parameters)

    async def _obtain_parameters(self, session: AuthSession) -> dict[str, Any] | None:
        engine = self.engine
        if engine is None:
            return {}
        if engine.has_unexpired_access_token():
            return {}

        if engine.can_refresh():
            try:
                return await engine.refresh_access_token()
            except SMARTClientError as e:
                logger.info("Token refresh failed, starting authorization flow", error=e.message)
                engine.forget_tokens()

        scope = scope_for_granularity(engine.scope, session.properties.granularity)
        logger.info("Starting authorization", kind=engine.kind.value, scope=scope)
        return await engine.authorize(
            scope,
            self.aud,
            self.presenter,
            embedded=session.properties.embedded,
            context=session.context,
        )

    def _is_current(self, session: AuthSession) -> bool:
        return session is self._session and not session.future.done()

    async def _did_succeed(self, session: AuthSession, parameters: dict[str, Any]) -> None:
        if not self._is_current(session):
            logger.debug("Ignoring result of a superseded authorization")
            return

        if session.properties.granularity != GranularityPolicy.PATIENT_SELECT_NATIVE or self.selector is None:
            logger.debug("Did authorize", parameters=sorted(parameters))
            self._complete(session, AuthResult(parameters=parameters))
            return

        logger.debug("Showing native patient selector after authorizing")
        try:
            selected = await self.selector.select(parameters)
        except Exception as e:
            self._did_fail(session, e)
            return

        if not self._is_current(session):
            return
        if selected is None:
            self._complete(session, AuthResult.aborted_result())
            return
        self._complete(session, AuthResult(parameters=selected, patient=selected.get("patient_resource")))

    def _did_fail(self, session: AuthSession, error: Exception) -> None:
        if not self._is_current(session):
            logger.debug("Ignoring error of a superseded authorization", error=str(error))
            return
        logger.debug("Failed to authorize", error=str(error))
        self._complete(session, error)

    def _complete(self, session: AuthSession, outcome: AuthResult | Exception) -> None:
        if self._session is session:
            self._session = None
        if session.future.done():
            return
        if isinstance(outcome, Exception):
            session.future.set_exception(outcome)
        else:
            session.future.set_result(outcome)

    async def handle_redirect(self, url: str) -> bool:
        """
        Forward a redirect URL to the engine.

        Returns:
            False if no strategy or no session is active, True otherwise;
            errors complete the active session instead of being raised
        """
        session = self._session
        if self.engine is None or session is None:
            return False

        try:
            parameters = await self.engine.handle_redirect_url(url)
        except Exception as e:
            self._did_fail(session, e)
            return True

        self._spawn(session, self._did_succeed(session, parameters))
        return True

    def abort(self) -> None:
        """Complete the active session as aborted; stored tokens are kept."""
        logger.debug("Aborting authorization")
        self._must_abort = True
        if self._session is not None:
            self._complete(self._session, AuthResult.aborted_result())

    def reset(self) -> None:
        """Abort, forget stored tokens and clear the presentation context."""
        self.abort()
        if self.engine is not None:
            self.engine.forget_tokens()
        self.presentation_context = None

    async def register_if_needed(self) -> dict[str, Any] | None:
        """
        Run dynamic client registration unless a client id is known.

        Returns:
            The registration response, or None if no registration was attempted
        """
        await self.ready()
        if self.engine is None:
            return None
        return await self.engine.register_client_if_needed()

    def forget_client_registration(self) -> None:
        """Forget the registered client and the strategy built for it."""
        if self.engine is not None:
            self.engine.forget_client()
        self.kind = None
        self.engine = None
