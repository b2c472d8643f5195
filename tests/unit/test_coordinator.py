"""
Tests for the authorization coordinator.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from smart_client.auth.coordinator import AuthCoordinator
from smart_client.errors import (
    CapabilityFetchError,
    HttpStatusError,
    NoAuthorizationMethodError,
    OAuthFlowError,
    TransportError,
)
from smart_client.models.auth import AuthProperties, AuthStrategyKind, GranularityPolicy
from smart_client.models.patient import Patient
from smart_client.services.capability import CapabilityStore
from tests.helpers import AUTHORIZE_URI, BASE_URL, TOKEN_URI, make_mock_gateway, make_response

REDIRECT = "http://localhost:8765/oauth/callback"
CODE_GRANT_SETTINGS = {
    "client_id": "my_app",
    "redirect": REDIRECT,
    "authorize_uri": AUTHORIZE_URI,
    "token_uri": TOKEN_URI,
}


def mock_engine(has_token: bool = False) -> MagicMock:
    """An OAuth2 engine double whose flow waits for a redirect."""
    engine = MagicMock()
    engine.kind = AuthStrategyKind.CODE_GRANT
    engine.scope = None
    engine.token = object() if has_token else None
    engine.has_unexpired_access_token = MagicMock(return_value=has_token)
    engine.can_refresh = MagicMock(return_value=False)
    engine.authorize = AsyncMock(return_value=None)
    engine.handle_redirect_url = AsyncMock(return_value={"access_token": "abc", "patient": "123"})
    engine.refresh_access_token = AsyncMock()
    engine.authorization_header = MagicMock(return_value="Bearer abc")
    engine.register_client_if_needed = AsyncMock(return_value=None)
    return engine


def make_coordinator(*responses, settings=None, selector=None) -> AuthCoordinator:
    store = CapabilityStore(make_mock_gateway(*responses))
    return AuthCoordinator(
        store,
        CODE_GRANT_SETTINGS if settings is None else settings,
        aud=BASE_URL,
        presenter=MagicMock(),
        selector=selector,
    )


async def ready_with_engine(engine: MagicMock, selector=None) -> AuthCoordinator:
    coordinator = make_coordinator(selector=selector)
    await coordinator.ready()
    coordinator.engine = engine
    return coordinator


async def wait_until(predicate) -> None:
    """Let scheduled tasks run until ``predicate`` holds."""
    for _ in range(100):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("Condition not reached")


class TestReady:
    """Tests for becoming ready."""

    @pytest.mark.asyncio
    async def test_ready_from_settings(self):
        """Sufficient settings should not need the capability statement."""
        coordinator = make_coordinator()

        await coordinator.ready()

        assert coordinator.kind == AuthStrategyKind.CODE_GRANT
        coordinator.capability_store.gateway.get_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ready_from_capability(self, sample_capability):
        """Should derive the strategy from the capability statement."""
        coordinator = make_coordinator(make_response(sample_capability), settings={"client_id": "my_app"})

        await coordinator.ready()
        await coordinator.ready()

        assert coordinator.kind == AuthStrategyKind.CODE_GRANT
        assert coordinator.engine.settings.token_uri == TOKEN_URI
        assert coordinator.engine.settings.client_id == "my_app"
        coordinator.capability_store.gateway.get_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ready_open_server(self, open_capability):
        """A server without security should need no authorization."""
        coordinator = make_coordinator(make_response(open_capability), settings={})

        await coordinator.ready()

        assert coordinator.kind == AuthStrategyKind.NONE
        assert coordinator.engine is None
        assert coordinator.authorization_header() is None

    @pytest.mark.asyncio
    async def test_ready_without_rest_entry(self):
        """Should fail when the capability statement has no rest entry."""
        coordinator = make_coordinator(make_response({"resourceType": "CapabilityStatement"}), settings={})

        with pytest.raises(NoAuthorizationMethodError):
            await coordinator.ready()

        assert coordinator.has_strategy is False

    @pytest.mark.asyncio
    async def test_ready_fetch_failure(self):
        """Should surface the capability fetch error."""
        coordinator = make_coordinator(HttpStatusError(500, "Internal Server Error"), settings={})

        with pytest.raises(CapabilityFetchError):
            await coordinator.ready()


class TestAuthorize:
    """Tests for the authorize lifecycle."""

    @pytest.mark.asyncio
    async def test_open_server_succeeds_immediately(self, open_capability):
        """The none strategy should succeed with empty parameters."""
        coordinator = make_coordinator(make_response(open_capability), settings={})

        result = await coordinator.authorize(AuthProperties(granularity=GranularityPolicy.TOKEN_ONLY))

        assert result.parameters == {}
        assert result.aborted is False
        assert coordinator.awaiting_callback is False

    @pytest.mark.asyncio
    async def test_authorize_surfaces_ready_error(self):
        """Should raise the ready error instead of starting a flow."""
        coordinator = make_coordinator(HttpStatusError(500, "Internal Server Error"), settings={})

        with pytest.raises(CapabilityFetchError):
            await coordinator.authorize()

    @pytest.mark.asyncio
    async def test_redirect_completes_authorization(self):
        """The engine's redirect result should complete the session."""
        engine = mock_engine()
        coordinator = await ready_with_engine(engine)

        task = asyncio.create_task(coordinator.authorize(AuthProperties(granularity=GranularityPolicy.TOKEN_ONLY)))
        await wait_until(lambda: engine.authorize.await_count == 1)

        assert coordinator.awaiting_callback is True
        assert await coordinator.handle_redirect(f"{REDIRECT}?code=x&state=y") is True

        result = await task
        assert result.parameters == {"access_token": "abc", "patient": "123"}
        assert coordinator.awaiting_callback is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "granularity,expected_scope",
        [
            (GranularityPolicy.TOKEN_ONLY, "user/*.* openid profile"),
            (GranularityPolicy.LAUNCH_CONTEXT, "launch user/*.* openid profile"),
            (GranularityPolicy.PATIENT_SELECT_WEB, "launch/patient user/*.* openid profile"),
            (GranularityPolicy.PATIENT_SELECT_NATIVE, "user/*.* openid profile"),
        ],
    )
    async def test_scope_per_granularity(self, granularity, expected_scope):
        """Should request launch scopes matching the granularity."""
        engine = mock_engine()
        coordinator = await ready_with_engine(engine)

        task = asyncio.create_task(coordinator.authorize(AuthProperties(embedded=False, granularity=granularity)))
        await wait_until(lambda: engine.authorize.await_count == 1)

        scope, aud, presenter = engine.authorize.call_args.args
        assert scope == expected_scope
        assert aud == BASE_URL
        assert presenter is coordinator.presenter
        assert engine.authorize.call_args.kwargs["embedded"] is False

        coordinator.abort()
        await task

    @pytest.mark.asyncio
    async def test_reuses_unexpired_token(self):
        """A live token should be reused without a new flow."""
        engine = mock_engine(has_token=True)
        coordinator = await ready_with_engine(engine)

        result = await coordinator.authorize(AuthProperties(granularity=GranularityPolicy.LAUNCH_CONTEXT))

        assert result.parameters == {}
        engine.authorize.assert_not_awaited()
        engine.forget_tokens.assert_not_called()

    @pytest.mark.asyncio
    async def test_web_patient_selection_forces_new_flow(self):
        """Web patient selection should discard a live token and start over."""
        engine = mock_engine()
        engine.token = object()
        coordinator = await ready_with_engine(engine)

        task = asyncio.create_task(
            coordinator.authorize(AuthProperties(granularity=GranularityPolicy.PATIENT_SELECT_WEB))
        )
        await wait_until(lambda: engine.authorize.await_count == 1)

        engine.forget_tokens.assert_called_once()
        await coordinator.handle_redirect(f"{REDIRECT}?code=x&state=y")
        result = await task
        assert result.parameters["patient"] == "123"

    @pytest.mark.asyncio
    async def test_web_patient_selection_skips_refresh(self):
        """Web patient selection should show the login page even when a refresh is possible."""
        engine = mock_engine()
        engine.token = object()
        engine.can_refresh.return_value = True
        engine.forget_tokens.side_effect = lambda: engine.can_refresh.configure_mock(return_value=False)
        coordinator = await ready_with_engine(engine)

        task = asyncio.create_task(
            coordinator.authorize(AuthProperties(granularity=GranularityPolicy.PATIENT_SELECT_WEB))
        )
        await wait_until(lambda: engine.authorize.await_count == 1)

        engine.forget_tokens.assert_called_once()
        engine.refresh_access_token.assert_not_awaited()
        scope = engine.authorize.call_args.args[0]
        assert scope.startswith("launch/patient ")

        coordinator.abort()
        result = await task
        assert result.aborted is True

    @pytest.mark.asyncio
    async def test_refreshes_expired_token(self):
        """Should refresh instead of starting a new flow when possible."""
        engine = mock_engine()
        engine.can_refresh.return_value = True
        engine.refresh_access_token.return_value = {"access_token": "new"}
        coordinator = await ready_with_engine(engine)

        result = await coordinator.authorize(AuthProperties(granularity=GranularityPolicy.TOKEN_ONLY))

        assert result.parameters == {"access_token": "new"}
        engine.authorize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_refresh_starts_flow(self):
        """A refused refresh should fall back to the full flow."""
        engine = mock_engine()
        engine.can_refresh.return_value = True
        engine.refresh_access_token.side_effect = OAuthFlowError("invalid_grant")
        coordinator = await ready_with_engine(engine)

        task = asyncio.create_task(coordinator.authorize(AuthProperties(granularity=GranularityPolicy.TOKEN_ONLY)))
        await wait_until(lambda: engine.authorize.await_count == 1)

        engine.forget_tokens.assert_called_once()
        coordinator.abort()
        await task

    @pytest.mark.asyncio
    async def test_engine_error_passed_through(self):
        """Errors starting the flow should fail the authorization unchanged."""
        engine = mock_engine()
        error = OAuthFlowError("browser_unavailable", "Could not open the system browser")
        engine.authorize.side_effect = error
        coordinator = await ready_with_engine(engine)

        with pytest.raises(OAuthFlowError) as exc_info:
            await coordinator.authorize()

        assert exc_info.value is error
        assert coordinator.awaiting_callback is False

    @pytest.mark.asyncio
    async def test_second_authorize_aborts_first(self):
        """Each authorize call should complete exactly once; the first as aborted."""
        engine = mock_engine()
        coordinator = await ready_with_engine(engine)
        properties = AuthProperties(granularity=GranularityPolicy.TOKEN_ONLY)

        first = asyncio.create_task(coordinator.authorize(properties))
        await wait_until(lambda: engine.authorize.await_count == 1)
        second = asyncio.create_task(coordinator.authorize(properties))
        await wait_until(lambda: engine.authorize.await_count == 2)

        first_result = await first
        assert first_result.aborted is True
        assert first_result.parameters is None

        assert await coordinator.handle_redirect(f"{REDIRECT}?code=x&state=y") is True
        second_result = await second
        assert second_result.aborted is False
        assert second_result.parameters["access_token"] == "abc"


class TestRedirects:
    """Tests for handle_redirect."""

    @pytest.mark.asyncio
    async def test_no_session(self):
        """Should not handle redirects without an active session."""
        engine = mock_engine()
        coordinator = await ready_with_engine(engine)

        assert await coordinator.handle_redirect(f"{REDIRECT}?code=x") is False
        engine.handle_redirect_url.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_strategy(self):
        """Should not handle redirects before a strategy exists."""
        coordinator = make_coordinator(settings={})
        assert await coordinator.handle_redirect(f"{REDIRECT}?code=x") is False

    @pytest.mark.asyncio
    async def test_redirect_error_fails_session(self):
        """Engine errors while handling the redirect should fail the session."""
        engine = mock_engine()
        engine.handle_redirect_url.side_effect = OAuthFlowError("access_denied", "User denied access")
        coordinator = await ready_with_engine(engine)

        task = asyncio.create_task(coordinator.authorize(AuthProperties(granularity=GranularityPolicy.TOKEN_ONLY)))
        await wait_until(lambda: engine.authorize.await_count == 1)

        assert await coordinator.handle_redirect(f"{REDIRECT}?error=access_denied") is True
        with pytest.raises(OAuthFlowError, match="User denied access"):
            await task

    @pytest.mark.asyncio
    async def test_token_exchange_timeout_fails_session(self):
        """A timed out code exchange should fail the authorization instead of leaving it pending."""
        coordinator = make_coordinator()
        coordinator.presenter = MagicMock()
        coordinator.presenter.present_login = AsyncMock()
        await coordinator.ready()

        task = asyncio.create_task(coordinator.authorize(AuthProperties(granularity=GranularityPolicy.TOKEN_ONLY)))
        await wait_until(lambda: coordinator.presenter.present_login.await_count == 1)
        state = coordinator.engine._pending_state

        with patch("aiohttp.ClientSession") as mock_session_cls:
            mock_session = MagicMock()
            mock_session.__aenter__ = AsyncMock(return_value=mock_session)
            mock_session.__aexit__ = AsyncMock(return_value=None)
            mock_session.post = MagicMock(side_effect=asyncio.TimeoutError())
            mock_session_cls.return_value = mock_session

            assert await coordinator.handle_redirect(f"{REDIRECT}?code=x&state={state}") is True

        with pytest.raises(TransportError):
            await task
        assert coordinator.awaiting_callback is False


class TestAbortAndReset:
    """Tests for abort and reset."""

    @pytest.mark.asyncio
    async def test_abort_completes_as_aborted(self):
        """Abort should complete the session without error and keep tokens."""
        engine = mock_engine()
        coordinator = await ready_with_engine(engine)

        task = asyncio.create_task(coordinator.authorize())
        await wait_until(lambda: engine.authorize.await_count == 1)
        coordinator.abort()

        result = await task
        assert result.aborted is True
        engine.forget_tokens.assert_not_called()
        assert await coordinator.handle_redirect(f"{REDIRECT}?code=x") is False

    @pytest.mark.asyncio
    async def test_abort_while_becoming_ready(self, sample_capability):
        """Abort during the capability fetch should deliver an aborted result."""
        coordinator = make_coordinator(settings={"client_id": "my_app"})

        async def fetch_and_abort(path):
            coordinator.abort()
            return make_response(sample_capability)

        coordinator.capability_store.gateway.get_json = AsyncMock(side_effect=fetch_and_abort)

        result = await coordinator.authorize()

        assert result.aborted is True
        assert coordinator.has_strategy is True

    @pytest.mark.asyncio
    async def test_abort_flag_does_not_leak(self, open_capability):
        """An abort without authorization in progress should not cancel the next one."""
        coordinator = make_coordinator(make_response(open_capability), settings={})
        coordinator.abort()

        result = await coordinator.authorize()

        assert result.aborted is False

    @pytest.mark.asyncio
    async def test_reset_forgets_tokens(self):
        """Reset should abort, forget tokens and clear the presentation context."""
        engine = mock_engine()
        coordinator = await ready_with_engine(engine)
        coordinator.presentation_context = object()

        task = asyncio.create_task(coordinator.authorize())
        await wait_until(lambda: engine.authorize.await_count == 1)
        coordinator.reset()

        assert (await task).aborted is True
        engine.forget_tokens.assert_called_once()
        assert coordinator.presentation_context is None


class TestNativeSelection:
    """Tests for native patient selection."""

    @pytest.mark.asyncio
    async def test_selection_augments_result(self):
        """The selector's parameters should complete the authorization."""
        engine = mock_engine()
        patient = Patient(id="p1")
        selector = MagicMock()
        selector.select = AsyncMock(return_value={"access_token": "abc", "patient": "p1", "patient_resource": patient})
        coordinator = await ready_with_engine(engine, selector=selector)

        task = asyncio.create_task(
            coordinator.authorize(AuthProperties(granularity=GranularityPolicy.PATIENT_SELECT_NATIVE))
        )
        await wait_until(lambda: engine.authorize.await_count == 1)
        await coordinator.handle_redirect(f"{REDIRECT}?code=x&state=y")

        result = await task
        assert result.patient is patient
        assert result.parameters["patient"] == "p1"
        selector.select.assert_awaited_once_with({"access_token": "abc", "patient": "123"})

    @pytest.mark.asyncio
    async def test_selection_with_reused_token(self):
        """Native selection should also run when a live token is reused."""
        engine = mock_engine(has_token=True)
        selector = MagicMock()
        selector.select = AsyncMock(return_value={"patient": "p1", "patient_resource": Patient(id="p1")})
        coordinator = await ready_with_engine(engine, selector=selector)

        result = await coordinator.authorize(AuthProperties(granularity=GranularityPolicy.PATIENT_SELECT_NATIVE))

        assert result.patient.id == "p1"
        selector.select.assert_awaited_once_with({})

    @pytest.mark.asyncio
    async def test_declined_selection_is_aborted(self):
        """Declining to pick a patient should complete as aborted."""
        engine = mock_engine(has_token=True)
        selector = MagicMock()
        selector.select = AsyncMock(return_value=None)
        coordinator = await ready_with_engine(engine, selector=selector)

        result = await coordinator.authorize(AuthProperties(granularity=GranularityPolicy.PATIENT_SELECT_NATIVE))

        assert result.aborted is True

    @pytest.mark.asyncio
    async def test_selection_skipped_for_other_granularity(self):
        """Other granularities should not run the selector."""
        engine = mock_engine(has_token=True)
        selector = MagicMock()
        selector.select = AsyncMock()
        coordinator = await ready_with_engine(engine, selector=selector)

        await coordinator.authorize(AuthProperties(granularity=GranularityPolicy.TOKEN_ONLY))

        selector.select.assert_not_awaited()


class TestRegistration:
    """Tests for client registration helpers."""

    @pytest.mark.asyncio
    async def test_register_if_needed_delegates(self):
        """Should run the engine's registration."""
        engine = mock_engine()
        engine.register_client_if_needed.return_value = {"client_id": "new"}
        coordinator = await ready_with_engine(engine)

        assert await coordinator.register_if_needed() == {"client_id": "new"}

    @pytest.mark.asyncio
    async def test_forget_client_registration_drops_strategy(self):
        """Should forget the client and re-derive the strategy on next ready."""
        engine = mock_engine()
        coordinator = await ready_with_engine(engine)

        coordinator.forget_client_registration()

        engine.forget_client.assert_called_once()
        assert coordinator.has_strategy is False
        await coordinator.ready()
        assert coordinator.kind == AuthStrategyKind.CODE_GRANT

    @pytest.mark.asyncio
    async def test_authorization_header(self):
        """Should sign with the engine's token."""
        coordinator = await ready_with_engine(mock_engine())
        assert coordinator.authorization_header() == "Bearer abc"
