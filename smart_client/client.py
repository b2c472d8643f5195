"""
SMART on FHIR client.

Ties the request gateway, capability store, authorization coordinator and
operation catalogue together for one server.
"""

from collections.abc import Mapping
from typing import Any

from smart_client.auth.coordinator import AuthCoordinator
from smart_client.auth.oauth import LoginPresenter
from smart_client.auth.selection import ChoosePatient, PatientListSelector, PatientSelector
from smart_client.auth.smart import SmartLaunchContext
from smart_client.config.logging import configure_logging, enable_verbose_logging, get_logger
from smart_client.config.settings import Settings, get_settings
from smart_client.models.auth import AuthProperties, AuthResult, AuthSettings
from smart_client.models.patient import Patient
from smart_client.services.capability import CapabilityStore
from smart_client.services.gateway import RequestGateway, ServerResponse
from smart_client.services.operations import FHIROperation, OperationCatalog, OperationDefinition

logger = get_logger(__name__)


class SMARTClient:
    """
    Client for one SMART on FHIR server.

    Usage:
        client = SMARTClient("https://fhir.example.org/r4", {"client_id": "my_app"})
        result = await client.authorize()
        response = await client.get_json("Observation?patient=123")
    """

    def __init__(
        self,
        base_url: str,
        settings: Mapping[str, Any] | AuthSettings | None = None,
        presenter: LoginPresenter | None = None,
        selector: PatientSelector | None = None,
        choose_patient: ChoosePatient | None = None,
        name: str | None = None,
        timeout: float | None = None,
        expiry_buffer_seconds: int = 60,
        gateway: RequestGateway | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Base URL of the FHIR server
            settings: Auth settings (client_id, redirect, scope, ...)
            presenter: Shows the login page; defaults to the system browser
            selector: Runs native patient selection
            choose_patient: Shortcut for a selector that shows all patients
                and lets this callable pick one
            name: Server name; defaults to the capability statement's name
            timeout: Request timeout in seconds
            expiry_buffer_seconds: Tokens expiring sooner count as expired
            gateway: Gateway to use instead of creating one
        """
        self.auth_settings = AuthSettings.from_mapping(settings)
        if self.auth_settings.verbose:
            enable_verbose_logging()

        self.gateway = gateway or RequestGateway(base_url, timeout=timeout)
        self.capability_store = CapabilityStore(self.gateway)
        if selector is None and choose_patient is not None:
            selector = PatientListSelector(self.gateway, choose_patient)

        self.coordinator = AuthCoordinator(
            self.capability_store,
            self.auth_settings,
            aud=self.gateway.aud,
            presenter=presenter,
            selector=selector,
            expiry_buffer_seconds=expiry_buffer_seconds,
        )
        self.gateway.signer = self.coordinator
        self.operations = OperationCatalog(self.capability_store, self.gateway)
        self._name = name

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> "SMARTClient":
        """Create a client from environment settings, configuring logging from them."""
        settings = settings or get_settings()
        configure_logging(level=settings.log_level, json_format=settings.log_json)
        return cls(
            settings.base_url,
            settings.to_auth_settings(),
            timeout=settings.request_timeout,
            expiry_buffer_seconds=settings.token_expiry_buffer_seconds,
            **kwargs,
        )

    async def __aenter__(self) -> "SMARTClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def base_url(self) -> str:
        return self.gateway.base_url

    @property
    def name(self) -> str | None:
        """The server name, explicit or from the capability statement."""
        return self._name or self.capability_store.name

    @property
    def awaiting_auth_callback(self) -> bool:
        return self.coordinator.awaiting_callback

    # Authorization

    async def ready(self) -> None:
        """Fetch the capability statement if needed and set up authorization."""
        await self.coordinator.ready()

    async def authorize(self, properties: AuthProperties | None = None) -> AuthResult:
        """
        Authorize and resolve the patient in context, if any.

        The patient comes from native selection, or is read from the server
        when the token response names a patient id.

        Returns:
            The authorization result with ``patient`` set when known
        """
        result = await self.coordinator.authorize(properties)
        if result.aborted or result.patient is not None or not result.parameters:
            return result

        launch = SmartLaunchContext.from_parameters(result.parameters)
        if launch.has_patient_context:
            response = await self.gateway.get_json(f"Patient/{launch.patient}")
            result.patient = Patient.model_validate(response.json or {})
            logger.debug("Did read patient in context", patient_id=launch.patient)
        return result

    async def handle_redirect(self, url: str) -> bool:
        """Forward a redirect URL to the authorization in progress."""
        return await self.coordinator.handle_redirect(url)

    def abort(self) -> None:
        """Abort authorization and drop the request session."""
        self.coordinator.abort()
        self.gateway.abort_session()

    def reset(self) -> None:
        """Abort and forget all tokens."""
        self.abort()
        self.coordinator.reset()

    async def register_if_needed(self) -> dict[str, Any] | None:
        return await self.coordinator.register_if_needed()

    def forget_client_registration(self) -> None:
        self.coordinator.forget_client_registration()

    # Requests

    async def get_json(self, path: str) -> ServerResponse:
        return await self.gateway.get_json(path)

    async def put_json(self, path: str, body: dict[str, Any]) -> ServerResponse:
        return await self.gateway.put_json(path, body)

    async def post_json(self, path: str, body: dict[str, Any]) -> ServerResponse:
        return await self.gateway.post_json(path, body)

    async def get_data(self, url: str, accept: str) -> ServerResponse:
        return await self.gateway.get_data(url, accept)

    # Operations

    async def operation(self, name: str) -> OperationDefinition | None:
        """The OperationDefinition of a server operation, or None if not supported."""
        return await self.operations.definition(name)

    async def perform_operation(self, operation: FHIROperation) -> ServerResponse:
        return await self.operations.perform(operation)

    async def close(self) -> None:
        await self.gateway.close()
