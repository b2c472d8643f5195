"""
Capability statement store.

Fetches the server's capability statement from the ``metadata`` path once
and keeps it, together with the security block and operation catalogue of
the REST entry the client uses.
"""

import asyncio

from pydantic import ValidationError as PydanticValidationError

from smart_client.config.logging import get_logger
from smart_client.constants import METADATA_PATH
from smart_client.errors import CapabilityFetchError, NotReadyError, ServerError
from smart_client.models.capability import CapabilityDocument, RestOperation, RestSecurity
from smart_client.services.gateway import RequestGateway

logger = get_logger(__name__)


class CapabilityStore:
    """Fetches and memoizes the capability statement of one server."""

    def __init__(self, gateway: RequestGateway, path: str = METADATA_PATH):
        self.gateway = gateway
        self.path = path
        self.capability: CapabilityDocument | None = None
        self.security: RestSecurity | None = None
        self.operations: dict[str, RestOperation] = {}
        self._lock = asyncio.Lock()

    @property
    def has_capability(self) -> bool:
        return self.capability is not None

    @property
    def name(self) -> str | None:
        """The server name declared in the capability statement."""
        return self.capability.name if self.capability else None

    async def get_capability(self) -> CapabilityDocument:
        """
        Return the capability statement, fetching it on first use.

        Returns:
            The cached CapabilityDocument

        Raises:
            CapabilityFetchError: If fetching or parsing failed; nothing is
                cached, so a later call fetches again
        """
        if self.capability is not None:
            return self.capability

        async with self._lock:
            # Another caller may have fetched while we waited
            if self.capability is not None:
                return self.capability

            logger.debug("Fetching capability statement", path=self.path)
            try:
                response = await self.gateway.get_json(self.path)
            except ServerError as e:
                logger.warning("Capability statement fetch failed", error=e.message)
                raise CapabilityFetchError(
                    f"Failed to fetch capability statement: {e.message}", cause=e
                ) from e

            if not isinstance(response.json, dict):
                raise CapabilityFetchError("Server returned no capability statement")

            try:
                capability = CapabilityDocument.model_validate(response.json)
            except PydanticValidationError as e:
                logger.warning("Invalid capability statement", error=str(e))
                raise CapabilityFetchError(f"Invalid capability statement: {e}") from e

            self._set_capability(capability)
            return capability

    def _set_capability(self, capability: CapabilityDocument) -> None:
        self.capability = capability
        rest = capability.best_rest()
        self.security = rest.security if rest else None
        self.operations = {op.name: op for op in rest.operation} if rest else {}

        if self.security is not None:
            for service in self.security.service_names():
                logger.debug("Server supports REST security", service=service)

        logger.info(
            "Capability statement loaded",
            server_name=capability.name,
            fhir_version=capability.fhir_version,
            operations=len(self.operations),
        )

    def rest_operation(self, name: str) -> RestOperation | None:
        """
        Look up an operation in the catalogue.

        Raises:
            NotReadyError: If the capability statement has not been fetched
        """
        if self.capability is None:
            raise NotReadyError(f"look up operation {name}")
        return self.operations.get(name)
