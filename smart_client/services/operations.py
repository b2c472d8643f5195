"""
FHIR operations support.

Operations are looked up in the capability statement's catalogue, their
OperationDefinition is fetched once and cached, and required input
parameters are validated before the operation is sent.
"""

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field

from smart_client.config.logging import get_logger
from smart_client.errors import InvalidOperationError, OperationNotSupportedError
from smart_client.services.capability import CapabilityStore
from smart_client.services.gateway import RequestGateway, ServerResponse

logger = get_logger(__name__)


class OperationParameter(BaseModel):
    """Parameter of an OperationDefinition."""

    model_config = ConfigDict(extra="allow")

    name: str
    use: str = "in"
    min: int = 0
    max: str = "1"
    type: str | None = None


class OperationDefinition(BaseModel):
    """The parts of an OperationDefinition used for validation."""

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    code: str | None = None
    system: bool | None = None
    instance: bool | None = None
    parameter: list[OperationParameter] = Field(default_factory=list)

    @property
    def required_inputs(self) -> list[str]:
        return [p.name for p in self.parameter if p.use == "in" and p.min > 0]


@dataclass
class FHIROperation:
    """An operation invocation, e.g. ``Patient/123/$everything``."""

    name: str
    resource_type: str | None = None
    resource_id: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    method: str = "POST"

    @property
    def path(self) -> str:
        parts = [p for p in (self.resource_type, self.resource_id) if p]
        parts.append(f"${self.name}")
        return "/".join(parts)

    def validate_with(self, definition: OperationDefinition) -> None:
        """
        Check that every required input parameter is supplied.

        Raises:
            InvalidOperationError: If required parameters are missing
        """
        missing = [name for name in definition.required_inputs if name not in self.parameters]
        if missing:
            raise InvalidOperationError(self.name, missing)

    def to_parameters_resource(self) -> dict[str, Any]:
        """Build the Parameters resource sent as POST body."""
        entries = []
        for name, value in self.parameters.items():
            entry: dict[str, Any] = {"name": name}
            if isinstance(value, dict) and "resourceType" in value:
                entry["resource"] = value
            elif isinstance(value, bool):
                entry["valueBoolean"] = value
            elif isinstance(value, int):
                entry["valueInteger"] = value
            else:
                entry["valueString"] = str(value)
            entries.append(entry)
        return {"resourceType": "Parameters", "parameter": entries}


class OperationCatalog:
    """Resolves and performs the operations a server declares."""

    def __init__(self, store: CapabilityStore, gateway: RequestGateway):
        self.store = store
        self.gateway = gateway
        self._definitions: dict[str, OperationDefinition] = {}

    async def definition(self, name: str) -> OperationDefinition | None:
        """
        Get the OperationDefinition for ``name``, from cache or from the server.

        Fetches the capability statement first if needed.

        Returns:
            The definition, or None if the server does not list the operation
        """
        if name in self._definitions:
            return self._definitions[name]

        await self.store.get_capability()
        rest_operation = self.store.rest_operation(name)
        if rest_operation is None or not rest_operation.definition_reference:
            return None

        response = await self.gateway.get_json(rest_operation.definition_reference)
        definition = OperationDefinition.model_validate(response.json or {})
        self._definitions[name] = definition
        logger.debug("Resolved operation definition", operation=name)
        return definition

    async def perform(self, operation: FHIROperation) -> ServerResponse:
        """
        Validate and perform an operation.

        Raises:
            OperationNotSupportedError: If the server does not declare it
            InvalidOperationError: If required parameters are missing
        """
        definition = await self.definition(operation.name)
        if definition is None:
            raise OperationNotSupportedError(operation.name)

        operation.validate_with(definition)

        if operation.method.upper() == "GET":
            path = operation.path
            if operation.parameters:
                path = f"{path}?{urlencode(operation.parameters)}"
            return await self.gateway.get_json(path)

        return await self.gateway.post_json(operation.path, operation.to_parameters_resource())
