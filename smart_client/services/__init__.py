"""
Service layer for the SMART client.

Contains the request gateway, the capability store and operation support.
"""

from smart_client.services.capability import CapabilityStore
from smart_client.services.gateway import (
    RequestGateway,
    ServerResponse,
    fhir_request_headers,
)
from smart_client.services.operations import (
    FHIROperation,
    OperationCatalog,
    OperationDefinition,
)

__all__ = [
    "CapabilityStore",
    "RequestGateway",
    "ServerResponse",
    "fhir_request_headers",
    "FHIROperation",
    "OperationCatalog",
    "OperationDefinition",
]
