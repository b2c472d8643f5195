"""
Helpers for building responses and gateway doubles in tests.
"""

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from smart_client.services.gateway import ServerResponse

BASE_URL = "https://fhir.example.com/r4"
AUTHORIZE_URI = "https://auth.example.com/authorize"
TOKEN_URI = "https://auth.example.com/token"
REGISTER_URI = "https://auth.example.com/register"


def make_response(payload: Any = None, status: int = 200, url: str = BASE_URL) -> ServerResponse:
    """Build a ServerResponse as the gateway would return it."""
    body = json.dumps(payload).encode("utf-8") if payload is not None else b""
    return ServerResponse(status=status, url=url, headers={}, body=body, json=payload)


def make_mock_gateway(*responses: Any) -> MagicMock:
    """A gateway double whose get_json returns (or raises) ``responses`` in order."""
    gateway = MagicMock()
    gateway.base_url = f"{BASE_URL}/"
    gateway.aud = BASE_URL
    gateway.get_json = AsyncMock(side_effect=list(responses))
    gateway.put_json = AsyncMock()
    gateway.post_json = AsyncMock()
    return gateway


def oauth_uris_extension(**uris: str) -> dict[str, Any]:
    """The SMART oauth-uris security extension for the given endpoint URIs."""
    return {
        "url": "http://fhir-registry.smarthealthit.org/StructureDefinition/oauth-uris",
        "extension": [{"url": key, "valueUri": value} for key, value in uris.items()],
    }


def patient_resource(
    patient_id: str,
    family: str | None = None,
    given: str | None = None,
    birth_date: str | None = None,
    gender: str | None = None,
) -> dict[str, Any]:
    """A minimal Patient resource."""
    resource: dict[str, Any] = {"resourceType": "Patient", "id": patient_id}
    name: dict[str, Any] = {}
    if family:
        name["family"] = family
    if given:
        name["given"] = [given]
    if name:
        resource["name"] = [name]
    if birth_date:
        resource["birthDate"] = birth_date
    if gender:
        resource["gender"] = gender
    return resource


def search_bundle(
    patients: list[dict[str, Any]],
    total: int | None = None,
    next_url: str | None = None,
) -> dict[str, Any]:
    """A searchset Bundle holding ``patients``."""
    bundle: dict[str, Any] = {
        "resourceType": "Bundle",
        "type": "searchset",
        "entry": [{"resource": p, "search": {"mode": "match"}} for p in patients],
        "link": [{"relation": "self", "url": f"{BASE_URL}/Patient"}],
    }
    if total is not None:
        bundle["total"] = total
    if next_url:
        bundle["link"].append({"relation": "next", "url": next_url})
    return bundle
