"""
Shared pytest fixtures for SMART client tests.
"""

import os
from typing import Any

import pytest

# Set test environment variables before importing client modules
os.environ.setdefault("SMART_CLIENT_BASE_URL", "https://fhir.example.com/r4")
os.environ.setdefault("SMART_CLIENT_LOG_LEVEL", "DEBUG")

from tests.helpers import (  # noqa: E402
    AUTHORIZE_URI,
    BASE_URL,
    REGISTER_URI,
    TOKEN_URI,
    oauth_uris_extension,
    patient_resource,
    search_bundle,
)


@pytest.fixture(autouse=True)
def reset_cached_settings():
    """Reset cached settings between tests to avoid state leakage."""
    from smart_client.config.settings import reset_settings

    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def sample_capability() -> dict[str, Any]:
    """Capability statement of a SMART server with code grant endpoints."""
    return {
        "resourceType": "CapabilityStatement",
        "name": "Test SMART Server",
        "fhirVersion": "4.0.1",
        "rest": [
            {
                "mode": "server",
                "security": {
                    "service": [
                        {
                            "coding": [
                                {
                                    "system": "http://terminology.hl7.org/CodeSystem/restful-security-service",
                                    "code": "SMART-on-FHIR",
                                }
                            ],
                            "text": "OAuth2 using SMART-on-FHIR profile",
                        }
                    ],
                    "extension": [
                        oauth_uris_extension(
                            authorize=AUTHORIZE_URI,
                            token=TOKEN_URI,
                            register=REGISTER_URI,
                        )
                    ],
                },
                "operation": [
                    {
                        "name": "everything",
                        "definition": {"reference": "OperationDefinition/Patient-everything"},
                    }
                ],
            }
        ],
    }


@pytest.fixture
def open_capability() -> dict[str, Any]:
    """Capability statement of a server without security."""
    return {
        "resourceType": "CapabilityStatement",
        "name": "Open Server",
        "rest": [{"mode": "server"}],
    }


@pytest.fixture
def sample_patient() -> dict[str, Any]:
    """Sample FHIR Patient resource."""
    return {
        "resourceType": "Patient",
        "id": "test-patient-123",
        "meta": {"versionId": "1", "lastUpdated": "2024-01-15T10:30:00Z"},
        "active": True,
        "name": [
            {
                "use": "official",
                "family": "Smith",
                "given": ["John", "William"],
            }
        ],
        "gender": "male",
        "birthDate": "1970-05-15",
    }


@pytest.fixture
def sample_bundle() -> dict[str, Any]:
    """Search bundle with two patients and more pages to come."""
    return search_bundle(
        [
            patient_resource("p1", family="Smith", given="John"),
            patient_resource("p2", family="Doe", given="Jane"),
        ],
        total=5,
        next_url=f"{BASE_URL}/Patient?page=2",
    )
