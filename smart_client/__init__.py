"""SMART on FHIR client."""

from smart_client.client import SMARTClient
from smart_client.errors import SMARTClientError
from smart_client.lists import PatientList, PatientListAll, PatientListOrder, PatientListStatus
from smart_client.models import AuthProperties, AuthResult, AuthSettings, GranularityPolicy, Patient

__all__ = [
    "SMARTClient",
    "SMARTClientError",
    "PatientList",
    "PatientListAll",
    "PatientListOrder",
    "PatientListStatus",
    "AuthProperties",
    "AuthResult",
    "AuthSettings",
    "GranularityPolicy",
    "Patient",
]
