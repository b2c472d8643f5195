"""
Pydantic models for the SMART client.

This module contains models for:
- Authorization settings, tokens and results
- The server's capability statement
- Patient records
"""

from smart_client.models.auth import (
    AuthProperties,
    AuthResult,
    AuthSettings,
    AuthStrategyKind,
    GranularityPolicy,
    OAuthToken,
)
from smart_client.models.capability import (
    CapabilityDocument,
    Extension,
    RestEntry,
    RestOperation,
    RestSecurity,
)
from smart_client.models.patient import HumanName, Patient

__all__ = [
    "AuthProperties",
    "AuthResult",
    "AuthSettings",
    "AuthStrategyKind",
    "GranularityPolicy",
    "OAuthToken",
    "CapabilityDocument",
    "Extension",
    "RestEntry",
    "RestOperation",
    "RestSecurity",
    "HumanName",
    "Patient",
]
