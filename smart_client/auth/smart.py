"""
SMART on FHIR scopes and launch context.

Scopes are parsed just far enough to recognise launch scopes, which the
coordinator swaps depending on the requested granularity.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from smart_client.constants import DEFAULT_SCOPE
from smart_client.models.auth import GranularityPolicy


class SmartScopeCategory(Enum):
    PATIENT = "patient"
    USER = "user"
    SYSTEM = "system"
    LAUNCH = "launch"
    OPENID = "openid"
    PROFILE = "profile"
    FHIRUSER = "fhirUser"
    OFFLINE = "offline_access"


# v1: patient/Observation.read, user/*.*  v2: user/Patient.cruds
_RESOURCE_SCOPE = re.compile(r"^(patient|user|system)/([^./]+)\.([a-z*]+)$")
_V2_PERMISSIONS = {"c": "create", "r": "read", "u": "update", "d": "delete", "s": "search"}


@dataclass
class SmartScope:
    """One scope of a space-separated scope string."""

    raw: str
    category: SmartScopeCategory | None = None
    resource_type: str | None = None
    permissions: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return self.raw

    @property
    def is_launch(self) -> bool:
        return self.category == SmartScopeCategory.LAUNCH

    @classmethod
    def parse(cls, raw: str) -> "SmartScope":
        """Parse a single scope; unknown scopes are kept without category."""
        head, _, tail = raw.partition("/")
        if head == "launch":
            return cls(raw, SmartScopeCategory.LAUNCH, resource_type=tail or None)

        match = _RESOURCE_SCOPE.match(raw)
        if match is None:
            try:
                return cls(raw, SmartScopeCategory(raw))
            except ValueError:
                return cls(raw)

        category, resource_type, permission = match.groups()
        if permission in ("*", "read", "write"):
            permissions = [permission]
        else:
            permissions = [_V2_PERMISSIONS[c] for c in permission if c in _V2_PERMISSIONS]
        return cls(raw, SmartScopeCategory(category), resource_type, permissions)


def parse_smart_scopes(scope_string: str) -> list[SmartScope]:
    return [SmartScope.parse(raw) for raw in scope_string.split()]


def scope_for_granularity(scope: str | None, granularity: GranularityPolicy) -> str:
    """
    Compute the scope to request for an authorization granularity.

    ``launch`` is prepended for launch context and ``launch/patient`` for web
    patient selection; launch scopes already in ``scope`` are dropped first so
    they never appear twice. Token-only and native patient selection request
    the base scope unchanged.

    Args:
        scope: Base scope; defaults to "user/*.* openid profile"
        granularity: The requested granularity

    Returns:
        Space-separated scope string
    """
    scope = scope or DEFAULT_SCOPE
    if granularity == GranularityPolicy.LAUNCH_CONTEXT:
        prefix = "launch"
    elif granularity == GranularityPolicy.PATIENT_SELECT_WEB:
        prefix = "launch/patient"
    else:
        return scope

    kept = [s.raw for s in parse_smart_scopes(scope) if not s.is_launch]
    return " ".join([prefix, *kept])


@dataclass
class SmartLaunchContext:
    """Launch context returned alongside the access token."""

    patient: str | None = None
    encounter: str | None = None
    user: str | None = None  # fhirUser
    need_patient_banner: bool | None = None
    smart_style_url: str | None = None
    scope: str | None = None

    @classmethod
    def from_parameters(cls, parameters: dict[str, Any]) -> "SmartLaunchContext":
        return cls(
            patient=parameters.get("patient"),
            encounter=parameters.get("encounter"),
            user=parameters.get("fhirUser") or parameters.get("user"),
            need_patient_banner=parameters.get("need_patient_banner"),
            smart_style_url=parameters.get("smart_style_url"),
            scope=parameters.get("scope"),
        )

    @property
    def has_patient_context(self) -> bool:
        return bool(self.patient)

    @property
    def parsed_scopes(self) -> list[SmartScope]:
        """Granted scopes, parsed."""
        return parse_smart_scopes(self.scope or "")
