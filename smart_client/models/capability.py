"""
Pydantic models for the parts of a CapabilityStatement the client reads.

Older servers publish a "Conformance" resource with the same shape; both are
accepted. Unknown fields are kept so the full document stays available.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from smart_client.constants import OAUTH_URIS_EXTENSION, OAUTH_URIS_KEYS


class Coding(BaseModel):
    """FHIR Coding."""

    model_config = ConfigDict(extra="allow")

    system: str | None = None
    code: str | None = None
    display: str | None = None


class CodeableConcept(BaseModel):
    """FHIR CodeableConcept."""

    model_config = ConfigDict(extra="allow")

    coding: list[Coding] = Field(default_factory=list)
    text: str | None = None


class Extension(BaseModel):
    """FHIR Extension, possibly nesting further extensions."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    url: str
    value_uri: str | None = Field(default=None, alias="valueUri")
    extension: list["Extension"] = Field(default_factory=list)


class RestSecurity(BaseModel):
    """Security block of a capability REST entry."""

    model_config = ConfigDict(extra="allow")

    cors: bool | None = None
    service: list[CodeableConcept] = Field(default_factory=list)
    description: str | None = None
    extension: list[Extension] = Field(default_factory=list)

    def oauth_uris(self) -> dict[str, str]:
        """
        Extract OAuth2 endpoint URIs from the security extensions.

        Supports the nested ``oauth-uris`` extension (sub-extensions named
        ``authorize``, ``token`` and ``register``) and the flat DSTU1 form
        where each extension URL ends in ``#authorize``, ``#token`` or
        ``#register``.

        Returns:
            Mapping of ``authorize_uri``, ``token_uri`` and ``registration_uri``
            to the URIs found
        """
        uris: dict[str, str] = {}
        for ext in self.extension:
            if ext.url == OAUTH_URIS_EXTENSION:
                for sub in ext.extension:
                    key = OAUTH_URIS_KEYS.get(sub.url)
                    if key and sub.value_uri and key not in uris:
                        uris[key] = sub.value_uri
                continue

            if "#" in ext.url and ext.value_uri:
                key = OAUTH_URIS_KEYS.get(ext.url.rsplit("#", 1)[1])
                if key and key not in uris:
                    uris[key] = ext.value_uri

        return uris

    def service_names(self) -> list[str]:
        """Human readable names of the security services the server declares."""
        names = []
        for service in self.service:
            if service.text:
                names.append(service.text)
            else:
                names.extend(c.code for c in service.coding if c.code)
        return names


class RestOperation(BaseModel):
    """Named operation listed in a capability REST entry."""

    model_config = ConfigDict(extra="allow")

    name: str
    definition: Any = None  # Reference in DSTU2, canonical URL string in R4

    @property
    def definition_reference(self) -> str | None:
        """The reference or canonical URL pointing at the OperationDefinition."""
        if isinstance(self.definition, str):
            return self.definition
        if isinstance(self.definition, dict):
            return self.definition.get("reference")
        return None


class RestEntry(BaseModel):
    """A ``rest`` entry of the capability statement."""

    model_config = ConfigDict(extra="allow")

    mode: str | None = None
    security: RestSecurity | None = None
    operation: list[RestOperation] = Field(default_factory=list)
    resource: list[dict[str, Any]] = Field(default_factory=list)


class CapabilityDocument(BaseModel):
    """The server's CapabilityStatement (or DSTU2 Conformance)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    resource_type: str = Field(default="CapabilityStatement", alias="resourceType")
    name: str | None = None
    fhir_version: str | None = Field(default=None, alias="fhirVersion")
    rest: list[RestEntry] = Field(default_factory=list)

    def best_rest(self) -> RestEntry | None:
        """
        Pick the REST entry to read security and operations from.

        The first entry is used, unless another entry is marked as ``client``
        mode. Security blocks of several entries are never merged.
        """
        best: RestEntry | None = None
        for rest in self.rest:
            if best is None:
                best = rest
            elif rest.mode == "client":
                best = rest
                break
        return best
