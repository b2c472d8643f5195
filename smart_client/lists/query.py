"""
Paged patient search.

A query owns the search cursor: the first page is requested with the search
parameters, every following page through the bundle's ``next`` link.
"""

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

from pydantic import ValidationError

from smart_client.config.logging import get_logger
from smart_client.constants import DEFAULT_PAGE_SIZE
from smart_client.errors import BodyParseError
from smart_client.lists.order import PatientListOrder
from smart_client.models.patient import Patient
from smart_client.services.gateway import RequestGateway

logger = get_logger(__name__)


@dataclass
class PatientPage:
    """One page of search results."""

    patients: list[Patient] = field(default_factory=list)
    total: int | None = None


def next_link(bundle: dict[str, Any]) -> str | None:
    """The URL of the bundle's ``next`` link, if any."""
    for link in bundle.get("link") or []:
        if link.get("relation") == "next" and link.get("url"):
            return link["url"]
    return None


def patients_from_bundle(bundle: dict[str, Any]) -> list[Patient]:
    """Extract the Patient resources of a search bundle, skipping included resources."""
    patients = []
    for entry in bundle.get("entry") or []:
        resource = entry.get("resource")
        if isinstance(resource, dict) and resource.get("resourceType") == "Patient":
            patients.append(Patient.model_validate(resource))
    return patients


class PatientListQuery:
    """Search for patients, one page at a time."""

    resource_type = "Patient"

    def __init__(self, search: dict[str, Any] | None = None, page_size: int = DEFAULT_PAGE_SIZE):
        self.page_size = page_size
        self.search = dict(search or {})
        self.next_url: str | None = None
        self.is_done = False

    def search_path(self, order: PatientListOrder) -> str:
        params = {**self.search, "_sort": order.value, "_count": self.page_size}
        return f"{self.resource_type}?{urlencode(params)}"

    def reset(self) -> None:
        """Start over from the first page."""
        self.next_url = None
        self.is_done = False

    async def execute(self, gateway: RequestGateway, order: PatientListOrder) -> PatientPage:
        """
        Fetch the next page.

        The order only applies to the first page; later pages follow the
        server's next link. A finished query returns an empty page without
        contacting the server.

        Raises:
            ServerError: If the request fails; the cursor is left unchanged
            BodyParseError: If the bundle holds malformed entries or total;
                the cursor is left unchanged
        """
        if self.is_done:
            return PatientPage()

        path = self.next_url or self.search_path(order)
        response = await gateway.get_json(path)
        bundle = response.json if isinstance(response.json, dict) else {}

        try:
            next_url = next_link(bundle)
            total = bundle.get("total")
            page = PatientPage(
                patients=patients_from_bundle(bundle),
                total=int(total) if total is not None else None,
            )
        except (ValidationError, ValueError, TypeError, AttributeError) as e:
            logger.error("Invalid patient search bundle", path=path, error=str(e))
            raise BodyParseError(response.body, str(e)) from e

        self.next_url = next_url
        self.is_done = next_url is None
        logger.debug(
            "Fetched patient page",
            count=len(page.patients),
            total=page.total,
            has_more=not self.is_done,
        )
        return page
