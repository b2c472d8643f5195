"""
Paginated, sectioned patient list.

The list owns a query; ``retrieve`` starts over and ``retrieve_more``
appends the next page. After every page the full list is re-sorted and the
sections are rebuilt.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from smart_client.config.logging import get_logger
from smart_client.config.settings import get_settings
from smart_client.constants import PLACEHOLDER_SECTION_TITLE
from smart_client.errors import SMARTClientError
from smart_client.lists.order import PatientListOrder
from smart_client.lists.query import PatientListQuery
from smart_client.models.patient import Patient
from smart_client.services.gateway import RequestGateway

logger = get_logger(__name__)

StatusCallback = Callable[[SMARTClientError | None], None]
PatientsCallback = Callable[[], None]


class PatientListStatus(Enum):
    UNKNOWN = "unknown"
    INITIALIZED = "initialized"
    LOADING = "loading"
    READY = "ready"


@dataclass
class PatientListSection:
    """A run of sorted patients sharing the first letter of their display name."""

    title: str
    offset: int = 0  # Number of patients in the sections before this one
    patients: list[Patient] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.patients)

    @property
    def is_placeholder(self) -> bool:
        return False


@dataclass
class PatientListSectionPlaceholder(PatientListSection):
    """Stands in for patients that have not been fetched yet."""

    holding_for: int = 0

    @property
    def size(self) -> int:
        return self.holding_for

    @property
    def is_placeholder(self) -> bool:
        return True


class PatientList:
    """
    A list of patients loaded page by page from a FHIR server.

    Callbacks:
        on_status_update: Called with the last error, if any, whenever the
            status changes; the error is delivered once and then cleared
        on_patients_update: Called whenever the patients change
    """

    def __init__(
        self,
        query: PatientListQuery,
        gateway: RequestGateway,
        order: PatientListOrder = PatientListOrder.NAME_FAMILY_ASC,
        on_status_update: StatusCallback | None = None,
        on_patients_update: PatientsCallback | None = None,
    ):
        self.query = query
        self.gateway = gateway
        self.order = order
        self.on_status_update = on_status_update
        self.on_patients_update = on_patients_update

        self.expected_total = 0
        self.sections: list[PatientListSection] = []
        self.last_error: SMARTClientError | None = None
        self._patients: list[Patient] = []
        self._status = PatientListStatus.UNKNOWN
        # Results of superseded requests are dropped by comparing generations
        self._generation = 0
        self._lock = asyncio.Lock()

        self.status = PatientListStatus.INITIALIZED

    @property
    def status(self) -> PatientListStatus:
        return self._status

    @status.setter
    def status(self, value: PatientListStatus) -> None:
        self._status = value
        if self.on_status_update is not None:
            self.on_status_update(self.last_error)
        self.last_error = None

    @property
    def patients(self) -> list[Patient]:
        return self._patients

    @patients.setter
    def patients(self, value: list[Patient]) -> None:
        self._patients = value
        self.expected_total = max(self.expected_total, self.actual_total)
        self.create_sections()
        if self.on_patients_update is not None:
            self.on_patients_update()

    @property
    def actual_total(self) -> int:
        return len(self._patients)

    @property
    def has_more(self) -> bool:
        return not self.query.is_done

    @property
    def section_index_titles(self) -> list[str]:
        return [section.title for section in self.sections]

    def __getitem__(self, index: int) -> PatientListSection | None:
        if 0 <= index < len(self.sections):
            return self.sections[index]
        return None

    def create_sections(self) -> None:
        """Rebuild the sections; assumes the patients are already ordered."""
        sections: list[PatientListSection] = []
        current: PatientListSection | None = None
        for offset, patient in enumerate(self._patients):
            title = patient.display_name_family_given[:1] or "$"
            if current is None or title != current.title:
                current = PatientListSection(title=title, offset=offset)
                sections.append(current)
            current.patients.append(patient)

        missing = self.expected_total - self.actual_total
        if missing > 0:
            sections.append(
                PatientListSectionPlaceholder(
                    title=PLACEHOLDER_SECTION_TITLE,
                    offset=self.actual_total,
                    holding_for=missing,
                )
            )
        self.sections = sections

    async def retrieve(self) -> None:
        """Discard loaded patients and fetch the first page."""
        self._generation += 1
        generation = self._generation
        self.expected_total = 0
        self.patients = []
        self.status = PatientListStatus.LOADING
        await self._retrieve_batch(generation, append=False)

    async def retrieve_more(self) -> None:
        """
        Fetch the next page and append it.

        Does nothing before the first ``retrieve`` and when there are no more pages.
        """
        if self._status == PatientListStatus.INITIALIZED or not self.has_more:
            return
        generation = self._generation
        self.status = PatientListStatus.LOADING
        await self._retrieve_batch(generation, append=True)

    def abort(self) -> None:
        """Ignore the results of any request in flight."""
        self._generation += 1
        if self._status == PatientListStatus.LOADING:
            self.status = PatientListStatus.READY

    async def _retrieve_batch(self, generation: int, append: bool) -> None:
        # Pages are applied in request order
        async with self._lock:
            if generation != self._generation:
                return
            if not append:
                self.query.reset()

            cursor = (self.query.next_url, self.query.is_done)
            try:
                page = await self.query.execute(self.gateway, self.order)
            except SMARTClientError as e:
                if generation != self._generation:
                    return
                logger.warning("Patient query failed", error=e.message, append=append)
                if not append:
                    self.patients = []
                self.last_error = e
                self.status = PatientListStatus.READY
                return

            if generation != self._generation:
                self.query.next_url, self.query.is_done = cursor
                logger.debug("Dropping superseded patient page")
                return

            if page.total is not None:
                self.expected_total = max(self.expected_total, page.total)
            combined = self._patients + page.patients if append else page.patients
            self.patients = self.order.ordered(combined)
            self.status = PatientListStatus.READY


class PatientListAll(PatientList):
    """All patients on the server; the page size defaults to the configured one."""

    def __init__(self, gateway: RequestGateway, page_size: int | None = None, **kwargs):
        query = PatientListQuery(page_size=page_size or get_settings().page_size)
        super().__init__(query, gateway, **kwargs)
