"""
Patient list sort orders.
"""

from datetime import datetime
from enum import Enum

from smart_client.constants import MISSING_BIRTHDATE_SENTINEL, MISSING_NAME_SENTINEL
from smart_client.models.patient import Patient


class PatientListOrder(Enum):
    """
    Supported patient list orders.

    The value is the FHIR ``_sort`` parameter sent to the server; the same
    three-key order is applied locally to every merged page.
    """

    NAME_GIVEN_ASC = "given,family,birthdate"
    NAME_FAMILY_ASC = "family,given,birthdate"
    BIRTH_DATE_ASC = "birthdate,family,given"

    @property
    def sort_keys(self) -> list[tuple[str, str]]:
        """The sort fields as ``(field, direction)`` pairs."""
        return [(name, "asc") for name in self.value.split(",")]

    def sort_key(self, patient: Patient) -> tuple[str | datetime, ...]:
        given = patient.given_name or MISSING_NAME_SENTINEL
        family = patient.family_name or MISSING_NAME_SENTINEL
        born = patient.birth_datetime or MISSING_BIRTHDATE_SENTINEL

        if self is PatientListOrder.NAME_GIVEN_ASC:
            return (given, family, born)
        if self is PatientListOrder.NAME_FAMILY_ASC:
            return (family, given, born)
        return (born, family, given)

    def ordered(self, patients: list[Patient]) -> list[Patient]:
        """Return ``patients`` sorted by this order; fully equal keys keep their order."""
        return sorted(patients, key=self.sort_key)
