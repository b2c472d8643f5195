"""
Native patient selection after authorization.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from smart_client.config.logging import get_logger
from smart_client.lists.patient_list import PatientList, PatientListAll
from smart_client.models.patient import Patient
from smart_client.services.gateway import RequestGateway

logger = get_logger(__name__)

ChoosePatient = Callable[[PatientList], Awaitable[Patient | None]]


class PatientSelector(ABC):
    """Lets the user pick a patient once a token has been obtained."""

    @abstractmethod
    async def select(self, parameters: dict[str, Any]) -> dict[str, Any] | None:
        """
        Run the selection.

        Args:
            parameters: Parameters returned by the authorization flow

        Returns:
            ``parameters`` with "patient" (the id) and "patient_resource"
            added, or None if the user declined to pick a patient
        """


class PatientListSelector(PatientSelector):
    """
    Loads all patients and hands the list to ``choose``.

    ``choose`` is the UI hook: it shows the list and returns the chosen
    patient, or None.
    """

    def __init__(self, gateway: RequestGateway, choose: ChoosePatient):
        self.gateway = gateway
        self.choose = choose

    async def select(self, parameters: dict[str, Any]) -> dict[str, Any] | None:
        patient_list = PatientListAll(self.gateway)
        await patient_list.retrieve()

        patient = await self.choose(patient_list)
        if patient is None:
            logger.debug("Patient selection declined")
            return None

        logger.debug("Patient selected", patient_id=patient.id)
        return {**parameters, "patient": patient.id, "patient_resource": patient}
