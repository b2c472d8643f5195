"""
Patient lists.
"""

from smart_client.lists.order import PatientListOrder
from smart_client.lists.patient_list import (
    PatientList,
    PatientListAll,
    PatientListSection,
    PatientListSectionPlaceholder,
    PatientListStatus,
)
from smart_client.lists.query import PatientListQuery, PatientPage

__all__ = [
    "PatientListOrder",
    "PatientList",
    "PatientListAll",
    "PatientListSection",
    "PatientListSectionPlaceholder",
    "PatientListStatus",
    "PatientListQuery",
    "PatientPage",
]
