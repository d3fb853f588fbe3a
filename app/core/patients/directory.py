"""
Patient Directory

Boundary to patient records and the phone contacts linked to them.
The conversation flow uses it to recognise a counterparty and to register
new patients; the booking service uses it to check patient ownership.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from app.core.scheduling.errors import NotFoundError, ValidationError


# Relationship vocabulary offered in the conversation, in menu order
RELATIONSHIPS = ("son", "daughter", "wife", "husband", "mother", "father", "other")

SELF_RELATIONSHIP = "self"


@dataclass
class PatientMatch:
    """A patient reachable through a phone number."""

    patient_id: str
    full_name: str
    relationship: str = SELF_RELATIONSHIP
    is_primary: bool = False

    def to_dict(self) -> dict:
        return {
            "patient_id": self.patient_id,
            "full_name": self.full_name,
            "relationship": self.relationship,
        }


@dataclass
class PatientContact:
    id: str
    clinic_id: str
    patient_id: str
    phone: str
    relationship: str
    is_primary: bool = False


def normalize_name(full_name: str) -> str:
    name = (full_name or "").strip()
    if not name:
        raise ValidationError("Patient name is required")
    return name


class PatientDirectory(ABC):
    """Clinic-scoped patient and contact lookups."""

    @abstractmethod
    async def find_patients_by_phone(self, clinic_id: str, phone: str) -> list[PatientMatch]:
        """Patients linked to ``phone``, primary contacts first."""

    @abstractmethod
    async def create_patient(self, clinic_id: str, full_name: str) -> PatientMatch:
        ...

    @abstractmethod
    async def link_contact(
        self,
        clinic_id: str,
        patient_id: str,
        phone: str,
        relationship: str,
        is_primary: bool = False,
    ) -> PatientContact:
        ...

    @abstractmethod
    async def find_or_create_by_phone(
        self,
        clinic_id: str,
        phone: str,
        full_name: str,
        relationship: str = SELF_RELATIONSHIP,
    ) -> tuple[PatientMatch, bool]:
        """
        Return the patient named ``full_name`` linked to ``phone``, creating
        patient and contact together when absent.

        Returns:
            (patient, created)
        """

    @abstractmethod
    async def patient_exists(self, clinic_id: str, patient_id: str) -> bool:
        ...


class InMemoryPatientDirectory(PatientDirectory):
    """Process-local directory for development and tests."""

    def __init__(self):
        self._patients: dict[str, tuple[str, str]] = {}  # id -> (clinic_id, full_name)
        self._contacts: list[PatientContact] = []
        self._lock = asyncio.Lock()

    def add_patient(
        self,
        clinic_id: str,
        full_name: str,
        phone: Optional[str] = None,
        relationship: str = SELF_RELATIONSHIP,
        patient_id: Optional[str] = None,
    ) -> PatientMatch:
        """Synchronous seeding helper."""
        patient_id = patient_id or str(uuid.uuid4())
        self._patients[patient_id] = (clinic_id, full_name)
        if phone:
            self._contacts.append(
                PatientContact(
                    id=str(uuid.uuid4()),
                    clinic_id=clinic_id,
                    patient_id=patient_id,
                    phone=phone,
                    relationship=relationship,
                    is_primary=relationship == SELF_RELATIONSHIP,
                )
            )
        return PatientMatch(patient_id, full_name, relationship)

    async def find_patients_by_phone(self, clinic_id: str, phone: str) -> list[PatientMatch]:
        matches = [
            PatientMatch(
                patient_id=c.patient_id,
                full_name=self._patients[c.patient_id][1],
                relationship=c.relationship,
                is_primary=c.is_primary,
            )
            for c in self._contacts
            if c.clinic_id == clinic_id and c.phone == phone and c.patient_id in self._patients
        ]
        return sorted(matches, key=lambda m: not m.is_primary)

    async def create_patient(self, clinic_id: str, full_name: str) -> PatientMatch:
        name = normalize_name(full_name)
        patient_id = str(uuid.uuid4())
        self._patients[patient_id] = (clinic_id, name)
        return PatientMatch(patient_id, name)

    async def link_contact(
        self,
        clinic_id: str,
        patient_id: str,
        phone: str,
        relationship: str,
        is_primary: bool = False,
    ) -> PatientContact:
        if not await self.patient_exists(clinic_id, patient_id):
            raise NotFoundError("Patient", patient_id)
        contact = PatientContact(
            id=str(uuid.uuid4()),
            clinic_id=clinic_id,
            patient_id=patient_id,
            phone=phone,
            relationship=relationship.lower(),
            is_primary=is_primary,
        )
        self._contacts.append(contact)
        return contact

    async def find_or_create_by_phone(
        self,
        clinic_id: str,
        phone: str,
        full_name: str,
        relationship: str = SELF_RELATIONSHIP,
    ) -> tuple[PatientMatch, bool]:
        name = normalize_name(full_name)
        async with self._lock:
            for match in await self.find_patients_by_phone(clinic_id, phone):
                if match.full_name.casefold() == name.casefold():
                    return match, False
            patient_id = str(uuid.uuid4())
            contact = PatientContact(
                id=str(uuid.uuid4()),
                clinic_id=clinic_id,
                patient_id=patient_id,
                phone=phone,
                relationship=relationship.lower(),
                is_primary=relationship == SELF_RELATIONSHIP,
            )
            # Both records land together or not at all
            self._patients[patient_id] = (clinic_id, name)
            self._contacts.append(contact)
            return PatientMatch(patient_id, name, contact.relationship, contact.is_primary), True

    async def patient_exists(self, clinic_id: str, patient_id: str) -> bool:
        record = self._patients.get(patient_id)
        return record is not None and record[0] == clinic_id
