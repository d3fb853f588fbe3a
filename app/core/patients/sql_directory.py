"""PostgreSQL implementation of the patient directory."""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.patients.directory import (
    SELF_RELATIONSHIP,
    PatientContact,
    PatientDirectory,
    PatientMatch,
    normalize_name,
)
from app.core.scheduling.errors import NotFoundError, TransientDependencyError
from app.models.database import Patient, PatientContact as PatientContactRow


logger = logging.getLogger(__name__)


def _uuid_or_none(value: str):
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class SqlPatientDirectory(PatientDirectory):
    """Patients and contacts stored in PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def find_patients_by_phone(self, clinic_id: str, phone: str) -> list[PatientMatch]:
        clinic_uuid = _uuid_or_none(clinic_id)
        if clinic_uuid is None:
            return []
        query = (
            select(Patient, PatientContactRow)
            .join(PatientContactRow, PatientContactRow.patient_id == Patient.id)
            .where(
                PatientContactRow.clinic_id == clinic_uuid,
                PatientContactRow.phone == phone,
                Patient.clinic_id == clinic_uuid,
            )
            .order_by(PatientContactRow.is_primary.desc(), Patient.created_at)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(query)).all()
        except (OperationalError, InterfaceError, OSError) as e:
            raise TransientDependencyError("Patient directory unavailable") from e
        return [
            PatientMatch(
                patient_id=str(patient.id),
                full_name=patient.full_name,
                relationship=contact.relationship_label,
                is_primary=contact.is_primary,
            )
            for patient, contact in rows
        ]

    async def create_patient(self, clinic_id: str, full_name: str) -> PatientMatch:
        clinic_uuid = _uuid_or_none(clinic_id)
        if clinic_uuid is None:
            raise NotFoundError("Clinic", clinic_id)
        patient = Patient(clinic_id=clinic_uuid, full_name=normalize_name(full_name))
        async with self._session_factory() as session:
            async with session.begin():
                session.add(patient)
        return PatientMatch(str(patient.id), patient.full_name)

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
        row = PatientContactRow(
            clinic_id=uuid.UUID(clinic_id),
            patient_id=uuid.UUID(patient_id),
            phone=phone,
            relationship_label=relationship.lower(),
            is_primary=is_primary,
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(row)
        return PatientContact(
            id=str(row.id),
            clinic_id=clinic_id,
            patient_id=patient_id,
            phone=phone,
            relationship=row.relationship_label,
            is_primary=is_primary,
        )

    async def find_or_create_by_phone(
        self,
        clinic_id: str,
        phone: str,
        full_name: str,
        relationship: str = SELF_RELATIONSHIP,
    ) -> tuple[PatientMatch, bool]:
        name = normalize_name(full_name)
        for match in await self.find_patients_by_phone(clinic_id, phone):
            if match.full_name.casefold() == name.casefold():
                return match, False

        clinic_uuid = _uuid_or_none(clinic_id)
        if clinic_uuid is None:
            raise NotFoundError("Clinic", clinic_id)
        label = relationship.lower()
        patient = Patient(id=uuid.uuid4(), clinic_id=clinic_uuid, full_name=name)
        contact = PatientContactRow(
            clinic_id=clinic_uuid,
            patient_id=patient.id,
            phone=phone,
            relationship_label=label,
            is_primary=label == SELF_RELATIONSHIP,
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(patient)
                    await session.flush()
                    session.add(contact)
        except IntegrityError:
            logger.exception(f"Failed to register patient for clinic {clinic_id}")
            raise
        except (OperationalError, InterfaceError, OSError) as e:
            raise TransientDependencyError("Patient directory unavailable") from e

        logger.info(f"Registered patient {patient.id} ({label}) for clinic {clinic_id}")
        return PatientMatch(str(patient.id), name, label, contact.is_primary), True

    async def patient_exists(self, clinic_id: str, patient_id: str) -> bool:
        clinic_uuid = _uuid_or_none(clinic_id)
        patient_uuid = _uuid_or_none(patient_id)
        if clinic_uuid is None or patient_uuid is None:
            return False
        async with self._session_factory() as session:
            found = await session.scalar(
                select(Patient.id).where(
                    Patient.id == patient_uuid,
                    Patient.clinic_id == clinic_uuid,
                )
            )
        return found is not None
