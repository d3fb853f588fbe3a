"""
Database Models

SQLAlchemy ORM models for the multi-clinic appointment scheduling system.

Appointment and blocked-slot ranges are stored as PostgreSQL ``tstzrange``
values with ``[)`` bounds. The appointments table carries an exclusion
constraint so that two scheduled/confirmed appointments of the same doctor
can never overlap, whatever the application layer does. The constraint
needs the ``btree_gist`` extension (created by ``init_db``).
"""

import uuid
from datetime import datetime, time
from enum import Enum
from typing import Optional, List

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, SmallInteger,
    String, Text, Time, UniqueConstraint, Enum as SQLEnum, text
)
from sqlalchemy.dialects.postgresql import UUID, TSTZRANGE, ExcludeConstraint, Range
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.core.scheduling.types import AppointmentStatus


# Name of the exclusion constraint; IntegrityErrors carrying it are races lost
NO_OVERLAP_CONSTRAINT = "no_overlap_per_doctor"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class ClinicStatus(str, Enum):
    """Clinic status enumeration."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class Clinic(Base, TimestampMixin):
    """
    Clinic model (Tenant).

    Every doctor, patient and appointment belongs to exactly one clinic.
    The clinic's IANA time zone drives slot generation and date parsing.
    """

    __tablename__ = "clinics"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    status: Mapped[ClinicStatus] = mapped_column(
        SQLEnum(ClinicStatus, name="clinic_status", values_callable=_enum_values),
        default=ClinicStatus.ACTIVE
    )

    # Relationships
    doctors: Mapped[List["Doctor"]] = relationship("Doctor", back_populates="clinic")

    def __repr__(self) -> str:
        return f"<Clinic(id={self.id}, name='{self.name}', timezone='{self.timezone}')>"


class Doctor(Base, TimestampMixin):
    """Doctor model. Belongs to one clinic."""

    __tablename__ = "doctors"
    __table_args__ = (
        Index("idx_doctor_clinic", "clinic_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    specialization: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    clinic: Mapped["Clinic"] = relationship("Clinic", back_populates="doctors")
    settings: Mapped[Optional["DoctorSettings"]] = relationship(
        "DoctorSettings",
        uselist=False
    )

    def __repr__(self) -> str:
        return f"<Doctor(id={self.id}, name='{self.full_name}')>"


class DoctorSettings(Base):
    """
    Per-doctor slot policy. At most one row per doctor.

    Absent rows read as the configured defaults (15 / 60 / 0).
    """

    __tablename__ = "doctor_settings"
    __table_args__ = (
        CheckConstraint("slot_minutes > 0", name="ck_settings_slot_positive"),
        CheckConstraint("lead_time_minutes >= 0", name="ck_settings_lead_non_negative"),
        CheckConstraint("buffer_minutes >= 0", name="ck_settings_buffer_non_negative"),
    )

    doctor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("doctors.id", ondelete="CASCADE"),
        primary_key=True
    )
    slot_minutes: Mapped[int] = mapped_column(Integer, default=15, nullable=False)
    lead_time_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    buffer_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<DoctorSettings(doctor_id={self.doctor_id}, slot={self.slot_minutes}, "
            f"lead={self.lead_time_minutes}, buffer={self.buffer_minutes})>"
        )


class WorkingHour(Base):
    """
    Recurring weekly working window.

    day_of_week uses Sunday = 0 ... Saturday = 6. Several rows per day are
    allowed (split shifts); exact duplicates are not.
    """

    __tablename__ = "doctor_working_hours"
    __table_args__ = (
        UniqueConstraint(
            "doctor_id", "day_of_week", "start_time", "end_time",
            name="uq_working_hour_rule"
        ),
        CheckConstraint("start_time < end_time", name="ck_working_hour_order"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_working_hour_day"),
        Index("idx_working_hour_doctor_day", "doctor_id", "day_of_week"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False
    )
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<WorkingHour(doctor_id={self.doctor_id}, day={self.day_of_week}, "
            f"{self.start_time}-{self.end_time})>"
        )


class BlockedSlot(Base):
    """One-off unavailability for a doctor (leave, holiday)."""

    __tablename__ = "doctor_blocked_slots"
    __table_args__ = (
        Index("idx_blocked_doctor", "doctor_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False
    )
    blocked_ts: Mapped[Range[datetime]] = mapped_column(TSTZRANGE, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<BlockedSlot(doctor_id={self.doctor_id}, range={self.blocked_ts})>"


class Patient(Base, TimestampMixin):
    """Patient model. Belongs to one clinic."""

    __tablename__ = "patients"
    __table_args__ = (
        Index("idx_patient_clinic", "clinic_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Relationships
    contacts: Mapped[List["PatientContact"]] = relationship(
        "PatientContact",
        back_populates="patient"
    )

    def __repr__(self) -> str:
        return f"<Patient(id={self.id}, name='{self.full_name}')>"


class PatientContact(Base, TimestampMixin):
    """
    Phone number linked to a patient.

    One phone can reach several patients (a parent booking for children);
    ``relationship`` is how the phone owner relates to the patient.
    """

    __tablename__ = "patient_contacts"
    __table_args__ = (
        UniqueConstraint("clinic_id", "patient_id", "phone", name="uq_patient_contact"),
        Index("idx_contact_clinic_phone", "clinic_id", "phone"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False
    )
    phone: Mapped[str] = mapped_column(String(50), nullable=False)
    relationship_label: Mapped[str] = mapped_column(
        "relationship", String(50), default="self", nullable=False
    )
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    patient: Mapped["Patient"] = relationship("Patient", back_populates="contacts")

    def __repr__(self) -> str:
        return (
            f"<PatientContact(patient_id={self.patient_id}, phone='{self.phone}', "
            f"relationship='{self.relationship_label}')>"
        )


class Appointment(Base, TimestampMixin):
    """
    Appointment model.

    Never deleted; cancellation is a status change. Only scheduled and
    confirmed rows take part in the overlap constraint.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        ExcludeConstraint(
            ("doctor_id", "="),
            ("appointment_ts", "&&"),
            using="gist",
            where=text("status IN ('scheduled', 'confirmed')"),
            name=NO_OVERLAP_CONSTRAINT,
        ),
        Index("idx_appointment_clinic", "clinic_id"),
        Index("idx_appointment_patient", "patient_id"),
        Index("idx_appointment_status", "clinic_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False
    )
    appointment_ts: Mapped[Range[datetime]] = mapped_column(TSTZRANGE, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(
            AppointmentStatus,
            name="appointment_status",
            values_callable=_enum_values,
        ),
        default=AppointmentStatus.SCHEDULED,
        nullable=False
    )
    mode: Mapped[str] = mapped_column(String(20), default="offline", nullable=False)
    source: Mapped[str] = mapped_column(String(50), default="manual", nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, doctor_id={self.doctor_id}, "
            f"range={self.appointment_ts}, status={self.status.value})>"
        )
