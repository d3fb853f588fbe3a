"""
Patients Module

Patient directory used by the conversation flow and the booking service.
The PostgreSQL implementation lives in app.core.patients.sql_directory.
"""

from app.core.patients.directory import (
    PatientDirectory,
    InMemoryPatientDirectory,
    PatientMatch,
    PatientContact,
    RELATIONSHIPS,
    SELF_RELATIONSHIP,
)

__all__ = [
    "PatientDirectory",
    "InMemoryPatientDirectory",
    "PatientMatch",
    "PatientContact",
    "RELATIONSHIPS",
    "SELF_RELATIONSHIP",
]
