"""Student lifecycle event payloads published on ``student.events``."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class StudentProfile(BaseModel):
    first_name: str
    last_name: str
    national_id: str = Field(description="Turkish identity number (TC Kimlik No).")
    class_level: int
    school_year: str


class StudentCreatedV1(BaseModel):
    """A student record was created for a campus."""

    student_id: str
    campus_id: str
    student: StudentProfile


class StudentUpdatedV1(BaseModel):
    student_id: str
    changes: dict[str, Any] = Field(default_factory=dict)


class EnrollmentDetails(BaseModel):
    school_year: str
    class_level: int
    total_amount: float


class StudentEnrolledV1(BaseModel):
    """A student was enrolled under a signed contract."""

    student_id: str
    contract_id: str
    enrollment: EnrollmentDetails
