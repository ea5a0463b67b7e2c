"""In-memory contact directory.

Used by tests and local development. The seed file maps tenant ids to their
students, contracts, exams and exam applicants:

    {"tenant-1": {"students": {...}, "contracts": {"contract-1": "student-1"}, ...}}
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, TypeAdapter
from school_service_libs.logging_utils import create_service_logger

from services.notification_service.protocols import (
    ApplicantInfo,
    ContactDirectoryProtocol,
    ExamInfo,
    StudentContacts,
)

logger = create_service_logger("notification_service.contact_directory")


class TenantDirectory(BaseModel):
    students: dict[str, StudentContacts] = Field(default_factory=dict)
    contracts: dict[str, str] = Field(default_factory=dict)  # contract id -> student id
    exams: dict[str, ExamInfo] = Field(default_factory=dict)
    applicants: dict[str, ApplicantInfo] = Field(default_factory=dict)


_SEED_ADAPTER = TypeAdapter(dict[str, TenantDirectory])


class InMemoryContactDirectory(ContactDirectoryProtocol):
    def __init__(self, tenants: dict[str, TenantDirectory] | None = None):
        self._tenants: dict[str, TenantDirectory] = tenants or {}

    @classmethod
    def from_json_file(cls, path: str | Path) -> InMemoryContactDirectory:
        tenants = _SEED_ADAPTER.validate_json(Path(path).read_bytes())
        logger.info(f"Loaded contact directory seed for {len(tenants)} tenant(s) from {path}")
        return cls(tenants)

    def _tenant(self, tenant_id: str) -> TenantDirectory:
        return self._tenants.setdefault(tenant_id, TenantDirectory())

    def add_student(
        self, tenant_id: str, student: StudentContacts, contract_id: str | None = None
    ) -> None:
        tenant = self._tenant(tenant_id)
        tenant.students[student.student_id] = student
        if contract_id:
            tenant.contracts[contract_id] = student.student_id

    def add_exam(self, tenant_id: str, exam: ExamInfo) -> None:
        self._tenant(tenant_id).exams[exam.exam_id] = exam

    def add_applicant(self, tenant_id: str, applicant: ApplicantInfo) -> None:
        self._tenant(tenant_id).applicants[applicant.application_id] = applicant

    async def get_student(self, tenant_id: str, student_id: str) -> StudentContacts | None:
        tenant = self._tenants.get(tenant_id)
        return tenant.students.get(student_id) if tenant else None

    async def get_student_by_contract(
        self, tenant_id: str, contract_id: str
    ) -> StudentContacts | None:
        tenant = self._tenants.get(tenant_id)
        if tenant is None or contract_id not in tenant.contracts:
            return None
        return tenant.students.get(tenant.contracts[contract_id])

    async def get_exam(self, tenant_id: str, exam_id: str) -> ExamInfo | None:
        tenant = self._tenants.get(tenant_id)
        return tenant.exams.get(exam_id) if tenant else None

    async def get_applicant(self, tenant_id: str, application_id: str) -> ApplicantInfo | None:
        tenant = self._tenants.get(tenant_id)
        return tenant.applicants.get(application_id) if tenant else None
