from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from services.notification_service.implementations.contact_directory_memory_impl import (
    InMemoryContactDirectory,
)


@pytest.mark.asyncio
async def test_lookups_are_scoped_by_tenant(directory: InMemoryContactDirectory) -> None:
    student = await directory.get_student_by_contract("tenant-ankara", "contract-1")

    assert student is not None
    assert student.student_id == "student-1"
    assert await directory.get_student("tenant-izmir", "student-1") is None
    assert await directory.get_student_by_contract("tenant-ankara", "contract-404") is None
    assert await directory.get_exam("tenant-izmir", "exam-1") is None


@pytest.mark.asyncio
async def test_from_json_file_loads_seed(tmp_path: Path) -> None:
    seed = tmp_path / "contacts.json"
    seed.write_text(
        json.dumps(
            {
                "tenant-izmir": {
                    "students": {
                        "s1": {
                            "student_id": "s1",
                            "student_name": "Elif Koç",
                            "school_name": "Karşıyaka Koleji",
                            "primary_parent": {"name": "Hakan Koç", "phone": "+905550000000"},
                        }
                    },
                    "contracts": {"k1": "s1"},
                    "exams": {
                        "e1": {
                            "exam_id": "e1",
                            "name": "Giriş Sınavı",
                            "date": "2026-06-01T09:00:00",
                            "venue": "Ana Kampüs",
                        }
                    },
                }
            }
        ),
        encoding="utf-8",
    )

    directory = InMemoryContactDirectory.from_json_file(seed)

    student = await directory.get_student_by_contract("tenant-izmir", "k1")
    exam = await directory.get_exam("tenant-izmir", "e1")
    assert student is not None and student.primary_parent is not None
    assert student.primary_parent.phone == "+905550000000"
    assert exam is not None and exam.date.hour == 9


def test_invalid_seed_is_rejected(tmp_path: Path) -> None:
    seed = tmp_path / "contacts.json"
    seed.write_text(json.dumps({"t": {"students": {"s1": {"student_id": "s1"}}}}), encoding="utf-8")

    with pytest.raises(ValidationError):
        InMemoryContactDirectory.from_json_file(seed)
