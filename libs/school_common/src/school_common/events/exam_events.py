"""Exam event payloads published on ``exam.events``."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ExamDetails(BaseModel):
    name: str
    date: datetime
    duration_minutes: int
    campus_id: str


class ExamCreatedV1(BaseModel):
    exam_id: str
    exam: ExamDetails


class ExamApplication(BaseModel):
    exam_id: str
    prospect_id: str | None = None
    student_id: str | None = None
    applicant_name: str
    phone: str
    email: str | None = None


class ExamApplicationCreatedV1(BaseModel):
    application_id: str
    application: ExamApplication


class ExamResult(BaseModel):
    application_id: str
    score: float
    passed: bool


class ExamResultPublishedV1(BaseModel):
    exam_id: str
    results: list[ExamResult] = Field(default_factory=list)
