"""Payment and installment event payloads published on ``payment.events``."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class PaymentDetails(BaseModel):
    amount: float
    method: str
    status: str
    installment_id: str | None = None


class PaymentProcessedV1(BaseModel):
    payment_id: str
    contract_id: str
    payment: PaymentDetails


class PaymentError(BaseModel):
    code: str
    message: str


class PaymentFailedV1(BaseModel):
    payment_id: str
    error: PaymentError


class InstallmentDueDetails(BaseModel):
    amount: float
    due_date: datetime
    student_name: str
    parent_phone: str


class InstallmentDueV1(BaseModel):
    installment_id: str
    contract_id: str
    due: InstallmentDueDetails
