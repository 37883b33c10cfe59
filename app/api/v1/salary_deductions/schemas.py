"""Salary deduction schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ProcessedDeduction(BaseModel):
    student_id: UUID
    employee_id: UUID
    billing_master_id: UUID
    amount_deducted: Decimal
    dues: Decimal


class SkippedStudent(BaseModel):
    student_id: UUID
    reason: str


class FailedStudent(BaseModel):
    student_id: UUID
    error: str


class DeductionRunSummary(BaseModel):
    """Outcome of one batch run; failed entries need operator review."""

    for_month: int
    for_year: int
    processed: List[ProcessedDeduction] = Field(default_factory=list)
    skipped: List[SkippedStudent] = Field(default_factory=list)
    failed: List[FailedStudent] = Field(default_factory=list)


class DeductionRunRequest(BaseModel):
    stop_on_error: Optional[bool] = None


class SalaryDeductionResponse(BaseModel):
    id: UUID
    student_id: UUID
    employee_id: UUID
    billing_master_id: UUID
    amount_deducted: Decimal
    for_month: int
    for_year: int
    deduction_date: datetime
    created_by: str

    class Config:
        from_attributes = True
