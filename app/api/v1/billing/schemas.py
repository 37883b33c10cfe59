"""Billing schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.api.v1.extra_charges.schemas import ExtraChargeItem


class SalaryDeductionPreview(BaseModel):
    """How much of the bill the employee parent's salary covers this month."""

    employee_id: UUID
    net_salary: Decimal
    used_salary: Decimal
    available_salary: Decimal
    bill_amount: Decimal
    deduction_percent: Decimal
    deduction_amount: Decimal
    payable_by_cash: Decimal
    note: str


class BillPreview(BaseModel):
    student_id: UUID
    student_name: str
    class_id: UUID
    campus_id: UUID
    for_month: int
    for_year: int
    is_existing_billing: bool = False
    already_paid: Decimal = Decimal("0")
    tuition_fee: Decimal
    admission_fee: Decimal
    fine: Decimal
    miscellaneous_charges: Decimal
    extra_charge_items: List[ExtraChargeItem] = Field(default_factory=list)
    previous_dues: Decimal
    remarks_previous_dues: str
    total_payable: Decimal
    salary_deduction: Optional[SalaryDeductionPreview] = None


class BillingCreate(BaseModel):
    student_id: UUID
    for_month: int = Field(..., ge=1, le=12)
    for_year: int = Field(..., ge=2000)
    fine: Decimal = Field(Decimal("0"), ge=0)
    extra_charge_items: List[ExtraChargeItem] = Field(default_factory=list)
    total_paid: Decimal = Field(Decimal("0"), ge=0)
    cash_paid: Decimal = Field(Decimal("0"), ge=0)
    online_paid: Decimal = Field(Decimal("0"), ge=0)
    online_account_id: Optional[UUID] = None
    transaction_reference: Optional[str] = Field(None, max_length=100)
    payment_date: Optional[datetime] = None
    salary_deduction_amount: Decimal = Field(Decimal("0"), ge=0)
    idempotency_key: Optional[str] = Field(None, max_length=100, description="Repeat-safe key for this billing action")


class BillingTransactionResponse(BaseModel):
    id: UUID
    billing_master_id: UUID
    amount_paid: Decimal
    cash_paid: Decimal
    online_paid: Decimal
    online_account_id: Optional[UUID] = None
    transaction_reference: Optional[str] = None
    payment_date: datetime
    received_by: str

    class Config:
        from_attributes = True


class BillingResponse(BaseModel):
    id: UUID
    student_id: UUID
    class_id: UUID
    campus_id: UUID
    for_month: int
    for_year: int
    tuition_fee: Decimal
    admission_fee: Decimal
    miscellaneous_charges: Decimal
    fine: Decimal
    previous_dues: Decimal
    dues: Decimal
    total_payable: Decimal
    total_paid: Decimal
    remarks: Optional[str] = None
    remarks_previous_dues: Optional[str] = None
    created_by: str
    created_at: datetime
    transactions: List[BillingTransactionResponse] = Field(default_factory=list)


class BillingReconcileRequest(BaseModel):
    tuition_fee: Optional[Decimal] = Field(None, ge=0)
    fine: Optional[Decimal] = Field(None, ge=0)
