from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# ----- Balances -----
class LeaveBalanceResponse(BaseModel):
    id: UUID
    employee_id: UUID
    campus_id: UUID
    leave_type: str
    year: int
    month: Optional[int] = None
    total_allocated: Decimal
    used: Decimal
    carried_forward: Decimal
    available: Decimal
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LeaveBalanceHistoryResponse(BaseModel):
    id: UUID
    leave_balance_id: Optional[UUID] = None
    employee_id: UUID
    leave_type: str
    action_type: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    remarks: Optional[str] = None
    leave_request_id: Optional[UUID] = None
    created_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LeaveConsume(BaseModel):
    """Deduct approved leave days from the balance of the period they fall in."""

    employee_id: UUID
    leave_type: str = Field(..., max_length=50)
    days: Decimal = Field(..., gt=0)
    year: int = Field(..., ge=2000)
    month: Optional[int] = Field(None, ge=1, le=12, description="Omit for yearly balances")
    leave_request_id: Optional[UUID] = None


class LeaveAdjust(BaseModel):
    delta: Decimal = Field(..., description="Days added to (or, if negative, removed from) the allocation")
    remarks: str = Field(..., max_length=500)


# ----- Rollover -----
class RolloverSummary(BaseModel):
    period: str  # Monthly / Yearly
    for_year: int
    for_month: Optional[int] = None
    ran: bool = False
    created: int = 0
    already_allocated: int = 0
    carried_forward_days: Decimal = Decimal("0")
    balance_ids: List[UUID] = Field(default_factory=list)


class LeaveRolloverRunResult(BaseModel):
    monthly: RolloverSummary
    yearly: RolloverSummary
