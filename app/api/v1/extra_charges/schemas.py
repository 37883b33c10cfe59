"""Extra charge schemas."""

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from app.core.enums import ChargeCategory


class ExtraChargeResponse(BaseModel):
    id: UUID
    campus_id: UUID
    class_id: Optional[UUID] = None
    charge_name: str
    amount: Decimal
    category: ChargeCategory
    is_active: bool

    class Config:
        from_attributes = True


class ExtraChargeItem(BaseModel):
    """One line on a bill. Fines reuse this shape with category "Fine/Charge"."""

    charge_id: UUID
    charge_name: str
    amount: Decimal
    category: str


class ExtraChargeTotalResponse(BaseModel):
    student_id: UUID
    class_id: UUID
    campus_id: UUID
    total: Decimal
    items: List[ExtraChargeItem]


class HasPaidChargeResponse(BaseModel):
    student_id: UUID
    charge_id: UUID
    has_paid: bool
