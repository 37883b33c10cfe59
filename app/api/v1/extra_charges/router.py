"""Extra charge router: applicability, owed total and paid badges."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.calculator import ZERO, to_decimal
from app.core.enums import ChargeApplicabilityPolicy
from app.db.session import get_db

from .schemas import ExtraChargeResponse, ExtraChargeTotalResponse, HasPaidChargeResponse
from . import service

router = APIRouter(prefix="/api/v1/extra-charges", tags=["extra-charges"])


@router.get("/applicable", response_model=List[ExtraChargeResponse])
async def list_applicable_charges(
    class_id: UUID,
    student_id: UUID,
    campus_id: UUID,
    policy: Optional[ChargeApplicabilityPolicy] = None,
    db: AsyncSession = Depends(get_db),
) -> List[ExtraChargeResponse]:
    charges = await service.get_applicable_charges(db, class_id, student_id, campus_id, policy)
    return [ExtraChargeResponse.model_validate(c) for c in charges]


@router.get("/calculate", response_model=ExtraChargeTotalResponse)
async def calculate_extra_charges(
    class_id: UUID,
    student_id: UUID,
    campus_id: UUID,
    policy: Optional[ChargeApplicabilityPolicy] = None,
    db: AsyncSession = Depends(get_db),
) -> ExtraChargeTotalResponse:
    """Extra charges still owed this cycle, itemized."""
    items = await service.list_eligible_charges(db, class_id, student_id, campus_id, policy)
    return ExtraChargeTotalResponse(
        student_id=student_id,
        class_id=class_id,
        campus_id=campus_id,
        total=sum((to_decimal(i.amount) for i in items), ZERO),
        items=items,
    )


@router.get("/has-paid", response_model=HasPaidChargeResponse)
async def has_paid_charge(
    student_id: UUID,
    charge_id: UUID,
    class_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
) -> HasPaidChargeResponse:
    paid = await service.has_paid_charge(db, student_id, charge_id, class_id)
    return HasPaidChargeResponse(student_id=student_id, charge_id=charge_id, has_paid=paid)
