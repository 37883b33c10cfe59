"""Extra charge resolution: which charges apply to a student this cycle and what is still owed."""

import logging
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.calculator import ZERO, money, to_decimal
from app.core.config import settings
from app.core.enums import ChargeApplicabilityPolicy, ChargeCategory
from app.core.models import (
    ClassFeeExtraCharge,
    ClassFeeExtraChargeExclusion,
    ClassFeeExtraChargePaymentHistory,
    StudentChargeAssignment,
)

from .schemas import ExtraChargeItem

logger = logging.getLogger(__name__)


def _assigned_clause(student_id: UUID, campus_id: UUID):
    return exists().where(
        StudentChargeAssignment.charge_id == ClassFeeExtraCharge.id,
        StudentChargeAssignment.student_id == student_id,
        StudentChargeAssignment.is_assigned.is_(True),
        StudentChargeAssignment.campus_id == campus_id,
    )


def _not_excluded_clause(student_id: UUID):
    return ~exists().where(
        ClassFeeExtraChargeExclusion.charge_id == ClassFeeExtraCharge.id,
        ClassFeeExtraChargeExclusion.student_id == student_id,
    )


async def get_applicable_charges(
    db: AsyncSession,
    class_id: UUID,
    student_id: UUID,
    campus_id: UUID,
    policy: Optional[ChargeApplicabilityPolicy] = None,
) -> List[ClassFeeExtraCharge]:
    """
    Active, non-deleted campus charges that reach this student.
    ASSIGNMENT_ONLY requires an explicit assignment row; the class/global policies
    also pick up class-scoped (and campus-wide) charges unless the student is excluded.
    """
    policy = policy or settings.charge_applicability_policy
    assigned = _assigned_clause(student_id, campus_id)

    if policy == ChargeApplicabilityPolicy.CLASS_AND_ASSIGNMENT:
        reach = or_(
            assigned,
            and_(ClassFeeExtraCharge.class_id == class_id, _not_excluded_clause(student_id)),
        )
    elif policy == ChargeApplicabilityPolicy.GLOBAL_AND_ASSIGNMENT:
        reach = or_(
            assigned,
            and_(
                or_(ClassFeeExtraCharge.class_id == class_id, ClassFeeExtraCharge.class_id.is_(None)),
                _not_excluded_clause(student_id),
            ),
        )
    else:
        reach = assigned

    result = await db.execute(
        select(ClassFeeExtraCharge)
        .where(
            ClassFeeExtraCharge.is_active.is_(True),
            ClassFeeExtraCharge.is_deleted.is_(False),
            ClassFeeExtraCharge.campus_id == campus_id,
            reach,
        )
        .order_by(ClassFeeExtraCharge.charge_name)
    )
    charges = []
    seen = set()
    for charge in result.scalars().all():
        if charge.id not in seen:
            seen.add(charge.id)
            charges.append(charge)
    return charges


async def _paid_charge_keys(db: AsyncSession, student_id: UUID, charge_ids: List[UUID]) -> set:
    """(charge_id, class_id_paid_for) pairs from the payment ledger for this student."""
    if not charge_ids:
        return set()
    result = await db.execute(
        select(
            ClassFeeExtraChargePaymentHistory.charge_id,
            ClassFeeExtraChargePaymentHistory.class_id_paid_for,
        ).where(
            ClassFeeExtraChargePaymentHistory.student_id == student_id,
            ClassFeeExtraChargePaymentHistory.charge_id.in_(charge_ids),
        )
    )
    return {(row[0], row[1]) for row in result.all()}


def _is_eligible(charge: ClassFeeExtraCharge, class_id: UUID, paid: set) -> bool:
    if charge.category == ChargeCategory.MONTHLY_CHARGES.value:
        return True
    if charge.category == ChargeCategory.ONCE_PER_LIFETIME.value:
        return not any(cid == charge.id for cid, _ in paid)
    if charge.category == ChargeCategory.ONCE_PER_CLASS.value:
        return (charge.id, class_id) not in paid
    logger.warning("Extra charge %s has unknown category %r; not charged", charge.id, charge.category)
    return False


async def list_eligible_charges(
    db: AsyncSession,
    class_id: UUID,
    student_id: UUID,
    campus_id: UUID,
    policy: Optional[ChargeApplicabilityPolicy] = None,
) -> List[ExtraChargeItem]:
    """Applicable charges the student still owes this cycle, itemized for a bill."""
    charges = await get_applicable_charges(db, class_id, student_id, campus_id, policy)
    paid = await _paid_charge_keys(db, student_id, [c.id for c in charges])
    return [
        ExtraChargeItem(
            charge_id=c.id,
            charge_name=c.charge_name,
            amount=money(c.amount),
            category=c.category,
        )
        for c in charges
        if _is_eligible(c, class_id, paid)
    ]


async def calculate_extra_charges(
    db: AsyncSession,
    class_id: UUID,
    student_id: UUID,
    campus_id: UUID,
    policy: Optional[ChargeApplicabilityPolicy] = None,
) -> Decimal:
    """Sum of eligible extra charges. Read-only; repeated calls agree until a payment is recorded."""
    items = await list_eligible_charges(db, class_id, student_id, campus_id, policy)
    return money(sum((to_decimal(i.amount) for i in items), ZERO))


async def has_paid_charge(
    db: AsyncSession,
    student_id: UUID,
    charge_id: UUID,
    current_class_id: Optional[UUID] = None,
) -> bool:
    charge = await db.get(ClassFeeExtraCharge, charge_id)
    if not charge:
        return False

    stmt = select(ClassFeeExtraChargePaymentHistory.id).where(
        ClassFeeExtraChargePaymentHistory.student_id == student_id,
        ClassFeeExtraChargePaymentHistory.charge_id == charge_id,
    )
    if charge.category == ChargeCategory.ONCE_PER_CLASS.value:
        if current_class_id is None:
            return False
        stmt = stmt.where(ClassFeeExtraChargePaymentHistory.class_id_paid_for == current_class_id)
    elif charge.category != ChargeCategory.ONCE_PER_LIFETIME.value:
        # Monthly charges are owed every cycle
        return False

    result = await db.execute(stmt.limit(1))
    return result.scalar_one_or_none() is not None


async def save_payment_history(
    db: AsyncSession,
    student_id: UUID,
    charge_id: UUID,
    billing_master_id: UUID,
    class_id: UUID,
    amount,
    campus_id: UUID,
) -> Optional[ClassFeeExtraChargePaymentHistory]:
    """
    Append a ledger row. Only flushed: the caller commits it together with the
    billing master and transaction so eligibility cannot be consumed twice.
    """
    charge = await db.get(ClassFeeExtraCharge, charge_id)
    if not charge:
        logger.warning("Payment history skipped: extra charge %s not found", charge_id)
        return None

    history = ClassFeeExtraChargePaymentHistory(
        student_id=student_id,
        charge_id=charge_id,
        class_id_paid_for=class_id if charge.category == ChargeCategory.ONCE_PER_CLASS.value else None,
        billing_master_id=billing_master_id,
        amount_paid=money(amount),
        campus_id=campus_id,
    )
    db.add(history)
    await db.flush()
    return history
