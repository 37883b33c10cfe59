"""Directory and ledger lookups shared by billing and payroll deduction."""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.calculator import ZERO, apply_percent_discount, to_decimal
from app.core.enums import SALARY_PAYMENT_MODES, StudentCategoryType
from app.core.exceptions import DataIntegrityError, ServiceError
from app.core.models import (
    BillingMaster,
    BillingTransaction,
    ClassFee,
    SalaryDeduction,
    SalaryDefinition,
    Student,
    StudentCategory,
    StudentCategoryAssignment,
    StudentFineCharge,
)


async def get_student_or_404(db: AsyncSession, student_id: UUID) -> Student:
    student = await db.get(Student, student_id)
    if not student:
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    return student


async def get_class_fee(db: AsyncSession, class_id: UUID) -> Optional[ClassFee]:
    result = await db.execute(select(ClassFee).where(ClassFee.class_id == class_id).limit(1))
    return result.scalar_one_or_none()


def discounted_tuition(class_fee: ClassFee, student: Student) -> Decimal:
    return apply_percent_discount(class_fee.tuition_fee, student.tuition_fee_discount_percent)


def admission_fee_due(class_fee: ClassFee, student: Student) -> Decimal:
    """Zero once paid; otherwise the discounted admission fee, floored at zero."""
    if student.admission_fee_paid:
        return ZERO
    return apply_percent_discount(class_fee.admission_fee, student.admission_fee_discount_percent)


async def get_salary_mode_assignment(
    db: AsyncSession, student_id: UUID
) -> Optional[StudentCategoryAssignment]:
    """Active EmployeeParent assignment whose fee is settled from the parent's salary."""
    result = await db.execute(
        select(StudentCategoryAssignment)
        .join(StudentCategory, StudentCategoryAssignment.student_category_id == StudentCategory.id)
        .where(
            StudentCategoryAssignment.student_id == student_id,
            StudentCategoryAssignment.is_active.is_(True),
            StudentCategory.category_type == StudentCategoryType.EMPLOYEE_PARENT.value,
            StudentCategoryAssignment.payment_mode.in_(SALARY_PAYMENT_MODES),
        )
        .order_by(StudentCategoryAssignment.assigned_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def require_employee(assignment: StudentCategoryAssignment) -> UUID:
    if assignment.employee_id is None:
        raise DataIntegrityError(
            f"Student {assignment.student_id} is set to pay by {assignment.payment_mode} "
            "but no employee is linked to the category assignment"
        )
    return assignment.employee_id


async def get_active_salary_definition(
    db: AsyncSession, employee_id: UUID, for_update: bool = False
) -> Optional[SalaryDefinition]:
    stmt = (
        select(SalaryDefinition)
        .where(SalaryDefinition.employee_id == employee_id, SalaryDefinition.is_active.is_(True))
        .order_by(SalaryDefinition.created_at.desc())
        .limit(1)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def used_salary_for_month(db: AsyncSession, employee_id: UUID, for_month: int, for_year: int) -> Decimal:
    """Salary already drawn this month by deductions for any of the employee's children."""
    result = await db.execute(
        select(func.coalesce(func.sum(SalaryDeduction.amount_deducted), 0)).where(
            SalaryDeduction.employee_id == employee_id,
            SalaryDeduction.for_month == for_month,
            SalaryDeduction.for_year == for_year,
        )
    )
    return to_decimal(result.scalar_one())


async def get_billing_for_period(
    db: AsyncSession, student_id: UUID, for_month: int, for_year: int
) -> Optional[BillingMaster]:
    result = await db.execute(
        select(BillingMaster).where(
            BillingMaster.student_id == student_id,
            BillingMaster.for_month == for_month,
            BillingMaster.for_year == for_year,
        )
    )
    return result.scalar_one_or_none()


async def get_latest_billing(
    db: AsyncSession,
    student_id: UUID,
    before: Optional[Tuple[int, int]] = None,
    exclude_id: Optional[UUID] = None,
) -> Optional[BillingMaster]:
    """Most recent bill by (year, month) descending, optionally strictly before (year, month)."""
    stmt = select(BillingMaster).where(BillingMaster.student_id == student_id)
    if before is not None:
        year, month = before
        stmt = stmt.where(
            (BillingMaster.for_year < year)
            | ((BillingMaster.for_year == year) & (BillingMaster.for_month < month))
        )
    if exclude_id is not None:
        stmt = stmt.where(BillingMaster.id != exclude_id)
    stmt = stmt.order_by(BillingMaster.for_year.desc(), BillingMaster.for_month.desc()).limit(1)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def sum_paid(db: AsyncSession, billing_master_id: UUID) -> Decimal:
    result = await db.execute(
        select(func.coalesce(func.sum(BillingTransaction.amount_paid), 0)).where(
            BillingTransaction.billing_master_id == billing_master_id
        )
    )
    return to_decimal(result.scalar_one())


async def list_unpaid_fines(db: AsyncSession, student_id: UUID) -> List[StudentFineCharge]:
    result = await db.execute(
        select(StudentFineCharge)
        .where(
            StudentFineCharge.student_id == student_id,
            StudentFineCharge.is_paid.is_(False),
            StudentFineCharge.is_active.is_(True),
        )
        .order_by(StudentFineCharge.charge_date)
    )
    return list(result.scalars().all())


async def settle_unpaid_fines(
    db: AsyncSession,
    student_id: UUID,
    billing_master_id: UUID,
    modified_by: str,
    fine_ids: Optional[Iterable[UUID]] = None,
) -> List[StudentFineCharge]:
    """
    Mark unpaid active fines as paid and link them to the bill that settled them.
    With fine_ids only those fines are settled.
    """
    now = datetime.utcnow()
    fines = await list_unpaid_fines(db, student_id)
    if fine_ids is not None:
        wanted = set(fine_ids)
        fines = [f for f in fines if f.id in wanted]
    for fine in fines:
        fine.is_paid = True
        fine.paid_date = now
        fine.billing_master_id = billing_master_id
        fine.modified_by = modified_by
        fine.modified_at = now
    return fines
