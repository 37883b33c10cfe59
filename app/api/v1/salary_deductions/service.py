"""
Monthly payroll deduction batch for employee-parent students.

Each student is billed in its own transaction: billing master, salary
transaction, deduction row, admission flag, charge ledger and fine settlement
are committed together. Siblings drawing on one salary are serialized by a
per-employee lock, and the salary definition row is locked while the used
amount is summed.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.v1.extra_charges import service as extra_charge_service
from app.core.calculator import (
    HUNDRED,
    ZERO,
    cap_to_available,
    money,
    percent_of,
    remaining_dues,
    to_decimal,
)
from app.core.config import settings
from app.core.enums import SALARY_DEDUCTION_RECEIVER, SALARY_PAYMENT_MODES, StudentCategoryType
from app.core.exceptions import DataIntegrityError
from app.core.models import (
    BillingMaster,
    BillingTransaction,
    SalaryDeduction,
    Student,
    StudentCategory,
    StudentCategoryAssignment,
)
from app.core.services import (
    admission_fee_due,
    discounted_tuition,
    get_active_salary_definition,
    get_billing_for_period,
    get_class_fee,
    get_latest_billing,
    require_employee,
    settle_unpaid_fines,
    used_salary_for_month,
)

from .schemas import DeductionRunSummary, FailedStudent, ProcessedDeduction, SkippedStudent

logger = logging.getLogger(__name__)

async def _salary_mode_assignments(db: AsyncSession) -> List[StudentCategoryAssignment]:
    """Latest active salary-mode EmployeeParent assignment per student."""
    result = await db.execute(
        select(StudentCategoryAssignment)
        .join(StudentCategory, StudentCategoryAssignment.student_category_id == StudentCategory.id)
        .where(
            StudentCategoryAssignment.is_active.is_(True),
            StudentCategory.category_type == StudentCategoryType.EMPLOYEE_PARENT.value,
            StudentCategoryAssignment.payment_mode.in_(SALARY_PAYMENT_MODES),
        )
        .order_by(StudentCategoryAssignment.assigned_at.desc())
    )
    latest: Dict[UUID, StudentCategoryAssignment] = {}
    for assignment in result.scalars().all():
        latest.setdefault(assignment.student_id, assignment)
    return list(latest.values())


async def _deduct_for_student(
    db: AsyncSession,
    assignment: StudentCategoryAssignment,
    for_month: int,
    for_year: int,
    lock: asyncio.Lock,
) -> Union[ProcessedDeduction, SkippedStudent]:
    student = await db.get(Student, assignment.student_id)
    if student is None or student.has_left:
        return SkippedStudent(student_id=assignment.student_id, reason="Student has left")
    if await get_billing_for_period(db, student.id, for_month, for_year) is not None:
        return SkippedStudent(student_id=student.id, reason="Already billed")

    employee_id = require_employee(assignment)

    class_fee = await get_class_fee(db, student.class_id)
    if class_fee is None:
        logger.warning("No class fee for class %s; salary deduction skipped for student %s", student.class_id, student.id)
        return SkippedStudent(student_id=student.id, reason="Class fee not configured")

    async with lock:
        salary = await get_active_salary_definition(db, employee_id, for_update=True)
        if salary is None:
            logger.warning("No active salary definition for employee %s; student %s skipped", employee_id, student.id)
            return SkippedStudent(student_id=student.id, reason="Salary definition not found")

        tuition = money(discounted_tuition(class_fee, student))
        charges = await extra_charge_service.list_eligible_charges(
            db, student.class_id, student.id, student.campus_id
        )
        extra = money(sum((to_decimal(c.amount) for c in charges), ZERO))
        admission = money(admission_fee_due(class_fee, student))
        total_fee = tuition + extra + admission

        percent = assignment.custom_tuition_percent if assignment.custom_tuition_percent is not None else HUNDRED
        calculated = percent_of(total_fee, percent)
        used = await used_salary_for_month(db, employee_id, for_month, for_year)
        deduction = money(cap_to_available(calculated, salary.net_salary - used))
        if deduction <= 0:
            logger.warning(
                "No available salary for employee %s (net %s, used %s); student %s skipped for %s/%s",
                employee_id,
                salary.net_salary,
                used,
                student.id,
                for_month,
                for_year,
            )
            return SkippedStudent(student_id=student.id, reason="No available salary")

        last = await get_latest_billing(db, student.id, before=(for_year, for_month))
        previous_dues = money(last.dues) if last is not None else ZERO
        dues = money(remaining_dues(total_fee + previous_dues, deduction))

        bill = BillingMaster(
            student_id=student.id,
            class_id=student.class_id,
            campus_id=student.campus_id,
            for_month=for_month,
            for_year=for_year,
            tuition_fee=tuition,
            admission_fee=admission,
            miscellaneous_charges=extra,
            previous_dues=previous_dues,
            fine=ZERO,
            dues=dues,
            created_by=settings.system_actor,
            remarks=f"Salary deduction for {for_month}/{for_year}",
            remarks_previous_dues="Carried from last billing record" if last is not None else "No previous dues record found",
        )
        db.add(bill)
        await db.flush()

        db.add(
            BillingTransaction(
                billing_master_id=bill.id,
                amount_paid=deduction,
                cash_paid=ZERO,
                online_paid=ZERO,
                transaction_reference="N/A",
                received_by=SALARY_DEDUCTION_RECEIVER,
                campus_id=student.campus_id,
            )
        )
        db.add(
            SalaryDeduction(
                student_id=student.id,
                employee_id=employee_id,
                billing_master_id=bill.id,
                amount_deducted=deduction,
                for_month=for_month,
                for_year=for_year,
                created_by=settings.system_actor,
                campus_id=student.campus_id,
            )
        )
        if admission > 0:
            student.admission_fee_paid = True
        for charge in charges:
            await extra_charge_service.save_payment_history(
                db, student.id, charge.charge_id, bill.id, student.class_id, charge.amount, student.campus_id
            )
        await settle_unpaid_fines(db, student.id, bill.id, settings.system_actor)
        await db.commit()

    logger.info(
        "Salary deduction of %s from employee %s for student %s %s/%s; dues %s",
        deduction,
        employee_id,
        student.id,
        for_month,
        for_year,
        dues,
    )
    return ProcessedDeduction(
        student_id=student.id,
        employee_id=employee_id,
        billing_master_id=bill.id,
        amount_deducted=deduction,
        dues=dues,
    )


async def process_monthly_deductions(
    session_factory: async_sessionmaker,
    today: Optional[date] = None,
    stop_on_error: Optional[bool] = None,
) -> DeductionRunSummary:
    """
    Bill every salary-mode employee-parent student for the current month.
    Safe to re-run: students already billed this month are skipped.
    With stop_on_error the first unexpected failure is re-raised and ends the run.
    """
    today = today or date.today()
    if stop_on_error is None:
        stop_on_error = settings.deduction_stop_on_error
    summary = DeductionRunSummary(for_month=today.month, for_year=today.year)
    # One lock per employee for this run
    employee_locks: Dict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    async with session_factory() as db:
        assignments = await _salary_mode_assignments(db)
    logger.info("Salary deduction run for %s/%s: %d candidate students", today.month, today.year, len(assignments))

    for assignment in assignments:
        student_id = assignment.student_id
        try:
            async with session_factory() as db:
                outcome = await _deduct_for_student(
                    db, assignment, today.month, today.year, employee_locks[assignment.employee_id]
                )
        except DataIntegrityError as e:
            logger.error("Salary deduction failed for student %s %s/%s: %s", student_id, today.month, today.year, e.message)
            summary.failed.append(FailedStudent(student_id=student_id, error=e.message))
            continue
        except IntegrityError:
            logger.info("Student %s already billed for %s/%s by a concurrent writer", student_id, today.month, today.year)
            summary.skipped.append(SkippedStudent(student_id=student_id, reason="Already billed"))
            continue
        except Exception as e:
            logger.exception("Salary deduction failed for student %s %s/%s", student_id, today.month, today.year)
            if stop_on_error:
                raise
            summary.failed.append(FailedStudent(student_id=student_id, error=str(e)))
            continue

        if isinstance(outcome, ProcessedDeduction):
            summary.processed.append(outcome)
        else:
            summary.skipped.append(outcome)

    logger.info(
        "Salary deduction run for %s/%s finished: %d processed, %d skipped, %d failed",
        today.month,
        today.year,
        len(summary.processed),
        len(summary.skipped),
        len(summary.failed),
    )
    return summary


async def deductions_recorded_for(db: AsyncSession, for_month: int, for_year: int) -> bool:
    result = await db.execute(
        select(SalaryDeduction.id)
        .where(SalaryDeduction.for_month == for_month, SalaryDeduction.for_year == for_year)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def run_salary_deduction_check(
    session_factory: async_sessionmaker, today: Optional[date] = None
) -> Optional[DeductionRunSummary]:
    """Scheduler entry point: runs the batch unless this month's deductions are already recorded."""
    today = today or date.today()
    async with session_factory() as db:
        if await deductions_recorded_for(db, today.month, today.year):
            logger.debug("Salary deductions for %s/%s already recorded", today.month, today.year)
            return None
    return await process_monthly_deductions(session_factory, today=today)


async def list_salary_deductions(
    db: AsyncSession,
    for_month: int,
    for_year: int,
    employee_id: Optional[UUID] = None,
) -> List[SalaryDeduction]:
    stmt = select(SalaryDeduction).where(
        SalaryDeduction.for_month == for_month,
        SalaryDeduction.for_year == for_year,
    )
    if employee_id is not None:
        stmt = stmt.where(SalaryDeduction.employee_id == employee_id)
    result = await db.execute(stmt.order_by(SalaryDeduction.deduction_date))
    return list(result.scalars().all())
