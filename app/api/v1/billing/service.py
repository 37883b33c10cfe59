"""Billing service: bill preview, payment capture and fee/fine reconciliation. One commit per billing action."""

import calendar
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.v1.extra_charges import service as extra_charge_service
from app.api.v1.extra_charges.schemas import ExtraChargeItem
from app.core.calculator import (
    ZERO,
    cap_to_available,
    money,
    months_between,
    next_period,
    percent_of,
    remaining_dues,
    to_decimal,
    total_payable,
)
from app.core.enums import FINE_ITEM_CATEGORY, SALARY_DEDUCTION_RECEIVER, ChargeCategory
from app.core.exceptions import DuplicateBillingError, PaymentValidationError, ServiceError
from app.core.models import (
    BillingMaster,
    BillingTransaction,
    ClassFeeExtraChargePaymentHistory,
    SalaryDeduction,
    Student,
)
from app.core.services import (
    admission_fee_due,
    discounted_tuition,
    get_active_salary_definition,
    get_billing_for_period,
    get_class_fee,
    get_latest_billing,
    get_salary_mode_assignment,
    get_student_or_404,
    list_unpaid_fines,
    require_employee,
    settle_unpaid_fines,
    sum_paid,
    used_salary_for_month,
)

from .schemas import (
    BillingCreate,
    BillingReconcileRequest,
    BillingResponse,
    BillingTransactionResponse,
    BillPreview,
    SalaryDeductionPreview,
)

logger = logging.getLogger(__name__)


def _billing_to_response(bm: BillingMaster) -> BillingResponse:
    transactions = list(bm.transactions)
    return BillingResponse(
        id=bm.id,
        student_id=bm.student_id,
        class_id=bm.class_id,
        campus_id=bm.campus_id,
        for_month=bm.for_month,
        for_year=bm.for_year,
        tuition_fee=money(bm.tuition_fee),
        admission_fee=money(bm.admission_fee),
        miscellaneous_charges=money(bm.miscellaneous_charges),
        fine=money(bm.fine),
        previous_dues=money(bm.previous_dues),
        dues=money(bm.dues),
        total_payable=money(bm.total_payable),
        total_paid=money(sum((to_decimal(t.amount_paid) for t in transactions), ZERO)),
        remarks=bm.remarks,
        remarks_previous_dues=bm.remarks_previous_dues,
        created_by=bm.created_by,
        created_at=bm.created_at,
        transactions=[BillingTransactionResponse.model_validate(t) for t in transactions],
    )


def _normalize_period(for_month: Optional[int], for_year: Optional[int], today: date) -> Tuple[int, int]:
    month = for_month if for_month and 1 <= for_month <= 12 else today.month
    year = for_year if for_year and 2000 <= for_year <= today.year + 1 else today.year
    return month, year


def _recurring_total(items: List[ExtraChargeItem]) -> Decimal:
    """Monthly charges only; once-only charges are never repeated for unbilled months."""
    return sum(
        (to_decimal(i.amount) for i in items if i.category == ChargeCategory.MONTHLY_CHARGES.value), ZERO
    )


async def compute_previous_dues(
    db: AsyncSession,
    student_id: UUID,
    for_month: int,
    for_year: int,
    monthly_amount: Decimal,
) -> Tuple[Decimal, str]:
    """
    Outstanding balance of the last bill before (for_year, for_month), plus one
    month of tuition and extra charges for every month nobody was billed.
    """
    last = await get_latest_billing(db, student_id, before=(for_year, for_month))
    if last is None:
        return ZERO, "No previous dues record found"

    outstanding = last.total_payable - await sum_paid(db, last.id)
    gap = months_between(last.for_year, last.for_month, for_year, for_month)
    last_label = f"{calendar.month_name[last.for_month]} {last.for_year}"
    if gap > 0:
        missing = monthly_amount * gap
        remarks = (
            f"Previous dues from {last_label}: {money(outstanding)}. "
            f"Plus {gap} month(s) missing fees: {money(missing)}."
        )
        return money(outstanding + missing), remarks
    return money(outstanding), f"Previous dues from {last_label}: {money(outstanding)}"


async def _salary_deduction_preview(
    db: AsyncSession,
    student: Student,
    for_month: int,
    for_year: int,
    bill_amount: Decimal,
    previous_dues: Decimal,
) -> Optional[SalaryDeductionPreview]:
    assignment = await get_salary_mode_assignment(db, student.id)
    if assignment is None or assignment.employee_id is None:
        return None
    salary = await get_active_salary_definition(db, assignment.employee_id)
    if salary is None:
        return None

    used = await used_salary_for_month(db, assignment.employee_id, for_month, for_year)
    available = salary.net_salary - used
    percent = to_decimal(assignment.custom_tuition_percent) if assignment.custom_tuition_percent is not None else Decimal("100")
    requested = percent_of(bill_amount, percent)
    deduction = cap_to_available(requested, available)

    if available <= 0:
        warning = " (Salary limit reached by siblings)"
    elif requested > available:
        warning = " (Salary cap reached)"
    else:
        warning = ""

    return SalaryDeductionPreview(
        employee_id=assignment.employee_id,
        net_salary=money(salary.net_salary),
        used_salary=money(used),
        available_salary=money(available),
        bill_amount=money(bill_amount),
        deduction_percent=percent,
        deduction_amount=money(deduction),
        payable_by_cash=money(bill_amount - deduction + previous_dues),
        note=f"Bill: {money(bill_amount)}. Siblings used: {money(used)}. Deducted: {money(deduction)}{warning}.",
    )


async def build_bill_preview(
    db: AsyncSession,
    student_id: UUID,
    for_month: Optional[int] = None,
    for_year: Optional[int] = None,
    today: Optional[date] = None,
) -> BillPreview:
    """What the student owes for a cycle, before any payment is taken. Read-only."""
    today = today or date.today()
    month, year = _normalize_period(for_month, for_year, today)

    student = await get_student_or_404(db, student_id)
    class_fee = await get_class_fee(db, student.class_id)
    if class_fee is None:
        raise ServiceError("Class fee structure not found", status.HTTP_400_BAD_REQUEST)
    if not to_decimal(class_fee.tuition_fee):
        raise ServiceError("Tuition fee not set for this class", status.HTTP_400_BAD_REQUEST)

    existing = await get_billing_for_period(db, student.id, month, year)
    already_paid = ZERO
    if existing is not None:
        already_paid = await sum_paid(db, existing.id)
        if to_decimal(existing.dues) == 0:
            raise ServiceError(f"Already paid in full for {month}/{year}", status.HTTP_400_BAD_REQUEST)

    tuition = discounted_tuition(class_fee, student)
    charge_items = await extra_charge_service.list_eligible_charges(
        db, student.class_id, student.id, student.campus_id
    )
    fine_items = [
        ExtraChargeItem(charge_id=f.id, charge_name=f.charge_name, amount=money(f.amount), category=FINE_ITEM_CATEGORY)
        for f in await list_unpaid_fines(db, student.id)
    ]
    items: List[ExtraChargeItem] = charge_items + fine_items
    extras = sum((to_decimal(i.amount) for i in items), ZERO)

    if existing is not None:
        tuition_fee = to_decimal(existing.tuition_fee)
        admission_fee = to_decimal(existing.admission_fee)
        fine = to_decimal(existing.fine)
        misc = to_decimal(existing.miscellaneous_charges)
        previous_dues = to_decimal(existing.previous_dues)
        dues_remarks = existing.remarks_previous_dues or "From existing billing record"
        items = []
    else:
        tuition_fee = tuition
        admission_fee = admission_fee_due(class_fee, student)
        fine = ZERO
        misc = extras
        previous_dues, dues_remarks = await compute_previous_dues(
            db, student.id, month, year, tuition + _recurring_total(charge_items)
        )

    payable = total_payable(tuition_fee, admission_fee, misc, fine, previous_dues)
    deduction = await _salary_deduction_preview(
        db, student, month, year, tuition_fee + admission_fee + misc, previous_dues
    )
    if deduction is not None:
        payable = deduction.payable_by_cash

    return BillPreview(
        student_id=student.id,
        student_name=student.full_name,
        class_id=student.class_id,
        campus_id=student.campus_id,
        for_month=month,
        for_year=year,
        is_existing_billing=existing is not None,
        already_paid=money(already_paid),
        tuition_fee=money(tuition_fee),
        admission_fee=money(admission_fee),
        fine=money(fine),
        miscellaneous_charges=money(misc),
        extra_charge_items=items,
        previous_dues=money(previous_dues),
        remarks_previous_dues=dues_remarks,
        total_payable=money(payable),
        salary_deduction=deduction,
    )


def _validate_payment_split(payload: BillingCreate) -> None:
    if money(payload.cash_paid) + money(payload.online_paid) != money(payload.total_paid):
        raise PaymentValidationError("Cash paid + Online paid must equal Total Paid")
    if payload.online_paid > 0 and payload.online_account_id is None:
        raise PaymentValidationError("Online account must be selected when Online Paid is greater than 0")


async def _accepted_items(
    db: AsyncSession, student: Student, submitted: List[ExtraChargeItem]
) -> Tuple[List[ExtraChargeItem], List[ExtraChargeItem]]:
    """
    Re-resolve submitted bill lines against the ledger. Charges no longer owed and
    fines no longer open are dropped; amounts always come from stored records.
    """
    eligible = {
        i.charge_id: i
        for i in await extra_charge_service.list_eligible_charges(db, student.class_id, student.id, student.campus_id)
    }
    open_fines = {f.id: f for f in await list_unpaid_fines(db, student.id)}

    charges: List[ExtraChargeItem] = []
    fines: List[ExtraChargeItem] = []
    seen = set()
    for item in submitted:
        if item.charge_id in seen:
            continue
        seen.add(item.charge_id)
        if item.category == FINE_ITEM_CATEGORY:
            fine = open_fines.get(item.charge_id)
            if fine is None:
                logger.warning("Fine %s for student %s is not open; dropped from bill", item.charge_id, student.id)
                continue
            fines.append(
                ExtraChargeItem(
                    charge_id=fine.id,
                    charge_name=fine.charge_name,
                    amount=money(fine.amount),
                    category=FINE_ITEM_CATEGORY,
                )
            )
        elif item.charge_id in eligible:
            charges.append(eligible[item.charge_id])
        else:
            logger.warning("Extra charge %s is not owed by student %s; dropped from bill", item.charge_id, student.id)
    return charges, fines


async def _charges_recorded_on_bill(db: AsyncSession, billing_master_id: UUID) -> set:
    result = await db.execute(
        select(ClassFeeExtraChargePaymentHistory.charge_id).where(
            ClassFeeExtraChargePaymentHistory.billing_master_id == billing_master_id
        )
    )
    return set(result.scalars().all())


async def _backfill_missing_months(
    db: AsyncSession,
    student: Student,
    bill: BillingMaster,
    tuition: Decimal,
    recurring_charges: Decimal,
    actor: str,
) -> int:
    """
    Create placeholder bills for unbilled months between the previous bill and this one.
    Each carries one month of tuition and recurring charges as separate components.
    """
    latest = await get_latest_billing(db, student.id, before=(bill.for_year, bill.for_month), exclude_id=bill.id)
    if latest is None:
        return 0
    created = 0
    year, month = next_period(latest.for_year, latest.for_month)
    while (year, month) < (bill.for_year, bill.for_month):
        db.add(
            BillingMaster(
                student_id=student.id,
                class_id=student.class_id,
                campus_id=student.campus_id,
                for_month=month,
                for_year=year,
                tuition_fee=money(tuition),
                admission_fee=ZERO,
                miscellaneous_charges=money(recurring_charges),
                previous_dues=ZERO,
                fine=ZERO,
                dues=money(tuition + recurring_charges),
                created_by=actor,
                remarks=f"Late Fees TRANSFERRED to month {bill.for_month}/{bill.for_year}",
                remarks_previous_dues="System-generated missing month record",
            )
        )
        created += 1
        year, month = next_period(year, month)
    return created


async def _mark_earlier_dues_transferred(db: AsyncSession, bill: BillingMaster) -> None:
    result = await db.execute(
        select(BillingMaster).where(
            BillingMaster.student_id == bill.student_id,
            BillingMaster.id != bill.id,
            (BillingMaster.for_year < bill.for_year)
            | ((BillingMaster.for_year == bill.for_year) & (BillingMaster.for_month < bill.for_month)),
            BillingMaster.dues > 0,
        )
    )
    for earlier in result.scalars().all():
        earlier.remarks = f"Pending dues {money(earlier.dues)} TRANSFERRED to {bill.for_month}/{bill.for_year}"


async def _apply_salary_deduction(
    db: AsyncSession,
    student: Student,
    bill: BillingMaster,
    requested: Decimal,
    payment_date: datetime,
    actor: str,
) -> Decimal:
    """Record the payroll share of a counter payment, re-capped against the salary left this month."""
    assignment = await get_salary_mode_assignment(db, student.id)
    if assignment is None:
        return ZERO
    employee_id = require_employee(assignment)

    already = await db.execute(
        select(SalaryDeduction.id).where(
            SalaryDeduction.student_id == student.id,
            SalaryDeduction.for_month == bill.for_month,
            SalaryDeduction.for_year == bill.for_year,
        )
    )
    if already.scalar_one_or_none() is not None:
        logger.info("Salary deduction already recorded for student %s %s/%s", student.id, bill.for_month, bill.for_year)
        return ZERO

    salary = await get_active_salary_definition(db, employee_id, for_update=True)
    if salary is None:
        logger.warning("Salary definition not found for employee %s; deduction skipped", employee_id)
        return ZERO
    used = await used_salary_for_month(db, employee_id, bill.for_month, bill.for_year)
    amount = money(cap_to_available(requested, salary.net_salary - used))
    if amount <= 0:
        logger.warning("No available salary for employee %s; deduction skipped for student %s", employee_id, student.id)
        return ZERO

    db.add(
        BillingTransaction(
            billing_master_id=bill.id,
            amount_paid=amount,
            cash_paid=ZERO,
            online_paid=ZERO,
            transaction_reference="N/A",
            payment_date=payment_date,
            received_by=SALARY_DEDUCTION_RECEIVER,
            campus_id=student.campus_id,
        )
    )
    db.add(
        SalaryDeduction(
            student_id=student.id,
            employee_id=employee_id,
            billing_master_id=bill.id,
            amount_deducted=amount,
            for_month=bill.for_month,
            for_year=bill.for_year,
            created_by=actor,
            campus_id=student.campus_id,
        )
    )
    return amount


async def create_billing_payment(
    db: AsyncSession,
    payload: BillingCreate,
    received_by: str,
) -> BillingResponse:
    """
    Create (or top up) the bill for a cycle and record what was paid.
    Bill, transactions, charge ledger, fine settlement and salary deduction
    are committed together or not at all.
    """
    _validate_payment_split(payload)

    if payload.idempotency_key:
        replay = await db.execute(
            select(BillingTransaction).where(BillingTransaction.idempotency_key == payload.idempotency_key)
        )
        previous = replay.scalar_one_or_none()
        if previous is not None:
            logger.info("Billing action %s already applied; returning original bill", payload.idempotency_key)
            return await get_billing_summary(db, previous.billing_master_id)

    student = await get_student_or_404(db, payload.student_id)
    class_fee = await get_class_fee(db, student.class_id)
    if class_fee is None:
        raise ServiceError("Class fee structure not found", status.HTTP_400_BAD_REQUEST)

    tuition = money(discounted_tuition(class_fee, student))
    admission = money(admission_fee_due(class_fee, student))
    charges, fines = await _accepted_items(db, student, payload.extra_charge_items)
    bill = await get_billing_for_period(db, student.id, payload.for_month, payload.for_year)
    is_new = bill is None
    if bill is not None:
        on_bill = await _charges_recorded_on_bill(db, bill.id)
        charges = [c for c in charges if c.charge_id not in on_bill]
    charges_total = sum((to_decimal(c.amount) for c in charges), ZERO)
    recurring = _recurring_total(charges)
    misc = money(charges_total + sum((to_decimal(f.amount) for f in fines), ZERO))
    total_paid = money(payload.total_paid)
    payment_date = payload.payment_date or datetime.utcnow()
    now = datetime.utcnow()

    try:
        if bill is not None:
            bill.miscellaneous_charges = money(to_decimal(bill.miscellaneous_charges) + misc)
            bill.fine = money(to_decimal(bill.fine) + payload.fine)
            bill.modified_by = received_by
            bill.modified_at = now
            paid_before = await sum_paid(db, bill.id)
        else:
            previous_dues, dues_remarks = await compute_previous_dues(
                db, student.id, payload.for_month, payload.for_year, tuition + recurring
            )
            bill = BillingMaster(
                student_id=student.id,
                class_id=student.class_id,
                campus_id=student.campus_id,
                for_month=payload.for_month,
                for_year=payload.for_year,
                tuition_fee=tuition,
                admission_fee=admission,
                miscellaneous_charges=misc,
                previous_dues=previous_dues,
                fine=money(payload.fine),
                dues=ZERO,
                created_by=received_by,
                remarks_previous_dues=dues_remarks,
            )
            db.add(bill)
            paid_before = ZERO
        await db.flush()

        if is_new:
            await _backfill_missing_months(db, student, bill, tuition, recurring, received_by)
            if total_paid >= to_decimal(bill.previous_dues):
                await _mark_earlier_dues_transferred(db, bill)
            if admission > 0 and not student.admission_fee_paid:
                student.admission_fee_paid = True

        if total_paid > 0:
            db.add(
                BillingTransaction(
                    billing_master_id=bill.id,
                    amount_paid=total_paid,
                    cash_paid=money(payload.cash_paid),
                    online_paid=money(payload.online_paid),
                    online_account_id=payload.online_account_id,
                    transaction_reference=payload.transaction_reference or "N/A",
                    idempotency_key=payload.idempotency_key,
                    payment_date=payment_date,
                    received_by=received_by,
                    campus_id=student.campus_id,
                )
            )

        deducted = ZERO
        if payload.salary_deduction_amount > 0:
            deducted = await _apply_salary_deduction(
                db, student, bill, to_decimal(payload.salary_deduction_amount), payment_date, received_by
            )

        # Whatever is captured onto the bill is owed through it, paid now or carried as dues
        for charge in charges:
            await extra_charge_service.save_payment_history(
                db, student.id, charge.charge_id, bill.id, student.class_id, charge.amount, student.campus_id
            )
        if fines:
            await settle_unpaid_fines(db, student.id, bill.id, received_by, fine_ids=[f.charge_id for f in fines])

        bill.dues = money(remaining_dues(bill.total_payable, paid_before + total_paid + deducted))
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateBillingError(
            f"Billing for {payload.for_month}/{payload.for_year} was recorded concurrently for this student"
        )

    logger.info(
        "Billing %s for student %s %s/%s: paid %s, salary %s, dues %s",
        "created" if is_new else "updated",
        student.id,
        payload.for_month,
        payload.for_year,
        total_paid,
        deducted,
        bill.dues,
    )
    return await get_billing_summary(db, bill.id)


async def get_billing_summary(db: AsyncSession, billing_master_id: UUID) -> BillingResponse:
    result = await db.execute(
        select(BillingMaster)
        .options(selectinload(BillingMaster.transactions))
        .where(BillingMaster.id == billing_master_id)
        .execution_options(populate_existing=True)
    )
    bill = result.scalar_one_or_none()
    if not bill:
        raise ServiceError("Billing record not found", status.HTTP_404_NOT_FOUND)
    return _billing_to_response(bill)


async def reconcile_fee_and_fine(
    db: AsyncSession,
    billing_master_id: UUID,
    payload: BillingReconcileRequest,
    modified_by: str,
) -> BillingResponse:
    """Admin correction of tuition/fine on a bill; dues are re-derived from what has been paid."""
    bill = await db.get(BillingMaster, billing_master_id)
    if not bill:
        raise ServiceError("Billing record not found", status.HTTP_404_NOT_FOUND)
    if payload.tuition_fee is not None:
        bill.tuition_fee = money(payload.tuition_fee)
    if payload.fine is not None:
        bill.fine = money(payload.fine)
    bill.dues = money(remaining_dues(bill.total_payable, await sum_paid(db, bill.id)))
    bill.modified_by = modified_by
    bill.modified_at = datetime.utcnow()
    await db.commit()
    return await get_billing_summary(db, bill.id)
