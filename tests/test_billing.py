import uuid
from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.billing import service
from app.api.v1.billing.schemas import BillingCreate, BillingReconcileRequest
from app.api.v1.extra_charges import service as extra_charge_service
from app.api.v1.extra_charges.schemas import ExtraChargeItem
from app.core.enums import FINE_ITEM_CATEGORY, SALARY_DEDUCTION_RECEIVER, ChargeCategory
from app.core.exceptions import DuplicateBillingError, PaymentValidationError, ServiceError
from app.core.models import (
    BankAccount,
    BillingMaster,
    BillingTransaction,
    ClassFeeExtraChargePaymentHistory,
    SalaryDeduction,
    StudentFineCharge,
)

from tests import factories


async def _student_with_transport(db: AsyncSession, tuition="5000", tuition_discount=None):
    campus = await factories.create_campus(db)
    grade = await factories.create_class(db, campus)
    await factories.create_class_fee(db, grade, tuition=tuition)
    student = await factories.create_student(db, grade, tuition_discount=tuition_discount)
    charge = await factories.create_charge(db, campus, "Transport", "500")
    await factories.assign_charge(db, student, charge)
    return campus, grade, student, charge


def _item(charge) -> ExtraChargeItem:
    return ExtraChargeItem(
        charge_id=charge.id, charge_name=charge.charge_name, amount=charge.amount, category=charge.category
    )


def _fine_item(fine) -> ExtraChargeItem:
    return ExtraChargeItem(
        charge_id=fine.id, charge_name=fine.charge_name, amount=fine.amount, category=FINE_ITEM_CATEGORY
    )


async def _count(db: AsyncSession, model, *criteria) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*criteria))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_preview_itemizes_discounted_tuition_charges_and_fines(db_session: AsyncSession) -> None:
    _, _, student, _ = await _student_with_transport(db_session, tuition_discount="10")
    await factories.create_fine(db_session, student, "200")

    preview = await service.build_bill_preview(db_session, student.id, 3, 2025, today=date(2025, 3, 5))

    assert preview.is_existing_billing is False
    assert preview.tuition_fee == Decimal("4500.00")
    assert preview.admission_fee == Decimal("0.00")
    assert preview.miscellaneous_charges == Decimal("700.00")
    assert {i.category for i in preview.extra_charge_items} == {ChargeCategory.MONTHLY_CHARGES.value, FINE_ITEM_CATEGORY}
    assert preview.previous_dues == Decimal("0.00")
    assert preview.remarks_previous_dues == "No previous dues record found"
    assert preview.total_payable == Decimal("5200.00")
    assert preview.salary_deduction is None


@pytest.mark.asyncio
async def test_preview_invalid_period_falls_back_to_today(db_session: AsyncSession) -> None:
    _, _, student, _ = await _student_with_transport(db_session)

    preview = await service.build_bill_preview(db_session, student.id, 13, 1990, today=date(2025, 6, 15))
    assert (preview.for_month, preview.for_year) == (6, 2025)


@pytest.mark.asyncio
async def test_preview_adds_missing_months_to_previous_dues(db_session: AsyncSession) -> None:
    _, _, student, _ = await _student_with_transport(db_session)
    await factories.create_bill(db_session, student, 1, 2025, tuition="5000")

    preview = await service.build_bill_preview(db_session, student.id, 4, 2025, today=date(2025, 4, 2))

    # January unpaid (5000) plus February and March at tuition + transport
    assert preview.previous_dues == Decimal("16000.00")
    assert "January 2025" in preview.remarks_previous_dues
    assert "2 month(s)" in preview.remarks_previous_dues


@pytest.mark.asyncio
async def test_preview_errors(db_session: AsyncSession) -> None:
    campus = await factories.create_campus(db_session)
    grade = await factories.create_class(db_session, campus)
    student = await factories.create_student(db_session, grade)

    with pytest.raises(ServiceError) as exc:
        await service.build_bill_preview(db_session, uuid.uuid4())
    assert exc.value.status_code == 404

    with pytest.raises(ServiceError) as exc:
        await service.build_bill_preview(db_session, student.id)
    assert exc.value.status_code == 400

    await factories.create_class_fee(db_session, grade, tuition="5000")
    await factories.create_bill(db_session, student, 2, 2025, dues="0")
    with pytest.raises(ServiceError) as exc:
        await service.build_bill_preview(db_session, student.id, 2, 2025, today=date(2025, 2, 10))
    assert "Already paid" in exc.value.message


@pytest.mark.asyncio
async def test_preview_salary_deduction_is_capped_to_available_salary(db_session: AsyncSession) -> None:
    campus, _, student, _ = await _student_with_transport(db_session)
    employee = await factories.create_employee(db_session, campus, net_salary="3000")
    await factories.link_employee_parent(db_session, student, employee)

    preview = await service.build_bill_preview(db_session, student.id, 5, 2025, today=date(2025, 5, 1))

    assert preview.salary_deduction is not None
    assert preview.salary_deduction.bill_amount == Decimal("5500.00")
    assert preview.salary_deduction.deduction_amount == Decimal("3000.00")
    assert preview.total_payable == Decimal("2500.00")
    assert "Salary cap reached" in preview.salary_deduction.note


@pytest.mark.asyncio
async def test_create_billing_records_everything_in_one_commit(db_session: AsyncSession) -> None:
    campus, _, student, charge = await _student_with_transport(db_session)
    fine = await factories.create_fine(db_session, student, "200")
    account = BankAccount(campus_id=campus.id, bank_name="HBL", account_title="School", account_number="001")
    db_session.add(account)
    await db_session.flush()

    payload = BillingCreate(
        student_id=student.id,
        for_month=3,
        for_year=2025,
        extra_charge_items=[_item(charge), _fine_item(fine)],
        total_paid=Decimal("5000"),
        cash_paid=Decimal("3000"),
        online_paid=Decimal("2000"),
        online_account_id=account.id,
    )
    bill = await service.create_billing_payment(db_session, payload, received_by="cashier")

    assert bill.tuition_fee == Decimal("5000.00")
    assert bill.miscellaneous_charges == Decimal("700.00")
    assert bill.total_payable == Decimal("5700.00")
    assert bill.total_paid == Decimal("5000.00")
    assert bill.dues == Decimal("700.00")
    assert len(bill.transactions) == 1
    assert bill.transactions[0].received_by == "cashier"

    assert await _count(
        db_session,
        ClassFeeExtraChargePaymentHistory,
        ClassFeeExtraChargePaymentHistory.billing_master_id == bill.id,
    ) == 1
    settled = await db_session.get(StudentFineCharge, fine.id)
    assert settled.is_paid is True
    assert settled.billing_master_id == bill.id


@pytest.mark.asyncio
async def test_submitted_amounts_are_replaced_and_unowed_items_dropped(db_session: AsyncSession) -> None:
    _, _, student, charge = await _student_with_transport(db_session)
    tampered = ExtraChargeItem(charge_id=charge.id, charge_name="Transport", amount=Decimal("1"), category=charge.category)
    bogus = ExtraChargeItem(charge_id=uuid.uuid4(), charge_name="Bogus", amount=Decimal("999"), category="MonthlyCharges")

    payload = BillingCreate(student_id=student.id, for_month=3, for_year=2025, extra_charge_items=[tampered, bogus])
    bill = await service.create_billing_payment(db_session, payload, received_by="cashier")

    assert bill.miscellaneous_charges == Decimal("500.00")
    assert bill.dues == Decimal("5500.00")
    assert bill.transactions == []


@pytest.mark.asyncio
async def test_payment_split_must_add_up(db_session: AsyncSession) -> None:
    _, _, student, _ = await _student_with_transport(db_session)

    with pytest.raises(PaymentValidationError):
        await service.create_billing_payment(
            db_session,
            BillingCreate(
                student_id=student.id,
                for_month=3,
                for_year=2025,
                total_paid=Decimal("5000"),
                cash_paid=Decimal("4000"),
            ),
            received_by="cashier",
        )

    with pytest.raises(PaymentValidationError):
        await service.create_billing_payment(
            db_session,
            BillingCreate(
                student_id=student.id,
                for_month=3,
                for_year=2025,
                total_paid=Decimal("5000"),
                online_paid=Decimal("5000"),
            ),
            received_by="cashier",
        )
    assert await _count(db_session, BillingMaster) == 0


@pytest.mark.asyncio
async def test_repeated_idempotency_key_does_not_pay_twice(db_session: AsyncSession) -> None:
    _, _, student, charge = await _student_with_transport(db_session)
    payload = BillingCreate(
        student_id=student.id,
        for_month=3,
        for_year=2025,
        extra_charge_items=[_item(charge)],
        total_paid=Decimal("2000"),
        cash_paid=Decimal("2000"),
        idempotency_key="counter-42",
    )

    first = await service.create_billing_payment(db_session, payload, received_by="cashier")
    second = await service.create_billing_payment(db_session, payload, received_by="cashier")

    assert first.id == second.id
    assert second.dues == Decimal("3500.00")
    assert await _count(db_session, BillingTransaction) == 1
    assert await _count(db_session, ClassFeeExtraChargePaymentHistory) == 1


@pytest.mark.asyncio
async def test_second_payment_tops_up_existing_bill(db_session: AsyncSession) -> None:
    _, _, student, charge = await _student_with_transport(db_session)
    base = dict(student_id=student.id, for_month=3, for_year=2025)

    await service.create_billing_payment(
        db_session,
        BillingCreate(**base, extra_charge_items=[_item(charge)], total_paid=Decimal("3000"), cash_paid=Decimal("3000")),
        received_by="cashier",
    )
    # Resubmitting the same monthly charge on the same bill adds nothing
    bill = await service.create_billing_payment(
        db_session,
        BillingCreate(**base, extra_charge_items=[_item(charge)], total_paid=Decimal("2500"), cash_paid=Decimal("2500")),
        received_by="cashier",
    )

    assert bill.miscellaneous_charges == Decimal("500.00")
    assert bill.total_paid == Decimal("5500.00")
    assert bill.dues == Decimal("0.00")
    assert len(bill.transactions) == 2
    assert await _count(db_session, BillingMaster) == 1


@pytest.mark.asyncio
async def test_new_bill_backfills_missing_months(db_session: AsyncSession) -> None:
    _, _, student, _ = await _student_with_transport(db_session)
    await factories.create_bill(db_session, student, 1, 2025, tuition="5000")

    bill = await service.create_billing_payment(
        db_session,
        BillingCreate(
            student_id=student.id, for_month=4, for_year=2025, total_paid=Decimal("20000"), cash_paid=Decimal("20000")
        ),
        received_by="cashier",
    )

    # January's 5000 plus two unbilled months of tuition
    assert bill.previous_dues == Decimal("15000.00")
    assert bill.dues == Decimal("0.00")

    result = await db_session.execute(
        select(BillingMaster)
        .where(BillingMaster.student_id == student.id)
        .order_by(BillingMaster.for_month)
    )
    bills = result.scalars().all()
    assert [b.for_month for b in bills] == [1, 2, 3, 4]
    for earlier in bills[:3]:
        assert "TRANSFERRED to" in earlier.remarks


@pytest.mark.asyncio
async def test_backfilled_months_keep_components_and_skip_once_only_charges(db_session: AsyncSession) -> None:
    campus, _, student, transport = await _student_with_transport(db_session)
    registration = await factories.create_charge(
        db_session, campus, "Registration", "1000", ChargeCategory.ONCE_PER_LIFETIME
    )
    await factories.assign_charge(db_session, student, registration)
    await factories.create_bill(db_session, student, 1, 2025, tuition="5000")

    bill = await service.create_billing_payment(
        db_session,
        BillingCreate(
            student_id=student.id,
            for_month=4,
            for_year=2025,
            extra_charge_items=[_item(transport), _item(registration)],
        ),
        received_by="cashier",
    )

    assert bill.miscellaneous_charges == Decimal("1500.00")
    # January's 5000 plus two months of tuition and transport
    assert bill.previous_dues == Decimal("16000.00")

    result = await db_session.execute(
        select(BillingMaster)
        .where(BillingMaster.student_id == student.id, BillingMaster.for_month.in_([2, 3]))
        .order_by(BillingMaster.for_month)
    )
    for missing in result.scalars().all():
        assert missing.tuition_fee == Decimal("5000.00")
        assert missing.admission_fee == Decimal("0.00")
        assert missing.miscellaneous_charges == Decimal("500.00")
        assert missing.dues == Decimal("5500.00")


async def _student_with_registration(db: AsyncSession):
    campus = await factories.create_campus(db)
    grade = await factories.create_class(db, campus)
    await factories.create_class_fee(db, grade, tuition="5000")
    student = await factories.create_student(db, grade)
    charge = await factories.create_charge(db, campus, "Registration", "1000", ChargeCategory.ONCE_PER_LIFETIME)
    await factories.assign_charge(db, student, charge)
    return campus, grade, student, charge


@pytest.mark.asyncio
async def test_unpaid_bill_still_captures_once_only_charge_and_fine(db_session: AsyncSession) -> None:
    campus, grade, student, charge = await _student_with_registration(db_session)
    fine = await factories.create_fine(db_session, student, "200")

    january = await service.create_billing_payment(
        db_session,
        BillingCreate(
            student_id=student.id,
            for_month=1,
            for_year=2025,
            extra_charge_items=[_item(charge), _fine_item(fine)],
        ),
        received_by="cashier",
    )

    assert january.miscellaneous_charges == Decimal("1200.00")
    assert january.dues == Decimal("6200.00")
    assert january.transactions == []
    assert await _count(
        db_session,
        ClassFeeExtraChargePaymentHistory,
        ClassFeeExtraChargePaymentHistory.billing_master_id == january.id,
    ) == 1
    captured = await db_session.get(StudentFineCharge, fine.id)
    assert captured.billing_master_id == january.id

    # February owes January's balance once, without the registration or fine again
    february = await service.build_bill_preview(db_session, student.id, 2, 2025, today=date(2025, 2, 3))
    assert february.extra_charge_items == []
    assert february.miscellaneous_charges == Decimal("0.00")
    assert february.previous_dues == Decimal("6200.00")
    assert february.total_payable == Decimal("11200.00")
    assert await extra_charge_service.calculate_extra_charges(
        db_session, grade.id, student.id, campus.id
    ) == Decimal("0.00")


@pytest.mark.asyncio
async def test_top_up_of_unpaid_bill_does_not_repeat_captured_charge(db_session: AsyncSession) -> None:
    _, _, student, charge = await _student_with_registration(db_session)
    base = dict(student_id=student.id, for_month=1, for_year=2025, extra_charge_items=[_item(charge)])

    await service.create_billing_payment(db_session, BillingCreate(**base), received_by="cashier")
    bill = await service.create_billing_payment(
        db_session,
        BillingCreate(**base, total_paid=Decimal("100"), cash_paid=Decimal("100")),
        received_by="cashier",
    )

    assert bill.miscellaneous_charges == Decimal("1000.00")
    assert bill.total_paid == Decimal("100.00")
    assert bill.dues == Decimal("5900.00")
    assert await _count(db_session, ClassFeeExtraChargePaymentHistory) == 1


@pytest.mark.asyncio
async def test_bill_inserted_by_concurrent_writer_is_rejected(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    _, _, student, _ = await _student_with_transport(db_session)
    await factories.create_bill(db_session, student, 3, 2025)
    await db_session.commit()
    student_id = student.id

    async def not_seen_yet(*args, **kwargs):
        return None

    # The other writer's bill commits after this request looked for one
    monkeypatch.setattr(service, "get_billing_for_period", not_seen_yet)

    with pytest.raises(DuplicateBillingError) as exc:
        await service.create_billing_payment(
            db_session,
            BillingCreate(
                student_id=student_id, for_month=3, for_year=2025, total_paid=Decimal("1000"), cash_paid=Decimal("1000")
            ),
            received_by="cashier",
        )

    assert exc.value.status_code == 409
    assert await _count(db_session, BillingMaster, BillingMaster.student_id == student_id) == 1
    assert await _count(db_session, BillingTransaction) == 0


@pytest.mark.asyncio
async def test_counter_salary_deduction_is_recapped(db_session: AsyncSession) -> None:
    campus, _, student, charge = await _student_with_transport(db_session)
    employee = await factories.create_employee(db_session, campus, net_salary="3000")
    await factories.link_employee_parent(db_session, student, employee)

    bill = await service.create_billing_payment(
        db_session,
        BillingCreate(
            student_id=student.id,
            for_month=5,
            for_year=2025,
            extra_charge_items=[_item(charge)],
            salary_deduction_amount=Decimal("5500"),
        ),
        received_by="cashier",
    )

    assert bill.total_paid == Decimal("3000.00")
    assert bill.dues == Decimal("2500.00")
    assert [t.received_by for t in bill.transactions] == [SALARY_DEDUCTION_RECEIVER]
    deduction = (await db_session.execute(select(SalaryDeduction))).scalar_one()
    assert deduction.amount_deducted == Decimal("3000.00")
    assert deduction.employee_id == employee.id


@pytest.mark.asyncio
async def test_reconcile_rederives_dues(db_session: AsyncSession) -> None:
    _, _, student, _ = await _student_with_transport(db_session)
    bill = await service.create_billing_payment(
        db_session,
        BillingCreate(student_id=student.id, for_month=3, for_year=2025, total_paid=Decimal("4000"), cash_paid=Decimal("4000")),
        received_by="cashier",
    )
    assert bill.dues == Decimal("1000.00")

    reconciled = await service.reconcile_fee_and_fine(
        db_session, bill.id, BillingReconcileRequest(tuition_fee=Decimal("4500"), fine=Decimal("100")), modified_by="admin"
    )
    assert reconciled.tuition_fee == Decimal("4500.00")
    assert reconciled.fine == Decimal("100.00")
    assert reconciled.dues == Decimal("600.00")

    reconciled = await service.reconcile_fee_and_fine(
        db_session, bill.id, BillingReconcileRequest(tuition_fee=Decimal("3000")), modified_by="admin"
    )
    assert reconciled.dues == Decimal("0.00")


@pytest.mark.asyncio
async def test_billing_endpoints(client: AsyncClient, db_session: AsyncSession) -> None:
    _, _, student, charge = await _student_with_transport(db_session)
    await db_session.commit()

    response = await client.get(f"/api/v1/billing/preview/{student.id}", params={"for_month": 3, "for_year": 2025})
    assert response.status_code == 200
    assert Decimal(response.json()["total_payable"]) == Decimal("5500")

    payload = {
        "student_id": str(student.id),
        "for_month": 3,
        "for_year": 2025,
        "extra_charge_items": [
            {"charge_id": str(charge.id), "charge_name": "Transport", "amount": "500", "category": "MonthlyCharges"}
        ],
        "total_paid": "5500",
        "cash_paid": "5500",
    }
    response = await client.post("/api/v1/billing", json=payload, headers={"X-Actor": "front-desk"})
    assert response.status_code == 201
    data = response.json()
    assert Decimal(data["dues"]) == Decimal("0")
    assert data["transactions"][0]["received_by"] == "front-desk"

    response = await client.get(f"/api/v1/billing/{data['id']}")
    assert response.status_code == 200
    assert Decimal(response.json()["total_paid"]) == Decimal("5500")

    response = await client.post("/api/v1/billing", json={**payload, "cash_paid": "100"})
    assert response.status_code == 400

    response = await client.get(f"/api/v1/billing/{uuid.uuid4()}")
    assert response.status_code == 404
