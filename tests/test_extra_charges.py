import uuid
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.extra_charges import service
from app.core.enums import ChargeApplicabilityPolicy, ChargeCategory
from app.core.models import ClassFeeExtraChargeExclusion

from tests import factories


async def _setup(db: AsyncSession):
    campus = await factories.create_campus(db)
    grade1 = await factories.create_class(db, campus, "Grade 1")
    grade2 = await factories.create_class(db, campus, "Grade 2")
    student = await factories.create_student(db, grade1)
    return campus, grade1, grade2, student


@pytest.mark.asyncio
async def test_assignment_only_requires_explicit_assignment(db_session: AsyncSession) -> None:
    campus, grade1, _, student = await _setup(db_session)
    assigned = await factories.create_charge(db_session, campus, "Transport", "500")
    await factories.assign_charge(db_session, student, assigned)
    await factories.create_charge(db_session, campus, "Lab", "300", school_class=grade1)
    unassigned_flag = await factories.create_charge(db_session, campus, "Sports", "100")
    await factories.assign_charge(db_session, student, unassigned_flag, is_assigned=False)
    deleted = await factories.create_charge(db_session, campus, "Old Fee", "50", is_deleted=True)
    await factories.assign_charge(db_session, student, deleted)
    inactive = await factories.create_charge(db_session, campus, "Paused", "60", is_active=False)
    await factories.assign_charge(db_session, student, inactive)

    charges = await service.get_applicable_charges(
        db_session, grade1.id, student.id, campus.id, ChargeApplicabilityPolicy.ASSIGNMENT_ONLY
    )
    assert [c.charge_name for c in charges] == ["Transport"]


@pytest.mark.asyncio
async def test_charges_from_other_campus_are_ignored(db_session: AsyncSession) -> None:
    campus, grade1, _, student = await _setup(db_session)
    other = await factories.create_campus(db_session, "North Campus")
    charge = await factories.create_charge(db_session, other, "Transport", "500")
    await factories.assign_charge(db_session, student, charge)

    charges = await service.get_applicable_charges(db_session, grade1.id, student.id, campus.id)
    assert charges == []


@pytest.mark.asyncio
async def test_class_policy_includes_class_charges_unless_excluded(db_session: AsyncSession) -> None:
    campus, grade1, grade2, student = await _setup(db_session)
    lab = await factories.create_charge(db_session, campus, "Lab", "300", school_class=grade1)
    await factories.create_charge(db_session, campus, "Grade 2 Trip", "900", school_class=grade2)
    await factories.create_charge(db_session, campus, "Campus Wide", "100")

    policy = ChargeApplicabilityPolicy.CLASS_AND_ASSIGNMENT
    charges = await service.get_applicable_charges(db_session, grade1.id, student.id, campus.id, policy)
    assert [c.charge_name for c in charges] == ["Lab"]

    db_session.add(ClassFeeExtraChargeExclusion(student_id=student.id, charge_id=lab.id, campus_id=campus.id))
    await db_session.flush()
    charges = await service.get_applicable_charges(db_session, grade1.id, student.id, campus.id, policy)
    assert charges == []


@pytest.mark.asyncio
async def test_global_policy_adds_campus_wide_charges(db_session: AsyncSession) -> None:
    campus, grade1, _, student = await _setup(db_session)
    await factories.create_charge(db_session, campus, "Lab", "300", school_class=grade1)
    wide = await factories.create_charge(db_session, campus, "Campus Wide", "100")
    await factories.assign_charge(db_session, student, wide)

    charges = await service.get_applicable_charges(
        db_session, grade1.id, student.id, campus.id, ChargeApplicabilityPolicy.GLOBAL_AND_ASSIGNMENT
    )
    # Assigned and class-scoped at once, still listed once
    assert [c.charge_name for c in charges] == ["Campus Wide", "Lab"]


@pytest.mark.asyncio
async def test_once_per_lifetime_excluded_forever_after_payment(db_session: AsyncSession) -> None:
    campus, grade1, grade2, student = await _setup(db_session)
    charge = await factories.create_charge(
        db_session, campus, "Registration", "1000", ChargeCategory.ONCE_PER_LIFETIME
    )
    await factories.assign_charge(db_session, student, charge)

    assert await service.calculate_extra_charges(db_session, grade1.id, student.id, campus.id) == Decimal("1000.00")

    bill = await factories.create_bill(db_session, student, 1, 2025)
    await service.save_payment_history(db_session, student.id, charge.id, bill.id, grade1.id, charge.amount, campus.id)

    assert await service.calculate_extra_charges(db_session, grade1.id, student.id, campus.id) == Decimal("0.00")
    assert await service.calculate_extra_charges(db_session, grade2.id, student.id, campus.id) == Decimal("0.00")
    assert await service.has_paid_charge(db_session, student.id, charge.id) is True


@pytest.mark.asyncio
async def test_once_per_class_applies_again_in_new_class(db_session: AsyncSession) -> None:
    campus, grade1, grade2, student = await _setup(db_session)
    charge = await factories.create_charge(db_session, campus, "Books", "700", ChargeCategory.ONCE_PER_CLASS)
    await factories.assign_charge(db_session, student, charge)
    bill = await factories.create_bill(db_session, student, 1, 2025)

    history = await service.save_payment_history(
        db_session, student.id, charge.id, bill.id, grade1.id, charge.amount, campus.id
    )
    assert history.class_id_paid_for == grade1.id

    assert await service.calculate_extra_charges(db_session, grade1.id, student.id, campus.id) == Decimal("0.00")
    assert await service.calculate_extra_charges(db_session, grade2.id, student.id, campus.id) == Decimal("700.00")
    assert await service.has_paid_charge(db_session, student.id, charge.id, grade1.id) is True
    assert await service.has_paid_charge(db_session, student.id, charge.id, grade2.id) is False


@pytest.mark.asyncio
async def test_monthly_charge_recurs_despite_history(db_session: AsyncSession) -> None:
    campus, grade1, _, student = await _setup(db_session)
    charge = await factories.create_charge(db_session, campus, "Transport", "500")
    await factories.assign_charge(db_session, student, charge)

    for month in (1, 2, 3):
        bill = await factories.create_bill(db_session, student, month, 2025)
        history = await service.save_payment_history(
            db_session, student.id, charge.id, bill.id, grade1.id, charge.amount, campus.id
        )
        assert history.class_id_paid_for is None
        assert await service.calculate_extra_charges(db_session, grade1.id, student.id, campus.id) == Decimal("500.00")

    assert await service.has_paid_charge(db_session, student.id, charge.id) is False


@pytest.mark.asyncio
async def test_calculation_is_repeatable(db_session: AsyncSession) -> None:
    campus, grade1, _, student = await _setup(db_session)
    for name, amount, category in (
        ("Transport", "500", ChargeCategory.MONTHLY_CHARGES),
        ("Registration", "1000", ChargeCategory.ONCE_PER_LIFETIME),
        ("Books", "700", ChargeCategory.ONCE_PER_CLASS),
    ):
        charge = await factories.create_charge(db_session, campus, name, amount, category)
        await factories.assign_charge(db_session, student, charge)

    first = await service.calculate_extra_charges(db_session, grade1.id, student.id, campus.id)
    second = await service.calculate_extra_charges(db_session, grade1.id, student.id, campus.id)
    assert first == second == Decimal("2200.00")


@pytest.mark.asyncio
async def test_unknown_charge_is_not_paid_and_history_skipped(db_session: AsyncSession) -> None:
    campus, grade1, _, student = await _setup(db_session)
    bill = await factories.create_bill(db_session, student, 1, 2025)
    missing_charge_id = uuid.uuid4()

    assert await service.has_paid_charge(db_session, student.id, missing_charge_id) is False
    history = await service.save_payment_history(
        db_session, student.id, missing_charge_id, bill.id, grade1.id, Decimal("10"), campus.id
    )
    assert history is None


@pytest.mark.asyncio
async def test_calculate_endpoint(client: AsyncClient, db_session: AsyncSession) -> None:
    campus, grade1, _, student = await _setup(db_session)
    charge = await factories.create_charge(db_session, campus, "Transport", "500")
    await factories.assign_charge(db_session, student, charge)
    await db_session.commit()

    response = await client.get(
        "/api/v1/extra-charges/calculate",
        params={"class_id": str(grade1.id), "student_id": str(student.id), "campus_id": str(campus.id)},
    )
    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["total"]) == Decimal("500")
    assert [i["charge_name"] for i in data["items"]] == ["Transport"]

    response = await client.get(
        "/api/v1/extra-charges/has-paid",
        params={"student_id": str(student.id), "charge_id": str(charge.id)},
    )
    assert response.status_code == 200
    assert response.json()["has_paid"] is False
