"""Leave balance rollover, consumption and adjustment with an append-only history."""

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

from app.core.calculator import ZERO, carry_forward_with_cap, previous_period, to_decimal
from app.core.config import settings
from app.core.enums import AllocationPeriod, LeaveActionType
from app.core.exceptions import ServiceError
from app.core.models import EmployeeRole, EmployeeRoleConfig, LeaveBalance, LeaveBalanceHistory, LeaveConfig

from .schemas import LeaveAdjust, LeaveConsume, LeaveRolloverRunResult, RolloverSummary

logger = logging.getLogger(__name__)


async def _active_roles(db: AsyncSession) -> List[Tuple[EmployeeRole, EmployeeRoleConfig]]:
    """Roles currently held: active and without an end date."""
    result = await db.execute(
        select(EmployeeRole, EmployeeRoleConfig)
        .join(EmployeeRoleConfig, EmployeeRole.role_config_id == EmployeeRoleConfig.id)
        .where(EmployeeRole.is_active.is_(True), EmployeeRole.to_date.is_(None))
    )
    return [(row[0], row[1]) for row in result.all()]


async def _active_configs(db: AsyncSession, period: AllocationPeriod) -> List[LeaveConfig]:
    result = await db.execute(
        select(LeaveConfig).where(
            LeaveConfig.is_active.is_(True),
            LeaveConfig.allocation_period == period.value,
        )
    )
    return list(result.scalars().all())


async def _find_balance(
    db: AsyncSession, employee_id: UUID, leave_type: str, year: int, month: Optional[int]
) -> Optional[LeaveBalance]:
    month_clause = LeaveBalance.month.is_(None) if month is None else LeaveBalance.month == month
    result = await db.execute(
        select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type == leave_type,
            LeaveBalance.year == year,
            month_clause,
        )
    )
    return result.scalar_one_or_none()


def _allocation_remark(period: AllocationPeriod, year: int, month: Optional[int], carried: Decimal) -> str:
    if period == AllocationPeriod.MONTHLY:
        remark = f"Monthly allocation for {calendar.month_name[month]} {year}"
    else:
        remark = f"Yearly allocation for {year}"
    if carried > 0:
        remark += f" with {carried.normalize():f} days carried forward"
    return remark


async def _rollover(
    db: AsyncSession,
    period: AllocationPeriod,
    year: int,
    month: Optional[int],
    previous: Tuple[int, Optional[int]],
) -> RolloverSummary:
    """
    Allocate one period's balance for every active role x matching config.
    Carry-forward looks only at the immediately preceding period's balance.
    """
    summary = RolloverSummary(period=period.value, for_year=year, for_month=month, ran=True)
    configs = await _active_configs(db, period)
    if not configs:
        logger.info("No active %s leave configs; nothing to allocate", period.value)
        return summary

    action = LeaveActionType.MONTHLY_ROLLOVER if period == AllocationPeriod.MONTHLY else LeaveActionType.YEARLY_ROLLOVER
    actor = settings.system_actor
    prev_year, prev_month = previous

    try:
        for role, role_config in await _active_roles(db):
            matching = [
                c for c in configs
                if c.employee_type == role_config.employee_type and c.role_name == role_config.role_name
            ]
            for config in matching:
                if await _find_balance(db, role.employee_id, config.leave_type, year, month) is not None:
                    summary.already_allocated += 1
                    continue

                prior = await _find_balance(db, role.employee_id, config.leave_type, prev_year, prev_month)
                carried = carry_forward_with_cap(
                    prior.available if prior is not None else None,
                    config.is_carry_forward,
                    config.max_carry_forward_days,
                )
                allocated = Decimal(config.allowed_days)

                balance = LeaveBalance(
                    employee_id=role.employee_id,
                    campus_id=role.campus_id,
                    leave_type=config.leave_type,
                    year=year,
                    month=month,
                    total_allocated=allocated,
                    used=ZERO,
                    carried_forward=carried,
                    created_by=actor,
                )
                db.add(balance)
                await db.flush()
                db.add(
                    LeaveBalanceHistory(
                        employee_id=role.employee_id,
                        campus_id=role.campus_id,
                        leave_balance_id=balance.id,
                        leave_type=config.leave_type,
                        action_type=action.value,
                        amount=allocated + carried,
                        balance_before=ZERO,
                        balance_after=allocated + carried,
                        remarks=_allocation_remark(period, year, month, carried),
                        created_by=actor,
                    )
                )
                await db.flush()

                summary.created += 1
                summary.carried_forward_days += carried
                summary.balance_ids.append(balance.id)
                logger.info(
                    "Created %s leave balance for employee %s, %s: %s days + %s carried forward",
                    period.value.lower(),
                    role.employee_id,
                    config.leave_type,
                    allocated,
                    carried,
                )

        await db.commit()
    except IntegrityError:
        # Another rollover allocated the same period first; a later tick finds the rows and skips.
        await db.rollback()
        logger.warning("Concurrent %s leave rollover for %s/%s; this pass was rolled back", period.value, month, year)
        return RolloverSummary(period=period.value, for_year=year, for_month=month, ran=True)
    return summary


async def process_monthly_rollover(db: AsyncSession, today: Optional[date] = None) -> RolloverSummary:
    """No-op unless today is the 1st of the month."""
    today = today or date.today()
    if today.day != 1:
        return RolloverSummary(period=AllocationPeriod.MONTHLY.value, for_year=today.year, for_month=today.month)
    return await _rollover(
        db,
        AllocationPeriod.MONTHLY,
        today.year,
        today.month,
        previous_period(today.year, today.month),
    )


async def process_yearly_rollover(db: AsyncSession, today: Optional[date] = None) -> RolloverSummary:
    """No-op unless today is January 1st."""
    today = today or date.today()
    if not (today.month == 1 and today.day == 1):
        return RolloverSummary(period=AllocationPeriod.YEARLY.value, for_year=today.year)
    return await _rollover(db, AllocationPeriod.YEARLY, today.year, None, (today.year - 1, None))


async def run_leave_rollover(db: AsyncSession, today: Optional[date] = None) -> LeaveRolloverRunResult:
    today = today or date.today()
    monthly = await process_monthly_rollover(db, today)
    yearly = await process_yearly_rollover(db, today)
    return LeaveRolloverRunResult(monthly=monthly, yearly=yearly)


async def consume_leave(db: AsyncSession, payload: LeaveConsume, performed_by: str) -> LeaveBalance:
    balance = await _find_balance(db, payload.employee_id, payload.leave_type, payload.year, payload.month)
    if not balance:
        raise ServiceError("Leave balance not found for this period", status.HTTP_404_NOT_FOUND)
    days = to_decimal(payload.days)
    before = balance.available
    if days > before:
        raise ServiceError(
            f"Insufficient {payload.leave_type} balance: {before} day(s) available, {days} requested",
            status.HTTP_400_BAD_REQUEST,
        )

    balance.used = to_decimal(balance.used) + days
    balance.updated_by = performed_by
    balance.updated_at = datetime.utcnow()
    db.add(
        LeaveBalanceHistory(
            employee_id=balance.employee_id,
            campus_id=balance.campus_id,
            leave_balance_id=balance.id,
            leave_type=balance.leave_type,
            action_type=LeaveActionType.USED.value,
            amount=days,
            balance_before=before,
            balance_after=before - days,
            leave_request_id=payload.leave_request_id,
            remarks=f"{days.normalize():f} day(s) used",
            created_by=performed_by,
        )
    )
    await db.commit()
    await db.refresh(balance)
    return balance


async def adjust_leave_balance(
    db: AsyncSession, balance_id: UUID, payload: LeaveAdjust, performed_by: str
) -> LeaveBalance:
    balance = await db.get(LeaveBalance, balance_id)
    if not balance:
        raise ServiceError("Leave balance not found", status.HTTP_404_NOT_FOUND)
    delta = to_decimal(payload.delta)
    if delta == 0:
        raise ServiceError("Adjustment must change the balance", status.HTTP_400_BAD_REQUEST)
    before = balance.available
    if before + delta < 0:
        raise ServiceError("Adjustment would leave a negative balance", status.HTTP_400_BAD_REQUEST)
    if to_decimal(balance.total_allocated) + delta < 0:
        raise ServiceError("Allocated days cannot be negative", status.HTTP_400_BAD_REQUEST)

    balance.total_allocated = to_decimal(balance.total_allocated) + delta
    balance.updated_by = performed_by
    balance.updated_at = datetime.utcnow()
    db.add(
        LeaveBalanceHistory(
            employee_id=balance.employee_id,
            campus_id=balance.campus_id,
            leave_balance_id=balance.id,
            leave_type=balance.leave_type,
            action_type=LeaveActionType.ADJUSTMENT.value,
            amount=delta,
            balance_before=before,
            balance_after=before + delta,
            remarks=payload.remarks,
            created_by=performed_by,
        )
    )
    await db.commit()
    await db.refresh(balance)
    return balance


async def list_leave_balances(
    db: AsyncSession,
    employee_id: Optional[UUID] = None,
    campus_id: Optional[UUID] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> List[LeaveBalance]:
    stmt = select(LeaveBalance)
    if employee_id is not None:
        stmt = stmt.where(LeaveBalance.employee_id == employee_id)
    if campus_id is not None:
        stmt = stmt.where(LeaveBalance.campus_id == campus_id)
    if year is not None:
        stmt = stmt.where(LeaveBalance.year == year)
    if month is not None:
        stmt = stmt.where(LeaveBalance.month == month)
    stmt = stmt.order_by(LeaveBalance.year.desc(), LeaveBalance.month.desc(), LeaveBalance.leave_type)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_balance_history(db: AsyncSession, balance_id: UUID) -> List[LeaveBalanceHistory]:
    if not await db.get(LeaveBalance, balance_id):
        raise ServiceError("Leave balance not found", status.HTTP_404_NOT_FOUND)
    result = await db.execute(
        select(LeaveBalanceHistory)
        .where(LeaveBalanceHistory.leave_balance_id == balance_id)
        .order_by(LeaveBalanceHistory.created_at)
    )
    return list(result.scalars().all())
