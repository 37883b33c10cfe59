from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_actor
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    LeaveAdjust,
    LeaveBalanceHistoryResponse,
    LeaveBalanceResponse,
    LeaveConsume,
    LeaveRolloverRunResult,
)
from . import service

router = APIRouter(prefix="/api/v1/leaves", tags=["leaves"])


@router.post("/rollover/run", response_model=LeaveRolloverRunResult)
async def run_rollover(
    as_of: Optional[date] = Query(None, description="Run as if today were this date; defaults to today"),
    db: AsyncSession = Depends(get_db),
) -> LeaveRolloverRunResult:
    """Run the monthly and yearly passes. Each is a no-op outside its period start or when already allocated."""
    return await service.run_leave_rollover(db, as_of)


@router.get("/balances", response_model=List[LeaveBalanceResponse])
async def list_balances(
    employee_id: Optional[UUID] = None,
    campus_id: Optional[UUID] = None,
    year: Optional[int] = None,
    month: Optional[int] = Query(None, ge=1, le=12),
    db: AsyncSession = Depends(get_db),
) -> List[LeaveBalanceResponse]:
    rows = await service.list_leave_balances(db, employee_id, campus_id, year, month)
    return [LeaveBalanceResponse.model_validate(r) for r in rows]


@router.get("/balances/{balance_id}/history", response_model=List[LeaveBalanceHistoryResponse])
async def balance_history(
    balance_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> List[LeaveBalanceHistoryResponse]:
    try:
        rows = await service.get_balance_history(db, balance_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return [LeaveBalanceHistoryResponse.model_validate(r) for r in rows]


@router.post("/balances/consume", response_model=LeaveBalanceResponse)
async def consume_leave(
    payload: LeaveConsume,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
) -> LeaveBalanceResponse:
    """Record approved leave days against the employee's balance for that period."""
    try:
        balance = await service.consume_leave(db, payload, performed_by=actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return LeaveBalanceResponse.model_validate(balance)


@router.post("/balances/{balance_id}/adjust", response_model=LeaveBalanceResponse)
async def adjust_balance(
    balance_id: UUID,
    payload: LeaveAdjust,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
) -> LeaveBalanceResponse:
    try:
        balance = await service.adjust_leave_balance(db, balance_id, payload, performed_by=actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return LeaveBalanceResponse.model_validate(balance)
