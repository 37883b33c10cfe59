"""Salary deduction router: manual batch trigger and monthly audit list."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.session import get_db, get_session_factory

from .schemas import DeductionRunRequest, DeductionRunSummary, SalaryDeductionResponse
from . import service

router = APIRouter(prefix="/api/v1/salary-deductions", tags=["salary-deductions"])


@router.post("/run", response_model=DeductionRunSummary)
async def run_salary_deductions(
    payload: Optional[DeductionRunRequest] = None,
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> DeductionRunSummary:
    """Run the batch for the current month now. Students already billed are skipped."""
    stop_on_error = payload.stop_on_error if payload else None
    return await service.process_monthly_deductions(session_factory, stop_on_error=stop_on_error)


@router.get("", response_model=List[SalaryDeductionResponse])
async def list_salary_deductions(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=2000),
    employee_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
) -> List[SalaryDeductionResponse]:
    rows = await service.list_salary_deductions(db, month, year, employee_id)
    return [SalaryDeductionResponse.model_validate(r) for r in rows]
