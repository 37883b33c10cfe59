"""Billing router: preview, payment capture, summary and reconciliation."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_actor
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import BillingCreate, BillingReconcileRequest, BillingResponse, BillPreview
from . import service

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


@router.get("/preview/{student_id}", response_model=BillPreview)
async def preview_bill(
    student_id: UUID,
    for_month: Optional[int] = Query(None, description="1-12; defaults to the current month"),
    for_year: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> BillPreview:
    try:
        return await service.build_bill_preview(db, student_id, for_month, for_year)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("", response_model=BillingResponse, status_code=status.HTTP_201_CREATED)
async def create_billing(
    payload: BillingCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
) -> BillingResponse:
    try:
        return await service.create_billing_payment(db, payload, received_by=actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{billing_id}", response_model=BillingResponse)
async def get_billing(
    billing_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> BillingResponse:
    try:
        return await service.get_billing_summary(db, billing_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/{billing_id}/reconcile", response_model=BillingResponse)
async def reconcile_billing(
    billing_id: UUID,
    payload: BillingReconcileRequest,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_actor),
) -> BillingResponse:
    try:
        return await service.reconcile_fee_and_fine(db, billing_id, payload, modified_by=actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
