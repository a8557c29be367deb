"""Student ledgers router: assign, payments, refunds, late fees, discounts, closure, reports."""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.enums import LedgerStatus
from fee_ledger.core.exceptions import ServiceError
from fee_ledger.db.session import get_db

from .schemas import (
    ApplyDiscountRequest,
    AssignFeeRequest,
    BatchResult,
    BulkAssignRequest,
    CloseLedgerRequest,
    CollectionSummary,
    ConcessionRequest,
    DefaulterItem,
    InstallmentResponse,
    LedgerResponse,
    LedgerSummary,
    PaymentCreate,
    PaymentResponse,
    RecomputeLateFeesRequest,
    RefundRequest,
    ReverseAdjustmentRequest,
)
from . import service

router = APIRouter(prefix="/api/v1/ledgers", tags=["ledgers"])


def _http_error(e: ServiceError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail={"code": e.code, "message": e.message})


# --- Assignment ---
@router.post("/assign", response_model=LedgerResponse, status_code=status.HTTP_201_CREATED)
async def assign_fee(
    payload: AssignFeeRequest,
    db: AsyncSession = Depends(get_db),
) -> LedgerResponse:
    try:
        return await service.assign_fee(db, payload)
    except ServiceError as e:
        raise _http_error(e)


@router.post("/assign/bulk", response_model=BatchResult)
async def bulk_assign_fee(
    payload: BulkAssignRequest,
    db: AsyncSession = Depends(get_db),
) -> BatchResult:
    try:
        return await service.bulk_assign(db, payload)
    except ServiceError as e:
        raise _http_error(e)


# --- Reports and batch jobs ---
@router.get("/reports/collection-summary", response_model=CollectionSummary)
async def read_collection_summary(
    period_ref: UUID,
    class_ref: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> CollectionSummary:
    return await service.collection_summary(db, period_ref, class_ref=class_ref)


@router.get("/reports/defaulters", response_model=List[DefaulterItem])
async def read_defaulters(
    period_ref: Optional[UUID] = Query(None),
    days_overdue: Optional[int] = Query(None, ge=0),
    as_of: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> List[DefaulterItem]:
    return await service.list_defaulters(db, period_ref=period_ref, days_overdue=days_overdue, as_of=as_of)


@router.post("/late-fees/recompute", response_model=BatchResult)
async def recompute_all_late_fees(
    payload: RecomputeLateFeesRequest,
    db: AsyncSession = Depends(get_db),
) -> BatchResult:
    return await service.recompute_all_late_fees(db, as_of=payload.as_of, period_ref=payload.period_ref)


# --- Reads ---
@router.get("", response_model=List[LedgerSummary])
async def list_ledgers(
    student_ref: Optional[UUID] = Query(None),
    period_ref: Optional[UUID] = Query(None),
    class_ref: Optional[UUID] = Query(None),
    status_filter: Optional[LedgerStatus] = Query(None, alias="status"),
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
) -> List[LedgerSummary]:
    return await service.list_ledgers(
        db,
        student_ref=student_ref,
        period_ref=period_ref,
        class_ref=class_ref,
        status_filter=status_filter,
        include_inactive=include_inactive,
    )


@router.get("/{ledger_id}", response_model=LedgerResponse)
async def read_ledger(
    ledger_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> LedgerResponse:
    try:
        return await service.get_ledger(db, ledger_id)
    except ServiceError as e:
        raise _http_error(e)


@router.get("/{ledger_id}/installments", response_model=List[InstallmentResponse])
async def read_installments(
    ledger_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> List[InstallmentResponse]:
    try:
        return await service.list_installments(db, ledger_id)
    except ServiceError as e:
        raise _http_error(e)


# --- Payments ---
@router.get("/{ledger_id}/payments", response_model=List[PaymentResponse])
async def read_payments(
    ledger_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> List[PaymentResponse]:
    try:
        return await service.list_payments(db, ledger_id)
    except ServiceError as e:
        raise _http_error(e)


@router.post("/{ledger_id}/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def record_payment(
    ledger_id: UUID,
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
) -> PaymentResponse:
    try:
        return await service.record_payment(db, ledger_id, payload)
    except ServiceError as e:
        raise _http_error(e)


@router.post("/{ledger_id}/payments/{payment_id}/refund", response_model=PaymentResponse)
async def refund_payment(
    ledger_id: UUID,
    payment_id: UUID,
    payload: RefundRequest,
    db: AsyncSession = Depends(get_db),
) -> PaymentResponse:
    try:
        return await service.refund_payment(db, ledger_id, payment_id, payload)
    except ServiceError as e:
        raise _http_error(e)


# --- Late fees ---
@router.post("/{ledger_id}/late-fees/recompute", response_model=LedgerResponse)
async def recompute_late_fees(
    ledger_id: UUID,
    payload: RecomputeLateFeesRequest,
    db: AsyncSession = Depends(get_db),
) -> LedgerResponse:
    try:
        return await service.recompute_late_fees(db, ledger_id, as_of=payload.as_of)
    except ServiceError as e:
        raise _http_error(e)


# --- Discounts / concessions ---
@router.post("/{ledger_id}/discounts", response_model=LedgerResponse)
async def apply_discount(
    ledger_id: UUID,
    payload: ApplyDiscountRequest,
    db: AsyncSession = Depends(get_db),
) -> LedgerResponse:
    try:
        return await service.apply_discount(db, ledger_id, payload)
    except ServiceError as e:
        raise _http_error(e)


@router.post("/{ledger_id}/concessions", response_model=LedgerResponse)
async def grant_concession(
    ledger_id: UUID,
    payload: ConcessionRequest,
    db: AsyncSession = Depends(get_db),
) -> LedgerResponse:
    try:
        return await service.grant_concession(db, ledger_id, payload)
    except ServiceError as e:
        raise _http_error(e)


@router.post("/{ledger_id}/adjustments/{adjustment_id}/reverse", response_model=LedgerResponse)
async def reverse_adjustment(
    ledger_id: UUID,
    adjustment_id: UUID,
    payload: ReverseAdjustmentRequest,
    db: AsyncSession = Depends(get_db),
) -> LedgerResponse:
    try:
        return await service.reverse_adjustment(db, ledger_id, adjustment_id, payload)
    except ServiceError as e:
        raise _http_error(e)


@router.post("/{ledger_id}/close", response_model=LedgerResponse)
async def close_ledger(
    ledger_id: UUID,
    payload: CloseLedgerRequest,
    db: AsyncSession = Depends(get_db),
) -> LedgerResponse:
    try:
        return await service.close_ledger(db, ledger_id, payload)
    except ServiceError as e:
        raise _http_error(e)
