"""
Student ledger service: assignment, payments, late fees, discounts, refunds, closure and reports.

Every mutation of an existing ledger goes through _mutate_ledger, which reloads the
ledger, applies the change, re-derives it and commits under the ledger's version
counter. A concurrent writer makes the commit fail with StaleDataError; the whole
load-mutate-commit cycle is then retried a bounded number of times.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, TypeVar
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random

from fee_ledger.api.v1.audit_service import ledger_snapshot, log_fee_audit
from fee_ledger.api.v1.fee_definitions.service import find_active_definition, get_published_definition
from fee_ledger.billing import allocator, discounts, late_fees
from fee_ledger.billing.assignment import build_ledger
from fee_ledger.billing.ledger import recalculate
from fee_ledger.billing.money import ZERO, to_decimal
from fee_ledger.billing.status import CLOSURE_STATUSES, is_terminal
from fee_ledger.core.config import settings
from fee_ledger.core.enums import LedgerStatus, PaymentStatus
from fee_ledger.core.exceptions import (
    AdjustmentNotFound,
    ConcurrentUpdateConflict,
    DiscountNotApplicable,
    DuplicateLedger,
    DuplicatePaymentReference,
    InvalidDefinition,
    LedgerNotFound,
    LedgerTerminal,
    PaymentNotFound,
    ServiceError,
)
from fee_ledger.core.models import DiscountRule, LedgerPayment, StudentLedger

from .schemas import (
    ApplyDiscountRequest,
    AssignFeeRequest,
    BatchFailure,
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
    RefundRequest,
    ReverseAdjustmentRequest,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_OPEN_LEDGER_STATUSES = (
    LedgerStatus.NOT_STARTED.value,
    LedgerStatus.PARTIALLY_PAID.value,
    LedgerStatus.OVERDUE.value,
)


def _today() -> date:
    return datetime.utcnow().date()


def _log_extra(ledger: StudentLedger) -> dict:
    return {"ledger_id": str(ledger.id), "student_ref": str(ledger.student_ref)}


def _ledger_to_response(ledger: StudentLedger) -> LedgerResponse:
    return LedgerResponse.model_validate(ledger)


def _payment_to_response(payment: LedgerPayment) -> PaymentResponse:
    return PaymentResponse.model_validate(payment)


async def _load_ledger(db: AsyncSession, ledger_id: UUID) -> StudentLedger:
    ledger = (
        await db.execute(
            select(StudentLedger)
            .where(StudentLedger.id == ledger_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not ledger:
        raise LedgerNotFound()
    return ledger


async def _find_payment_by_reference(db: AsyncSession, transaction_reference: str) -> Optional[LedgerPayment]:
    return (
        await db.execute(
            select(LedgerPayment).where(LedgerPayment.transaction_reference == transaction_reference)
        )
    ).scalar_one_or_none()


async def _mutate_ledger(
    db: AsyncSession,
    ledger_id: UUID,
    mutate: Callable[[StudentLedger], Awaitable[T]],
) -> T:
    """
    Run mutate(ledger) and commit, retrying on optimistic-lock conflicts.
    Any other failure rolls back and propagates, leaving the ledger unchanged.
    """
    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StaleDataError),
            stop=stop_after_attempt(settings.ledger_update_max_attempts),
            wait=wait_random(0, settings.ledger_retry_wait_seconds),
            reraise=True,
        ):
            with attempt:
                ledger = await _load_ledger(db, ledger_id)
                try:
                    result = await mutate(ledger)
                    ledger.updated_at = datetime.utcnow()
                    await db.commit()
                except StaleDataError:
                    await db.rollback()
                    logger.warning(
                        "Ledger changed concurrently (attempt %d of %d); retrying",
                        attempt.retry_state.attempt_number,
                        settings.ledger_update_max_attempts,
                        extra={"ledger_id": str(ledger_id)},
                    )
                    raise
                except (ServiceError, SQLAlchemyError):
                    await db.rollback()
                    raise
    except StaleDataError:
        logger.error(
            "Giving up on ledger update after %d attempts",
            settings.ledger_update_max_attempts,
            extra={"ledger_id": str(ledger_id), "error_code": ConcurrentUpdateConflict.code},
        )
        raise ConcurrentUpdateConflict()
    return result


# --- Assignment ---
async def _find_active_ledger(db: AsyncSession, student_ref: UUID, period_ref: UUID) -> Optional[StudentLedger]:
    return (
        await db.execute(
            select(StudentLedger).where(
                StudentLedger.student_ref == student_ref,
                StudentLedger.period_ref == period_ref,
                StudentLedger.is_active.is_(True),
            )
        )
    ).scalar_one_or_none()


def _has_collections(ledger: StudentLedger) -> bool:
    return any(p.status == PaymentStatus.SUCCESS.value for p in ledger.payments)


async def assign_fee(db: AsyncSession, payload: AssignFeeRequest) -> LedgerResponse:
    """
    Create a student's ledger for the definition's academic period.
    With override, an existing ledger that has no collected payments is cancelled and replaced.
    """
    reference_date = payload.reference_date or _today()
    try:
        definition = await get_published_definition(db, payload.definition_id)
        rules_by_id = {r.id: r for r in definition.discount_rules}
        missing = [str(i) for i in payload.discount_rule_ids if i not in rules_by_id]
        if missing:
            raise DiscountNotApplicable(f"Discount rule(s) not part of this fee definition: {', '.join(missing)}")

        existing = await _find_active_ledger(db, payload.student_ref, definition.period_ref)
        if existing:
            if not payload.override:
                raise DuplicateLedger()
            if _has_collections(existing):
                raise DuplicateLedger("Existing ledger has payments; refund them before reassigning")
            before = ledger_snapshot(existing)
            existing.is_active = False
            existing.closure_status = LedgerStatus.CANCELLED.value
            existing.closure_reason = "Replaced by fee reassignment"
            existing.closed_by = payload.assigned_by
            existing.closed_at = datetime.utcnow()
            recalculate(existing, reference_date)
            existing.updated_at = datetime.utcnow()
            await log_fee_audit(
                db, "student_ledgers", existing.id,
                "CANCEL", before, ledger_snapshot(existing),
                payload.assigned_by,
            )
            # The replaced row must leave the active slot before the new one is inserted
            await db.flush()
            logger.info("Existing ledger cancelled for reassignment", extra=_log_extra(existing))

        ledger = build_ledger(
            definition,
            payload.student_ref,
            reference_date,
            plan_name=payload.installment_plan,
            selected_optional=payload.optional_components,
            discount_rules=[rules_by_id[i] for i in payload.discount_rule_ids],
            assigned_by=payload.assigned_by,
            notes=payload.notes,
        )
        db.add(ledger)
        await db.flush()
        await log_fee_audit(
            db, "student_ledgers", ledger.id,
            "CREATE", None,
            {
                "student_ref": str(ledger.student_ref),
                "fee_definition_id": str(definition.id),
                "installment_plan": ledger.installment_plan,
                "total_fee_amount": str(ledger.total_fee_amount),
                **ledger_snapshot(ledger),
            },
            payload.assigned_by,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except IntegrityError:
        await db.rollback()
        raise DuplicateLedger()

    logger.info(
        "Ledger created: %s over %d installment(s) on plan %r",
        ledger.total_fee_amount,
        len(ledger.installments),
        ledger.installment_plan,
        extra=_log_extra(ledger),
    )
    return _ledger_to_response(await _load_ledger(db, ledger.id))


async def bulk_assign(db: AsyncSession, payload: BulkAssignRequest) -> BatchResult:
    """Assign one definition to a roster. Per-student failures are collected, not raised."""
    if payload.definition_id is not None:
        definition_id = payload.definition_id
    elif payload.class_ref is not None and payload.period_ref is not None:
        definition_id = (await find_active_definition(db, payload.class_ref, payload.period_ref)).id
    else:
        raise InvalidDefinition("Provide definition_id, or class_ref with period_ref")

    result = BatchResult(succeeded=0, failed=0)
    for student_ref in payload.student_refs:
        request = AssignFeeRequest(
            student_ref=student_ref,
            definition_id=definition_id,
            installment_plan=payload.installment_plan,
            optional_components=payload.optional_components,
            reference_date=payload.reference_date,
            assigned_by=payload.assigned_by,
        )
        try:
            await assign_fee(db, request)
            result.succeeded += 1
        except ServiceError as e:
            result.failed += 1
            result.failures.append(BatchFailure(ref=student_ref, code=e.code, message=e.message))
            logger.warning(
                "Bulk assignment skipped student: %s",
                e.message,
                extra={"student_ref": str(student_ref), "error_code": e.code},
            )
        except SQLAlchemyError as e:
            await db.rollback()
            result.failed += 1
            result.failures.append(BatchFailure(ref=student_ref, code="DATABASE_ERROR", message=str(e)))
            logger.warning(
                "Bulk assignment database error",
                exc_info=True,
                extra={"student_ref": str(student_ref), "error_code": "DATABASE_ERROR"},
            )
    logger.info(
        "Bulk assignment of definition %s finished: %d succeeded, %d failed",
        definition_id, result.succeeded, result.failed,
    )
    return result


# --- Reads ---
async def get_ledger(db: AsyncSession, ledger_id: UUID) -> LedgerResponse:
    return _ledger_to_response(await _load_ledger(db, ledger_id))


async def list_installments(db: AsyncSession, ledger_id: UUID) -> List[InstallmentResponse]:
    ledger = await _load_ledger(db, ledger_id)
    return [InstallmentResponse.model_validate(i) for i in ledger.installments]


async def list_payments(db: AsyncSession, ledger_id: UUID) -> List[PaymentResponse]:
    ledger = await _load_ledger(db, ledger_id)
    return [_payment_to_response(p) for p in ledger.payments]


async def list_ledgers(
    db: AsyncSession,
    student_ref: Optional[UUID] = None,
    period_ref: Optional[UUID] = None,
    class_ref: Optional[UUID] = None,
    status_filter: Optional[LedgerStatus] = None,
    include_inactive: bool = False,
) -> List[LedgerSummary]:
    stmt = select(StudentLedger)
    if not include_inactive:
        stmt = stmt.where(StudentLedger.is_active.is_(True))
    if student_ref is not None:
        stmt = stmt.where(StudentLedger.student_ref == student_ref)
    if period_ref is not None:
        stmt = stmt.where(StudentLedger.period_ref == period_ref)
    if class_ref is not None:
        stmt = stmt.where(StudentLedger.class_ref == class_ref)
    if status_filter is not None:
        stmt = stmt.where(StudentLedger.status == status_filter.value)
    stmt = stmt.order_by(StudentLedger.created_at)
    result = await db.execute(stmt)
    return [LedgerSummary.model_validate(ledger) for ledger in result.scalars().all()]


# --- Payments ---
async def record_payment(db: AsyncSession, ledger_id: UUID, payload: PaymentCreate) -> PaymentResponse:
    """
    Allocate a payment. A transaction reference seen before on this ledger returns the
    original payment unchanged; on another ledger it is rejected.
    """
    paid_at = payload.paid_at or datetime.utcnow()
    reference = payload.transaction_reference.strip() if payload.transaction_reference else None

    if reference:
        existing = await _find_payment_by_reference(db, reference)
        if existing is not None:
            return _duplicate_payment(existing, ledger_id, reference)

    async def _apply(ledger: StudentLedger) -> LedgerPayment:
        before = ledger_snapshot(ledger)
        late_fees.recompute(ledger, ledger.fee_definition.late_fee_policy, paid_at.date())
        payment = allocator.allocate(
            ledger,
            payload.amount,
            payment_mode=payload.payment_mode.value,
            paid_at=paid_at,
            collected_by=payload.collected_by,
            transaction_reference=reference,
            remarks=payload.remarks,
        )
        await db.flush()
        await log_fee_audit(
            db, "student_ledgers", ledger.id,
            "PAYMENT", before,
            {
                "payment_id": str(payment.id),
                "amount": str(payment.amount),
                "principal_amount": str(payment.principal_amount),
                "late_fee_amount": str(payment.late_fee_amount),
                **ledger_snapshot(ledger),
            },
            payload.collected_by,
        )
        return payment

    try:
        payment = await _mutate_ledger(db, ledger_id, _apply)
    except DuplicatePaymentReference as e:
        original = await db.get(LedgerPayment, e.payment_id)
        return _duplicate_payment(original, ledger_id, reference)
    except IntegrityError:
        # Same reference committed by a concurrent request between our check and insert
        existing = await _find_payment_by_reference(db, reference) if reference else None
        if existing is None:
            raise
        return _duplicate_payment(existing, ledger_id, reference)
    return _payment_to_response(payment)


def _duplicate_payment(existing: LedgerPayment, ledger_id: UUID, reference: str) -> PaymentResponse:
    if existing.ledger_id != ledger_id:
        raise DuplicatePaymentReference(reference, existing.id)
    logger.info(
        "Duplicate submission of transaction %r ignored; returning original payment",
        reference,
        extra={"ledger_id": str(ledger_id), "payment_id": str(existing.id)},
    )
    return _payment_to_response(existing)


async def refund_payment(
    db: AsyncSession,
    ledger_id: UUID,
    payment_id: UUID,
    payload: RefundRequest,
) -> PaymentResponse:
    async def _apply(ledger: StudentLedger) -> LedgerPayment:
        payment = next((p for p in ledger.payments if p.id == payment_id), None)
        if payment is None:
            raise PaymentNotFound()
        before = ledger_snapshot(ledger)
        allocator.reverse_payment(ledger, payment, payload.refunded_by, payload.reason, _today())
        await log_fee_audit(
            db, "student_ledgers", ledger.id,
            "REFUND", before,
            {"payment_id": str(payment.id), "amount": str(payment.amount), **ledger_snapshot(ledger)},
            payload.refunded_by,
        )
        return payment

    payment = await _mutate_ledger(db, ledger_id, _apply)
    return _payment_to_response(payment)


# --- Late fees ---
async def recompute_late_fees(db: AsyncSession, ledger_id: UUID, as_of: Optional[date] = None) -> LedgerResponse:
    as_of = as_of or _today()

    async def _apply(ledger: StudentLedger) -> StudentLedger:
        if ledger.status in CLOSURE_STATUSES:
            raise LedgerTerminal(ledger.status)
        before = ledger_snapshot(ledger)
        accrued_before = to_decimal(ledger.total_late_fee_accrued)
        late_fees.recompute(ledger, ledger.fee_definition.late_fee_policy, as_of)
        if to_decimal(ledger.total_late_fee_accrued) != accrued_before:
            await log_fee_audit(
                db, "student_ledgers", ledger.id,
                "LATE_FEE", before, {"as_of": as_of.isoformat(), **ledger_snapshot(ledger)},
                None,
            )
        return ledger

    ledger = await _mutate_ledger(db, ledger_id, _apply)
    return _ledger_to_response(ledger)


async def recompute_all_late_fees(
    db: AsyncSession,
    as_of: Optional[date] = None,
    period_ref: Optional[UUID] = None,
) -> BatchResult:
    """Recompute late fees on every open active ledger; each ledger commits on its own."""
    as_of = as_of or _today()
    stmt = select(StudentLedger.id).where(
        StudentLedger.is_active.is_(True),
        StudentLedger.status.in_(_OPEN_LEDGER_STATUSES),
    )
    if period_ref is not None:
        stmt = stmt.where(StudentLedger.period_ref == period_ref)
    ledger_ids = (await db.execute(stmt.order_by(StudentLedger.created_at))).scalars().all()

    result = BatchResult(succeeded=0, failed=0)
    for ledger_id in ledger_ids:
        try:
            await recompute_late_fees(db, ledger_id, as_of)
            result.succeeded += 1
        except ServiceError as e:
            result.failed += 1
            result.failures.append(BatchFailure(ref=ledger_id, code=e.code, message=e.message))
            logger.warning(
                "Late fee recompute failed: %s",
                e.message,
                extra={"ledger_id": str(ledger_id), "error_code": e.code},
            )
        except SQLAlchemyError as e:
            await db.rollback()
            result.failed += 1
            result.failures.append(BatchFailure(ref=ledger_id, code="DATABASE_ERROR", message=str(e)))
            logger.warning(
                "Late fee recompute database error",
                exc_info=True,
                extra={"ledger_id": str(ledger_id), "error_code": "DATABASE_ERROR"},
            )
    logger.info(
        "Late fee recompute as of %s finished: %d succeeded, %d failed",
        as_of, result.succeeded, result.failed,
    )
    return result


# --- Discounts and concessions ---
async def apply_discount(db: AsyncSession, ledger_id: UUID, payload: ApplyDiscountRequest) -> LedgerResponse:
    rule = await db.get(DiscountRule, payload.discount_rule_id)
    if rule is None:
        raise DiscountNotApplicable("Discount rule not found")

    async def _apply(ledger: StudentLedger) -> StudentLedger:
        before = ledger_snapshot(ledger)
        adjustment = discounts.apply_discount(ledger, rule, payload.applied_by, _today())
        await log_fee_audit(
            db, "student_ledgers", ledger.id,
            "DISCOUNT", before,
            {"rule": rule.name, "amount": str(adjustment.amount), **ledger_snapshot(ledger)},
            payload.applied_by,
        )
        return ledger

    return _ledger_to_response(await _mutate_ledger(db, ledger_id, _apply))


async def grant_concession(db: AsyncSession, ledger_id: UUID, payload: ConcessionRequest) -> LedgerResponse:
    async def _apply(ledger: StudentLedger) -> StudentLedger:
        before = ledger_snapshot(ledger)
        adjustment = discounts.waive_balance(ledger, payload.amount, payload.reason, payload.approved_by, _today())
        await log_fee_audit(
            db, "student_ledgers", ledger.id,
            "CONCESSION", before,
            {"amount": str(adjustment.amount), "reason": payload.reason, **ledger_snapshot(ledger)},
            payload.approved_by,
        )
        return ledger

    return _ledger_to_response(await _mutate_ledger(db, ledger_id, _apply))


async def reverse_adjustment(
    db: AsyncSession,
    ledger_id: UUID,
    adjustment_id: UUID,
    payload: ReverseAdjustmentRequest,
) -> LedgerResponse:
    async def _apply(ledger: StudentLedger) -> StudentLedger:
        adjustment = next((a for a in ledger.adjustments if a.id == adjustment_id), None)
        if adjustment is None:
            raise AdjustmentNotFound()
        before = ledger_snapshot(ledger)
        discounts.reverse_adjustment(ledger, adjustment, payload.reason, payload.actor, _today())
        await log_fee_audit(
            db, "student_ledgers", ledger.id,
            "REVERSAL", before,
            {"adjustment_id": str(adjustment.id), "reason": payload.reason, **ledger_snapshot(ledger)},
            payload.actor,
        )
        return ledger

    return _ledger_to_response(await _mutate_ledger(db, ledger_id, _apply))


# --- Administrative closure ---
async def close_ledger(db: AsyncSession, ledger_id: UUID, payload: CloseLedgerRequest) -> LedgerResponse:
    """Move an open ledger to WAIVED or CANCELLED. A cancelled ledger frees the (student, period) slot."""
    if payload.status.value not in CLOSURE_STATUSES:
        raise ServiceError("Ledger can only be closed as WAIVED or CANCELLED", status.HTTP_400_BAD_REQUEST)

    async def _apply(ledger: StudentLedger) -> StudentLedger:
        if is_terminal(ledger.status):
            raise LedgerTerminal(ledger.status)
        before = ledger_snapshot(ledger)
        ledger.closure_status = payload.status.value
        ledger.closure_reason = payload.reason
        ledger.closed_by = payload.actor
        ledger.closed_at = datetime.utcnow()
        if payload.status == LedgerStatus.CANCELLED:
            ledger.is_active = False
        recalculate(ledger, _today())
        await log_fee_audit(
            db, "student_ledgers", ledger.id,
            "CLOSE", before, {"reason": payload.reason, **ledger_snapshot(ledger)},
            payload.actor,
        )
        return ledger

    ledger = await _mutate_ledger(db, ledger_id, _apply)
    logger.info("Ledger closed as %s", ledger.status, extra=_log_extra(ledger))
    return _ledger_to_response(ledger)


# --- Reports ---
async def collection_summary(
    db: AsyncSession,
    period_ref: UUID,
    class_ref: Optional[UUID] = None,
) -> CollectionSummary:
    stmt = (
        select(
            StudentLedger.status,
            func.count(StudentLedger.id),
            func.sum(StudentLedger.total_fee_amount),
            func.sum(StudentLedger.total_discount),
            func.sum(StudentLedger.concession_amount),
            func.sum(StudentLedger.total_late_fee_accrued),
            func.sum(StudentLedger.total_paid),
            func.sum(StudentLedger.total_late_fee_paid),
            func.sum(StudentLedger.balance),
        )
        .where(StudentLedger.period_ref == period_ref, StudentLedger.is_active.is_(True))
        .group_by(StudentLedger.status)
    )
    if class_ref is not None:
        stmt = stmt.where(StudentLedger.class_ref == class_ref)
    rows = (await db.execute(stmt)).all()

    status_counts = {s.value: 0 for s in LedgerStatus}
    fee = discount = concession = late_fee = collected = outstanding = ZERO
    count = 0
    for row_status, row_count, row_fee, row_discount, row_concession, row_late, row_paid, row_late_paid, row_balance in rows:
        status_counts[row_status] = row_count
        count += row_count
        fee += to_decimal(row_fee)
        discount += to_decimal(row_discount)
        concession += to_decimal(row_concession)
        late_fee += to_decimal(row_late)
        collected += to_decimal(row_paid) + to_decimal(row_late_paid)
        if row_status not in CLOSURE_STATUSES:
            outstanding += max(to_decimal(row_balance), ZERO)

    payable = fee - discount - concession + late_fee
    percentage = to_decimal(collected * Decimal(100) / payable) if payable > 0 else ZERO
    return CollectionSummary(
        period_ref=period_ref,
        class_ref=class_ref,
        ledger_count=count,
        status_counts=status_counts,
        total_fee_amount=fee,
        total_discount=discount,
        total_concession=concession,
        total_late_fee_accrued=late_fee,
        total_collected=collected,
        total_outstanding=outstanding,
        collection_percentage=percentage,
    )


async def list_defaulters(
    db: AsyncSession,
    period_ref: Optional[UUID] = None,
    days_overdue: Optional[int] = None,
    as_of: Optional[date] = None,
) -> List[DefaulterItem]:
    """Open ledgers whose next installment fell due more than days_overdue days ago."""
    as_of = as_of or _today()
    days = settings.defaulter_days_overdue if days_overdue is None else days_overdue
    cutoff = as_of - timedelta(days=days)
    stmt = select(StudentLedger).where(
        StudentLedger.is_active.is_(True),
        StudentLedger.status.in_(_OPEN_LEDGER_STATUSES),
        StudentLedger.balance > 0,
        StudentLedger.next_due_date.is_not(None),
        StudentLedger.next_due_date < cutoff,
    )
    if period_ref is not None:
        stmt = stmt.where(StudentLedger.period_ref == period_ref)
    ledgers = (await db.execute(stmt.order_by(StudentLedger.next_due_date))).scalars().all()
    return [
        DefaulterItem(
            ledger_id=ledger.id,
            student_ref=ledger.student_ref,
            class_ref=ledger.class_ref,
            balance=to_decimal(ledger.balance),
            next_due_date=ledger.next_due_date,
            next_due_amount=to_decimal(ledger.next_due_amount),
            days_overdue=(as_of - ledger.next_due_date).days,
            status=ledger.status,
        )
        for ledger in ledgers
    ]
