"""
Payment allocator.

Funds go to the oldest-due open installment first and, within an installment, to
the outstanding late fee before principal. A later installment receives nothing
while an earlier one is still short.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fee_ledger.billing.ledger import recalculate
from fee_ledger.billing.money import ZERO, money_sum, to_decimal
from fee_ledger.billing.status import CLOSURE_STATUSES, OPEN_INSTALLMENT_STATUSES, is_terminal
from fee_ledger.core.enums import PaymentStatus
from fee_ledger.core.exceptions import (
    BalanceExceeded,
    DuplicatePaymentReference,
    InvalidAmount,
    InvalidPaymentState,
    LedgerTerminal,
)
from fee_ledger.core.models.ledger_payment import LedgerPayment, PaymentAllocation
from fee_ledger.core.models.student_ledger import LedgerInstallment, StudentLedger

logger = logging.getLogger(__name__)


@dataclass
class AllocationLine:
    installment: LedgerInstallment
    late_fee_applied: Decimal
    principal_applied: Decimal

    @property
    def total(self) -> Decimal:
        return self.late_fee_applied + self.principal_applied


def find_payment_by_reference(ledger: StudentLedger, transaction_reference: Optional[str]) -> Optional[LedgerPayment]:
    if not transaction_reference:
        return None
    for payment in ledger.payments:
        if payment.transaction_reference == transaction_reference:
            return payment
    return None


def check_preconditions(ledger: StudentLedger, amount: Decimal, transaction_reference: Optional[str] = None) -> None:
    if amount <= 0:
        raise InvalidAmount()
    duplicate = find_payment_by_reference(ledger, transaction_reference)
    if duplicate is not None:
        raise DuplicatePaymentReference(transaction_reference, duplicate.id)
    if is_terminal(ledger.status):
        raise LedgerTerminal(ledger.status)
    if amount > to_decimal(ledger.balance):
        raise BalanceExceeded()


def plan_allocation(ledger: StudentLedger, amount: Decimal) -> List[AllocationLine]:
    """Work out the per-installment split without touching the ledger."""
    remaining = to_decimal(amount)
    candidates = sorted(
        (i for i in ledger.installments if i.status in OPEN_INSTALLMENT_STATUSES),
        key=lambda i: (i.due_date, i.installment_number),
    )
    lines = []
    for inst in candidates:
        if remaining <= 0:
            break
        late_outstanding = to_decimal(inst.late_fee) - to_decimal(inst.late_fee_paid)
        principal_outstanding = to_decimal(inst.amount) - to_decimal(inst.paid_amount)
        total_due = late_outstanding + principal_outstanding
        if total_due <= 0:
            continue
        if remaining >= total_due:
            lines.append(AllocationLine(inst, late_outstanding, principal_outstanding))
            remaining -= total_due
            continue
        late_applied = min(remaining, late_outstanding)
        lines.append(AllocationLine(inst, late_applied, remaining - late_applied))
        remaining = ZERO
    return lines


def allocate(
    ledger: StudentLedger,
    amount: Decimal,
    payment_mode: str,
    paid_at: datetime,
    collected_by: Optional[UUID] = None,
    transaction_reference: Optional[str] = None,
    remarks: Optional[str] = None,
    as_of: Optional[date] = None,
) -> LedgerPayment:
    """
    Validate, split and apply a payment. Raises before any change is made, so a
    rejected payment leaves the ledger exactly as it was.
    """
    amount = to_decimal(amount)
    check_preconditions(ledger, amount, transaction_reference)
    lines = plan_allocation(ledger, amount)

    for line in lines:
        inst = line.installment
        inst.late_fee_paid = to_decimal(inst.late_fee_paid) + line.late_fee_applied
        inst.paid_amount = to_decimal(inst.paid_amount) + line.principal_applied
        if inst.paid_amount >= to_decimal(inst.amount) and inst.late_fee_paid >= to_decimal(inst.late_fee):
            inst.paid_on = paid_at

    payment = LedgerPayment(
        id=uuid.uuid4(),
        amount=amount,
        principal_amount=money_sum(line.principal_applied for line in lines),
        late_fee_amount=money_sum(line.late_fee_applied for line in lines),
        payment_mode=payment_mode,
        transaction_reference=transaction_reference,
        status=PaymentStatus.SUCCESS.value,
        paid_at=paid_at,
        collected_by=collected_by,
        remarks=remarks,
        allocations=[
            PaymentAllocation(
                installment_number=line.installment.installment_number,
                installment_name=line.installment.name,
                principal_applied=line.principal_applied,
                late_fee_applied=line.late_fee_applied,
            )
            for line in lines
        ],
    )
    ledger.payments.append(payment)
    ledger.last_payment_date = paid_at
    recalculate(ledger, as_of or paid_at.date())
    logger.info(
        "Payment %s allocated: principal %s, late fee %s across %d installment(s)",
        amount,
        payment.principal_amount,
        payment.late_fee_amount,
        len(lines),
        extra={"ledger_id": str(ledger.id), "payment_id": str(payment.id)},
    )
    return payment


def reverse_payment(
    ledger: StudentLedger,
    payment: LedgerPayment,
    refunded_by: Optional[UUID],
    reason: Optional[str],
    as_of: date,
) -> LedgerPayment:
    """Undo a payment's allocation line by line and mark it refunded."""
    if payment.status != PaymentStatus.SUCCESS.value:
        raise InvalidPaymentState(f"Payment is {payment.status}; only successful payments can be refunded")
    if ledger.status in CLOSURE_STATUSES:
        raise LedgerTerminal(ledger.status)
    by_number = {inst.installment_number: inst for inst in ledger.installments}
    for alloc in payment.allocations:
        inst = by_number[alloc.installment_number]
        inst.paid_amount = to_decimal(inst.paid_amount) - to_decimal(alloc.principal_applied)
        inst.late_fee_paid = to_decimal(inst.late_fee_paid) - to_decimal(alloc.late_fee_applied)
        inst.paid_on = None

    payment.status = PaymentStatus.REFUNDED.value
    payment.refunded_by = refunded_by
    payment.refund_reason = reason
    payment.refunded_at = datetime.utcnow()
    recalculate(ledger, as_of)
    logger.info(
        "Payment %s refunded",
        payment.amount,
        extra={"ledger_id": str(ledger.id), "payment_id": str(payment.id)},
    )
    return payment
