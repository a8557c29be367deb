"""
Ledger recalculation: the single step that re-derives every computed figure on a
StudentLedger from its installments and adjustments. Every mutating operation
ends by calling recalculate().
"""

from datetime import date
from typing import List, Optional

from fee_ledger.billing.money import ZERO, money_sum, to_decimal
from fee_ledger.billing.status import derive_installment_status, derive_ledger_status
from fee_ledger.core.config import settings
from fee_ledger.core.enums import AdjustmentKind, InstallmentStatus
from fee_ledger.core.models.student_ledger import StudentLedger


def recalculate(ledger: StudentLedger, as_of: date, overdue_takes_precedence: Optional[bool] = None) -> StudentLedger:
    if overdue_takes_precedence is None:
        overdue_takes_precedence = settings.overdue_takes_precedence

    installments = ledger.installments
    ledger.total_discount = money_sum(
        a.amount for a in ledger.adjustments if a.kind == AdjustmentKind.DISCOUNT.value
    )
    ledger.concession_amount = money_sum(
        a.amount for a in ledger.adjustments if a.kind == AdjustmentKind.CONCESSION.value
    )
    ledger.total_paid = money_sum(i.paid_amount for i in installments)
    ledger.total_late_fee_accrued = money_sum(i.late_fee for i in installments)
    ledger.total_late_fee_paid = money_sum(i.late_fee_paid for i in installments)
    ledger.total_late_fee = to_decimal(ledger.total_late_fee_accrued - ledger.total_late_fee_paid)
    ledger.balance = to_decimal(
        to_decimal(ledger.total_fee_amount)
        - ledger.total_discount
        - ledger.concession_amount
        + ledger.total_late_fee
        - ledger.total_paid
    )

    settled = bool(ledger.closure_status) or ledger.balance <= 0
    for inst in installments:
        paid = to_decimal(inst.paid_amount)
        late_paid = to_decimal(inst.late_fee_paid)
        inst.status = derive_installment_status(
            principal_outstanding=to_decimal(inst.amount) - paid,
            late_fee_outstanding=to_decimal(inst.late_fee) - late_paid,
            amount_collected=paid + late_paid,
            due_date=inst.due_date,
            as_of=as_of,
            ledger_settled=settled,
        ).value

    open_installments = sorted(
        (i for i in installments if i.status not in (InstallmentStatus.PAID.value, InstallmentStatus.WAIVED.value)),
        key=lambda i: (i.due_date, i.installment_number),
    )
    if open_installments:
        nxt = open_installments[0]
        ledger.next_due_date = nxt.due_date
        ledger.next_due_amount = to_decimal(
            to_decimal(nxt.amount) - to_decimal(nxt.paid_amount) + to_decimal(nxt.late_fee) - to_decimal(nxt.late_fee_paid)
        )
    else:
        ledger.next_due_date = None
        ledger.next_due_amount = ZERO

    ledger.status = derive_ledger_status(
        balance=ledger.balance,
        amount_collected=ledger.total_paid + ledger.total_late_fee_paid,
        next_due_date=ledger.next_due_date,
        as_of=as_of,
        closure_status=ledger.closure_status,
        overdue_takes_precedence=overdue_takes_precedence,
    ).value
    return ledger


def invariant_violations(ledger: StudentLedger) -> List[str]:
    """Describe every broken ledger invariant; empty when the ledger is consistent."""
    problems = []
    installments = ledger.installments
    expected_balance = to_decimal(
        to_decimal(ledger.total_fee_amount)
        - to_decimal(ledger.total_discount)
        - to_decimal(ledger.concession_amount)
        + to_decimal(ledger.total_late_fee)
        - to_decimal(ledger.total_paid)
    )
    if to_decimal(ledger.balance) != expected_balance:
        problems.append(f"balance {ledger.balance} != {expected_balance}")
    scheduled = money_sum(i.amount for i in installments)
    if scheduled != to_decimal(ledger.total_fee_amount):
        problems.append(f"installments sum {scheduled} != total fee {ledger.total_fee_amount}")
    for inst in installments:
        if to_decimal(inst.paid_amount) > to_decimal(inst.amount):
            problems.append(f"installment {inst.installment_number} overpaid")
        if to_decimal(inst.late_fee_paid) > to_decimal(inst.late_fee):
            problems.append(f"installment {inst.installment_number} late fee overpaid")
    if to_decimal(ledger.total_paid) != money_sum(i.paid_amount for i in installments):
        problems.append("total_paid does not match installments")
    accrued = money_sum(i.late_fee for i in installments)
    if to_decimal(ledger.total_late_fee_accrued) != accrued:
        problems.append("total_late_fee_accrued does not match installments")
    if to_decimal(ledger.total_late_fee) + to_decimal(ledger.total_late_fee_paid) != accrued:
        problems.append("outstanding plus paid late fee does not match accrued")
    return problems
