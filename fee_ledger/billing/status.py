"""Ledger status machine. Status is always derived from the ledger's figures, never set directly."""

from datetime import date
from decimal import Decimal
from typing import Optional

from fee_ledger.core.enums import InstallmentStatus, LedgerStatus

TERMINAL_STATUSES = frozenset({LedgerStatus.PAID.value, LedgerStatus.WAIVED.value, LedgerStatus.CANCELLED.value})
CLOSURE_STATUSES = frozenset({LedgerStatus.WAIVED.value, LedgerStatus.CANCELLED.value})
OPEN_INSTALLMENT_STATUSES = frozenset(
    {InstallmentStatus.PENDING.value, InstallmentStatus.PARTIALLY_PAID.value, InstallmentStatus.OVERDUE.value}
)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def derive_ledger_status(
    balance: Decimal,
    amount_collected: Decimal,
    next_due_date: Optional[date],
    as_of: date,
    closure_status: Optional[str] = None,
    overdue_takes_precedence: bool = False,
) -> LedgerStatus:
    """
    Precedence: administrative closure, then balance <= 0 -> Paid, then any money
    collected -> PartiallyPaid, then as_of past next due date -> Overdue, else NotStarted.
    With overdue_takes_precedence the PartiallyPaid and Overdue checks swap.
    """
    if closure_status:
        return LedgerStatus(closure_status)
    if balance <= 0:
        return LedgerStatus.PAID

    is_overdue = next_due_date is not None and as_of > next_due_date
    if overdue_takes_precedence and is_overdue:
        return LedgerStatus.OVERDUE
    if amount_collected > 0:
        return LedgerStatus.PARTIALLY_PAID
    if is_overdue:
        return LedgerStatus.OVERDUE
    return LedgerStatus.NOT_STARTED


def derive_installment_status(
    principal_outstanding: Decimal,
    late_fee_outstanding: Decimal,
    amount_collected: Decimal,
    due_date: date,
    as_of: date,
    ledger_settled: bool,
) -> InstallmentStatus:
    if principal_outstanding <= 0 and late_fee_outstanding <= 0:
        return InstallmentStatus.PAID
    if ledger_settled:
        return InstallmentStatus.WAIVED
    if amount_collected > 0:
        return InstallmentStatus.PARTIALLY_PAID
    if as_of > due_date:
        return InstallmentStatus.OVERDUE
    return InstallmentStatus.PENDING
