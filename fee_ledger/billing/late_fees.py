"""
Late-fee calculator.

Accrual is always re-derived from (installment, policy, as_of) and replaces the
stored figure, so running it any number of times for the same as_of gives the
same result. A late fee that has already been collected is never reduced.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Optional

from fee_ledger.billing.ledger import recalculate
from fee_ledger.billing.money import ZERO, round_to_unit, to_decimal
from fee_ledger.billing.policy import LateFeePolicy
from fee_ledger.core.enums import InstallmentStatus, LateFeeStartMode, LateFeeType
from fee_ledger.core.models.student_ledger import LedgerInstallment, StudentLedger

logger = logging.getLogger(__name__)

_FROZEN_STATUSES = {InstallmentStatus.PAID.value, InstallmentStatus.WAIVED.value}


def accrual_start(due_date: date, policy: LateFeePolicy) -> date:
    if policy.start_mode == LateFeeStartMode.FIXED_DATE:
        return policy.fixed_start_date
    return due_date + timedelta(days=policy.grace_days)


def compute_late_fee(installment: LedgerInstallment, policy: LateFeePolicy, as_of: date) -> Decimal:
    """Late fee owed on one installment as of a date, before the already-paid floor."""
    if not policy.enabled:
        return ZERO
    outstanding_principal = to_decimal(installment.amount) - to_decimal(installment.paid_amount)
    if outstanding_principal <= 0:
        return ZERO

    start = accrual_start(installment.due_date, policy)
    if as_of <= start:
        return ZERO
    overdue_units = (as_of - start).days

    if policy.fee_type == LateFeeType.PER_DAY:
        fee = overdue_units * policy.amount_per_day
    elif policy.fee_type == LateFeeType.FLAT:
        fee = policy.flat_amount
    else:
        fee = outstanding_principal * policy.percentage / Decimal(100)

    fee = round_to_unit(fee, policy.rounding_unit)
    if policy.max_fee is not None:
        fee = min(fee, to_decimal(policy.max_fee))
    return to_decimal(fee)


def recompute(
    ledger: StudentLedger,
    policy: LateFeePolicy,
    as_of: date,
    overdue_takes_precedence: Optional[bool] = None,
) -> Dict[int, Decimal]:
    """
    Replace every open installment's accrued late fee as of as_of, then re-derive
    the ledger. Returns {installment_number: late_fee} for all installments.
    """
    for installment in ledger.installments:
        if installment.status in _FROZEN_STATUSES:
            continue
        computed = compute_late_fee(installment, policy, as_of)
        installment.late_fee = max(computed, to_decimal(installment.late_fee_paid))

    ledger.late_fee_as_of = as_of
    recalculate(ledger, as_of, overdue_takes_precedence)
    logger.debug(
        "Late fees recomputed as of %s: outstanding %s",
        as_of,
        ledger.total_late_fee,
        extra={"ledger_id": str(ledger.id), "student_ref": str(ledger.student_ref)},
    )
    return {inst.installment_number: to_decimal(inst.late_fee) for inst in ledger.installments}
