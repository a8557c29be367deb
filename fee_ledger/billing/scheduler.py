"""Installment scheduler: turns a payable total and a named plan into dated installments."""

import calendar
import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence

from fee_ledger.billing.money import ZERO, money_sum, round_to_unit, to_decimal
from fee_ledger.core.config import settings
from fee_ledger.core.enums import InstallmentStatus
from fee_ledger.core.models.fee_definition import InstallmentPlan, InstallmentPlanEntry
from fee_ledger.core.models.student_ledger import LedgerInstallment

logger = logging.getLogger(__name__)

FALLBACK_INSTALLMENT_NAME = "Full Payment"


def resolve_due_date(month: int, day: int, reference_date: date) -> date:
    """
    Due date for (month, day) in the reference date's year, rolled forward one
    year when it already precedes the reference date. Days past the end of the
    month are clamped (31 Feb -> 28/29 Feb).
    """
    due = _clamped_date(reference_date.year, month, day)
    if due < reference_date:
        due = _clamped_date(reference_date.year + 1, month, day)
    return due


def _clamped_date(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def split_amounts(
    total_amount: Decimal,
    percentages: Sequence[Decimal],
    rounding_unit: Decimal,
) -> List[Decimal]:
    """
    Round each share to the unit. A shortfall is added to the last share; an
    excess is taken back from the last share first, then earlier ones, so no
    share drops below zero.
    """
    total = to_decimal(total_amount)
    amounts = [round_to_unit(total * to_decimal(pct) / Decimal(100), rounding_unit) for pct in percentages]
    if not amounts:
        return amounts

    drift = total - money_sum(amounts)
    if drift >= ZERO:
        amounts[-1] = to_decimal(amounts[-1] + drift)
        return amounts

    excess = -drift
    for index in range(len(amounts) - 1, -1, -1):
        if excess <= ZERO:
            break
        taken = min(amounts[index], excess)
        amounts[index] = to_decimal(amounts[index] - taken)
        excess -= taken
    return amounts


def generate(
    total_amount: Decimal,
    plan: Optional[InstallmentPlan],
    reference_date: date,
    plan_name: Optional[str] = None,
    rounding_unit: Optional[Decimal] = None,
) -> List[LedgerInstallment]:
    """
    Build unsaved LedgerInstallment rows for a plan. When no plan is given a single
    "Full Payment" installment is produced on the configured fallback date.
    Sum of amounts always equals total_amount.
    """
    unit = rounding_unit if rounding_unit is not None else settings.installment_rounding_unit
    entries: List[InstallmentPlanEntry] = sorted(plan.entries, key=lambda e: e.installment_number) if plan else []

    if not entries:
        logger.info(
            "No installment plan %r on definition; scheduling single full payment",
            plan_name,
        )
        return [
            LedgerInstallment(
                installment_number=1,
                name=FALLBACK_INSTALLMENT_NAME,
                due_date=resolve_due_date(settings.fallback_due_month, settings.fallback_due_day, reference_date),
                amount=to_decimal(total_amount),
                paid_amount=ZERO,
                late_fee=ZERO,
                late_fee_paid=ZERO,
                status=InstallmentStatus.PENDING.value,
            )
        ]

    label = plan.name if plan is not None else plan_name
    amounts = split_amounts(total_amount, [e.percentage for e in entries], unit)
    count = len(entries)
    installments = []
    for index, (entry, amount) in enumerate(zip(entries, amounts), start=1):
        installments.append(
            LedgerInstallment(
                installment_number=entry.installment_number,
                name=f"{label} - {index}/{count}",
                due_date=resolve_due_date(entry.due_month, entry.due_day, reference_date),
                amount=amount,
                paid_amount=ZERO,
                late_fee=ZERO,
                late_fee_paid=ZERO,
                status=InstallmentStatus.PENDING.value,
            )
        )
    return installments
