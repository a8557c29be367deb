"""Discount engine: rule-based discounts and manual concessions, recorded as append-only adjustments."""

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fee_ledger.billing.ledger import recalculate
from fee_ledger.billing.money import money_sum, to_decimal
from fee_ledger.billing.status import CLOSURE_STATUSES, is_terminal
from fee_ledger.core.enums import AdjustmentKind, DiscountType
from fee_ledger.core.exceptions import (
    BalanceExceeded,
    DiscountNotApplicable,
    InvalidAmount,
    InvalidPaymentState,
    LedgerTerminal,
)
from fee_ledger.core.models.fee_definition import DiscountRule
from fee_ledger.core.models.student_ledger import LedgerAdjustment, StudentLedger

logger = logging.getLogger(__name__)


def discount_base(ledger: StudentLedger, rule: DiscountRule) -> Decimal:
    """Amount a percentage rule applies to: the listed components, or the whole fee when none are listed."""
    if not rule.applicable_components:
        return to_decimal(ledger.total_fee_amount)
    names = set(rule.applicable_components)
    return money_sum(c.final_amount for c in ledger.components if c.name in names)


def compute_discount(ledger: StudentLedger, rule: DiscountRule) -> Decimal:
    if rule.discount_type == DiscountType.PERCENTAGE.value:
        raw = discount_base(ledger, rule) * to_decimal(rule.value) / Decimal(100)
    else:
        raw = to_decimal(rule.value)
    if rule.max_amount is not None:
        raw = min(raw, to_decimal(rule.max_amount))
    return to_decimal(raw)


def _is_reversed(ledger: StudentLedger, adjustment: LedgerAdjustment) -> bool:
    return any(a.reverses_id is not None and a.reverses_id == adjustment.id for a in ledger.adjustments)


def _ensure_not_terminal(ledger: StudentLedger) -> None:
    if is_terminal(ledger.status):
        raise LedgerTerminal(ledger.status)


def apply_discount(
    ledger: StudentLedger,
    rule: DiscountRule,
    applied_by: Optional[UUID],
    as_of: date,
) -> LedgerAdjustment:
    _ensure_not_terminal(ledger)
    if not rule.is_active:
        raise DiscountNotApplicable(f"Discount rule {rule.name!r} is not active")
    if rule.definition_id is not None and rule.definition_id != ledger.fee_definition_id:
        raise DiscountNotApplicable(f"Discount rule {rule.name!r} belongs to a different fee definition")
    if (rule.valid_from and as_of < rule.valid_from) or (rule.valid_till and as_of > rule.valid_till):
        raise DiscountNotApplicable(f"Discount rule {rule.name!r} is not valid on {as_of.isoformat()}")
    for existing in ledger.adjustments:
        if existing.discount_rule_id == rule.id and existing.reverses_id is None and not _is_reversed(ledger, existing):
            raise DiscountNotApplicable(f"Discount rule {rule.name!r} already applied to this ledger")

    amount = compute_discount(ledger, rule)
    if amount <= 0:
        raise DiscountNotApplicable(f"Discount rule {rule.name!r} yields no discount for this ledger")
    if amount > to_decimal(ledger.balance):
        raise BalanceExceeded("Discount cannot exceed remaining balance")

    adjustment = LedgerAdjustment(
        id=uuid.uuid4(),
        kind=AdjustmentKind.DISCOUNT.value,
        discount_rule_id=rule.id,
        name=rule.name,
        category=rule.category,
        amount=amount,
        applied_by=applied_by,
        applied_at=datetime.utcnow(),
    )
    ledger.adjustments.append(adjustment)
    recalculate(ledger, as_of)
    logger.info(
        "Discount %r of %s applied",
        rule.name,
        amount,
        extra={"ledger_id": str(ledger.id), "student_ref": str(ledger.student_ref)},
    )
    return adjustment


def waive_balance(
    ledger: StudentLedger,
    amount: Decimal,
    reason: str,
    approved_by: Optional[UUID],
    as_of: date,
) -> LedgerAdjustment:
    """Manual concession: reduce the balance by an approved amount."""
    _ensure_not_terminal(ledger)
    amount = to_decimal(amount)
    if amount <= 0:
        raise InvalidAmount("Concession amount must be greater than zero")
    if amount > to_decimal(ledger.balance):
        raise BalanceExceeded("Concession cannot exceed remaining balance")

    now = datetime.utcnow()
    adjustment = LedgerAdjustment(
        id=uuid.uuid4(),
        kind=AdjustmentKind.CONCESSION.value,
        name="Concession",
        amount=amount,
        reason=reason,
        applied_by=approved_by,
        applied_at=now,
    )
    ledger.adjustments.append(adjustment)
    ledger.concession_reason = reason
    ledger.concession_approved_by = approved_by
    ledger.concession_approved_at = now
    recalculate(ledger, as_of)
    logger.info(
        "Concession of %s granted",
        amount,
        extra={"ledger_id": str(ledger.id), "student_ref": str(ledger.student_ref)},
    )
    return adjustment


def reverse_adjustment(
    ledger: StudentLedger,
    adjustment: LedgerAdjustment,
    reason: str,
    actor: Optional[UUID],
    as_of: date,
) -> LedgerAdjustment:
    """Append a compensating entry that cancels a discount or concession."""
    if ledger.status in CLOSURE_STATUSES:
        raise LedgerTerminal(ledger.status)
    if adjustment.reverses_id is not None:
        raise InvalidPaymentState("A reversal entry cannot itself be reversed")
    if _is_reversed(ledger, adjustment):
        raise InvalidPaymentState("Adjustment has already been reversed")

    reversal = LedgerAdjustment(
        id=uuid.uuid4(),
        kind=adjustment.kind,
        discount_rule_id=adjustment.discount_rule_id,
        name=f"Reversal: {adjustment.name}",
        category=adjustment.category,
        amount=-to_decimal(adjustment.amount),
        reason=reason,
        applied_by=actor,
        applied_at=datetime.utcnow(),
        reverses_id=adjustment.id,
    )
    ledger.adjustments.append(reversal)
    recalculate(ledger, as_of)
    logger.info(
        "Adjustment %r reversed",
        adjustment.name,
        extra={"ledger_id": str(ledger.id), "student_ref": str(ledger.student_ref)},
    )
    return reversal
