"""Unit tests for ledger status derivation and ledger-wide invariants."""

import random
from datetime import date, datetime
from decimal import Decimal

import pytest

from fee_ledger.billing import allocator, discounts, late_fees
from fee_ledger.billing.ledger import invariant_violations
from fee_ledger.billing.status import derive_installment_status, derive_ledger_status, is_terminal
from fee_ledger.core.enums import InstallmentStatus, LedgerStatus
from fee_ledger.core.exceptions import ServiceError

DUE = date(2024, 4, 10)


@pytest.mark.parametrize(
    "balance, collected, as_of, expected",
    [
        (Decimal("0"), Decimal("12000"), date(2024, 5, 1), LedgerStatus.PAID),
        (Decimal("-5"), Decimal("0"), date(2024, 5, 1), LedgerStatus.PAID),
        (Decimal("100"), Decimal("50"), date(2024, 4, 1), LedgerStatus.PARTIALLY_PAID),
        (Decimal("100"), Decimal("50"), date(2024, 5, 1), LedgerStatus.PARTIALLY_PAID),
        (Decimal("100"), Decimal("0"), date(2024, 5, 1), LedgerStatus.OVERDUE),
        (Decimal("100"), Decimal("0"), DUE, LedgerStatus.NOT_STARTED),
    ],
)
def test_ledger_status_precedence(balance, collected, as_of, expected) -> None:
    assert derive_ledger_status(balance, collected, DUE, as_of) == expected


def test_overdue_can_take_precedence_over_partial_payment() -> None:
    status = derive_ledger_status(Decimal("100"), Decimal("50"), DUE, date(2024, 5, 1), overdue_takes_precedence=True)
    assert status == LedgerStatus.OVERDUE
    status = derive_ledger_status(Decimal("100"), Decimal("50"), DUE, date(2024, 4, 1), overdue_takes_precedence=True)
    assert status == LedgerStatus.PARTIALLY_PAID


def test_closure_status_wins() -> None:
    status = derive_ledger_status(Decimal("100"), Decimal("0"), DUE, date(2024, 5, 1), closure_status="CANCELLED")
    assert status == LedgerStatus.CANCELLED
    assert is_terminal(status.value)
    assert not is_terminal(LedgerStatus.OVERDUE.value)


def test_installment_status() -> None:
    zero = Decimal("0")
    assert derive_installment_status(zero, zero, Decimal("10"), DUE, date(2024, 5, 1), False) == InstallmentStatus.PAID
    assert derive_installment_status(Decimal("5"), zero, zero, DUE, date(2024, 5, 1), True) == InstallmentStatus.WAIVED
    assert derive_installment_status(Decimal("5"), zero, Decimal("1"), DUE, date(2024, 5, 1), False) == InstallmentStatus.PARTIALLY_PAID
    assert derive_installment_status(Decimal("5"), zero, zero, DUE, date(2024, 5, 1), False) == InstallmentStatus.OVERDUE
    assert derive_installment_status(Decimal("5"), zero, zero, DUE, DUE, False) == InstallmentStatus.PENDING


def test_invariants_hold_after_random_operations(make_definition, make_ledger, make_rule) -> None:
    """Random mixes of accrual, payments, discounts and concessions keep the ledger consistent."""
    rng = random.Random(1234)
    for _ in range(60):
        definition = make_definition(components=(("Tuition", str(rng.randint(5000, 60000)), False, "0"),))
        ledger = make_ledger(definition)
        policy = definition.late_fee_policy
        rule = make_rule(definition, value=Decimal(rng.randint(1, 20)))
        day = date(2024, 4, 1)
        for step in range(12):
            day = date(2024, 4 + step % 9, rng.randint(1, 28))
            action = rng.choice(["accrue", "pay", "pay", "discount", "concession"])
            try:
                if action == "accrue":
                    late_fees.recompute(ledger, policy, day)
                elif action == "pay" and ledger.balance > 0:
                    amount = max(Decimal("1"), (ledger.balance * Decimal(rng.random())).quantize(Decimal("0.01")))
                    allocator.allocate(ledger, amount, "CASH", paid_at=datetime(day.year, day.month, day.day))
                elif action == "discount":
                    discounts.apply_discount(ledger, rule, None, day)
                elif action == "concession" and ledger.balance > 1:
                    discounts.waive_balance(ledger, Decimal("1"), "Rounding", None, day)
            except ServiceError:
                pass
            assert invariant_violations(ledger) == [], (action, step)
            expected = (
                ledger.total_fee_amount - ledger.total_discount - ledger.concession_amount
                + ledger.total_late_fee - ledger.total_paid
            )
            assert ledger.balance == expected
