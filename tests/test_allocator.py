"""Unit tests for payment allocation."""

import random
from datetime import date, datetime
from decimal import Decimal

import pytest

from fee_ledger.billing import allocator, late_fees
from fee_ledger.billing.ledger import invariant_violations
from fee_ledger.core.exceptions import (
    BalanceExceeded,
    DuplicatePaymentReference,
    InvalidAmount,
    InvalidPaymentState,
    LedgerTerminal,
)

PAID_AT = datetime(2024, 4, 5, 11, 30)
ANNUAL_JAN_5 = {"Annual": [(1, 1, 5, "100")]}


def _state(ledger) -> tuple:
    return (
        ledger.balance,
        ledger.total_paid,
        ledger.total_late_fee,
        ledger.status,
        len(ledger.payments),
        [(i.paid_amount, i.late_fee, i.late_fee_paid, i.status) for i in ledger.installments],
    )


@pytest.fixture()
def overdue_ledger(make_definition, make_ledger):
    """Single 3000 installment due 2024-01-05 with 120 late fee accrued as of 2024-01-20."""
    definition = make_definition(components=(("Tuition", "3000", False, "0"),), plans=ANNUAL_JAN_5, default_plan="Annual")
    ledger = make_ledger(definition, reference_date=date(2023, 12, 1))
    late_fees.recompute(ledger, definition.late_fee_policy, date(2024, 1, 20))
    return ledger


def test_partial_payment_clears_late_fee_first(overdue_ledger) -> None:
    """3000 + 120 late fee, pay 2000: 120 to late fee, 1880 to principal, 1120 left."""
    payment = allocator.allocate(overdue_ledger, Decimal("2000"), "CASH", paid_at=datetime(2024, 1, 20, 9, 0))

    assert payment.late_fee_amount == Decimal("120.00")
    assert payment.principal_amount == Decimal("1880.00")
    assert [(a.installment_number, a.late_fee_applied, a.principal_applied) for a in payment.allocations] == [
        (1, Decimal("120.00"), Decimal("1880.00"))
    ]
    assert overdue_ledger.balance == Decimal("1120.00")
    assert overdue_ledger.status == "PARTIALLY_PAID"
    assert overdue_ledger.total_late_fee == Decimal("0.00")
    assert overdue_ledger.total_late_fee_accrued == Decimal("120.00")


def test_exact_remaining_balance_settles_ledger(overdue_ledger) -> None:
    allocator.allocate(overdue_ledger, Decimal("2000"), "CASH", paid_at=datetime(2024, 1, 20, 9, 0))
    allocator.allocate(overdue_ledger, Decimal("1120"), "UPI", paid_at=datetime(2024, 1, 20, 16, 0))

    assert overdue_ledger.balance == Decimal("0.00")
    assert overdue_ledger.status == "PAID"
    assert overdue_ledger.installments[0].status == "PAID"
    assert overdue_ledger.installments[0].paid_on == datetime(2024, 1, 20, 16, 0)
    assert overdue_ledger.next_due_date is None
    assert invariant_violations(overdue_ledger) == []


def test_oldest_installment_is_filled_before_later_ones(make_ledger) -> None:
    ledger = make_ledger()
    payment = allocator.allocate(ledger, Decimal("4500"), "CARD", paid_at=PAID_AT)

    assert [(a.installment_number, a.principal_applied) for a in payment.allocations] == [
        (1, Decimal("3000.00")),
        (2, Decimal("1500.00")),
    ]
    assert [i.status for i in ledger.installments] == ["PAID", "PARTIALLY_PAID", "PENDING", "PENDING"]
    assert ledger.next_due_date == date(2024, 7, 10)
    assert ledger.next_due_amount == Decimal("1500.00")


def test_same_due_date_ties_break_on_installment_number(make_definition, make_ledger) -> None:
    definition = make_definition(plans={"Split": [(2, 4, 10, "50"), (1, 4, 10, "50")]}, default_plan="Split")
    ledger = make_ledger(definition)
    payment = allocator.allocate(ledger, Decimal("7000"), "CASH", paid_at=PAID_AT)
    assert [a.installment_number for a in payment.allocations] == [1, 2]
    assert ledger.installments[0].paid_amount == Decimal("6000.00")
    assert ledger.installments[1].paid_amount == Decimal("1000.00")


def test_late_fee_of_older_installment_comes_before_newer_principal(make_definition, make_ledger) -> None:
    ledger = make_ledger()
    late_fees.recompute(ledger, make_definition().late_fee_policy, date(2024, 7, 20))
    # installment 1: due 04-10, grace 3 -> 98 days * 10 = 980; installment 2: due 07-10 -> 7 days = 70
    assert [i.late_fee for i in ledger.installments[:2]] == [Decimal("980.00"), Decimal("70.00")]

    payment = allocator.allocate(ledger, Decimal("4000"), "CASH", paid_at=datetime(2024, 7, 20, 10, 0))

    first, second = payment.allocations
    assert (first.late_fee_applied, first.principal_applied) == (Decimal("980.00"), Decimal("3000.00"))
    assert (second.late_fee_applied, second.principal_applied) == (Decimal("20.00"), Decimal("0.00"))


def test_overpayment_is_rejected_without_change(overdue_ledger) -> None:
    before = _state(overdue_ledger)
    with pytest.raises(BalanceExceeded):
        allocator.allocate(overdue_ledger, overdue_ledger.balance + 1, "CASH", paid_at=PAID_AT)
    assert _state(overdue_ledger) == before


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-50")])
def test_non_positive_amount_is_rejected(make_ledger, amount) -> None:
    ledger = make_ledger()
    before = _state(ledger)
    with pytest.raises(InvalidAmount):
        allocator.allocate(ledger, amount, "CASH", paid_at=PAID_AT)
    assert _state(ledger) == before


def test_terminal_ledger_rejects_payment(make_ledger) -> None:
    ledger = make_ledger()
    allocator.allocate(ledger, ledger.balance, "BANK_TRANSFER", paid_at=PAID_AT)
    assert ledger.status == "PAID"
    with pytest.raises(LedgerTerminal):
        allocator.allocate(ledger, Decimal("1"), "CASH", paid_at=PAID_AT)


def test_repeated_transaction_reference_is_detected(make_ledger) -> None:
    ledger = make_ledger()
    first = allocator.allocate(ledger, Decimal("100"), "ONLINE_GATEWAY", paid_at=PAID_AT, transaction_reference="pay_123")
    with pytest.raises(DuplicatePaymentReference) as exc:
        allocator.allocate(ledger, Decimal("100"), "ONLINE_GATEWAY", paid_at=PAID_AT, transaction_reference="pay_123")
    assert exc.value.payment_id == first.id
    assert len(ledger.payments) == 1
    assert ledger.balance == Decimal("11900.00")


def test_refund_restores_installments(overdue_ledger) -> None:
    payment = allocator.allocate(overdue_ledger, Decimal("2000"), "CASH", paid_at=datetime(2024, 1, 20, 9, 0))

    allocator.reverse_payment(overdue_ledger, payment, None, "Cheque bounced", date(2024, 1, 20))

    assert payment.status == "REFUNDED"
    assert payment.refund_reason == "Cheque bounced"
    assert overdue_ledger.balance == Decimal("3120.00")
    assert overdue_ledger.total_paid == Decimal("0.00")
    assert overdue_ledger.status == "OVERDUE"
    with pytest.raises(InvalidPaymentState):
        allocator.reverse_payment(overdue_ledger, payment, None, "again", date(2024, 1, 20))


def test_full_balance_payment_always_settles(make_definition, make_ledger) -> None:
    """Paying the whole balance leaves zero and PAID for any prior partial payments and accruals."""
    rng = random.Random(42)
    for _ in range(100):
        ledger = make_ledger(make_definition(components=(("Tuition", str(rng.randint(1000, 90000)), False, "5"),)))
        as_of = date(2024, rng.randint(4, 12), rng.randint(1, 28))
        late_fees.recompute(ledger, make_definition().late_fee_policy, as_of)
        paid_at = datetime(as_of.year, as_of.month, as_of.day, 12, 0)
        if rng.random() < 0.7:
            partial = (ledger.balance * Decimal(rng.randint(1, 99)) / 100).quantize(Decimal("0.01"))
            allocator.allocate(ledger, partial, "CASH", paid_at=paid_at)
            assert invariant_violations(ledger) == []
        allocator.allocate(ledger, ledger.balance, "CASH", paid_at=paid_at)
        assert ledger.balance == Decimal("0.00")
        assert ledger.status == "PAID"
        assert invariant_violations(ledger) == []
