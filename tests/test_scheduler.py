"""Unit tests for installment schedule generation."""

import random
from datetime import date
from decimal import Decimal

from fee_ledger.billing import scheduler
from fee_ledger.billing.money import money_sum
from fee_ledger.core.models import InstallmentPlan, InstallmentPlanEntry


def _plan(name, entries) -> InstallmentPlan:
    return InstallmentPlan(
        name=name,
        entries=[
            InstallmentPlanEntry(installment_number=n, due_month=m, due_day=d, percentage=Decimal(p))
            for n, m, d, p in entries
        ],
    )


QUARTERLY = _plan("Quarterly", [(1, 4, 10, "25"), (2, 7, 10, "25"), (3, 10, 10, "25"), (4, 1, 10, "25")])


def test_quarterly_split_is_even() -> None:
    """12000 over four 25% entries gives four installments of 3000."""
    installments = scheduler.generate(Decimal("12000"), QUARTERLY, date(2024, 4, 1))
    assert [i.amount for i in installments] == [Decimal("3000.00")] * 4
    assert [i.name for i in installments] == [f"Quarterly - {n}/4" for n in range(1, 5)]
    assert all(i.status == "PENDING" for i in installments)


def test_due_dates_roll_into_next_year() -> None:
    """Entries that fall before the reference date move to the following year."""
    installments = scheduler.generate(Decimal("12000"), QUARTERLY, date(2024, 4, 1))
    assert [i.due_date for i in installments] == [
        date(2024, 4, 10),
        date(2024, 7, 10),
        date(2024, 10, 10),
        date(2025, 1, 10),
    ]


def test_due_date_on_reference_date_is_kept() -> None:
    assert scheduler.resolve_due_date(4, 10, date(2024, 4, 10)) == date(2024, 4, 10)


def test_day_beyond_month_end_is_clamped() -> None:
    assert scheduler.resolve_due_date(2, 30, date(2023, 1, 1)) == date(2023, 2, 28)
    assert scheduler.resolve_due_date(2, 30, date(2024, 1, 1)) == date(2024, 2, 29)
    assert scheduler.resolve_due_date(4, 31, date(2024, 1, 1)) == date(2024, 4, 30)


def test_rounding_drift_goes_to_last_installment() -> None:
    """Three-way split of 1000 rounded to whole units: 333 + 333 + 334."""
    plan = _plan("Termly", [(1, 4, 1, "33.33"), (2, 8, 1, "33.33"), (3, 12, 1, "33.34")])
    installments = scheduler.generate(Decimal("1000"), plan, date(2024, 4, 1), rounding_unit=Decimal("1"))
    assert [i.amount for i in installments] == [Decimal("333.00"), Decimal("333.00"), Decimal("334.00")]


def test_rounding_to_tens() -> None:
    plan = _plan("Halves", [(1, 4, 1, "50"), (2, 10, 1, "50")])
    installments = scheduler.generate(Decimal("1255"), plan, date(2024, 4, 1), rounding_unit=Decimal("10"))
    assert installments[0].amount == Decimal("630.00")
    assert installments[1].amount == Decimal("625.00")


def test_entries_are_ordered_by_installment_number() -> None:
    plan = _plan("Reversed", [(2, 10, 1, "40"), (1, 4, 1, "60")])
    installments = scheduler.generate(Decimal("1000"), plan, date(2024, 4, 1))
    assert [i.installment_number for i in installments] == [1, 2]
    assert [i.amount for i in installments] == [Decimal("600.00"), Decimal("400.00")]


def test_missing_plan_falls_back_to_single_full_payment() -> None:
    """No plan: one installment for the full amount, due on the default date rolled forward."""
    installments = scheduler.generate(Decimal("9999.99"), None, date(2024, 5, 1), plan_name="Weekly")
    assert len(installments) == 1
    only = installments[0]
    assert only.name == scheduler.FALLBACK_INSTALLMENT_NAME
    assert only.amount == Decimal("9999.99")
    assert only.due_date == date(2025, 4, 15)


def test_schedule_sums_to_total_without_negative_amounts_for_random_plans() -> None:
    """Installment amounts add back up to the total exactly and none is negative."""
    rng = random.Random(20240401)
    for _ in range(300):
        count = rng.randint(1, 12)
        cuts = sorted(rng.sample(range(1, 100), count - 1)) if count > 1 else []
        bounds = [0] + cuts + [100]
        entries = [
            (n + 1, rng.randint(1, 12), rng.randint(1, 31), str(bounds[n + 1] - bounds[n]))
            for n in range(count)
        ]
        total = Decimal(rng.randint(1, 5_000_000)) / 100
        unit = rng.choice([Decimal("0.01"), Decimal("1"), Decimal("10"), Decimal("100")])
        installments = scheduler.generate(total, _plan("Random", entries), date(2024, 4, 1), rounding_unit=unit)
        assert money_sum(i.amount for i in installments) == total
        assert len(installments) == count
        assert all(i.amount >= 0 for i in installments)


def test_coarse_rounding_excess_is_taken_back_from_the_end() -> None:
    """Shares rounded up past the total are trimmed from the last installments, never below zero."""
    entries = [(n, 1, 10, "8.33") for n in range(1, 12)] + [(12, 1, 10, "8.37")]
    installments = scheduler.generate(
        Decimal("1000"), _plan("Monthly", entries), date(2024, 1, 1), rounding_unit=Decimal("100")
    )
    assert [i.amount for i in installments] == [Decimal("100.00")] * 10 + [Decimal("0.00")] * 2
    assert money_sum(i.amount for i in installments) == Decimal("1000.00")


def test_small_total_does_not_go_negative() -> None:
    installments = scheduler.generate(Decimal("2"), QUARTERLY, date(2024, 4, 1), rounding_unit=Decimal("1"))
    assert [i.amount for i in installments] == [Decimal("1.00"), Decimal("1.00"), Decimal("0.00"), Decimal("0.00")]
