"""Builds a new StudentLedger from a published fee definition."""

import uuid
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from fee_ledger.billing import discounts, scheduler
from fee_ledger.billing.ledger import recalculate
from fee_ledger.billing.money import ZERO, money_sum, to_decimal
from fee_ledger.core.config import settings
from fee_ledger.core.enums import LedgerStatus
from fee_ledger.core.exceptions import InvalidDefinition
from fee_ledger.core.models.fee_definition import DiscountRule, FeeDefinition
from fee_ledger.core.models.student_ledger import LedgerComponent, StudentLedger


def snapshot_components(
    definition: FeeDefinition,
    selected_optional: Iterable[str] = (),
) -> Tuple[List[LedgerComponent], Decimal, Decimal]:
    """
    Mandatory components plus the selected optional ones, each with its tax.
    Returns (components, total_fee_amount, total_tax).
    """
    selected = set(selected_optional)
    unknown = selected - {c.name for c in definition.components}
    if unknown:
        raise InvalidDefinition(f"Unknown fee component(s): {', '.join(sorted(unknown))}")

    components = []
    for component in definition.components:
        if component.is_optional and component.name not in selected:
            continue
        base = to_decimal(component.base_amount)
        tax = to_decimal(base * to_decimal(component.tax_percentage) / Decimal(100))
        components.append(
            LedgerComponent(
                name=component.name,
                base_amount=base,
                tax_amount=tax,
                final_amount=base + tax,
                is_optional=component.is_optional,
                display_order=component.display_order,
            )
        )
    if not components:
        raise InvalidDefinition("Fee definition has no chargeable components")
    return components, money_sum(c.final_amount for c in components), money_sum(c.tax_amount for c in components)


def build_ledger(
    definition: FeeDefinition,
    student_ref: UUID,
    reference_date: date,
    plan_name: Optional[str] = None,
    selected_optional: Iterable[str] = (),
    discount_rules: Sequence[DiscountRule] = (),
    assigned_by: Optional[UUID] = None,
    notes: Optional[str] = None,
) -> StudentLedger:
    plan_name = plan_name or definition.default_plan or settings.default_installment_plan
    components, total_fee, total_tax = snapshot_components(definition, selected_optional)

    ledger = StudentLedger(
        id=uuid.uuid4(),
        student_ref=student_ref,
        period_ref=definition.period_ref,
        class_ref=definition.class_ref,
        fee_definition_id=definition.id,
        installment_plan=plan_name,
        total_fee_amount=total_fee,
        total_tax=total_tax,
        total_discount=ZERO,
        concession_amount=ZERO,
        total_late_fee=ZERO,
        total_late_fee_accrued=ZERO,
        total_late_fee_paid=ZERO,
        total_paid=ZERO,
        balance=total_fee,
        status=LedgerStatus.NOT_STARTED.value,
        next_due_amount=ZERO,
        assigned_by=assigned_by,
        notes=notes,
        is_active=True,
        components=components,
        installments=scheduler.generate(total_fee, definition.get_plan(plan_name), reference_date, plan_name),
        adjustments=[],
        payments=[],
    )
    recalculate(ledger, reference_date)
    for rule in discount_rules:
        discounts.apply_discount(ledger, rule, assigned_by, reference_date)
    return ledger
