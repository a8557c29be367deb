"""Fee definition service: draft, publish, archive and lookup of per (class, period) fee templates."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.api.v1.audit_service import log_fee_audit
from fee_ledger.billing.money import money_sum, to_decimal
from fee_ledger.core.enums import FeeDefinitionStatus
from fee_ledger.core.exceptions import DefinitionNotFound, InvalidDefinition
from fee_ledger.core.models import (
    DiscountRule,
    FeeDefinition,
    FeeDefinitionComponent,
    InstallmentPlan,
    InstallmentPlanEntry,
)

from .schemas import (
    DiscountRuleResponse,
    FeeComponentResponse,
    FeeDefinitionCreate,
    FeeDefinitionResponse,
    InstallmentPlanResponse,
)

logger = logging.getLogger(__name__)


def _definition_to_response(defn: FeeDefinition) -> FeeDefinitionResponse:
    mandatory_total = money_sum(
        to_decimal(c.base_amount) + to_decimal(c.base_amount) * to_decimal(c.tax_percentage) / Decimal(100)
        for c in defn.components
        if not c.is_optional
    )
    return FeeDefinitionResponse(
        id=defn.id,
        class_ref=defn.class_ref,
        period_ref=defn.period_ref,
        name=defn.name,
        status=defn.status,
        default_plan=defn.default_plan,
        total_mandatory_amount=mandatory_total,
        components=[FeeComponentResponse.model_validate(c) for c in defn.components],
        installment_plans=[InstallmentPlanResponse.model_validate(p) for p in defn.installment_plans],
        discount_rules=[DiscountRuleResponse.model_validate(r) for r in defn.discount_rules],
        late_fee_policy=defn.late_fee_policy,
        notes=defn.notes,
        created_by=defn.created_by,
        published_at=defn.published_at,
        archived_at=defn.archived_at,
        created_at=defn.created_at,
        updated_at=defn.updated_at,
    )


async def _load_definition(db: AsyncSession, definition_id: UUID) -> FeeDefinition:
    defn = (
        await db.execute(
            select(FeeDefinition)
            .where(FeeDefinition.id == definition_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not defn:
        raise DefinitionNotFound()
    return defn


async def get_published_definition(db: AsyncSession, definition_id: UUID) -> FeeDefinition:
    """Definition model for assignment; only PUBLISHED definitions can be assigned."""
    defn = await _load_definition(db, definition_id)
    if defn.status != FeeDefinitionStatus.PUBLISHED.value:
        raise InvalidDefinition(f"Fee definition is {defn.status}; only published definitions can be assigned")
    return defn


async def find_active_definition(db: AsyncSession, class_ref: UUID, period_ref: UUID) -> FeeDefinition:
    defn = (
        await db.execute(
            select(FeeDefinition).where(
                FeeDefinition.class_ref == class_ref,
                FeeDefinition.period_ref == period_ref,
                FeeDefinition.status == FeeDefinitionStatus.PUBLISHED.value,
            )
        )
    ).scalar_one_or_none()
    if not defn:
        raise DefinitionNotFound("No published fee definition for this class and academic period")
    return defn


async def create_definition(db: AsyncSession, payload: FeeDefinitionCreate) -> FeeDefinitionResponse:
    defn = FeeDefinition(
        class_ref=payload.class_ref,
        period_ref=payload.period_ref,
        name=payload.name.strip(),
        status=FeeDefinitionStatus.DRAFT.value,
        default_plan=payload.default_plan,
        notes=payload.notes,
        created_by=payload.created_by,
        components=[
            FeeDefinitionComponent(
                name=c.name.strip(),
                base_amount=to_decimal(c.base_amount),
                is_optional=c.is_optional,
                tax_percentage=c.tax_percentage,
                description=c.description,
                display_order=index,
            )
            for index, c in enumerate(payload.components)
        ],
        installment_plans=[
            InstallmentPlan(
                name=p.name.strip(),
                entries=[
                    InstallmentPlanEntry(
                        installment_number=e.installment_number,
                        due_month=e.due_month,
                        due_day=e.due_day,
                        percentage=e.percentage,
                    )
                    for e in p.entries
                ],
            )
            for p in payload.installment_plans
        ],
        discount_rules=[
            DiscountRule(
                name=r.name.strip(),
                category=r.category.value,
                discount_type=r.discount_type.value,
                applicable_components=list(r.applicable_components),
                value=r.value,
                max_amount=r.max_amount,
                valid_from=r.valid_from,
                valid_till=r.valid_till,
                is_active=r.is_active,
            )
            for r in payload.discount_rules
        ],
    )
    defn.late_fee_policy = payload.late_fee_policy
    try:
        db.add(defn)
        await db.flush()
        await log_fee_audit(
            db, "fee_definitions", defn.id,
            "CREATE", None,
            {"name": defn.name, "class_ref": str(defn.class_ref), "period_ref": str(defn.period_ref)},
            payload.created_by,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise InvalidDefinition("Fee definition could not be saved; check for duplicate names")
    logger.info("Fee definition %s created as DRAFT for class %s", defn.id, defn.class_ref)
    return _definition_to_response(await _load_definition(db, defn.id))


async def get_definition(db: AsyncSession, definition_id: UUID) -> FeeDefinitionResponse:
    return _definition_to_response(await _load_definition(db, definition_id))


async def get_active_definition(db: AsyncSession, class_ref: UUID, period_ref: UUID) -> FeeDefinitionResponse:
    return _definition_to_response(await find_active_definition(db, class_ref, period_ref))


async def list_definitions(
    db: AsyncSession,
    class_ref: Optional[UUID] = None,
    period_ref: Optional[UUID] = None,
    status_filter: Optional[FeeDefinitionStatus] = None,
) -> List[FeeDefinitionResponse]:
    stmt = select(FeeDefinition)
    if class_ref is not None:
        stmt = stmt.where(FeeDefinition.class_ref == class_ref)
    if period_ref is not None:
        stmt = stmt.where(FeeDefinition.period_ref == period_ref)
    if status_filter is not None:
        stmt = stmt.where(FeeDefinition.status == status_filter.value)
    stmt = stmt.order_by(FeeDefinition.created_at.desc())
    result = await db.execute(stmt)
    return [_definition_to_response(d) for d in result.scalars().all()]


async def publish_definition(
    db: AsyncSession,
    definition_id: UUID,
    actor: Optional[UUID] = None,
) -> FeeDefinitionResponse:
    """
    Make a DRAFT definition the active one for its (class, period).
    A previously published definition for the same scope is archived in the same transaction.
    """
    defn = await _load_definition(db, definition_id)
    if defn.status != FeeDefinitionStatus.DRAFT.value:
        raise InvalidDefinition(f"Only DRAFT definitions can be published (current status {defn.status})")
    if not defn.components:
        raise InvalidDefinition("Fee definition has no components")

    now = datetime.utcnow()
    try:
        previous = (
            await db.execute(
                select(FeeDefinition).where(
                    FeeDefinition.class_ref == defn.class_ref,
                    FeeDefinition.period_ref == defn.period_ref,
                    FeeDefinition.status == FeeDefinitionStatus.PUBLISHED.value,
                )
            )
        ).scalars().all()
        for old in previous:
            old.status = FeeDefinitionStatus.ARCHIVED.value
            old.archived_at = now
            await log_fee_audit(
                db, "fee_definitions", old.id,
                "ARCHIVE", {"status": FeeDefinitionStatus.PUBLISHED.value},
                {"status": FeeDefinitionStatus.ARCHIVED.value, "superseded_by": str(defn.id)},
                actor,
            )
        # Archive must reach the database before the new row claims the published slot
        await db.flush()

        defn.status = FeeDefinitionStatus.PUBLISHED.value
        defn.published_at = now
        await log_fee_audit(
            db, "fee_definitions", defn.id,
            "PUBLISH", {"status": FeeDefinitionStatus.DRAFT.value}, {"status": FeeDefinitionStatus.PUBLISHED.value},
            actor,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise InvalidDefinition("Another definition was published for this class and period concurrently")
    logger.info(
        "Fee definition %s published for class %s period %s (archived %d previous)",
        defn.id, defn.class_ref, defn.period_ref, len(previous),
    )
    return _definition_to_response(await _load_definition(db, definition_id))


async def archive_definition(
    db: AsyncSession,
    definition_id: UUID,
    actor: Optional[UUID] = None,
) -> FeeDefinitionResponse:
    defn = await _load_definition(db, definition_id)
    if defn.status == FeeDefinitionStatus.ARCHIVED.value:
        raise InvalidDefinition("Fee definition is already archived")
    old_status = defn.status
    defn.status = FeeDefinitionStatus.ARCHIVED.value
    defn.archived_at = datetime.utcnow()
    await log_fee_audit(
        db, "fee_definitions", defn.id,
        "ARCHIVE", {"status": old_status}, {"status": defn.status},
        actor,
    )
    await db.commit()
    logger.info("Fee definition %s archived", defn.id)
    return _definition_to_response(await _load_definition(db, definition_id))
