"""Service tests for the fee definition lifecycle."""

from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.api.v1.fee_definitions import service
from fee_ledger.api.v1.fee_definitions.schemas import FeeDefinitionCreate
from fee_ledger.core.enums import FeeDefinitionStatus
from fee_ledger.core.exceptions import DefinitionNotFound, InvalidDefinition


@pytest.mark.asyncio
async def test_create_definition_as_draft(db_session: AsyncSession, definition_payload: FeeDefinitionCreate) -> None:
    created = await service.create_definition(db_session, definition_payload)

    assert created.status == "DRAFT"
    assert created.total_mandatory_amount == Decimal("12000.00")
    assert [c.name for c in created.components] == ["Tuition", "Exam", "Transport"]
    assert {p.name for p in created.installment_plans} == {"Quarterly", "Annual"}
    assert created.late_fee_policy.grace_days == 3
    assert created.late_fee_policy.amount_per_day == Decimal("10")


@pytest.mark.asyncio
async def test_publish_archives_previous_definition(db_session: AsyncSession, definition_payload: FeeDefinitionCreate) -> None:
    first = await service.create_definition(db_session, definition_payload)
    await service.publish_definition(db_session, first.id)

    second = await service.create_definition(db_session, definition_payload.model_copy(update={"name": "Revised"}))
    published = await service.publish_definition(db_session, second.id)

    assert published.status == "PUBLISHED"
    assert published.published_at is not None
    assert (await service.get_definition(db_session, first.id)).status == "ARCHIVED"
    active = await service.get_active_definition(db_session, definition_payload.class_ref, definition_payload.period_ref)
    assert active.id == second.id


@pytest.mark.asyncio
async def test_only_drafts_can_be_published(db_session: AsyncSession, published_definition) -> None:
    with pytest.raises(InvalidDefinition):
        await service.publish_definition(db_session, published_definition.id)


@pytest.mark.asyncio
async def test_archive(db_session: AsyncSession, published_definition) -> None:
    archived = await service.archive_definition(db_session, published_definition.id)
    assert archived.status == "ARCHIVED"
    with pytest.raises(DefinitionNotFound):
        await service.get_active_definition(db_session, published_definition.class_ref, published_definition.period_ref)
    with pytest.raises(InvalidDefinition):
        await service.archive_definition(db_session, published_definition.id)


@pytest.mark.asyncio
async def test_list_definitions_filters(db_session: AsyncSession, definition_payload: FeeDefinitionCreate, published_definition) -> None:
    await service.create_definition(db_session, definition_payload.model_copy(update={"name": "Draft copy"}))
    drafts = await service.list_definitions(db_session, class_ref=definition_payload.class_ref, status_filter=FeeDefinitionStatus.DRAFT)
    assert [d.name for d in drafts] == ["Draft copy"]


def test_plan_percentages_must_total_100(definition_payload: FeeDefinitionCreate) -> None:
    data = definition_payload.model_dump()
    data["installment_plans"][0]["entries"][0]["percentage"] = Decimal("30")
    with pytest.raises(ValidationError):
        FeeDefinitionCreate(**data)


def test_discount_rule_must_reference_known_components(definition_payload: FeeDefinitionCreate) -> None:
    data = definition_payload.model_dump()
    data["discount_rules"][0]["applicable_components"] = ["Hostel"]
    with pytest.raises(ValidationError):
        FeeDefinitionCreate(**data)
