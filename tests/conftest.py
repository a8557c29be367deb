import os
import uuid
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

# Settings are read at import time; point them at an in-memory database before the app loads
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LEDGER_RETRY_WAIT_SECONDS", "0")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fee_ledger.api.v1.fee_definitions import service as definition_service
from fee_ledger.api.v1.fee_definitions.schemas import FeeDefinitionCreate
from fee_ledger.billing.assignment import build_ledger
from fee_ledger.billing.policy import LateFeePolicy
from fee_ledger.core.models import (
    DiscountRule,
    FeeDefinition,
    FeeDefinitionComponent,
    InstallmentPlan,
    InstallmentPlanEntry,
)
from fee_ledger.db.session import Base, get_db
from fee_ledger.main import app

QUARTERLY = [(1, 4, 10, "25"), (2, 7, 10, "25"), (3, 10, 10, "25"), (4, 1, 10, "25")]


@pytest.fixture()
async def engine():
    """Fresh in-memory SQLite database per test; StaticPool keeps one shared connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.clear()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# --- Unsaved model builders for engine tests ---
@pytest.fixture()
def make_definition():
    def _make(
        components=(("Tuition", "12000", False, "0"),),
        plans=None,
        policy=None,
        default_plan="Quarterly",
    ) -> FeeDefinition:
        plans = {"Quarterly": QUARTERLY} if plans is None else plans
        definition = FeeDefinition(
            id=uuid.uuid4(),
            class_ref=uuid.uuid4(),
            period_ref=uuid.uuid4(),
            name="Grade 5 fees",
            status="PUBLISHED",
            default_plan=default_plan,
            components=[
                FeeDefinitionComponent(
                    name=name,
                    base_amount=Decimal(amount),
                    is_optional=optional,
                    tax_percentage=Decimal(tax),
                    display_order=index,
                )
                for index, (name, amount, optional, tax) in enumerate(components)
            ],
            installment_plans=[
                InstallmentPlan(
                    name=plan_name,
                    entries=[
                        InstallmentPlanEntry(
                            installment_number=number,
                            due_month=month,
                            due_day=day,
                            percentage=Decimal(pct),
                        )
                        for number, month, day, pct in entries
                    ],
                )
                for plan_name, entries in plans.items()
            ],
            discount_rules=[],
        )
        definition.late_fee_policy = policy or LateFeePolicy(grace_days=3, max_fee=Decimal("5000"))
        return definition

    return _make


@pytest.fixture()
def make_rule():
    def _make(definition: FeeDefinition, **overrides) -> DiscountRule:
        values = dict(
            id=uuid.uuid4(),
            definition_id=definition.id,
            name="Sibling",
            category="SIBLING",
            discount_type="PERCENTAGE",
            applicable_components=[],
            value=Decimal("10"),
            max_amount=None,
            valid_from=None,
            valid_till=None,
            is_active=True,
        )
        values.update(overrides)
        return DiscountRule(**values)

    return _make


@pytest.fixture()
def make_ledger(make_definition):
    def _make(definition=None, reference_date=date(2024, 4, 1), **kwargs):
        definition = definition or make_definition()
        return build_ledger(definition, uuid.uuid4(), reference_date, **kwargs)

    return _make


# --- Persisted fixtures for service and API tests ---
@pytest.fixture()
def definition_payload() -> FeeDefinitionCreate:
    return FeeDefinitionCreate(
        class_ref=uuid.uuid4(),
        period_ref=uuid.uuid4(),
        name="Grade 5 - 2024-25",
        components=[
            {"name": "Tuition", "base_amount": "10000"},
            {"name": "Exam", "base_amount": "2000"},
            {"name": "Transport", "base_amount": "3000", "is_optional": True},
        ],
        installment_plans=[
            {
                "name": "Quarterly",
                "entries": [
                    {"installment_number": n, "due_month": m, "due_day": d, "percentage": p}
                    for n, m, d, p in QUARTERLY
                ],
            },
            {
                "name": "Annual",
                "entries": [{"installment_number": 1, "due_month": 4, "due_day": 10, "percentage": "100"}],
            },
        ],
        discount_rules=[
            {
                "name": "Sibling",
                "category": "SIBLING",
                "discount_type": "PERCENTAGE",
                "value": "10",
                "applicable_components": ["Tuition"],
                "max_amount": "2000",
            },
            {"name": "Merit", "category": "MERIT", "discount_type": "FIXED", "value": "500"},
        ],
        late_fee_policy={"fee_type": "PER_DAY", "amount_per_day": "10", "grace_days": 3, "max_fee": "5000"},
        default_plan="Quarterly",
    )


@pytest.fixture()
async def published_definition(db_session: AsyncSession, definition_payload: FeeDefinitionCreate):
    created = await definition_service.create_definition(db_session, definition_payload)
    return await definition_service.publish_definition(db_session, created.id)
