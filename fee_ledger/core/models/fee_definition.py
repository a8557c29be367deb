"""Fee definition: per (class, academic period) template of components, plans, discount rules and late-fee policy."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from fee_ledger.billing.policy import LateFeePolicy
from fee_ledger.core.enums import FeeDefinitionStatus, LateFeeStartMode, LateFeeType
from fee_ledger.db.session import Base


class FeeDefinition(Base):
    """
    Fee template for one class in one academic period.
    Editable only while DRAFT; PUBLISHED and ARCHIVED definitions are frozen.
    At most one PUBLISHED definition per (class_ref, period_ref).
    """

    __tablename__ = "fee_definitions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT','PUBLISHED','ARCHIVED')",
            name="chk_fee_definition_status",
        ),
        CheckConstraint(
            "late_fee_type IN ('PER_DAY','FLAT','PERCENTAGE')",
            name="chk_fee_definition_late_fee_type",
        ),
        CheckConstraint(
            "late_fee_start_mode IN ('AFTER_GRACE','FIXED_DATE')",
            name="chk_fee_definition_late_fee_start_mode",
        ),
        Index(
            "uq_fee_definition_published_scope",
            "class_ref",
            "period_ref",
            unique=True,
            sqlite_where=text("status = 'PUBLISHED'"),
            postgresql_where=text("status = 'PUBLISHED'"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Directory references only; classes and academic periods live outside this service
    class_ref = Column(Uuid, nullable=False, index=True)
    period_ref = Column(Uuid, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=FeeDefinitionStatus.DRAFT.value)
    default_plan = Column(String(50), nullable=True)

    late_fee_enabled = Column(Boolean, nullable=False, default=True)
    late_fee_type = Column(String(20), nullable=False, default=LateFeeType.PER_DAY.value)
    late_fee_amount_per_day = Column(Numeric(12, 2), nullable=False, default=10)
    late_fee_flat_amount = Column(Numeric(12, 2), nullable=False, default=100)
    late_fee_percentage = Column(Numeric(6, 2), nullable=False, default=1)
    late_fee_grace_days = Column(Integer, nullable=False, default=5)
    late_fee_start_mode = Column(String(20), nullable=False, default=LateFeeStartMode.AFTER_GRACE.value)
    late_fee_fixed_start_date = Column(Date, nullable=True)
    late_fee_rounding_unit = Column(Numeric(12, 2), nullable=False, default=1)
    late_fee_max_amount = Column(Numeric(12, 2), nullable=True)

    notes = Column(Text, nullable=True)
    created_by = Column(Uuid, nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    components = relationship(
        "FeeDefinitionComponent",
        back_populates="definition",
        cascade="all, delete-orphan",
        order_by="FeeDefinitionComponent.display_order",
        lazy="selectin",
    )
    installment_plans = relationship(
        "InstallmentPlan",
        back_populates="definition",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    discount_rules = relationship(
        "DiscountRule",
        back_populates="definition",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def late_fee_policy(self) -> LateFeePolicy:
        return LateFeePolicy(
            enabled=self.late_fee_enabled,
            fee_type=self.late_fee_type,
            amount_per_day=self.late_fee_amount_per_day,
            flat_amount=self.late_fee_flat_amount,
            percentage=self.late_fee_percentage,
            grace_days=self.late_fee_grace_days,
            start_mode=self.late_fee_start_mode,
            fixed_start_date=self.late_fee_fixed_start_date,
            rounding_unit=self.late_fee_rounding_unit,
            max_fee=self.late_fee_max_amount,
        )

    @late_fee_policy.setter
    def late_fee_policy(self, policy: LateFeePolicy) -> None:
        self.late_fee_enabled = policy.enabled
        self.late_fee_type = policy.fee_type.value
        self.late_fee_amount_per_day = policy.amount_per_day
        self.late_fee_flat_amount = policy.flat_amount
        self.late_fee_percentage = policy.percentage
        self.late_fee_grace_days = policy.grace_days
        self.late_fee_start_mode = policy.start_mode.value
        self.late_fee_fixed_start_date = policy.fixed_start_date
        self.late_fee_rounding_unit = policy.rounding_unit
        self.late_fee_max_amount = policy.max_fee

    def get_plan(self, plan_name: str):
        for plan in self.installment_plans:
            if plan.name == plan_name:
                return plan
        return None


class FeeDefinitionComponent(Base):
    """Fee component inside a definition (Tuition, Transport, Exam...). Optional ones are opted into per student."""

    __tablename__ = "fee_definition_components"
    __table_args__ = (
        UniqueConstraint("definition_id", "name", name="uq_fee_definition_component_name"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    definition_id = Column(Uuid, ForeignKey("fee_definitions.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    base_amount = Column(Numeric(12, 2), nullable=False)
    is_optional = Column(Boolean, nullable=False, default=False)
    tax_percentage = Column(Numeric(6, 2), nullable=False, default=0)
    description = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)

    definition = relationship("FeeDefinition", back_populates="components")


class InstallmentPlan(Base):
    """Named installment plan (Monthly, Quarterly...). Entries carry due month/day and share of the total."""

    __tablename__ = "installment_plans"
    __table_args__ = (
        UniqueConstraint("definition_id", "name", name="uq_installment_plan_name"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    definition_id = Column(Uuid, ForeignKey("fee_definitions.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(50), nullable=False)

    definition = relationship("FeeDefinition", back_populates="installment_plans")
    entries = relationship(
        "InstallmentPlanEntry",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="InstallmentPlanEntry.installment_number",
        lazy="selectin",
    )


class InstallmentPlanEntry(Base):
    __tablename__ = "installment_plan_entries"
    __table_args__ = (
        UniqueConstraint("plan_id", "installment_number", name="uq_installment_plan_entry_number"),
        CheckConstraint("due_month BETWEEN 1 AND 12", name="chk_installment_plan_entry_month"),
        CheckConstraint("due_day BETWEEN 1 AND 31", name="chk_installment_plan_entry_day"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id = Column(Uuid, ForeignKey("installment_plans.id", ondelete="CASCADE"), nullable=False)
    installment_number = Column(Integer, nullable=False)
    due_month = Column(Integer, nullable=False)
    due_day = Column(Integer, nullable=False)
    percentage = Column(Numeric(6, 2), nullable=False)

    plan = relationship("InstallmentPlan", back_populates="entries")


class DiscountRule(Base):
    """Reference discount rule. Read-only for ledgers; applied through the discount engine."""

    __tablename__ = "discount_rules"
    __table_args__ = (
        CheckConstraint("discount_type IN ('PERCENTAGE','FIXED')", name="chk_discount_rule_type"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    definition_id = Column(Uuid, ForeignKey("fee_definitions.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    category = Column(String(30), nullable=False)  # SIBLING, MERIT, ... CUSTOM
    discount_type = Column(String(20), nullable=False)
    # Component names the percentage applies to; empty means the whole fee
    applicable_components = Column(JSON, nullable=False, default=list)
    value = Column(Numeric(12, 2), nullable=False)
    max_amount = Column(Numeric(12, 2), nullable=True)
    valid_from = Column(Date, nullable=True)
    valid_till = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    definition = relationship("FeeDefinition", back_populates="discount_rules")
