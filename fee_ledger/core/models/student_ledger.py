"""Student ledger: one per student per academic period. Owns installments, adjustments and payment history."""

import uuid
from datetime import datetime

from sqlalchemy import (
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

from fee_ledger.core.enums import InstallmentStatus, LedgerStatus
from fee_ledger.db.session import Base


class StudentLedger(Base):
    """
    Aggregate and unit of consistency for one student's fee obligation.
    Totals, balance, next due and status are derived by billing.ledger.recalculate
    after every mutation; they are never written independently.
    """

    __tablename__ = "student_ledgers"
    __table_args__ = (
        CheckConstraint(
            "status IN ('NOT_STARTED','PARTIALLY_PAID','OVERDUE','PAID','WAIVED','CANCELLED')",
            name="chk_student_ledger_status",
        ),
        CheckConstraint(
            "closure_status IS NULL OR closure_status IN ('WAIVED','CANCELLED')",
            name="chk_student_ledger_closure_status",
        ),
        Index(
            "uq_student_ledger_active_student_period",
            "student_ref",
            "period_ref",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_ref = Column(Uuid, nullable=False, index=True)
    period_ref = Column(Uuid, nullable=False, index=True)
    class_ref = Column(Uuid, nullable=False)
    fee_definition_id = Column(Uuid, ForeignKey("fee_definitions.id", ondelete="RESTRICT"), nullable=False)
    installment_plan = Column(String(50), nullable=False)

    total_fee_amount = Column(Numeric(12, 2), nullable=False)
    total_tax = Column(Numeric(12, 2), nullable=False, default=0)
    total_discount = Column(Numeric(12, 2), nullable=False, default=0)
    concession_amount = Column(Numeric(12, 2), nullable=False, default=0)
    # Outstanding late fee; accrued and paid figures are kept for reporting
    total_late_fee = Column(Numeric(12, 2), nullable=False, default=0)
    total_late_fee_accrued = Column(Numeric(12, 2), nullable=False, default=0)
    total_late_fee_paid = Column(Numeric(12, 2), nullable=False, default=0)
    total_paid = Column(Numeric(12, 2), nullable=False, default=0)
    balance = Column(Numeric(12, 2), nullable=False)

    status = Column(String(20), nullable=False, default=LedgerStatus.NOT_STARTED.value, index=True)
    closure_status = Column(String(20), nullable=True)  # WAIVED | CANCELLED, set only by close_ledger
    closure_reason = Column(Text, nullable=True)
    closed_by = Column(Uuid, nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    next_due_date = Column(Date, nullable=True)
    next_due_amount = Column(Numeric(12, 2), nullable=False, default=0)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)
    late_fee_as_of = Column(Date, nullable=True)

    concession_reason = Column(Text, nullable=True)
    concession_approved_by = Column(Uuid, nullable=True)
    concession_approved_at = Column(DateTime(timezone=True), nullable=True)

    assigned_by = Column(Uuid, nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    fee_definition = relationship("FeeDefinition", lazy="selectin")
    components = relationship(
        "LedgerComponent",
        back_populates="ledger",
        cascade="all, delete-orphan",
        order_by="LedgerComponent.display_order",
        lazy="selectin",
    )
    installments = relationship(
        "LedgerInstallment",
        back_populates="ledger",
        cascade="all, delete-orphan",
        order_by="LedgerInstallment.installment_number",
        lazy="selectin",
    )
    adjustments = relationship(
        "LedgerAdjustment",
        back_populates="ledger",
        cascade="all, delete-orphan",
        order_by="LedgerAdjustment.applied_at",
        lazy="selectin",
    )
    payments = relationship(
        "LedgerPayment",
        back_populates="ledger",
        order_by="LedgerPayment.paid_at",
        lazy="selectin",
    )


class LedgerComponent(Base):
    """Frozen snapshot of a definition component as charged to this student."""

    __tablename__ = "ledger_components"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id = Column(Uuid, ForeignKey("student_ledgers.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    base_amount = Column(Numeric(12, 2), nullable=False)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    final_amount = Column(Numeric(12, 2), nullable=False)
    is_optional = Column(Boolean, nullable=False, default=False)
    display_order = Column(Integer, nullable=False, default=0)

    ledger = relationship("StudentLedger", back_populates="components")


class LedgerInstallment(Base):
    """One dated slice of the ledger total. paid_amount is principal only; late fees are tracked separately."""

    __tablename__ = "ledger_installments"
    __table_args__ = (
        UniqueConstraint("ledger_id", "installment_number", name="uq_ledger_installment_number"),
        CheckConstraint(
            "status IN ('PENDING','PARTIALLY_PAID','PAID','OVERDUE','WAIVED')",
            name="chk_ledger_installment_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id = Column(Uuid, ForeignKey("student_ledgers.id", ondelete="CASCADE"), nullable=False)
    installment_number = Column(Integer, nullable=False)
    name = Column(String(100), nullable=False)
    due_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    late_fee = Column(Numeric(12, 2), nullable=False, default=0)  # accrued as of ledger.late_fee_as_of
    late_fee_paid = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=InstallmentStatus.PENDING.value)
    paid_on = Column(DateTime(timezone=True), nullable=True)

    ledger = relationship("StudentLedger", back_populates="installments")


class LedgerAdjustment(Base):
    """
    Discount or concession applied to a ledger. Append-only audit entry;
    a reversal is a new row with the negated amount pointing at the original.
    """

    __tablename__ = "ledger_adjustments"
    __table_args__ = (
        CheckConstraint("kind IN ('DISCOUNT','CONCESSION')", name="chk_ledger_adjustment_kind"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id = Column(Uuid, ForeignKey("student_ledgers.id", ondelete="CASCADE"), nullable=False)
    kind = Column(String(20), nullable=False)
    discount_rule_id = Column(Uuid, ForeignKey("discount_rules.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(100), nullable=False)
    category = Column(String(30), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    reason = Column(Text, nullable=True)
    applied_by = Column(Uuid, nullable=True)
    applied_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    reverses_id = Column(Uuid, ForeignKey("ledger_adjustments.id", ondelete="RESTRICT"), nullable=True)

    ledger = relationship("StudentLedger", back_populates="adjustments")
