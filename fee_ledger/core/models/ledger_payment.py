"""Ledger payment: immutable record of money received and how it was allocated across installments."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from fee_ledger.core.enums import PaymentStatus
from fee_ledger.db.session import Base


class LedgerPayment(Base):
    """Payment against a student ledger. Only a refund may change it after creation."""

    __tablename__ = "ledger_payments"
    __table_args__ = (
        CheckConstraint("status IN ('SUCCESS','REFUNDED')", name="chk_ledger_payment_status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id = Column(Uuid, ForeignKey("student_ledgers.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    principal_amount = Column(Numeric(12, 2), nullable=False)
    late_fee_amount = Column(Numeric(12, 2), nullable=False)
    payment_mode = Column(String(30), nullable=False)
    # Gateway transaction id; unique so a replayed submission cannot be booked twice
    transaction_reference = Column(String(100), nullable=True, unique=True)
    status = Column(String(20), nullable=False, default=PaymentStatus.SUCCESS.value)
    paid_at = Column(DateTime(timezone=True), nullable=False)
    collected_by = Column(Uuid, nullable=True)
    remarks = Column(Text, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    refunded_by = Column(Uuid, nullable=True)
    refund_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    ledger = relationship("StudentLedger", back_populates="payments")
    allocations = relationship(
        "PaymentAllocation",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentAllocation.installment_number",
        lazy="selectin",
    )


class PaymentAllocation(Base):
    __tablename__ = "payment_allocations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_id = Column(Uuid, ForeignKey("ledger_payments.id", ondelete="CASCADE"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    installment_name = Column(String(100), nullable=False)
    principal_applied = Column(Numeric(12, 2), nullable=False)
    late_fee_applied = Column(Numeric(12, 2), nullable=False)

    payment = relationship("LedgerPayment", back_populates="allocations")
