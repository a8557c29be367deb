"""Student ledger schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from fee_ledger.core.enums import (
    AdjustmentKind,
    InstallmentStatus,
    LedgerStatus,
    PaymentMode,
    PaymentStatus,
)


# --- Assignment ---
class AssignFeeRequest(BaseModel):
    student_ref: UUID
    definition_id: UUID
    installment_plan: Optional[str] = Field(None, description="Plan name; defaults to the definition's default plan")
    optional_components: List[str] = Field(default_factory=list, description="Names of optional components to charge")
    discount_rule_ids: List[UUID] = Field(default_factory=list)
    reference_date: Optional[date] = Field(None, description="Anchor for due dates; defaults to today")
    override: bool = Field(False, description="Replace an existing ledger that has no payments")
    assigned_by: Optional[UUID] = None
    notes: Optional[str] = None


class BulkAssignRequest(BaseModel):
    student_refs: List[UUID] = Field(..., min_length=1)
    definition_id: Optional[UUID] = None
    class_ref: Optional[UUID] = Field(None, description="With period_ref, resolve the published definition")
    period_ref: Optional[UUID] = None
    installment_plan: Optional[str] = None
    optional_components: List[str] = Field(default_factory=list)
    reference_date: Optional[date] = None
    assigned_by: Optional[UUID] = None


class BatchFailure(BaseModel):
    ref: UUID
    code: str
    message: str


class BatchResult(BaseModel):
    succeeded: int
    failed: int
    failures: List[BatchFailure] = Field(default_factory=list)


# --- Ledger ---
class LedgerComponentResponse(BaseModel):
    name: str
    base_amount: Decimal
    tax_amount: Decimal
    final_amount: Decimal
    is_optional: bool

    class Config:
        from_attributes = True


class InstallmentResponse(BaseModel):
    installment_number: int
    name: str
    due_date: date
    amount: Decimal
    paid_amount: Decimal
    late_fee: Decimal
    late_fee_paid: Decimal
    status: InstallmentStatus
    paid_on: Optional[datetime] = None

    class Config:
        from_attributes = True


class AdjustmentResponse(BaseModel):
    id: UUID
    kind: AdjustmentKind
    discount_rule_id: Optional[UUID] = None
    name: str
    category: Optional[str] = None
    amount: Decimal
    reason: Optional[str] = None
    applied_by: Optional[UUID] = None
    applied_at: datetime
    reverses_id: Optional[UUID] = None

    class Config:
        from_attributes = True


class LedgerResponse(BaseModel):
    id: UUID
    student_ref: UUID
    period_ref: UUID
    class_ref: UUID
    fee_definition_id: UUID
    installment_plan: str
    total_fee_amount: Decimal
    total_tax: Decimal
    total_discount: Decimal
    concession_amount: Decimal
    total_late_fee: Decimal
    total_late_fee_accrued: Decimal
    total_late_fee_paid: Decimal
    total_paid: Decimal
    balance: Decimal
    status: LedgerStatus
    next_due_date: Optional[date] = None
    next_due_amount: Decimal
    last_payment_date: Optional[datetime] = None
    late_fee_as_of: Optional[date] = None
    closure_reason: Optional[str] = None
    is_active: bool
    version: int
    components: List[LedgerComponentResponse]
    installments: List[InstallmentResponse]
    adjustments: List[AdjustmentResponse]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class LedgerSummary(BaseModel):
    id: UUID
    student_ref: UUID
    period_ref: UUID
    class_ref: UUID
    total_fee_amount: Decimal
    total_paid: Decimal
    balance: Decimal
    status: LedgerStatus
    next_due_date: Optional[date] = None
    next_due_amount: Decimal

    class Config:
        from_attributes = True


# --- Payment ---
class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., description="Must be positive and not exceed the balance")
    payment_mode: PaymentMode
    collected_by: Optional[UUID] = None
    transaction_reference: Optional[str] = Field(None, max_length=100)
    paid_at: Optional[datetime] = None
    remarks: Optional[str] = None


class AllocationResponse(BaseModel):
    installment_number: int
    installment_name: str
    principal_applied: Decimal
    late_fee_applied: Decimal

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: UUID
    ledger_id: UUID
    amount: Decimal
    principal_amount: Decimal
    late_fee_amount: Decimal
    payment_mode: PaymentMode
    transaction_reference: Optional[str] = None
    status: PaymentStatus
    paid_at: datetime
    collected_by: Optional[UUID] = None
    remarks: Optional[str] = None
    refunded_at: Optional[datetime] = None
    refunded_by: Optional[UUID] = None
    refund_reason: Optional[str] = None
    allocations: List[AllocationResponse]
    created_at: datetime

    class Config:
        from_attributes = True


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    refunded_by: Optional[UUID] = None


# --- Late fees ---
class RecomputeLateFeesRequest(BaseModel):
    as_of: Optional[date] = None
    period_ref: Optional[UUID] = Field(None, description="Only for bulk recompute; limit to one academic period")


# --- Discounts / concessions ---
class ApplyDiscountRequest(BaseModel):
    discount_rule_id: UUID
    applied_by: Optional[UUID] = None


class ConcessionRequest(BaseModel):
    amount: Decimal = Field(..., description="Manual concession amount")
    reason: str = Field(..., min_length=1)
    approved_by: Optional[UUID] = None


class ReverseAdjustmentRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    actor: Optional[UUID] = None


class CloseLedgerRequest(BaseModel):
    status: LedgerStatus = Field(..., description="WAIVED or CANCELLED")
    reason: str = Field(..., min_length=1)
    actor: Optional[UUID] = None


# --- Reports ---
class CollectionSummary(BaseModel):
    period_ref: UUID
    class_ref: Optional[UUID] = None
    ledger_count: int
    status_counts: dict[str, int]
    total_fee_amount: Decimal
    total_discount: Decimal
    total_concession: Decimal
    total_late_fee_accrued: Decimal
    total_collected: Decimal
    total_outstanding: Decimal
    collection_percentage: Decimal


class DefaulterItem(BaseModel):
    ledger_id: UUID
    student_ref: UUID
    class_ref: UUID
    balance: Decimal
    next_due_date: date
    next_due_amount: Decimal
    days_overdue: int
    status: LedgerStatus
