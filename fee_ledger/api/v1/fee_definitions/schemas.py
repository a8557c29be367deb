"""Fee definition schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from fee_ledger.billing.policy import LateFeePolicy
from fee_ledger.core.enums import DiscountCategory, DiscountType, FeeDefinitionStatus


# --- Components ---
class FeeComponentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    base_amount: Decimal = Field(..., ge=0)
    is_optional: bool = False
    tax_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    description: Optional[str] = None


class FeeComponentResponse(BaseModel):
    id: UUID
    name: str
    base_amount: Decimal
    is_optional: bool
    tax_percentage: Decimal
    description: Optional[str] = None
    display_order: int

    class Config:
        from_attributes = True


# --- Installment plans ---
class InstallmentPlanEntryCreate(BaseModel):
    installment_number: int = Field(..., ge=1)
    due_month: int = Field(..., ge=1, le=12)
    due_day: int = Field(..., ge=1, le=31)
    percentage: Decimal = Field(..., gt=0, le=100)


class InstallmentPlanCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50, description="Monthly, Quarterly, Half-Yearly, Annual ...")
    entries: List[InstallmentPlanEntryCreate] = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_entries(self) -> "InstallmentPlanCreate":
        numbers = [e.installment_number for e in self.entries]
        if len(numbers) != len(set(numbers)):
            raise ValueError(f"Installment numbers must be unique in plan {self.name!r}")
        if sum(e.percentage for e in self.entries) != Decimal("100"):
            raise ValueError(f"Installment percentages in plan {self.name!r} must total 100")
        return self


class InstallmentPlanEntryResponse(BaseModel):
    installment_number: int
    due_month: int
    due_day: int
    percentage: Decimal

    class Config:
        from_attributes = True


class InstallmentPlanResponse(BaseModel):
    id: UUID
    name: str
    entries: List[InstallmentPlanEntryResponse]

    class Config:
        from_attributes = True


# --- Discount rules ---
class DiscountRuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category: DiscountCategory = DiscountCategory.CUSTOM
    discount_type: DiscountType
    value: Decimal = Field(..., gt=0)
    applicable_components: List[str] = Field(default_factory=list, description="Empty means the whole fee")
    max_amount: Optional[Decimal] = Field(None, ge=0)
    valid_from: Optional[date] = None
    valid_till: Optional[date] = None
    is_active: bool = True

    @model_validator(mode="after")
    def validate_rule(self) -> "DiscountRuleCreate":
        if self.discount_type == DiscountType.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        if self.valid_from and self.valid_till and self.valid_from > self.valid_till:
            raise ValueError("valid_from must not be after valid_till")
        return self


class DiscountRuleResponse(BaseModel):
    id: UUID
    name: str
    category: str
    discount_type: DiscountType
    value: Decimal
    applicable_components: List[str]
    max_amount: Optional[Decimal] = None
    valid_from: Optional[date] = None
    valid_till: Optional[date] = None
    is_active: bool

    class Config:
        from_attributes = True


# --- Definition ---
class FeeDefinitionCreate(BaseModel):
    class_ref: UUID
    period_ref: UUID
    name: str = Field(..., min_length=1, max_length=255)
    components: List[FeeComponentCreate] = Field(..., min_length=1)
    installment_plans: List[InstallmentPlanCreate] = Field(default_factory=list)
    discount_rules: List[DiscountRuleCreate] = Field(default_factory=list)
    late_fee_policy: LateFeePolicy = Field(default_factory=LateFeePolicy)
    default_plan: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[UUID] = None

    @model_validator(mode="after")
    def validate_definition(self) -> "FeeDefinitionCreate":
        component_names = [c.name for c in self.components]
        if len(component_names) != len(set(component_names)):
            raise ValueError("Component names must be unique")
        plan_names = [p.name for p in self.installment_plans]
        if len(plan_names) != len(set(plan_names)):
            raise ValueError("Installment plan names must be unique")
        if self.default_plan and self.default_plan not in plan_names:
            raise ValueError(f"default_plan {self.default_plan!r} is not one of the installment plans")
        for rule in self.discount_rules:
            unknown = set(rule.applicable_components) - set(component_names)
            if unknown:
                raise ValueError(f"Discount rule {rule.name!r} references unknown components: {sorted(unknown)}")
        return self


class FeeDefinitionActionRequest(BaseModel):
    actor: Optional[UUID] = None


class FeeDefinitionResponse(BaseModel):
    id: UUID
    class_ref: UUID
    period_ref: UUID
    name: str
    status: FeeDefinitionStatus
    default_plan: Optional[str] = None
    total_mandatory_amount: Decimal
    components: List[FeeComponentResponse]
    installment_plans: List[InstallmentPlanResponse]
    discount_rules: List[DiscountRuleResponse]
    late_fee_policy: LateFeePolicy
    notes: Optional[str] = None
    created_by: Optional[UUID] = None
    published_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
