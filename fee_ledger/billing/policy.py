"""Late-fee policy value object shared by fee definitions and the late-fee calculator."""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fee_ledger.core.enums import LateFeeStartMode, LateFeeType


class LateFeePolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    fee_type: LateFeeType = LateFeeType.PER_DAY
    amount_per_day: Decimal = Field(Decimal("10"), ge=0)
    flat_amount: Decimal = Field(Decimal("100"), ge=0)
    percentage: Decimal = Field(Decimal("1"), ge=0, le=100)
    grace_days: int = Field(5, ge=0)
    start_mode: LateFeeStartMode = LateFeeStartMode.AFTER_GRACE
    fixed_start_date: Optional[date] = None
    rounding_unit: Decimal = Field(Decimal("1"), gt=0)
    max_fee: Optional[Decimal] = Field(Decimal("5000"), ge=0)  # per-installment cap; None means uncapped

    @model_validator(mode="after")
    def validate_fixed_start(self) -> "LateFeePolicy":
        if self.start_mode == LateFeeStartMode.FIXED_DATE and self.fixed_start_date is None:
            raise ValueError("fixed_start_date is required when start_mode is FIXED_DATE")
        return self
