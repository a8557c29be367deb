from enum import Enum


class FeeDefinitionStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class LateFeeType(str, Enum):
    PER_DAY = "PER_DAY"
    FLAT = "FLAT"
    PERCENTAGE = "PERCENTAGE"


class LateFeeStartMode(str, Enum):
    AFTER_GRACE = "AFTER_GRACE"
    FIXED_DATE = "FIXED_DATE"


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class DiscountCategory(str, Enum):
    SIBLING = "SIBLING"
    MERIT = "MERIT"
    SPORTS_QUOTA = "SPORTS_QUOTA"
    STAFF_CHILD = "STAFF_CHILD"
    FINANCIAL_AID = "FINANCIAL_AID"
    EARLY_BIRD = "EARLY_BIRD"
    CUSTOM = "CUSTOM"


class InstallmentStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    WAIVED = "WAIVED"


class LedgerStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    OVERDUE = "OVERDUE"
    PAID = "PAID"
    WAIVED = "WAIVED"
    CANCELLED = "CANCELLED"


class AdjustmentKind(str, Enum):
    DISCOUNT = "DISCOUNT"
    CONCESSION = "CONCESSION"


class PaymentMode(str, Enum):
    CASH = "CASH"
    CHEQUE = "CHEQUE"
    BANK_TRANSFER = "BANK_TRANSFER"
    UPI = "UPI"
    CARD = "CARD"
    NET_BANKING = "NET_BANKING"
    ONLINE_GATEWAY = "ONLINE_GATEWAY"


class PaymentStatus(str, Enum):
    SUCCESS = "SUCCESS"
    REFUNDED = "REFUNDED"
