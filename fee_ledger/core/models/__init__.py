from fee_ledger.core.models.fee_definition import (
    DiscountRule,
    FeeDefinition,
    FeeDefinitionComponent,
    InstallmentPlan,
    InstallmentPlanEntry,
)
from fee_ledger.core.models.student_ledger import (
    LedgerAdjustment,
    LedgerComponent,
    LedgerInstallment,
    StudentLedger,
)
from fee_ledger.core.models.ledger_payment import LedgerPayment, PaymentAllocation
from fee_ledger.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "DiscountRule",
    "FeeDefinition",
    "FeeDefinitionComponent",
    "InstallmentPlan",
    "InstallmentPlanEntry",
    "StudentLedger",
    "LedgerComponent",
    "LedgerInstallment",
    "LedgerAdjustment",
    "LedgerPayment",
    "PaymentAllocation",
    "FeeAuditLog",
]
