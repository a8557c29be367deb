from typing import Optional
from uuid import UUID

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    code = "SERVICE_ERROR"

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class DefinitionNotFound(ServiceError):
    code = "DEFINITION_NOT_FOUND"

    def __init__(self, message: str = "Fee definition not found") -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class InvalidDefinition(ServiceError):
    code = "INVALID_DEFINITION"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class LedgerNotFound(ServiceError):
    code = "LEDGER_NOT_FOUND"

    def __init__(self, message: str = "Student ledger not found") -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class PaymentNotFound(ServiceError):
    code = "PAYMENT_NOT_FOUND"

    def __init__(self, message: str = "Payment not found") -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class AdjustmentNotFound(ServiceError):
    code = "ADJUSTMENT_NOT_FOUND"

    def __init__(self, message: str = "Ledger adjustment not found") -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class DuplicateLedger(ServiceError):
    code = "DUPLICATE_LEDGER"

    def __init__(self, message: str = "Fee already assigned for this academic period") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class InvalidAmount(ServiceError):
    code = "INVALID_AMOUNT"

    def __init__(self, message: str = "Amount must be greater than zero") -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class BalanceExceeded(ServiceError):
    code = "BALANCE_EXCEEDED"

    def __init__(self, message: str = "Amount cannot exceed remaining balance") -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class DuplicatePaymentReference(ServiceError):
    """Raised when a gateway transaction reference was already recorded."""

    code = "DUPLICATE_PAYMENT_REFERENCE"

    def __init__(self, transaction_reference: str, payment_id: Optional[UUID] = None) -> None:
        super().__init__(
            f"Payment with transaction reference {transaction_reference!r} already recorded",
            status.HTTP_409_CONFLICT,
        )
        self.transaction_reference = transaction_reference
        self.payment_id = payment_id


class LedgerTerminal(ServiceError):
    code = "LEDGER_TERMINAL"

    def __init__(self, ledger_status: str) -> None:
        super().__init__(f"Ledger is {ledger_status}; no further changes accepted", status.HTTP_409_CONFLICT)
        self.ledger_status = ledger_status


class ConcurrentUpdateConflict(ServiceError):
    code = "CONCURRENT_UPDATE_CONFLICT"

    def __init__(self, message: str = "Ledger was modified concurrently; please retry") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class DiscountNotApplicable(ServiceError):
    code = "DISCOUNT_NOT_APPLICABLE"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class InvalidPaymentState(ServiceError):
    code = "INVALID_PAYMENT_STATE"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)
