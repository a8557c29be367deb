"""
Fee audit trail. Call on every financial state change, inside the same transaction.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.models import FeeAuditLog, StudentLedger


async def log_fee_audit(
    db: AsyncSession,
    reference_table: str,
    reference_id: UUID,
    action_type: str,
    old_value: Optional[dict],
    new_value: Optional[dict],
    changed_by: Optional[UUID],
) -> None:
    """Append one audit log entry. Caller must commit."""
    db.add(
        FeeAuditLog(
            reference_table=reference_table,
            reference_id=reference_id,
            action_type=action_type,
            old_value=old_value,
            new_value=new_value,
            changed_by=changed_by,
        )
    )


def ledger_snapshot(ledger: StudentLedger) -> dict:
    """JSON-safe view of the derived ledger figures for old/new audit values."""
    return {
        "status": ledger.status,
        "balance": str(ledger.balance),
        "total_paid": str(ledger.total_paid),
        "total_discount": str(ledger.total_discount),
        "concession_amount": str(ledger.concession_amount),
        "total_late_fee": str(ledger.total_late_fee),
        "next_due_date": ledger.next_due_date.isoformat() if ledger.next_due_date else None,
    }
