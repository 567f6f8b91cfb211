"""
Audit trail service for trust account mutations.

Every successful mutating operation writes exactly one audit row inside the
operation's own transaction: the row is flushed, never committed here, so a
failed audit write rolls the whole operation back.
"""

from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from trust_backend.app.models.audit_log import TrustAuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    TRUST_ACCOUNT_OPENED = "TRUST_ACCOUNT_OPENED"
    BUYER_PAYMENT_RECORDED = "BUYER_PAYMENT_RECORDED"
    ADJUSTMENT_POSTED = "ADJUSTMENT_POSTED"

    SETTLEMENT_CALCULATED = "SETTLEMENT_CALCULATED"
    SETTLEMENT_ACCEPTED = "SETTLEMENT_ACCEPTED"

    TAX_DEDUCTIONS_APPLIED = "TAX_DEDUCTIONS_APPLIED"
    TAX_ALREADY_APPLIED = "TAX_ALREADY_APPLIED"
    COMMISSION_DEDUCTED = "COMMISSION_DEDUCTED"
    TAX_REMITTED = "TAX_REMITTED"

    SELLER_TRANSFER = "SELLER_TRANSFER"
    TRUST_ACCOUNT_CLOSED = "TRUST_ACCOUNT_CLOSED"
    WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"


class AuditEntity:
    """Entity type names recorded on audit rows."""
    TRUST_ACCOUNT = "TrustAccount"
    LEDGER_ENTRY = "LedgerEntry"
    SETTLEMENT = "Settlement"
    TAX_RECORD = "TaxRecord"


async def record_audit(
    db: AsyncSession,
    action: str,
    trust_account_id: Optional[int],
    entity_type: str,
    entity_id: Optional[int] = None,
    actor: Optional[Dict[str, Any]] = None,
    company_id: Optional[int] = None,
    ledger_entry_ids: Optional[List[int]] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> TrustAuditLog:
    """
    Add an audit row to the current transaction.

    Args:
        db: Database session (the caller's unit of work)
        action: Action performed (use AuditAction constants)
        trust_account_id: Account the action touched
        entity_type: AuditEntity name of the touched record
        entity_id: ID of the touched record
        actor: Token payload of the acting user, None for system actions
        company_id: Tenant, defaults to the actor's company
        ledger_entry_ids: Ledger rows posted by the action
        metadata: Additional context as JSON

    Returns:
        Flushed TrustAuditLog instance
    """
    actor = actor or {}
    meta_data = dict(metadata or {})
    meta_data["ledger_entry_ids"] = list(ledger_entry_ids or [])

    audit_log = TrustAuditLog(
        company_id=company_id if company_id is not None else actor.get("company_id"),
        trust_account_id=trust_account_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor.get("user_id"),
        actor_username=actor.get("sub"),
        meta_data=meta_data
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def list_by_account(
    db: AsyncSession,
    trust_account_id: int,
    limit: Optional[int] = 100
) -> List[TrustAuditLog]:
    """
    Retrieve the audit trail of one trust account, most recent first.

    limit=None returns the whole trail (report snapshots).
    """
    query = (
        select(TrustAuditLog)
        .where(TrustAuditLog.trust_account_id == trust_account_id)
        .order_by(desc(TrustAuditLog.timestamp), desc(TrustAuditLog.id))
    )
    if limit is not None:
        query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
