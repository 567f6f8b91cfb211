"""
Trust Audit Log Database Model.

Immutable record of every mutating action against a trust account.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey, event
from sqlalchemy.sql import func
from trust_backend.app.db.session import Base


class TrustAuditLog(Base):
    """
    Audit log model for trust account mutations.

    Events logged (see services/audit.py AuditAction):
    - TRUST_ACCOUNT_OPENED / BUYER_PAYMENT_RECORDED / ADJUSTMENT_POSTED
    - SETTLEMENT_CALCULATED / SETTLEMENT_ACCEPTED
    - TAX_DEDUCTIONS_APPLIED / COMMISSION_DEDUCTED / TAX_REMITTED
    - SELLER_TRANSFER / TRUST_ACCOUNT_CLOSED / WORKFLOW_TRANSITION

    meta_data carries ledger_entry_ids so every ledger row can be paired
    with the audit entry that produced it.
    """
    __tablename__ = "trust_audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    company_id = Column(Integer, index=True, nullable=True)
    trust_account_id = Column(Integer, ForeignKey('trust_accounts.id'), index=True, nullable=True)

    # What was touched
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self):
        return f"<TrustAuditLog(id={self.id}, action='{self.action}', account={self.trust_account_id}, actor={self.actor_username})>"


@event.listens_for(TrustAuditLog, "before_update")
def _reject_update(mapper, connection, target):
    raise ValueError("Audit log entries are immutable.")


@event.listens_for(TrustAuditLog, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ValueError("Audit log entries cannot be deleted.")
