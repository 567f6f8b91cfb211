"""
Trust Account database model.

One escrow record per property sale transaction.
"""

from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, Enum, Index, text
from sqlalchemy.sql import func
from trust_backend.app.db.session import Base
from trust_backend.app.models.trust_enums import TrustStatus, WorkflowStage
from trust_backend.app.domain.trust.parties import resolve_party


class TrustAccount(Base):
    """
    Trust Account aggregate.

    Holds buyer funds for one property sale until settlement and disbursement.
    running_balance is a denormalized copy of the last ledger entry's
    snapshot; it is only ever written under the per-account guard
    (see services/account_locking.py).
    Follows the workflow: OPEN -> SETTLED -> CLOSED.
    All money columns are integer minor units (cents).
    """
    __tablename__ = "trust_accounts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Tenant + property (property CRUD is external; label is denormalized for search)
    company_id = Column(Integer, nullable=False, index=True)
    property_id = Column(Integer, nullable=False, index=True)
    property_label = Column(String(255), nullable=True)

    # Parties: external user id, free-text name, or both
    buyer_id = Column(Integer, nullable=True, index=True)
    buyer_name = Column(String(200), nullable=True)
    seller_id = Column(Integer, nullable=True, index=True)
    seller_name = Column(String(200), nullable=True)

    # Balances
    opening_balance = Column(BigInteger, nullable=False, default=0)
    running_balance = Column(BigInteger, nullable=False, default=0)
    closing_balance = Column(BigInteger, nullable=False, default=0)

    # Sale figures
    purchase_price = Column(BigInteger, nullable=False, default=0)
    amount_received = Column(BigInteger, nullable=False, default=0)

    # Workflow
    status = Column(Enum(TrustStatus), default=TrustStatus.OPEN, nullable=False, index=True)
    workflow_state = Column(Enum(WorkflowStage), default=WorkflowStage.TRUST_OPEN, nullable=False)
    locked = Column(Boolean, default=False, nullable=False)
    lock_reason = Column(String(255), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    last_transaction_at = Column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency counter
    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

    # Only one live (OPEN/SETTLED) trust account per property
    __table_args__ = (
        Index(
            'ix_trust_accounts_active_property', 'company_id', 'property_id', unique=True,
            postgresql_where=text("status != 'CLOSED'"),
            sqlite_where=text("status != 'CLOSED'")
        ),
    )

    @property
    def buyer(self):
        return resolve_party(self.buyer_id, self.buyer_name)

    @property
    def seller(self):
        return resolve_party(self.seller_id, self.seller_name)

    @property
    def amount_outstanding(self) -> int:
        return max(0, (self.purchase_price or 0) - (self.amount_received or 0))

    def __repr__(self):
        return f"<TrustAccount(id={self.id}, property_id={self.property_id}, status='{self.status.value}', balance={self.running_balance})>"
