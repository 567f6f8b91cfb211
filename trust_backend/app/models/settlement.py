"""
Settlement snapshot database model.

Every distinct settlement calculation for a trust account is stored as a
numbered version so that tax application binds to a specific projection.
"""

from sqlalchemy import Column, Integer, BigInteger, Boolean, Numeric, ForeignKey, DateTime, JSON, UniqueConstraint
from sqlalchemy.sql import func
from trust_backend.app.db.session import Base


class SettlementSnapshot(Base):
    """
    Settlement snapshot model.

    Stores the computed statement (gross, ordered deductions, net payout)
    together with the inputs that produced it.
    Becomes locked when the account moves OPEN -> SETTLED.
    Money columns are minor units; deductions is a list of {type, amount}.
    """
    __tablename__ = "settlement_snapshots"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    trust_account_id = Column(Integer, ForeignKey('trust_accounts.id'), nullable=False, index=True)
    version = Column(Integer, nullable=False)

    # Results
    sale_price = Column(BigInteger, nullable=False)
    gross_proceeds = Column(BigInteger, nullable=False)
    deductions = Column(JSON, nullable=False)
    net_payout = Column(BigInteger, nullable=False)

    # Inputs
    commission_amount = Column(BigInteger, nullable=False)
    apply_vat_on_sale = Column(Boolean, nullable=False, default=False)
    cgt_rate = Column(Numeric(8, 6), nullable=False)
    cgt_override = Column(BigInteger, nullable=True)
    vat_sale_rate = Column(Numeric(8, 6), nullable=False)
    vat_on_commission_rate = Column(Numeric(8, 6), nullable=False)

    locked = Column(Boolean, nullable=False, default=False)
    created_by = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('trust_account_id', 'version', name='uq_settlement_snapshots_account_version'),
    )

    def deduction_amount(self, deduction_type: str) -> int:
        for item in self.deductions or []:
            if item["type"] == deduction_type:
                return int(item["amount"])
        return 0

    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self):
        return f"<SettlementSnapshot(id={self.id}, account={self.trust_account_id}, version={self.version}, net={self.net_payout})>"
