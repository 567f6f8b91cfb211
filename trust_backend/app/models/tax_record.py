"""
Tax record database model.

One row per posted tax movement for a trust account.
"""

from sqlalchemy import Column, Integer, BigInteger, Boolean, String, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from trust_backend.app.db.session import Base
from trust_backend.app.models.trust_enums import TaxType


class TaxRecord(Base):
    """
    Tax record model.

    amount is negative when a recalculated settlement lowered the tax and
    the difference was reversed. paid_to_zimra is the only mutable field.
    """
    __tablename__ = "tax_records"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    trust_account_id = Column(Integer, ForeignKey('trust_accounts.id'), nullable=False, index=True)
    ledger_entry_id = Column(Integer, ForeignKey('ledger_entries.id'), nullable=False)
    settlement_version = Column(Integer, nullable=False)

    tax_type = Column(Enum(TaxType), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)

    # ZIMRA remittance
    paid_to_zimra = Column(Boolean, nullable=False, default=False)
    payment_reference = Column(String(100), nullable=True)
    remitted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self):
        return f"<TaxRecord(id={self.id}, type='{self.tax_type.value}', amount={self.amount}, paid={self.paid_to_zimra})>"
