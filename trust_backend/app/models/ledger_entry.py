"""
Ledger Entry database model.

Immutable trust account ledger rows.
"""

from sqlalchemy import Column, Integer, BigInteger, ForeignKey, DateTime, Enum, String, UniqueConstraint, event
from sqlalchemy.sql import func
from trust_backend.app.db.session import Base
from trust_backend.app.models.trust_enums import LedgerEntryType


class LedgerEntry(Base):
    """
    Ledger Entry model.

    One dated debit or credit against a trust account, carrying the
    account's running balance immediately after the entry.
    Exactly one of debit/credit is non-zero. Amounts are minor units.
    NO updates or deletions allowed: corrections are new ADJUSTMENT entries.
    """
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Linkage
    trust_account_id = Column(Integer, ForeignKey('trust_accounts.id'), nullable=False, index=True)
    company_id = Column(Integer, nullable=False, index=True)  # copied from the account, scopes payment_id
    sequence = Column(Integer, nullable=False)  # 1-based position in the account ledger

    # Entry details
    entry_type = Column(Enum(LedgerEntryType), nullable=False, index=True)
    debit = Column(BigInteger, nullable=False, default=0)
    credit = Column(BigInteger, nullable=False, default=0)
    running_balance = Column(BigInteger, nullable=False)

    reference = Column(String(255), nullable=True)
    payment_id = Column(String(64), nullable=True, index=True)  # external sale payment, dedupe key per company
    # Set only on ADJUSTMENT credits posted by the deduction applier
    reversal_of = Column(Enum(LedgerEntryType, name="reversed_entry_type"), nullable=True)
    created_by = Column(Integer, nullable=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Two appends can never claim the same position in one ledger, and an
    # external payment is posted at most once per company
    __table_args__ = (
        UniqueConstraint('trust_account_id', 'sequence', name='uq_ledger_entries_account_sequence'),
        UniqueConstraint('company_id', 'payment_id', name='uq_ledger_entries_company_payment'),
    )

    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, type='{self.entry_type.value}', debit={self.debit}, credit={self.credit}, balance={self.running_balance})>"


@event.listens_for(LedgerEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise ValueError("Ledger entries are immutable. Post an ADJUSTMENT entry instead.")


@event.listens_for(LedgerEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ValueError("Ledger entries are immutable and cannot be deleted.")
