"""
Ledger Entry Store.

Append-only debit/credit rows per trust account. Callers must hold the
account_guard for the account: append reads the aggregate's running
balance, writes the new entry and the new balance in the same transaction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from trust_backend.app.core.exceptions import InvalidEntryError, InsufficientTrustFundsError
from trust_backend.app.domain.trust.workflow import ensure_mutable
from trust_backend.app.models.ledger_entry import LedgerEntry
from trust_backend.app.models.trust_account import TrustAccount
from trust_backend.app.models.trust_enums import LedgerEntryType

logger = logging.getLogger("trust_ledger.ledger")


@dataclass(frozen=True)
class ChainCheck:
    """Result of replaying a ledger against its opening balance."""
    valid: bool
    ledger_balance: int
    entry_count: int
    first_break_sequence: Optional[int] = None


def validate_amounts(debit, credit) -> None:
    """Exactly one of debit/credit must be non-zero; neither may be negative."""
    for name, value in (("debit", debit), ("credit", credit)):
        if not isinstance(value, int) or isinstance(value, bool):
            raise InvalidEntryError(f"{name} must be an integer amount in minor units", details={name: repr(value)})
        if value < 0:
            raise InvalidEntryError(f"{name} cannot be negative", details={name: value})
    if (debit == 0) == (credit == 0):
        raise InvalidEntryError(
            "Exactly one of debit or credit must be non-zero",
            details={"debit": debit, "credit": credit}
        )


class LedgerStore:

    @staticmethod
    async def next_sequence(db: AsyncSession, trust_account_id: int) -> int:
        result = await db.execute(
            select(func.max(LedgerEntry.sequence)).where(LedgerEntry.trust_account_id == trust_account_id)
        )
        return (result.scalar() or 0) + 1

    @staticmethod
    async def append(
        db: AsyncSession,
        account: TrustAccount,
        entry_type: LedgerEntryType,
        debit: int = 0,
        credit: int = 0,
        reference: Optional[str] = None,
        payment_id: Optional[str] = None,
        created_by: Optional[int] = None,
        reversal_of: Optional[LedgerEntryType] = None
    ) -> LedgerEntry:
        """
        Append one entry and move the account's running balance.

        Raises:
            AccountLockedError: account is closed
            InvalidEntryError: debit/credit shape or sign is wrong, or reversal_of
                is set on anything but an ADJUSTMENT credit
            InsufficientTrustFundsError: the entry would overdraw the account
        """
        ensure_mutable(account)
        validate_amounts(debit, credit)
        if reversal_of is not None and (entry_type != LedgerEntryType.ADJUSTMENT or credit == 0):
            raise InvalidEntryError(
                "Only ADJUSTMENT credits can reverse a posted deduction",
                details={"entry_type": entry_type.value, "reversal_of": reversal_of.value}
            )

        previous = account.running_balance or 0
        new_balance = previous + credit - debit
        if new_balance < 0:
            raise InsufficientTrustFundsError(previous, debit)

        sequence = await LedgerStore.next_sequence(db, account.id)
        entry = LedgerEntry(
            trust_account_id=account.id,
            company_id=account.company_id,
            sequence=sequence,
            entry_type=entry_type,
            debit=debit,
            credit=credit,
            running_balance=new_balance,
            reference=reference,
            payment_id=payment_id,
            reversal_of=reversal_of,
            created_by=created_by
        )
        db.add(entry)

        account.running_balance = new_balance
        account.closing_balance = new_balance
        account.last_transaction_at = datetime.now(timezone.utc)
        if entry_type == LedgerEntryType.BUYER_PAYMENT:
            account.amount_received = (account.amount_received or 0) + credit

        await db.flush()

        logger.info(
            "Ledger entry appended",
            extra={
                "trust_account_id": account.id,
                "sequence": sequence,
                "entry_type": entry_type.value,
                "debit": debit,
                "credit": credit,
                "running_balance": new_balance,
            }
        )
        return entry

    @staticmethod
    async def list_by_account(
        db: AsyncSession,
        trust_account_id: int,
        page: int = 1,
        limit: int = 25
    ) -> Tuple[List[LedgerEntry], int]:
        """Page through an account's entries, newest first."""
        total = (await db.execute(
            select(func.count(LedgerEntry.id)).where(LedgerEntry.trust_account_id == trust_account_id)
        )).scalar() or 0

        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.trust_account_id == trust_account_id)
            .order_by(desc(LedgerEntry.sequence))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def replay(db: AsyncSession, trust_account_id: int) -> List[LedgerEntry]:
        """All entries in creation order."""
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.trust_account_id == trust_account_id)
            .order_by(LedgerEntry.sequence)
        )
        return list(result.scalars().all())

    @staticmethod
    async def find_by_payment_id(db: AsyncSession, company_id: int, payment_id: str) -> Optional[LedgerEntry]:
        """payment_id values come from the company's payment provider and only dedupe within it."""
        result = await db.execute(
            select(LedgerEntry).where(LedgerEntry.company_id == company_id, LedgerEntry.payment_id == payment_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def total_for_type(
        db: AsyncSession,
        trust_account_id: int,
        entry_type: LedgerEntryType,
        reversal_of: Optional[LedgerEntryType] = None
    ) -> Tuple[int, int]:
        """Sum of (debits, credits) for one entry type, optionally only the reversals of another type."""
        query = select(
            func.coalesce(func.sum(LedgerEntry.debit), 0),
            func.coalesce(func.sum(LedgerEntry.credit), 0)
        ).where(
            LedgerEntry.trust_account_id == trust_account_id,
            LedgerEntry.entry_type == entry_type
        )
        if reversal_of is not None:
            query = query.where(LedgerEntry.reversal_of == reversal_of)
        debits, credits = (await db.execute(query)).one()
        return int(debits), int(credits)


def check_chain(opening_balance: int, entries: List[LedgerEntry]) -> ChainCheck:
    """
    Replay entries (in sequence order) from the opening balance.

    The chain is valid when sequences run 1..n without gaps and every
    snapshot equals the replayed balance at that point.
    """
    balance = opening_balance or 0
    first_break = None
    for expected_sequence, entry in enumerate(entries, start=1):
        balance += entry.credit - entry.debit
        if first_break is None and (entry.sequence != expected_sequence or entry.running_balance != balance):
            first_break = entry.sequence
    return ChainCheck(first_break is None, balance, len(entries), first_break)
