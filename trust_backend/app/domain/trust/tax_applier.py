"""
Tax Deduction Applier (Domain Logic).

Posts the tax and commission deductions of a stored settlement version to
the ledger. Amounts are applied as a delta against what was already posted
for the same type, which makes re-application idempotent and turns a
recalculated settlement into a single correcting movement per type.
Callers hold the account_guard.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from trust_backend.app.domain.trust.ledger_store import LedgerStore
from trust_backend.app.models.ledger_entry import LedgerEntry
from trust_backend.app.models.settlement import SettlementSnapshot
from trust_backend.app.models.tax_record import TaxRecord
from trust_backend.app.models.trust_account import TrustAccount
from trust_backend.app.models.trust_enums import DeductionType, LedgerEntryType, TaxType, TAX_DEDUCTIONS

TAX_REVERSAL_PREFIX = "Tax reversal"
COMMISSION_REVERSAL_PREFIX = "Commission reversal"
RESERVED_REFERENCE_PREFIXES = (TAX_REVERSAL_PREFIX, COMMISSION_REVERSAL_PREFIX)


@dataclass
class TaxSummary:
    cgt: int = 0
    vat: int = 0
    vat_on_commission: int = 0
    paid_to_zimra_count: int = 0
    records: List[TaxRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.cgt + self.vat + self.vat_on_commission


class TaxDeductionApplier:

    @staticmethod
    async def list_records(db: AsyncSession, trust_account_id: int) -> List[TaxRecord]:
        result = await db.execute(
            select(TaxRecord)
            .where(TaxRecord.trust_account_id == trust_account_id)
            .order_by(TaxRecord.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def applied_by_type(db: AsyncSession, trust_account_id: int) -> Dict[TaxType, int]:
        result = await db.execute(
            select(TaxRecord.tax_type, func.coalesce(func.sum(TaxRecord.amount), 0))
            .where(TaxRecord.trust_account_id == trust_account_id)
            .group_by(TaxRecord.tax_type)
        )
        applied = {tax_type: 0 for tax_type in TaxType}
        for tax_type, amount in result.all():
            applied[tax_type] = int(amount)
        return applied

    @staticmethod
    async def summarize(db: AsyncSession, trust_account_id: int) -> TaxSummary:
        records = await TaxDeductionApplier.list_records(db, trust_account_id)
        summary = TaxSummary(records=records)
        for record in records:
            if record.tax_type == TaxType.CGT:
                summary.cgt += record.amount
            elif record.tax_type == TaxType.VAT:
                summary.vat += record.amount
            else:
                summary.vat_on_commission += record.amount
            if record.paid_to_zimra:
                summary.paid_to_zimra_count += 1
        return summary

    @staticmethod
    async def apply_taxes(
        db: AsyncSession,
        account: TrustAccount,
        snapshot: SettlementSnapshot,
        zimra_payment_reference: Optional[str] = None,
        created_by: Optional[int] = None
    ) -> List[Tuple[LedgerEntry, TaxRecord]]:
        """
        Post CGT, VAT on sale and VAT on commission from a settlement version.

        Returns:
            (ledger entry, tax record) pairs actually posted; empty when the
            ledger already matches the settlement
        """
        applied = await TaxDeductionApplier.applied_by_type(db, account.id)
        posted = []

        for deduction_type, (entry_type, tax_type) in TAX_DEDUCTIONS.items():
            delta = snapshot.deduction_amount(deduction_type.value) - applied[tax_type]
            if delta == 0:
                continue

            if delta > 0:
                entry = await LedgerStore.append(
                    db, account, entry_type,
                    debit=delta,
                    reference=f"{tax_type.value} deduction (settlement v{snapshot.version})",
                    created_by=created_by
                )
            else:
                entry = await LedgerStore.append(
                    db, account, LedgerEntryType.ADJUSTMENT,
                    credit=-delta,
                    reference=f"{TAX_REVERSAL_PREFIX} {tax_type.value} (settlement v{snapshot.version})",
                    created_by=created_by,
                    reversal_of=entry_type
                )

            record = TaxRecord(
                trust_account_id=account.id,
                ledger_entry_id=entry.id,
                settlement_version=snapshot.version,
                tax_type=tax_type,
                amount=delta,
                paid_to_zimra=bool(zimra_payment_reference),
                payment_reference=zimra_payment_reference,
                remitted_at=datetime.now(timezone.utc) if zimra_payment_reference else None
            )
            db.add(record)
            await db.flush()
            posted.append((entry, record))

        return posted

    @staticmethod
    async def applied_commission(db: AsyncSession, trust_account_id: int) -> int:
        debits, _ = await LedgerStore.total_for_type(db, trust_account_id, LedgerEntryType.COMMISSION_DEDUCTION)
        _, reversed_credits = await LedgerStore.total_for_type(
            db, trust_account_id, LedgerEntryType.ADJUSTMENT, reversal_of=LedgerEntryType.COMMISSION_DEDUCTION
        )
        return debits - reversed_credits

    @staticmethod
    async def apply_commission(
        db: AsyncSession,
        account: TrustAccount,
        snapshot: SettlementSnapshot,
        created_by: Optional[int] = None
    ) -> Optional[LedgerEntry]:
        """Post the settlement commission. Returns None when already posted in full."""
        delta = (
            snapshot.deduction_amount(DeductionType.COMMISSION.value)
            - await TaxDeductionApplier.applied_commission(db, account.id)
        )
        if delta == 0:
            return None
        if delta > 0:
            return await LedgerStore.append(
                db, account, LedgerEntryType.COMMISSION_DEDUCTION,
                debit=delta,
                reference=f"Agent commission (settlement v{snapshot.version})",
                created_by=created_by
            )
        return await LedgerStore.append(
            db, account, LedgerEntryType.ADJUSTMENT,
            credit=-delta,
            reference=f"{COMMISSION_REVERSAL_PREFIX} (settlement v{snapshot.version})",
            created_by=created_by,
            reversal_of=LedgerEntryType.COMMISSION_DEDUCTION
        )
