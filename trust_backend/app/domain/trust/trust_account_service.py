"""
Trust Account Service (Domain Logic).

Entry point for every trust account operation. Each mutating operation:
1. Runs inside account_guard (or unit_of_work for property-keyed opens)
2. Validates workflow state before touching the ledger
3. Posts ledger entries through LedgerStore
4. Writes exactly one audit row in the same transaction

Reads are plain queries scoped to the caller's company.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, desc, or_
from sqlalchemy.ext.asyncio import AsyncSession

from trust_backend.app.core.config import settings
from trust_backend.app.core.exceptions import (
    InvalidEntryError,
    InvalidWorkflowTransitionError,
    NoSettlementError,
    NotFoundError,
    SettlementInputError,
)
from trust_backend.app.domain.trust import settlement_calculator as calculator
from trust_backend.app.domain.trust.ledger_store import LedgerStore, check_chain
from trust_backend.app.domain.trust.parties import PartyRef, party_columns
from trust_backend.app.domain.trust.settlement_calculator import Deduction, Settlement, SettlementInputs
from trust_backend.app.domain.trust.tax_applier import RESERVED_REFERENCE_PREFIXES, TaxDeductionApplier, TaxSummary
from trust_backend.app.domain.trust.workflow import (
    OPENING_STAGES,
    STAGE_STATUS,
    advance_stage,
    ensure_mutable,
    ensure_stage_transition,
    ensure_status_transition,
)
from trust_backend.app.models.audit_log import TrustAuditLog
from trust_backend.app.models.ledger_entry import LedgerEntry
from trust_backend.app.models.settlement import SettlementSnapshot
from trust_backend.app.models.tax_record import TaxRecord
from trust_backend.app.models.trust_account import TrustAccount
from trust_backend.app.models.trust_enums import DeductionType, LedgerEntryType, TrustStatus, WorkflowStage
from trust_backend.app.services import audit
from trust_backend.app.services.audit import AuditAction, AuditEntity
from trust_backend.app.services.account_locking import (
    account_guard,
    account_key,
    load_for_update,
    property_key,
    snapshot_read,
    unit_of_work,
)

logger = logging.getLogger("trust_ledger.service")


@dataclass
class BuyerPaymentResult:
    account: TrustAccount
    entry: LedgerEntry
    account_opened: bool = False
    duplicate: bool = False


@dataclass
class Reconciliation:
    trust_account_id: int
    status: TrustStatus
    trust_bank_balance: int
    ledger_balance: int
    total_buyer_funds_held: int
    total_paid_to_seller: int
    seller_liability: int
    variance: int
    chain_valid: bool
    entry_count: int
    first_break_sequence: Optional[int] = None

    @property
    def healthy(self) -> bool:
        return self.chain_valid and self.variance == 0


@dataclass
class ReconciliationRun:
    company_id: int
    run_at: datetime
    items: List[Reconciliation] = field(default_factory=list)

    @property
    def checked_accounts(self) -> int:
        return len(self.items)

    @property
    def balance_mismatches(self) -> int:
        return sum(1 for item in self.items if item.variance != 0)

    @property
    def broken_chains(self) -> int:
        return sum(1 for item in self.items if not item.chain_valid)


@dataclass
class TrustAccountView:
    """Read-only snapshot of everything known about one trust account."""
    account: TrustAccount
    ledger: List[LedgerEntry]
    settlement: Optional[Settlement]
    tax_summary: TaxSummary
    audit_logs: List[TrustAuditLog]
    reconciliation: Reconciliation


def settlement_from_snapshot(snapshot: SettlementSnapshot) -> Settlement:
    return Settlement(
        sale_price=snapshot.sale_price,
        gross_proceeds=snapshot.gross_proceeds,
        deductions=tuple(
            Deduction(DeductionType(item["type"]), int(item["amount"])) for item in snapshot.deductions
        ),
        net_payout=snapshot.net_payout,
        commission_amount=snapshot.commission_amount,
        apply_vat_on_sale=snapshot.apply_vat_on_sale,
        cgt_rate=Decimal(snapshot.cgt_rate),
        cgt_override=snapshot.cgt_override,
        vat_sale_rate=Decimal(snapshot.vat_sale_rate),
        vat_on_commission_rate=Decimal(snapshot.vat_on_commission_rate),
        locked=snapshot.locked,
        version=snapshot.version,
    )


def _ensure_calculable(account: TrustAccount) -> None:
    ensure_mutable(account)
    if account.status == TrustStatus.SETTLED:
        raise InvalidWorkflowTransitionError(
            "Settlement is locked once accepted",
            details={"trust_account_id": account.id, "status": account.status.value}
        )


def _ensure_company(account: TrustAccount, actor: Dict[str, Any]) -> TrustAccount:
    if account.company_id != actor.get("company_id"):
        raise NotFoundError("Trust account", account.id)
    return account


class TrustAccountService:

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    async def get_account(db: AsyncSession, trust_account_id: int, company_id: int) -> TrustAccount:
        result = await db.execute(
            select(TrustAccount).where(
                TrustAccount.id == trust_account_id,
                TrustAccount.company_id == company_id
            )
        )
        account = result.scalar_one_or_none()
        if account is None:
            raise NotFoundError("Trust account", trust_account_id)
        return account

    @staticmethod
    async def find_active_for_property(db: AsyncSession, company_id: int, property_id: int) -> Optional[TrustAccount]:
        result = await db.execute(
            select(TrustAccount).where(
                TrustAccount.company_id == company_id,
                TrustAccount.property_id == property_id,
                TrustAccount.status != TrustStatus.CLOSED
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_property(db: AsyncSession, company_id: int, property_id: int) -> TrustAccount:
        """The live account for a property, else its most recently closed one."""
        account = await TrustAccountService.find_active_for_property(db, company_id, property_id)
        if account is None:
            result = await db.execute(
                select(TrustAccount)
                .where(TrustAccount.company_id == company_id, TrustAccount.property_id == property_id)
                .order_by(desc(TrustAccount.id))
                .limit(1)
            )
            account = result.scalar_one_or_none()
        if account is None:
            raise NotFoundError("Trust account for property", property_id)
        return account

    @staticmethod
    async def list_accounts(
        db: AsyncSession,
        company_id: int,
        status: Optional[TrustStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 25
    ) -> Tuple[List[TrustAccount], int]:
        query = select(TrustAccount).where(TrustAccount.company_id == company_id)
        if status:
            query = query.where(TrustAccount.status == status)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(
                TrustAccount.property_label.ilike(pattern),
                TrustAccount.buyer_name.ilike(pattern),
                TrustAccount.seller_name.ilike(pattern)
            ))

        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await db.execute(
            query.order_by(desc(TrustAccount.updated_at), desc(TrustAccount.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def get_latest_snapshot(db: AsyncSession, trust_account_id: int) -> Optional[SettlementSnapshot]:
        result = await db.execute(
            select(SettlementSnapshot)
            .where(SettlementSnapshot.trust_account_id == trust_account_id)
            .order_by(desc(SettlementSnapshot.version))
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_settlement(db: AsyncSession, trust_account_id: int) -> Optional[Settlement]:
        snapshot = await TrustAccountService.get_latest_snapshot(db, trust_account_id)
        return settlement_from_snapshot(snapshot) if snapshot else None

    @staticmethod
    async def get_tax_summary(db: AsyncSession, trust_account_id: int) -> TaxSummary:
        return await TaxDeductionApplier.summarize(db, trust_account_id)

    @staticmethod
    async def get_reconciliation(db: AsyncSession, account: TrustAccount) -> Reconciliation:
        entries = await LedgerStore.replay(db, account.id)
        chain = check_chain(account.opening_balance, entries)

        buyer_funds = sum(
            e.credit - e.debit for e in entries if e.entry_type == LedgerEntryType.BUYER_PAYMENT
        )
        paid_to_seller = sum(e.debit for e in entries if e.entry_type == LedgerEntryType.SELLER_PAYOUT)

        snapshot = await TrustAccountService.get_latest_snapshot(db, account.id)
        # Negative when the settlement deductions exceed the sale proceeds
        liability = snapshot.net_payout - paid_to_seller if snapshot else 0

        return Reconciliation(
            trust_account_id=account.id,
            status=account.status,
            trust_bank_balance=account.running_balance,
            ledger_balance=chain.ledger_balance,
            total_buyer_funds_held=buyer_funds,
            total_paid_to_seller=paid_to_seller,
            seller_liability=liability,
            variance=account.running_balance - chain.ledger_balance,
            chain_valid=chain.valid,
            entry_count=chain.entry_count,
            first_break_sequence=chain.first_break_sequence
        )

    @staticmethod
    async def run_reconciliation(db: AsyncSession, company_id: int) -> ReconciliationRun:
        """Reconcile every trust account of a company. Read-only; mismatches are reported, not repaired."""
        await snapshot_read(db)
        result = await db.execute(
            select(TrustAccount)
            .where(TrustAccount.company_id == company_id)
            .order_by(TrustAccount.id)
            .execution_options(populate_existing=True)
        )
        run = ReconciliationRun(company_id=company_id, run_at=datetime.now(timezone.utc))
        for account in result.scalars().all():
            run.items.append(await TrustAccountService.get_reconciliation(db, account))

        log = logger.warning if (run.balance_mismatches or run.broken_chains) else logger.info
        log(
            "Trust reconciliation run finished",
            extra={
                "company_id": company_id,
                "checked_accounts": run.checked_accounts,
                "balance_mismatches": run.balance_mismatches,
                "broken_chains": run.broken_chains,
            }
        )
        return run

    @staticmethod
    async def get_full_view(db: AsyncSession, account: TrustAccount) -> TrustAccountView:
        """
        Everything known about one account, read from a single snapshot.

        The account row is reloaded inside that snapshot so its balances
        match the ledger read next to it. The audit trail is not truncated.
        """
        await snapshot_read(db)
        await db.refresh(account)
        ledger = await LedgerStore.replay(db, account.id)
        ledger.reverse()
        return TrustAccountView(
            account=account,
            ledger=ledger,
            settlement=await TrustAccountService.get_settlement(db, account.id),
            tax_summary=await TaxDeductionApplier.summarize(db, account.id),
            audit_logs=await audit.list_by_account(db, account.id, limit=None),
            reconciliation=await TrustAccountService.get_reconciliation(db, account)
        )

    # ------------------------------------------------------------------
    # Opening and buyer funds
    # ------------------------------------------------------------------

    @staticmethod
    def _new_account(
        company_id: int,
        property_id: int,
        property_label: Optional[str],
        buyer: Optional[PartyRef],
        seller: Optional[PartyRef],
        opening_balance: int,
        purchase_price: int,
        stage: WorkflowStage
    ) -> TrustAccount:
        if opening_balance < 0 or purchase_price < 0:
            raise InvalidEntryError(
                "Opening balance and purchase price cannot be negative",
                details={"opening_balance": opening_balance, "purchase_price": purchase_price}
            )
        if stage not in OPENING_STAGES:
            raise InvalidWorkflowTransitionError(
                f"A trust account cannot be opened in stage {stage.value}",
                details={"stage": stage.value}
            )
        buyer_id, buyer_name = party_columns(buyer)
        seller_id, seller_name = party_columns(seller)
        return TrustAccount(
            company_id=company_id,
            property_id=property_id,
            property_label=property_label,
            buyer_id=buyer_id,
            buyer_name=buyer_name,
            seller_id=seller_id,
            seller_name=seller_name,
            opening_balance=opening_balance,
            running_balance=opening_balance,
            closing_balance=opening_balance,
            purchase_price=purchase_price,
            amount_received=0,
            status=TrustStatus.OPEN,
            workflow_state=stage,
            locked=False
        )

    @staticmethod
    async def open_trust_account(
        db: AsyncSession,
        actor: Dict[str, Any],
        property_id: int,
        property_label: Optional[str] = None,
        buyer: Optional[PartyRef] = None,
        seller: Optional[PartyRef] = None,
        opening_balance: int = 0,
        purchase_price: int = 0,
        initial_stage: WorkflowStage = WorkflowStage.TRUST_OPEN
    ) -> Tuple[TrustAccount, bool]:
        """
        Open the trust account of a property sale.

        Idempotent per property: when a live account exists it is returned
        unchanged and nothing is audited.

        Returns:
            (account, created)
        """
        company_id = actor["company_id"]
        async with unit_of_work(db, property_key(company_id, property_id)):
            existing = await TrustAccountService.find_active_for_property(db, company_id, property_id)
            if existing is not None:
                return existing, False

            account = TrustAccountService._new_account(
                company_id, property_id, property_label, buyer, seller,
                opening_balance, purchase_price, initial_stage
            )
            db.add(account)
            await db.flush()

            await audit.record_audit(
                db, AuditAction.TRUST_ACCOUNT_OPENED,
                trust_account_id=account.id,
                entity_type=AuditEntity.TRUST_ACCOUNT,
                entity_id=account.id,
                actor=actor,
                company_id=company_id,
                metadata={"property_id": property_id, "opening_balance": opening_balance}
            )

        logger.info(
            "Trust account opened",
            extra={"trust_account_id": account.id, "company_id": company_id, "property_id": property_id}
        )
        return account, True

    @staticmethod
    async def record_buyer_payment(
        db: AsyncSession,
        actor: Dict[str, Any],
        property_id: int,
        amount: int,
        reference: Optional[str] = None,
        payment_id: Optional[str] = None,
        property_label: Optional[str] = None,
        buyer: Optional[PartyRef] = None,
        seller: Optional[PartyRef] = None,
        purchase_price: Optional[int] = None
    ) -> BuyerPaymentResult:
        """
        Post buyer funds to the property's trust account, opening it if needed.

        A repeated payment_id returns the entry already posted for it.
        """
        company_id = actor["company_id"]
        async with unit_of_work(db, property_key(company_id, property_id)) as scope:
            if payment_id:
                existing_entry = await LedgerStore.find_by_payment_id(db, company_id, payment_id)
                if existing_entry is not None:
                    account = await db.get(TrustAccount, existing_entry.trust_account_id)
                    logger.info(
                        "Duplicate buyer payment ignored",
                        extra={"payment_id": payment_id, "trust_account_id": account.id}
                    )
                    return BuyerPaymentResult(account, existing_entry, duplicate=True)

            account = await TrustAccountService.find_active_for_property(db, company_id, property_id)
            opened = account is None
            if opened:
                account = TrustAccountService._new_account(
                    company_id, property_id, property_label, buyer, seller,
                    0, purchase_price or 0, WorkflowStage.DEPOSIT_RECEIVED
                )
                db.add(account)
                await db.flush()
            else:
                await scope.lock(account_key(account.id))
                account = await load_for_update(db, account.id)
                if buyer is not None and account.buyer_id is None and not account.buyer_name:
                    account.buyer_id, account.buyer_name = party_columns(buyer)
                if seller is not None and account.seller_id is None and not account.seller_name:
                    account.seller_id, account.seller_name = party_columns(seller)
                if property_label and not account.property_label:
                    account.property_label = property_label
                if purchase_price and not account.purchase_price:
                    account.purchase_price = purchase_price

            entry = await LedgerStore.append(
                db, account, LedgerEntryType.BUYER_PAYMENT,
                credit=amount,
                reference=reference,
                payment_id=payment_id,
                created_by=actor.get("user_id")
            )
            advance_stage(account, WorkflowStage.DEPOSIT_RECEIVED)

            await audit.record_audit(
                db, AuditAction.BUYER_PAYMENT_RECORDED,
                trust_account_id=account.id,
                entity_type=AuditEntity.LEDGER_ENTRY,
                entity_id=entry.id,
                actor=actor,
                ledger_entry_ids=[entry.id],
                metadata={"payment_id": payment_id, "amount": amount, "account_opened": opened}
            )

        return BuyerPaymentResult(account, entry, account_opened=opened)

    # ------------------------------------------------------------------
    # Ledger entries
    # ------------------------------------------------------------------

    @staticmethod
    async def append_entry(
        db: AsyncSession,
        actor: Dict[str, Any],
        trust_account_id: int,
        entry_type: LedgerEntryType,
        debit: int = 0,
        credit: int = 0,
        reference: Optional[str] = None,
        action: str = AuditAction.ADJUSTMENT_POSTED
    ) -> LedgerEntry:
        """Append one audited entry under the account guard."""
        async with account_guard(db, trust_account_id) as account:
            _ensure_company(account, actor)
            entry = await LedgerStore.append(
                db, account, entry_type,
                debit=debit,
                credit=credit,
                reference=reference,
                created_by=actor.get("user_id")
            )
            await audit.record_audit(
                db, action,
                trust_account_id=account.id,
                entity_type=AuditEntity.LEDGER_ENTRY,
                entity_id=entry.id,
                actor=actor,
                ledger_entry_ids=[entry.id],
                metadata={"entry_type": entry_type.value, "debit": debit, "credit": credit}
            )
        return entry

    @staticmethod
    async def post_adjustment(
        db: AsyncSession,
        actor: Dict[str, Any],
        trust_account_id: int,
        debit: int = 0,
        credit: int = 0,
        reference: Optional[str] = None
    ) -> LedgerEntry:
        """
        Correcting entry. Existing entries are never edited.

        Reversal references belong to the deduction applier and are refused here.
        """
        if reference and reference.strip().lower().startswith(
            tuple(prefix.lower() for prefix in RESERVED_REFERENCE_PREFIXES)
        ):
            raise InvalidEntryError(
                "Reference prefix is reserved for settlement reversals",
                details={"reference": reference, "reserved_prefixes": list(RESERVED_REFERENCE_PREFIXES)}
            )
        return await TrustAccountService.append_entry(
            db, actor, trust_account_id, LedgerEntryType.ADJUSTMENT,
            debit=debit, credit=credit, reference=reference
        )

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_sale_price(account: TrustAccount, sale_price: Optional[int]) -> int:
        if sale_price is not None:
            return sale_price
        if account.purchase_price:
            return account.purchase_price
        if account.amount_received:
            return account.amount_received
        raise SettlementInputError(
            "Sale price is required: the account has no purchase price and no buyer funds",
            details={"trust_account_id": account.id}
        )

    @staticmethod
    async def calculate_settlement(
        db: AsyncSession,
        actor: Dict[str, Any],
        trust_account_id: int,
        sale_price: Optional[int] = None,
        commission_amount: Optional[int] = None,
        apply_vat_on_sale: bool = False,
        cgt_rate: Optional[Decimal] = None,
        cgt_amount: Optional[int] = None,
        vat_sale_rate: Optional[Decimal] = None,
        vat_on_commission_rate: Optional[Decimal] = None
    ) -> Settlement:
        """
        Compute the settlement projection and store it as a new version.

        The calculation itself runs unlocked. A version is only written when
        the projection differs from the latest one, so identical inputs
        return the identical stored projection.
        """
        account = await TrustAccountService.get_account(db, trust_account_id, actor["company_id"])
        _ensure_calculable(account)

        inputs = SettlementInputs(
            sale_price=TrustAccountService._resolve_sale_price(account, sale_price),
            commission_amount=commission_amount,
            apply_vat_on_sale=apply_vat_on_sale,
            cgt_rate=cgt_rate,
            cgt_amount=cgt_amount,
            vat_sale_rate=vat_sale_rate,
            vat_on_commission_rate=vat_on_commission_rate
        )
        projection = calculator.calculate_settlement(inputs)

        latest = await TrustAccountService.get_latest_snapshot(db, trust_account_id)
        if latest is not None and settlement_from_snapshot(latest) == projection:
            return settlement_from_snapshot(latest)

        async with account_guard(db, trust_account_id) as account:
            _ensure_calculable(account)
            latest = await TrustAccountService.get_latest_snapshot(db, trust_account_id)
            if latest is not None and settlement_from_snapshot(latest) == projection:
                return settlement_from_snapshot(latest)

            snapshot = SettlementSnapshot(
                trust_account_id=trust_account_id,
                version=(latest.version if latest else 0) + 1,
                sale_price=projection.sale_price,
                gross_proceeds=projection.gross_proceeds,
                deductions=[{"type": d.type.value, "amount": d.amount} for d in projection.deductions],
                net_payout=projection.net_payout,
                commission_amount=projection.commission_amount,
                apply_vat_on_sale=projection.apply_vat_on_sale,
                cgt_rate=projection.cgt_rate,
                cgt_override=projection.cgt_override,
                vat_sale_rate=projection.vat_sale_rate,
                vat_on_commission_rate=projection.vat_on_commission_rate,
                locked=False,
                created_by=actor.get("user_id")
            )
            db.add(snapshot)
            await db.flush()

            await audit.record_audit(
                db, AuditAction.SETTLEMENT_CALCULATED,
                trust_account_id=trust_account_id,
                entity_type=AuditEntity.SETTLEMENT,
                entity_id=snapshot.id,
                actor=actor,
                metadata={"version": snapshot.version, "net_payout": snapshot.net_payout}
            )

        if projection.net_payout < 0:
            logger.warning(
                "Settlement net payout is negative",
                extra={"trust_account_id": trust_account_id, "net_payout": projection.net_payout}
            )
        return settlement_from_snapshot(snapshot)

    @staticmethod
    async def _accept_locked(db: AsyncSession, account: TrustAccount) -> SettlementSnapshot:
        ensure_status_transition(account, TrustStatus.SETTLED)
        snapshot = await TrustAccountService.get_latest_snapshot(db, account.id)
        if snapshot is None:
            raise NoSettlementError(account.id)
        snapshot.locked = True
        account.status = TrustStatus.SETTLED
        advance_stage(account, WorkflowStage.SETTLED)
        return snapshot

    @staticmethod
    async def accept_settlement(db: AsyncSession, actor: Dict[str, Any], trust_account_id: int) -> TrustAccount:
        """OPEN -> SETTLED: lock the latest settlement version."""
        async with account_guard(db, trust_account_id) as account:
            _ensure_company(account, actor)
            snapshot = await TrustAccountService._accept_locked(db, account)
            await audit.record_audit(
                db, AuditAction.SETTLEMENT_ACCEPTED,
                trust_account_id=account.id,
                entity_type=AuditEntity.SETTLEMENT,
                entity_id=snapshot.id,
                actor=actor,
                metadata={"version": snapshot.version}
            )
        logger.info("Settlement accepted", extra={"trust_account_id": trust_account_id})
        return account

    # ------------------------------------------------------------------
    # Deductions
    # ------------------------------------------------------------------

    @staticmethod
    async def apply_tax_deductions(
        db: AsyncSession,
        actor: Dict[str, Any],
        trust_account_id: int,
        zimra_payment_reference: Optional[str] = None
    ) -> TaxSummary:
        """
        Post the tax deductions of the latest settlement version.

        Only the difference against already-posted tax is posted, so a
        second call with nothing new posts nothing but is still audited.
        """
        async with account_guard(db, trust_account_id) as account:
            _ensure_company(account, actor)
            ensure_mutable(account)
            snapshot = await TrustAccountService.get_latest_snapshot(db, trust_account_id)
            if snapshot is None:
                raise NoSettlementError(trust_account_id)

            posted = await TaxDeductionApplier.apply_taxes(
                db, account, snapshot, zimra_payment_reference, created_by=actor.get("user_id")
            )
            if posted:
                advance_stage(account, WorkflowStage.TAX_PENDING)

            await audit.record_audit(
                db,
                AuditAction.TAX_DEDUCTIONS_APPLIED if posted else AuditAction.TAX_ALREADY_APPLIED,
                trust_account_id=trust_account_id,
                entity_type=AuditEntity.SETTLEMENT,
                entity_id=snapshot.id,
                actor=actor,
                ledger_entry_ids=[entry.id for entry, _ in posted],
                metadata={
                    "settlement_version": snapshot.version,
                    "tax_record_ids": [record.id for _, record in posted],
                    "zimra_payment_reference": zimra_payment_reference,
                }
            )

        logger.info(
            "Tax deductions applied",
            extra={"trust_account_id": trust_account_id, "posted": len(posted)}
        )
        return await TaxDeductionApplier.summarize(db, trust_account_id)

    @staticmethod
    async def apply_commission_deduction(
        db: AsyncSession,
        actor: Dict[str, Any],
        trust_account_id: int
    ) -> Optional[LedgerEntry]:
        """Post the agent commission of the latest settlement version (delta rule)."""
        async with account_guard(db, trust_account_id) as account:
            _ensure_company(account, actor)
            ensure_mutable(account)
            snapshot = await TrustAccountService.get_latest_snapshot(db, trust_account_id)
            if snapshot is None:
                raise NoSettlementError(trust_account_id)

            entry = await TaxDeductionApplier.apply_commission(
                db, account, snapshot, created_by=actor.get("user_id")
            )
            await audit.record_audit(
                db, AuditAction.COMMISSION_DEDUCTED,
                trust_account_id=trust_account_id,
                entity_type=AuditEntity.LEDGER_ENTRY if entry else AuditEntity.SETTLEMENT,
                entity_id=entry.id if entry else snapshot.id,
                actor=actor,
                ledger_entry_ids=[entry.id] if entry else [],
                metadata={"settlement_version": snapshot.version, "posted": entry is not None}
            )
        return entry

    @staticmethod
    async def mark_tax_remitted(
        db: AsyncSession,
        actor: Dict[str, Any],
        trust_account_id: int,
        tax_record_id: int,
        payment_reference: str
    ) -> TaxRecord:
        """Record a ZIMRA remittance for an already-posted tax record."""
        async with account_guard(db, trust_account_id) as account:
            _ensure_company(account, actor)
            record = await db.get(TaxRecord, tax_record_id)
            if record is None or record.trust_account_id != trust_account_id:
                raise NotFoundError("Tax record", tax_record_id)

            if record.paid_to_zimra:
                if record.payment_reference == payment_reference:
                    return record
                raise InvalidWorkflowTransitionError(
                    "Tax record was already remitted under another reference",
                    details={"tax_record_id": tax_record_id, "payment_reference": record.payment_reference}
                )

            record.paid_to_zimra = True
            record.payment_reference = payment_reference
            record.remitted_at = datetime.now(timezone.utc)

            await audit.record_audit(
                db, AuditAction.TAX_REMITTED,
                trust_account_id=trust_account_id,
                entity_type=AuditEntity.TAX_RECORD,
                entity_id=record.id,
                actor=actor,
                metadata={"payment_reference": payment_reference, "tax_type": record.tax_type.value}
            )
        return record

    # ------------------------------------------------------------------
    # Disbursement and closing
    # ------------------------------------------------------------------

    @staticmethod
    async def transfer_to_seller(
        db: AsyncSession,
        actor: Dict[str, Any],
        trust_account_id: int,
        amount: int,
        reference: Optional[str] = None
    ) -> LedgerEntry:
        """
        Pay out seller proceeds.

        Requires a settlement; cumulative payouts may not exceed its net
        payout. An OPEN account's settlement is accepted as part of the
        first payout.
        """
        async with account_guard(db, trust_account_id) as account:
            _ensure_company(account, actor)
            ensure_mutable(account)
            snapshot = await TrustAccountService.get_latest_snapshot(db, trust_account_id)
            if snapshot is None:
                raise NoSettlementError(trust_account_id)

            paid, _ = await LedgerStore.total_for_type(db, trust_account_id, LedgerEntryType.SELLER_PAYOUT)
            if isinstance(amount, int) and amount > 0 and paid + amount > snapshot.net_payout:
                raise InvalidEntryError(
                    "Transfer amount exceeds the remaining seller net payout",
                    details={
                        "amount": amount,
                        "net_payout": snapshot.net_payout,
                        "already_paid": paid,
                        "remaining": max(snapshot.net_payout - paid, 0),
                    }
                )

            accepted = account.status == TrustStatus.OPEN
            if accepted:
                await TrustAccountService._accept_locked(db, account)

            entry = await LedgerStore.append(
                db, account, LedgerEntryType.SELLER_PAYOUT,
                debit=amount,
                reference=reference or "Seller payout",
                created_by=actor.get("user_id")
            )
            advance_stage(account, WorkflowStage.TRANSFER_COMPLETE)

            await audit.record_audit(
                db, AuditAction.SELLER_TRANSFER,
                trust_account_id=trust_account_id,
                entity_type=AuditEntity.LEDGER_ENTRY,
                entity_id=entry.id,
                actor=actor,
                ledger_entry_ids=[entry.id],
                metadata={"amount": amount, "settlement_version": snapshot.version, "settlement_accepted": accepted}
            )

        logger.info("Seller transfer posted", extra={"trust_account_id": trust_account_id, "amount": amount})
        return entry

    @staticmethod
    def _close_locked(account: TrustAccount, lock_reason: Optional[str]) -> None:
        ensure_status_transition(account, TrustStatus.CLOSED)
        if account.running_balance != 0:
            raise InvalidWorkflowTransitionError(
                "Trust balance must be fully disbursed before closing",
                details={"trust_account_id": account.id, "running_balance": account.running_balance}
            )
        account.status = TrustStatus.CLOSED
        account.workflow_state = WorkflowStage.TRUST_CLOSED
        account.locked = True
        account.lock_reason = lock_reason or settings.default_lock_reason
        account.closed_at = datetime.now(timezone.utc)
        account.closing_balance = account.running_balance

    @staticmethod
    async def close_trust_account(
        db: AsyncSession,
        actor: Dict[str, Any],
        trust_account_id: int,
        lock_reason: Optional[str] = None
    ) -> TrustAccount:
        """SETTLED -> CLOSED. Locks the ledger for good."""
        async with account_guard(db, trust_account_id) as account:
            _ensure_company(account, actor)
            TrustAccountService._close_locked(account, lock_reason)
            await audit.record_audit(
                db, AuditAction.TRUST_ACCOUNT_CLOSED,
                trust_account_id=trust_account_id,
                entity_type=AuditEntity.TRUST_ACCOUNT,
                entity_id=trust_account_id,
                actor=actor,
                metadata={"lock_reason": account.lock_reason, "closing_balance": account.closing_balance}
            )
        logger.info("Trust account closed", extra={"trust_account_id": trust_account_id})
        return account

    @staticmethod
    async def transition_workflow(
        db: AsyncSession,
        actor: Dict[str, Any],
        trust_account_id: int,
        to_state: str,
        lock_reason: Optional[str] = None
    ) -> TrustAccount:
        """
        Explicit transition to a status (OPEN/SETTLED/CLOSED) or a stage.

        Status names take precedence; SETTLED accepts the settlement and
        CLOSED closes the account. Stage names must follow the stage table.
        """
        name = (to_state or "").strip().upper()
        if name == TrustStatus.SETTLED.value:
            return await TrustAccountService.accept_settlement(db, actor, trust_account_id)
        if name == TrustStatus.CLOSED.value:
            return await TrustAccountService.close_trust_account(db, actor, trust_account_id, lock_reason)

        async with account_guard(db, trust_account_id) as account:
            _ensure_company(account, actor)
            if name == TrustStatus.OPEN.value:
                ensure_status_transition(account, TrustStatus.OPEN)

            try:
                target = WorkflowStage(name)
            except ValueError:
                raise InvalidWorkflowTransitionError(
                    f"Unknown workflow state {to_state!r}",
                    details={"to_state": to_state}
                )

            previous = account.workflow_state
            implied = ensure_stage_transition(account, target)
            if implied == TrustStatus.CLOSED:
                TrustAccountService._close_locked(account, lock_reason)
                action = AuditAction.TRUST_ACCOUNT_CLOSED
            else:
                account.workflow_state = target
                action = AuditAction.WORKFLOW_TRANSITION

            await audit.record_audit(
                db, action,
                trust_account_id=trust_account_id,
                entity_type=AuditEntity.TRUST_ACCOUNT,
                entity_id=trust_account_id,
                actor=actor,
                metadata={"from": previous.value, "to": target.value, "status": STAGE_STATUS[target].value}
            )
        return account
