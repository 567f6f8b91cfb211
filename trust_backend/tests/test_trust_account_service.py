"""
Trust Account Service Tests.

Opening, buyer funds, settlement versions, disbursement, closing and the
one-audit-row-per-mutation rule, exercised directly against the service.
"""

import pytest
from decimal import Decimal
from sqlalchemy import select, func

from trust_backend.app.core.exceptions import (
    AccountLockedError,
    InvalidEntryError,
    InvalidWorkflowTransitionError,
    NoSettlementError,
    NotFoundError,
    SettlementInputError,
)
from trust_backend.app.core.money import to_minor
from trust_backend.app.domain.trust.parties import EmbeddedParty, PartyReference
from trust_backend.app.domain.trust.trust_account_service import TrustAccountService
from trust_backend.app.models.audit_log import TrustAuditLog
from trust_backend.app.models.settlement import SettlementSnapshot
from trust_backend.app.models.trust_enums import LedgerEntryType, TrustStatus, WorkflowStage
from trust_backend.app.services import audit
from trust_backend.app.services.audit import AuditAction, AuditEntity


async def _audit_count(db, trust_account_id):
    result = await db.execute(
        select(func.count(TrustAuditLog.id)).where(TrustAuditLog.trust_account_id == trust_account_id)
    )
    return result.scalar()


@pytest.mark.asyncio
async def test_open_is_idempotent_per_property(db_session, actor):
    account, created = await TrustAccountService.open_trust_account(
        db_session, actor, property_id=5, property_label="12 Borrowdale Rd",
        buyer=EmbeddedParty(name="T. Moyo"), seller=PartyReference(id=44),
        purchase_price=to_minor("250000")
    )
    again, created_again = await TrustAccountService.open_trust_account(db_session, actor, property_id=5)

    assert created is True and created_again is False
    assert again.id == account.id
    assert account.status == TrustStatus.OPEN
    assert account.workflow_state == WorkflowStage.TRUST_OPEN
    assert account.buyer == EmbeddedParty(name="T. Moyo")
    assert account.seller == PartyReference(id=44)
    assert account.amount_outstanding == to_minor("250000")
    assert await _audit_count(db_session, account.id) == 1


@pytest.mark.asyncio
async def test_open_rejects_late_stage(db_session, actor):
    with pytest.raises(InvalidWorkflowTransitionError):
        await TrustAccountService.open_trust_account(
            db_session, actor, property_id=6, initial_stage=WorkflowStage.SETTLED
        )


@pytest.mark.asyncio
async def test_buyer_payment_opens_account_and_dedupes(db_session, actor):
    first = await TrustAccountService.record_buyer_payment(
        db_session, actor, property_id=7, amount=to_minor("20000"), payment_id="PAY-1",
        buyer=EmbeddedParty(name="R. Chikomba")
    )
    duplicate = await TrustAccountService.record_buyer_payment(
        db_session, actor, property_id=7, amount=to_minor("20000"), payment_id="PAY-1"
    )
    second = await TrustAccountService.record_buyer_payment(
        db_session, actor, property_id=7, amount=to_minor("5000"), payment_id="PAY-2",
        seller=EmbeddedParty(name="K. Ndlovu")
    )

    assert first.account_opened is True
    assert duplicate.duplicate is True
    assert duplicate.entry.id == first.entry.id
    assert second.account_opened is False
    assert second.account.id == first.account.id

    account = second.account
    assert account.running_balance == to_minor("25000")
    assert account.amount_received == to_minor("25000")
    assert account.workflow_state == WorkflowStage.DEPOSIT_RECEIVED
    assert account.seller_name == "K. Ndlovu"
    assert second.entry.sequence == 2
    assert second.entry.running_balance == to_minor("25000")
    # duplicates are not audited
    assert await _audit_count(db_session, account.id) == 2


@pytest.mark.asyncio
async def test_same_inputs_return_same_settlement_version(db_session, actor):
    account, _ = await TrustAccountService.open_trust_account(
        db_session, actor, property_id=8, purchase_price=to_minor("100000")
    )

    first = await TrustAccountService.calculate_settlement(
        db_session, actor, account.id, commission_amount=to_minor("5000"), cgt_rate=Decimal("0.05"),
        vat_on_commission_rate=Decimal("0.15")
    )
    second = await TrustAccountService.calculate_settlement(
        db_session, actor, account.id, commission_amount=to_minor("5000"), cgt_rate=Decimal("0.05"),
        vat_on_commission_rate=Decimal("0.15")
    )

    assert first == second
    assert first.version == second.version == 1
    assert first.net_payout == to_minor("89250")
    assert first.sale_price == to_minor("100000")

    count = (await db_session.execute(select(func.count(SettlementSnapshot.id)))).scalar()
    assert count == 1
    logs = await audit.list_by_account(db_session, account.id)
    assert [log.action for log in logs].count(AuditAction.SETTLEMENT_CALCULATED) == 1


@pytest.mark.asyncio
async def test_settlement_needs_a_sale_price(db_session, actor):
    account, _ = await TrustAccountService.open_trust_account(db_session, actor, property_id=9)

    with pytest.raises(SettlementInputError):
        await TrustAccountService.calculate_settlement(db_session, actor, account.id)


@pytest.mark.asyncio
async def test_transfer_flow_settles_and_closes(db_session, actor):
    paid = await TrustAccountService.record_buyer_payment(
        db_session, actor, property_id=11, amount=to_minor("100000"), purchase_price=to_minor("100000")
    )
    account_id = paid.account.id
    settlement = await TrustAccountService.calculate_settlement(
        db_session, actor, account_id, commission_amount=to_minor("5000"), cgt_rate=Decimal("0.05"),
        vat_on_commission_rate=Decimal("0.15")
    )
    await TrustAccountService.apply_tax_deductions(db_session, actor, account_id)
    await TrustAccountService.apply_commission_deduction(db_session, actor, account_id)

    with pytest.raises(InvalidEntryError):
        await TrustAccountService.transfer_to_seller(
            db_session, actor, account_id, settlement.net_payout + 1
        )

    half = settlement.net_payout // 2
    await TrustAccountService.transfer_to_seller(db_session, actor, account_id, half)
    account = await TrustAccountService.get_account(db_session, account_id, actor["company_id"])
    assert account.status == TrustStatus.SETTLED
    assert account.workflow_state == WorkflowStage.TRANSFER_COMPLETE

    with pytest.raises(InvalidWorkflowTransitionError):
        await TrustAccountService.close_trust_account(db_session, actor, account_id)

    entry = await TrustAccountService.transfer_to_seller(
        db_session, actor, account_id, settlement.net_payout - half
    )
    assert entry.entry_type == LedgerEntryType.SELLER_PAYOUT
    assert entry.running_balance == 0

    closed = await TrustAccountService.close_trust_account(db_session, actor, account_id, "Sale completed")
    assert closed.status == TrustStatus.CLOSED
    assert closed.locked is True
    assert closed.lock_reason == "Sale completed"
    assert closed.workflow_state == WorkflowStage.TRUST_CLOSED
    assert closed.closed_at is not None

    latest = await TrustAccountService.get_settlement(db_session, account_id)
    assert latest.locked is True

    with pytest.raises(AccountLockedError):
        await TrustAccountService.post_adjustment(db_session, actor, account_id, credit=100, reference="late fee")

    recon = await TrustAccountService.get_reconciliation(
        db_session, await TrustAccountService.get_account(db_session, account_id, actor["company_id"])
    )
    assert recon.healthy
    assert recon.seller_liability == 0
    assert recon.total_paid_to_seller == settlement.net_payout


@pytest.mark.asyncio
async def test_negative_payout_cannot_be_transferred(db_session, actor):
    paid = await TrustAccountService.record_buyer_payment(
        db_session, actor, property_id=12, amount=to_minor("1000"), purchase_price=to_minor("1000")
    )
    account_id = paid.account.id
    settlement = await TrustAccountService.calculate_settlement(
        db_session, actor, account_id, commission_amount=to_minor("900"), cgt_rate=Decimal("0.5"),
        vat_on_commission_rate=Decimal("0.15")
    )
    assert settlement.net_payout == to_minor("-535")
    recon = await TrustAccountService.get_reconciliation(db_session, paid.account)
    assert recon.seller_liability == to_minor("-535")

    with pytest.raises(InvalidEntryError):
        await TrustAccountService.transfer_to_seller(db_session, actor, account_id, to_minor("1"))


@pytest.mark.asyncio
async def test_transfer_requires_settlement(db_session, actor):
    paid = await TrustAccountService.record_buyer_payment(
        db_session, actor, property_id=13, amount=to_minor("1000")
    )
    account_id = paid.account.id

    with pytest.raises(NoSettlementError):
        await TrustAccountService.transfer_to_seller(db_session, actor, account_id, to_minor("10"))
    with pytest.raises(NoSettlementError):
        await TrustAccountService.accept_settlement(db_session, actor, account_id)


@pytest.mark.asyncio
async def test_accepted_settlement_cannot_be_recalculated(db_session, actor):
    account, _ = await TrustAccountService.open_trust_account(
        db_session, actor, property_id=14, purchase_price=to_minor("5000")
    )
    account_id = account.id
    await TrustAccountService.calculate_settlement(db_session, actor, account_id)
    await TrustAccountService.accept_settlement(db_session, actor, account_id)

    with pytest.raises(InvalidWorkflowTransitionError) as exc_info:
        await TrustAccountService.calculate_settlement(db_session, actor, account_id, sale_price=to_minor("6000"))
    assert not isinstance(exc_info.value, AccountLockedError)


@pytest.mark.asyncio
async def test_workflow_transitions(db_session, actor):
    account, _ = await TrustAccountService.open_trust_account(
        db_session, actor, property_id=15, initial_stage=WorkflowStage.VALUED
    )
    account_id = account.id

    moved = await TrustAccountService.transition_workflow(db_session, actor, account_id, "listed")
    assert moved.workflow_state == WorkflowStage.LISTED

    with pytest.raises(InvalidWorkflowTransitionError):
        await TrustAccountService.transition_workflow(db_session, actor, account_id, "TRANSFER_COMPLETE")
    with pytest.raises(InvalidWorkflowTransitionError):
        await TrustAccountService.transition_workflow(db_session, actor, account_id, "ARCHIVED")
    with pytest.raises(InvalidWorkflowTransitionError):
        await TrustAccountService.transition_workflow(db_session, actor, account_id, "OPEN")

    logs = await audit.list_by_account(db_session, account_id)
    assert [log.action for log in logs] == [AuditAction.WORKFLOW_TRANSITION, AuditAction.TRUST_ACCOUNT_OPENED]
    assert logs[0].meta_data["from"] == "VALUED"
    assert logs[0].meta_data["to"] == "LISTED"


@pytest.mark.asyncio
async def test_accounts_are_scoped_to_company(db_session, actor, other_company_actor):
    account, _ = await TrustAccountService.open_trust_account(db_session, actor, property_id=16)
    account_id = account.id
    outsider = other_company_actor

    with pytest.raises(NotFoundError):
        await TrustAccountService.get_account(db_session, account_id, outsider["company_id"])
    with pytest.raises(NotFoundError):
        await TrustAccountService.post_adjustment(db_session, outsider, account_id, credit=100, reference="x")

    other, created = await TrustAccountService.open_trust_account(db_session, outsider, property_id=16)
    assert created is True
    assert other.id != account_id


@pytest.mark.asyncio
async def test_list_accounts_filters_and_searches(db_session, actor):
    await TrustAccountService.open_trust_account(
        db_session, actor, property_id=20, property_label="Avondale townhouse",
        buyer=EmbeddedParty(name="Chipo Dube")
    )
    await TrustAccountService.open_trust_account(
        db_session, actor, property_id=21, property_label="Greendale stand",
        seller=EmbeddedParty(name="Farai Sibanda")
    )

    items, total = await TrustAccountService.list_accounts(db_session, actor["company_id"])
    assert total == 2

    items, total = await TrustAccountService.list_accounts(db_session, actor["company_id"], search="sibanda")
    assert total == 1 and items[0].property_id == 21

    items, total = await TrustAccountService.list_accounts(
        db_session, actor["company_id"], status=TrustStatus.SETTLED
    )
    assert total == 0 and items == []


@pytest.mark.asyncio
async def test_reconciliation_run_flags_tampered_balance(db_session, actor):
    healthy = await TrustAccountService.record_buyer_payment(
        db_session, actor, property_id=30, amount=to_minor("100")
    )
    broken = await TrustAccountService.record_buyer_payment(
        db_session, actor, property_id=31, amount=to_minor("100")
    )
    broken.account.running_balance = to_minor("150")
    await db_session.commit()

    run = await TrustAccountService.run_reconciliation(db_session, actor["company_id"])

    assert run.checked_accounts == 2
    assert run.balance_mismatches == 1
    assert run.broken_chains == 0
    by_id = {item.trust_account_id: item for item in run.items}
    assert by_id[healthy.account.id].healthy
    assert by_id[broken.account.id].variance == to_minor("50")


@pytest.mark.asyncio
async def test_full_view_collects_everything(db_session, actor):
    paid = await TrustAccountService.record_buyer_payment(
        db_session, actor, property_id=40, amount=to_minor("1000"), purchase_price=to_minor("1000")
    )
    await TrustAccountService.calculate_settlement(db_session, actor, paid.account.id)

    view = await TrustAccountService.get_full_view(db_session, paid.account)

    assert view.account.id == paid.account.id
    assert [e.sequence for e in view.ledger] == [1]
    assert view.settlement.version == 1
    assert view.tax_summary.total == 0
    assert [log.action for log in view.audit_logs] == [
        AuditAction.SETTLEMENT_CALCULATED, AuditAction.BUYER_PAYMENT_RECORDED
    ]
    assert view.reconciliation.healthy


@pytest.mark.asyncio
async def test_payment_ids_dedupe_within_one_company(db_session, actor, other_company_actor):
    first = await TrustAccountService.record_buyer_payment(
        db_session, actor, property_id=50, amount=to_minor("1000"), payment_id="PAY-1"
    )
    first_account_id = first.account.id

    second = await TrustAccountService.record_buyer_payment(
        db_session, other_company_actor, property_id=51, amount=to_minor("700"), payment_id="PAY-1"
    )

    assert second.duplicate is False
    assert second.account_opened is True
    assert second.account.id != first_account_id
    assert second.account.company_id == other_company_actor["company_id"]
    assert second.entry.credit == to_minor("700")
    assert second.account.running_balance == to_minor("700")

    again = await TrustAccountService.record_buyer_payment(
        db_session, other_company_actor, property_id=51, amount=to_minor("700"), payment_id="PAY-1"
    )
    assert again.duplicate is True
    assert again.entry.id == second.entry.id
    assert again.account.running_balance == to_minor("700")


@pytest.mark.asyncio
async def test_full_view_keeps_the_whole_audit_trail(db_session, actor):
    paid = await TrustAccountService.record_buyer_payment(
        db_session, actor, property_id=41, amount=to_minor("1000")
    )
    for i in range(510):
        await audit.record_audit(
            db_session, AuditAction.ADJUSTMENT_POSTED,
            trust_account_id=paid.account.id,
            entity_type=AuditEntity.LEDGER_ENTRY,
            actor=actor,
            metadata={"note": i}
        )
    await db_session.commit()

    view = await TrustAccountService.get_full_view(db_session, paid.account)

    assert len(view.audit_logs) == 511
    assert view.audit_logs[-1].action == AuditAction.BUYER_PAYMENT_RECORDED


@pytest.mark.asyncio
async def test_full_view_reloads_the_account_row(db_session, session_factory, actor):
    """A balance moved by another session shows up; the reconciliation stays clean."""
    paid = await TrustAccountService.record_buyer_payment(
        db_session, actor, property_id=42, amount=to_minor("1000")
    )
    stale = paid.account
    assert stale.running_balance == to_minor("1000")

    async with session_factory() as other:
        await TrustAccountService.post_adjustment(
            other, actor, stale.id, credit=to_minor("250"), reference="Late deposit"
        )

    view = await TrustAccountService.get_full_view(db_session, stale)

    assert view.account.running_balance == to_minor("1250")
    assert [e.sequence for e in view.ledger] == [2, 1]
    assert view.reconciliation.variance == 0
    assert view.reconciliation.healthy
