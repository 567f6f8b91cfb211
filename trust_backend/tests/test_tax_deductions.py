"""
Tax and Commission Deduction Tests.

Deductions post the difference against what the ledger already holds, so
re-application is a no-op and recalculation posts one correcting entry.
"""

import pytest
from decimal import Decimal

from trust_backend.app.core.exceptions import (
    AccountLockedError,
    InvalidEntryError,
    InvalidWorkflowTransitionError,
    NoSettlementError,
    NotFoundError,
)
from trust_backend.app.core.money import to_minor
from trust_backend.app.domain.trust.ledger_store import LedgerStore
from trust_backend.app.domain.trust.tax_applier import COMMISSION_REVERSAL_PREFIX, TAX_REVERSAL_PREFIX
from trust_backend.app.domain.trust.trust_account_service import TrustAccountService
from trust_backend.app.models.trust_enums import LedgerEntryType, TaxType, TrustStatus, WorkflowStage
from trust_backend.app.services import audit
from trust_backend.app.services.audit import AuditAction


async def _funded_account(db, actor, amount="100000"):
    result = await TrustAccountService.record_buyer_payment(
        db, actor, property_id=10, amount=to_minor(amount), payment_id="PAY-TAX-1",
        purchase_price=to_minor(amount)
    )
    return result.account


async def _settle(db, actor, account_id, cgt_rate="0.05", commission="5000"):
    return await TrustAccountService.calculate_settlement(
        db, actor, account_id,
        commission_amount=to_minor(commission),
        cgt_rate=Decimal(cgt_rate),
        vat_on_commission_rate=Decimal("0.15")
    )


@pytest.mark.asyncio
async def test_apply_taxes_posts_each_tax_once(db_session, actor):
    account = await _funded_account(db_session, actor)
    await _settle(db_session, actor, account.id)

    summary = await TrustAccountService.apply_tax_deductions(db_session, actor, account.id)

    assert summary.cgt == to_minor("5000")
    assert summary.vat_on_commission == to_minor("750")
    assert summary.vat == 0
    assert summary.total == to_minor("5750")
    assert {r.tax_type for r in summary.records} == {TaxType.CGT, TaxType.VAT_ON_COMMISSION}
    assert account.running_balance == to_minor("100000") - to_minor("5750")
    assert account.workflow_state == WorkflowStage.TAX_PENDING

    entries = await LedgerStore.replay(db_session, account.id)
    assert [e.entry_type for e in entries] == [
        LedgerEntryType.BUYER_PAYMENT,
        LedgerEntryType.VAT_ON_COMMISSION_DEDUCTION,
        LedgerEntryType.CGT_DEDUCTION,
    ]
    for record in summary.records:
        assert record.ledger_entry_id in {e.id for e in entries}
        assert record.settlement_version == 1


@pytest.mark.asyncio
async def test_reapplying_taxes_posts_nothing_but_is_audited(db_session, actor):
    account = await _funded_account(db_session, actor)
    await _settle(db_session, actor, account.id)
    await TrustAccountService.apply_tax_deductions(db_session, actor, account.id)
    balance = account.running_balance

    summary = await TrustAccountService.apply_tax_deductions(db_session, actor, account.id)

    assert summary.total == to_minor("5750")
    assert len(summary.records) == 2
    assert account.running_balance == balance

    logs = await audit.list_by_account(db_session, account.id)
    assert logs[0].action == AuditAction.TAX_ALREADY_APPLIED
    assert logs[0].meta_data["ledger_entry_ids"] == []


@pytest.mark.asyncio
async def test_recalculated_settlement_reverses_overposted_tax(db_session, actor):
    """A lower CGT after recalculation is corrected with a single credit adjustment."""
    account = await _funded_account(db_session, actor)
    await _settle(db_session, actor, account.id, cgt_rate="0.05")
    await TrustAccountService.apply_tax_deductions(db_session, actor, account.id)

    second = await _settle(db_session, actor, account.id, cgt_rate="0.04")
    assert second.version == 2

    summary = await TrustAccountService.apply_tax_deductions(db_session, actor, account.id)

    assert summary.cgt == to_minor("4000")
    reversal = [r for r in summary.records if r.amount < 0]
    assert len(reversal) == 1
    assert reversal[0].tax_type == TaxType.CGT
    assert reversal[0].amount == -to_minor("1000")
    assert reversal[0].settlement_version == 2

    entries = await LedgerStore.replay(db_session, account.id)
    last = entries[-1]
    assert last.entry_type == LedgerEntryType.ADJUSTMENT
    assert last.credit == to_minor("1000")
    assert last.reference.startswith(TAX_REVERSAL_PREFIX)
    assert last.reversal_of == LedgerEntryType.CGT_DEDUCTION
    assert account.running_balance == to_minor("100000") - to_minor("4750")


@pytest.mark.asyncio
async def test_zimra_reference_marks_records_paid(db_session, actor):
    account = await _funded_account(db_session, actor)
    await _settle(db_session, actor, account.id)

    summary = await TrustAccountService.apply_tax_deductions(db_session, actor, account.id, "ZIMRA-2024-0001")

    assert summary.paid_to_zimra_count == 2
    assert all(r.payment_reference == "ZIMRA-2024-0001" for r in summary.records)
    assert all(r.remitted_at is not None for r in summary.records)


@pytest.mark.asyncio
async def test_mark_tax_remitted_is_idempotent_per_reference(db_session, actor):
    account = await _funded_account(db_session, actor)
    account_id = account.id
    await _settle(db_session, actor, account_id)
    summary = await TrustAccountService.apply_tax_deductions(db_session, actor, account_id)
    record = summary.records[0]
    record_id = record.id
    assert record.paid_to_zimra is False

    remitted = await TrustAccountService.mark_tax_remitted(db_session, actor, account_id, record_id, "ZR-1")
    again = await TrustAccountService.mark_tax_remitted(db_session, actor, account_id, record_id, "ZR-1")

    assert remitted.paid_to_zimra is True
    assert again.payment_reference == "ZR-1"
    with pytest.raises(InvalidWorkflowTransitionError):
        await TrustAccountService.mark_tax_remitted(db_session, actor, account_id, record_id, "ZR-2")
    with pytest.raises(NotFoundError):
        await TrustAccountService.mark_tax_remitted(db_session, actor, account_id, 9999, "ZR-1")

    logs = await audit.list_by_account(db_session, account_id)
    assert sum(1 for log in logs if log.action == AuditAction.TAX_REMITTED) == 1


@pytest.mark.asyncio
async def test_commission_posted_once_and_reversed_on_recalculation(db_session, actor):
    account = await _funded_account(db_session, actor)
    await _settle(db_session, actor, account.id, commission="5000")

    entry = await TrustAccountService.apply_commission_deduction(db_session, actor, account.id)
    assert entry.entry_type == LedgerEntryType.COMMISSION_DEDUCTION
    assert entry.debit == to_minor("5000")

    assert await TrustAccountService.apply_commission_deduction(db_session, actor, account.id) is None

    await _settle(db_session, actor, account.id, commission="4000")
    reversal = await TrustAccountService.apply_commission_deduction(db_session, actor, account.id)

    assert reversal.entry_type == LedgerEntryType.ADJUSTMENT
    assert reversal.credit == to_minor("1000")
    assert reversal.reference.startswith(COMMISSION_REVERSAL_PREFIX)
    assert reversal.reversal_of == LedgerEntryType.COMMISSION_DEDUCTION
    assert account.running_balance == to_minor("96000")


@pytest.mark.asyncio
async def test_adjustment_text_never_counts_as_commission_reversal(db_session, actor):
    """Only reversals posted by the applier lower the commission already taken."""
    account = await _funded_account(db_session, actor)
    account_id = account.id
    await _settle(db_session, actor, account_id, commission="5000")
    await TrustAccountService.apply_commission_deduction(db_session, actor, account_id)

    with pytest.raises(InvalidEntryError):
        await TrustAccountService.post_adjustment(
            db_session, actor, account_id, credit=to_minor("1000"),
            reference="Commission reversal requested by buyer bank"
        )

    # Same text through the generic entry path: credited, but not a reversal
    entry = await TrustAccountService.append_entry(
        db_session, actor, account_id, LedgerEntryType.ADJUSTMENT, credit=to_minor("1000"),
        reference="Commission reversal requested by buyer bank"
    )
    assert entry.reversal_of is None

    assert await TrustAccountService.apply_commission_deduction(db_session, actor, account_id) is None
    debits, _ = await LedgerStore.total_for_type(db_session, account_id, LedgerEntryType.COMMISSION_DEDUCTION)
    assert debits == to_minor("5000")


@pytest.mark.asyncio
async def test_deductions_require_a_settlement(db_session, actor):
    account = await _funded_account(db_session, actor)
    account_id = account.id

    with pytest.raises(NoSettlementError):
        await TrustAccountService.apply_tax_deductions(db_session, actor, account_id)
    with pytest.raises(NoSettlementError):
        await TrustAccountService.apply_commission_deduction(db_session, actor, account_id)

    logs = await audit.list_by_account(db_session, account_id)
    assert [log.action for log in logs] == [AuditAction.BUYER_PAYMENT_RECORDED]


@pytest.mark.asyncio
async def test_closed_account_rejects_deductions(db_session, actor):
    account = await _funded_account(db_session, actor)
    account_id = account.id
    settlement = await _settle(db_session, actor, account_id)
    await TrustAccountService.apply_tax_deductions(db_session, actor, account_id)
    await TrustAccountService.apply_commission_deduction(db_session, actor, account_id)
    await TrustAccountService.transfer_to_seller(db_session, actor, account_id, settlement.net_payout)
    await TrustAccountService.close_trust_account(db_session, actor, account_id)
    assert account.status == TrustStatus.CLOSED

    with pytest.raises(AccountLockedError):
        await TrustAccountService.apply_tax_deductions(db_session, actor, account_id)
    with pytest.raises(AccountLockedError):
        await TrustAccountService.apply_commission_deduction(db_session, actor, account_id)
    with pytest.raises(AccountLockedError):
        await _settle(db_session, actor, account_id)
