"""
Trust Account API Endpoints.

Real-estate sale trust accounts: buyer funds in escrow, settlement,
tax withholding, seller payout and closing.
Mutating endpoints retry a bounded number of times on concurrency conflicts.
"""

from fastapi import APIRouter, Depends, Query, Path, Body, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from trust_backend.app.db.session import get_db
from trust_backend.app.core.config import settings
from trust_backend.app.core.guards import require_role, READ_ROLES, FINANCE_ROLES
from trust_backend.app.core.money import to_minor
from trust_backend.app.core.reliability import retry_on_conflict
from trust_backend.app.domain.trust.ledger_store import LedgerStore
from trust_backend.app.domain.trust.trust_account_service import TrustAccountService
from trust_backend.app.models.trust_enums import TrustStatus
from trust_backend.app.schemas.ledger import (
    LedgerEntryResponse, LedgerPageResponse, TaxSummaryResponse, TaxRecordResponse,
    MarkRemittedRequest, AuditLogResponse
)
from trust_backend.app.schemas.settlement import SettlementRequest, SettlementResponse, ApplyTaxRequest
from trust_backend.app.schemas.trust_account import (
    TrustAccountCreate, TrustAccountResponse, TrustAccountListResponse, TrustAccountFullResponse,
    BuyerPaymentCreate, BuyerPaymentResponse, AdjustmentCreate, TransferRequest, CloseRequest,
    WorkflowTransitionRequest, ReconciliationResponse, ReconciliationRunResponse
)
from trust_backend.app.services import audit

router = APIRouter(prefix="/trust-accounts", tags=["Trust Accounts"])


def _optional_minor(value):
    return to_minor(value) if value is not None else None


# ============================================================================
# Collection endpoints
# ============================================================================

@router.get("", response_model=TrustAccountListResponse)
async def list_trust_accounts(
    status_filter: Optional[TrustStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    current_user: dict = Depends(require_role(READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    List the company's trust accounts.

    search matches the property label and party names.
    """
    items, total = await TrustAccountService.list_accounts(
        db, current_user["company_id"], status=status_filter, search=search, page=page, limit=limit
    )
    return {"items": items, "total": total, "page": page, "limit": limit}


@router.post("", response_model=TrustAccountResponse, status_code=status.HTTP_201_CREATED)
async def open_trust_account(
    payload: TrustAccountCreate,
    current_user: dict = Depends(require_role(READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Open the trust account of a property sale.

    Returns the existing live account when the property already has one.
    """
    account, _ = await retry_on_conflict(lambda: TrustAccountService.open_trust_account(
        db, current_user,
        property_id=payload.property_id,
        property_label=payload.property_label,
        buyer=payload.buyer,
        seller=payload.seller,
        opening_balance=to_minor(payload.opening_balance),
        purchase_price=to_minor(payload.purchase_price),
        initial_stage=payload.initial_stage
    ))
    return account


@router.post("/buyer-payments", response_model=BuyerPaymentResponse, status_code=status.HTTP_201_CREATED)
async def record_buyer_payment(
    payload: BuyerPaymentCreate,
    current_user: dict = Depends(require_role(READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Post a confirmed buyer payment, opening the trust account if needed.

    A repeated payment_id returns the original posting (duplicate=true).
    """
    result = await retry_on_conflict(lambda: TrustAccountService.record_buyer_payment(
        db, current_user,
        property_id=payload.property_id,
        amount=to_minor(payload.amount),
        reference=payload.reference,
        payment_id=payload.payment_id,
        property_label=payload.property_label,
        buyer=payload.buyer,
        seller=payload.seller,
        purchase_price=_optional_minor(payload.purchase_price)
    ))
    return BuyerPaymentResponse.model_validate(result)


@router.post("/reconciliation/run", response_model=ReconciliationRunResponse)
async def run_reconciliation(
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Reconcile every trust account of the company against its ledger."""
    run = await TrustAccountService.run_reconciliation(db, current_user["company_id"])
    return ReconciliationRunResponse.model_validate(run)


@router.get("/property/{property_id}", response_model=TrustAccountResponse)
async def get_trust_account_by_property(
    property_id: int = Path(..., gt=0),
    current_user: dict = Depends(require_role(READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    return await TrustAccountService.get_by_property(db, current_user["company_id"], property_id)


@router.get("/property/{property_id}/full", response_model=TrustAccountFullResponse)
async def get_full_trust_account_by_property(
    property_id: int = Path(..., gt=0),
    current_user: dict = Depends(require_role(READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Account, ledger, settlement, tax summary and audit trail in one read."""
    account = await TrustAccountService.get_by_property(db, current_user["company_id"], property_id)
    view = await TrustAccountService.get_full_view(db, account)
    return TrustAccountFullResponse.model_validate(view)


# ============================================================================
# Single account reads
# ============================================================================

@router.get("/{trust_account_id}", response_model=TrustAccountResponse)
async def get_trust_account(
    trust_account_id: int = Path(..., gt=0),
    current_user: dict = Depends(require_role(READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    return await TrustAccountService.get_account(db, trust_account_id, current_user["company_id"])


@router.get("/{trust_account_id}/full", response_model=TrustAccountFullResponse)
async def get_full_trust_account(
    trust_account_id: int = Path(..., gt=0),
    current_user: dict = Depends(require_role(READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    account = await TrustAccountService.get_account(db, trust_account_id, current_user["company_id"])
    view = await TrustAccountService.get_full_view(db, account)
    return TrustAccountFullResponse.model_validate(view)


@router.get("/{trust_account_id}/ledger", response_model=LedgerPageResponse)
async def get_ledger(
    trust_account_id: int = Path(..., gt=0),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    current_user: dict = Depends(require_role(READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Ledger entries, newest first."""
    await TrustAccountService.get_account(db, trust_account_id, current_user["company_id"])
    items, total = await LedgerStore.list_by_account(db, trust_account_id, page=page, limit=limit)
    return {"items": items, "total": total, "page": page, "limit": limit}


@router.get("/{trust_account_id}/tax-summary", response_model=TaxSummaryResponse)
async def get_tax_summary(
    trust_account_id: int = Path(..., gt=0),
    current_user: dict = Depends(require_role(READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    await TrustAccountService.get_account(db, trust_account_id, current_user["company_id"])
    summary = await TrustAccountService.get_tax_summary(db, trust_account_id)
    return TaxSummaryResponse.model_validate(summary)


@router.get("/{trust_account_id}/audit-logs", response_model=List[AuditLogResponse])
async def get_audit_logs(
    trust_account_id: int = Path(..., gt=0),
    limit: int = Query(200, ge=1, le=500),
    current_user: dict = Depends(require_role(READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Audit trail, newest first."""
    await TrustAccountService.get_account(db, trust_account_id, current_user["company_id"])
    return await audit.list_by_account(db, trust_account_id, limit=limit)


@router.get("/{trust_account_id}/reconciliation", response_model=ReconciliationResponse)
async def get_reconciliation(
    trust_account_id: int = Path(..., gt=0),
    current_user: dict = Depends(require_role(READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    account = await TrustAccountService.get_account(db, trust_account_id, current_user["company_id"])
    recon = await TrustAccountService.get_reconciliation(db, account)
    return ReconciliationResponse.model_validate(recon)


# ============================================================================
# Mutations
# ============================================================================

@router.post("/{trust_account_id}/calculate-settlement", response_model=SettlementResponse)
async def calculate_settlement(
    trust_account_id: int = Path(..., gt=0),
    payload: Optional[SettlementRequest] = Body(None),
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Compute the seller settlement statement.

    Identical inputs return the identical stored projection.
    """
    payload = payload or SettlementRequest()
    settlement = await retry_on_conflict(lambda: TrustAccountService.calculate_settlement(
        db, current_user, trust_account_id,
        sale_price=_optional_minor(payload.sale_price),
        commission_amount=_optional_minor(payload.commission_amount),
        apply_vat_on_sale=payload.apply_vat_on_sale,
        cgt_rate=payload.cgt_rate,
        cgt_amount=_optional_minor(payload.cgt_amount),
        vat_sale_rate=payload.vat_sale_rate,
        vat_on_commission_rate=payload.vat_on_commission_rate
    ))
    return SettlementResponse.model_validate(settlement)


@router.post("/{trust_account_id}/apply-tax-deductions", response_model=TaxSummaryResponse)
async def apply_tax_deductions(
    trust_account_id: int = Path(..., gt=0),
    payload: Optional[ApplyTaxRequest] = Body(None),
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    payload = payload or ApplyTaxRequest()
    summary = await retry_on_conflict(lambda: TrustAccountService.apply_tax_deductions(
        db, current_user, trust_account_id, payload.zimra_payment_reference
    ))
    return TaxSummaryResponse.model_validate(summary)


@router.post("/{trust_account_id}/apply-commission-deduction", response_model=Optional[LedgerEntryResponse])
async def apply_commission_deduction(
    trust_account_id: int = Path(..., gt=0),
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Returns the posted entry, or null when the commission is already posted."""
    return await retry_on_conflict(lambda: TrustAccountService.apply_commission_deduction(
        db, current_user, trust_account_id
    ))


@router.post("/{trust_account_id}/tax-records/{tax_record_id}/mark-remitted", response_model=TaxRecordResponse)
async def mark_tax_remitted(
    payload: MarkRemittedRequest,
    trust_account_id: int = Path(..., gt=0),
    tax_record_id: int = Path(..., gt=0),
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    return await retry_on_conflict(lambda: TrustAccountService.mark_tax_remitted(
        db, current_user, trust_account_id, tax_record_id, payload.payment_reference
    ))


@router.post(
    "/{trust_account_id}/adjustments",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED
)
async def post_adjustment(
    payload: AdjustmentCreate,
    trust_account_id: int = Path(..., gt=0),
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Correcting entry. Ledger rows are never edited."""
    return await retry_on_conflict(lambda: TrustAccountService.post_adjustment(
        db, current_user, trust_account_id,
        debit=to_minor(payload.debit),
        credit=to_minor(payload.credit),
        reference=payload.reference
    ))


@router.post(
    "/{trust_account_id}/transfer-to-seller",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED
)
async def transfer_to_seller(
    payload: TransferRequest,
    trust_account_id: int = Path(..., gt=0),
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    return await retry_on_conflict(lambda: TrustAccountService.transfer_to_seller(
        db, current_user, trust_account_id, to_minor(payload.amount), payload.reference
    ))


@router.post("/{trust_account_id}/close", response_model=TrustAccountResponse)
async def close_trust_account(
    trust_account_id: int = Path(..., gt=0),
    payload: Optional[CloseRequest] = Body(None),
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    payload = payload or CloseRequest()
    return await retry_on_conflict(lambda: TrustAccountService.close_trust_account(
        db, current_user, trust_account_id, payload.lock_reason
    ))


@router.post("/{trust_account_id}/workflow-transition", response_model=TrustAccountResponse)
async def workflow_transition(
    payload: WorkflowTransitionRequest,
    trust_account_id: int = Path(..., gt=0),
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Move to a status (SETTLED, CLOSED) or a workflow stage."""
    return await retry_on_conflict(lambda: TrustAccountService.transition_workflow(
        db, current_user, trust_account_id, payload.to_state, payload.lock_reason
    ))
