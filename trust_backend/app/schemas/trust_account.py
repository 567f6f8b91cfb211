"""
Trust account schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from trust_backend.app.domain.trust.parties import PartyRef
from trust_backend.app.models.trust_enums import TrustStatus, WorkflowStage
from trust_backend.app.schemas.ledger import LedgerEntryResponse, TaxSummaryResponse, AuditLogResponse
from trust_backend.app.schemas.money import MoneyOut, PositiveAmount, NonNegativeAmount
from trust_backend.app.schemas.settlement import SettlementResponse


class TrustAccountCreate(BaseModel):
    """Schema for opening a trust account."""
    property_id: int = Field(..., gt=0)
    property_label: Optional[str] = Field(None, max_length=255)
    buyer: Optional[PartyRef] = None
    seller: Optional[PartyRef] = None
    opening_balance: NonNegativeAmount = 0
    purchase_price: NonNegativeAmount = 0
    initial_stage: WorkflowStage = WorkflowStage.TRUST_OPEN


class BuyerPaymentCreate(BaseModel):
    """A confirmed sale payment from the buyer."""
    property_id: int = Field(..., gt=0)
    amount: PositiveAmount
    reference: Optional[str] = Field(None, max_length=255)
    payment_id: Optional[str] = Field(None, max_length=64)
    property_label: Optional[str] = Field(None, max_length=255)
    buyer: Optional[PartyRef] = None
    seller: Optional[PartyRef] = None
    purchase_price: Optional[PositiveAmount] = None


class AdjustmentCreate(BaseModel):
    """Correcting entry; exactly one of debit/credit must be non-zero."""
    debit: NonNegativeAmount = 0
    credit: NonNegativeAmount = 0
    reference: str = Field(..., min_length=1, max_length=255)


class TransferRequest(BaseModel):
    amount: PositiveAmount
    reference: Optional[str] = Field(None, max_length=255)


class CloseRequest(BaseModel):
    lock_reason: Optional[str] = Field(None, max_length=255)


class WorkflowTransitionRequest(BaseModel):
    to_state: str = Field(..., min_length=1, max_length=50)
    lock_reason: Optional[str] = Field(None, max_length=255)


class TrustAccountResponse(BaseModel):
    """Schema for displaying a trust account."""
    id: int
    company_id: int
    property_id: int
    property_label: Optional[str]
    buyer: Optional[PartyRef]
    seller: Optional[PartyRef]
    opening_balance: MoneyOut
    running_balance: MoneyOut
    closing_balance: MoneyOut
    purchase_price: MoneyOut
    amount_received: MoneyOut
    amount_outstanding: MoneyOut
    status: TrustStatus
    workflow_state: WorkflowStage
    locked: bool
    lock_reason: Optional[str]
    closed_at: Optional[datetime]
    last_transaction_at: Optional[datetime]
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TrustAccountListResponse(BaseModel):
    items: List[TrustAccountResponse]
    total: int
    page: int
    limit: int


class BuyerPaymentResponse(BaseModel):
    account: TrustAccountResponse
    entry: LedgerEntryResponse
    account_opened: bool
    duplicate: bool

    class Config:
        from_attributes = True


class ReconciliationResponse(BaseModel):
    trust_account_id: int
    status: TrustStatus
    trust_bank_balance: MoneyOut
    ledger_balance: MoneyOut
    total_buyer_funds_held: MoneyOut
    total_paid_to_seller: MoneyOut
    seller_liability: MoneyOut
    variance: MoneyOut
    chain_valid: bool
    entry_count: int
    first_break_sequence: Optional[int]
    healthy: bool

    class Config:
        from_attributes = True


class ReconciliationRunResponse(BaseModel):
    company_id: int
    run_at: datetime
    checked_accounts: int
    balance_mismatches: int
    broken_chains: int
    items: List[ReconciliationResponse]

    class Config:
        from_attributes = True


class TrustAccountFullResponse(BaseModel):
    """Account with ledger (newest first), settlement, taxes, audit trail and reconciliation."""
    account: TrustAccountResponse
    ledger: List[LedgerEntryResponse]
    settlement: Optional[SettlementResponse]
    tax_summary: TaxSummaryResponse
    audit_logs: List[AuditLogResponse]
    reconciliation: ReconciliationResponse

    class Config:
        from_attributes = True
