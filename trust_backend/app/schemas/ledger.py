"""
Ledger, tax and audit schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any
from trust_backend.app.models.trust_enums import LedgerEntryType, TaxType
from trust_backend.app.schemas.money import MoneyOut


class LedgerEntryResponse(BaseModel):
    """One immutable ledger row."""
    id: int
    trust_account_id: int
    sequence: int
    entry_type: LedgerEntryType
    debit: MoneyOut
    credit: MoneyOut
    running_balance: MoneyOut
    reference: Optional[str]
    payment_id: Optional[str]
    created_by: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerPageResponse(BaseModel):
    items: List[LedgerEntryResponse]
    total: int
    page: int
    limit: int


class TaxRecordResponse(BaseModel):
    id: int
    tax_type: TaxType
    amount: MoneyOut
    ledger_entry_id: int
    settlement_version: int
    paid_to_zimra: bool
    payment_reference: Optional[str]
    remitted_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class TaxSummaryResponse(BaseModel):
    """Posted tax per type; total == cgt + vat + vat_on_commission."""
    cgt: MoneyOut
    vat: MoneyOut
    vat_on_commission: MoneyOut
    total: MoneyOut
    paid_to_zimra_count: int
    records: List[TaxRecordResponse]

    class Config:
        from_attributes = True


class MarkRemittedRequest(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=100)


class AuditLogResponse(BaseModel):
    id: int
    trust_account_id: Optional[int]
    entity_type: str
    entity_id: Optional[int]
    action: str
    actor_id: Optional[int]
    actor_username: Optional[str]
    meta_data: Optional[Dict[str, Any]]
    timestamp: datetime

    class Config:
        from_attributes = True
