"""
Settlement schemas.
"""

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from trust_backend.app.models.trust_enums import DeductionType
from trust_backend.app.schemas.money import MoneyOut, PositiveAmount, NonNegativeAmount, Rate


class SettlementRequest(BaseModel):
    """
    Settlement inputs. Omitted values fall back to the account's purchase
    price (then buyer funds received) and the configured default rates.
    """
    sale_price: Optional[PositiveAmount] = None
    commission_amount: Optional[NonNegativeAmount] = None
    apply_vat_on_sale: bool = False
    cgt_rate: Optional[Rate] = None
    cgt_amount: Optional[NonNegativeAmount] = Field(None, description="Manual CGT override")
    vat_sale_rate: Optional[Rate] = None
    vat_on_commission_rate: Optional[Rate] = None


class DeductionResponse(BaseModel):
    type: DeductionType
    amount: MoneyOut

    class Config:
        from_attributes = True


class SettlementResponse(BaseModel):
    """Settlement projection; net_payout may be negative."""
    version: Optional[int]
    sale_price: MoneyOut
    gross_proceeds: MoneyOut
    deductions: List[DeductionResponse]
    total_deductions: MoneyOut
    net_payout: MoneyOut
    commission_amount: MoneyOut
    apply_vat_on_sale: bool
    cgt_rate: Decimal
    cgt_override: Optional[MoneyOut]
    vat_sale_rate: Decimal
    vat_on_commission_rate: Decimal
    locked: bool

    class Config:
        from_attributes = True


class ApplyTaxRequest(BaseModel):
    zimra_payment_reference: Optional[str] = Field(None, max_length=100)
