"""
Settlement Calculator (Domain Logic).

Pure computation of a seller settlement statement. No I/O, no ledger
mutation: the same inputs always give the same projection.
All amounts are integer minor units; rates are Decimals.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple

from trust_backend.app.core.config import settings
from trust_backend.app.core.exceptions import SettlementInputError
from trust_backend.app.core.money import apply_rate, as_decimal
from trust_backend.app.models.trust_enums import DeductionType


@dataclass(frozen=True)
class Deduction:
    type: DeductionType
    amount: int


@dataclass(frozen=True)
class SettlementInputs:
    """
    Calculator inputs.

    commission_amount defaults to default_commission_rate x sale_price.
    cgt_amount is a manual override, used only when supplied and >= 0.
    Rates left as None fall back to the configured jurisdiction defaults.
    """
    sale_price: int
    commission_amount: Optional[int] = None
    apply_vat_on_sale: bool = False
    cgt_rate: Optional[Decimal] = None
    cgt_amount: Optional[int] = None
    vat_sale_rate: Optional[Decimal] = None
    vat_on_commission_rate: Optional[Decimal] = None


@dataclass(frozen=True)
class Settlement:
    sale_price: int
    gross_proceeds: int
    deductions: Tuple[Deduction, ...]
    net_payout: int
    commission_amount: int
    apply_vat_on_sale: bool
    cgt_rate: Decimal
    cgt_override: Optional[int]
    vat_sale_rate: Decimal
    vat_on_commission_rate: Decimal
    locked: bool = field(default=False, compare=False)
    version: Optional[int] = field(default=None, compare=False)

    @property
    def total_deductions(self) -> int:
        return sum(d.amount for d in self.deductions)

    def deduction(self, deduction_type: DeductionType) -> int:
        for item in self.deductions:
            if item.type == deduction_type:
                return item.amount
        return 0


def _rate(value, default) -> Decimal:
    rate = as_decimal(default if value is None else value)
    if rate < 0:
        raise SettlementInputError("Rates cannot be negative", details={"rate": str(rate)})
    return rate


def calculate_settlement(inputs: SettlementInputs) -> Settlement:
    """
    Compute gross proceeds, ordered deductions and net payout.

    Steps:
    1. gross = sale_price (+ sale_price x vat_sale_rate when VAT on sale applies)
    2. vat_on_commission = commission x vat_on_commission_rate
    3. cgt = manual override when supplied, else sale_price x cgt_rate
    4. deductions: commission, vat_on_commission, cgt, vat_on_sale (if applicable)
    5. net_payout = gross - sum(deductions)

    A negative net payout is returned unchanged.
    """
    if inputs.sale_price is None or inputs.sale_price < 0:
        raise SettlementInputError("Sale price must be zero or positive", details={"sale_price": inputs.sale_price})

    cgt_rate = _rate(inputs.cgt_rate, settings.default_cgt_rate)
    vat_sale_rate = _rate(inputs.vat_sale_rate, settings.default_vat_sale_rate)
    vat_on_commission_rate = _rate(inputs.vat_on_commission_rate, settings.default_vat_on_commission_rate)

    sale_price = inputs.sale_price
    if inputs.commission_amount is None:
        commission = apply_rate(sale_price, settings.default_commission_rate)
    elif inputs.commission_amount < 0:
        raise SettlementInputError(
            "Commission cannot be negative", details={"commission_amount": inputs.commission_amount}
        )
    else:
        commission = inputs.commission_amount

    vat_on_sale = apply_rate(sale_price, vat_sale_rate) if inputs.apply_vat_on_sale else 0
    gross = sale_price + vat_on_sale

    vat_on_commission = apply_rate(commission, vat_on_commission_rate)

    cgt_override = inputs.cgt_amount if inputs.cgt_amount is not None and inputs.cgt_amount >= 0 else None
    cgt = cgt_override if cgt_override is not None else apply_rate(sale_price, cgt_rate)

    deductions = [
        Deduction(DeductionType.COMMISSION, commission),
        Deduction(DeductionType.VAT_ON_COMMISSION, vat_on_commission),
        Deduction(DeductionType.CGT, cgt),
    ]
    if inputs.apply_vat_on_sale:
        deductions.append(Deduction(DeductionType.VAT_ON_SALE, vat_on_sale))

    net_payout = gross - sum(d.amount for d in deductions)

    return Settlement(
        sale_price=sale_price,
        gross_proceeds=gross,
        deductions=tuple(deductions),
        net_payout=net_payout,
        commission_amount=commission,
        apply_vat_on_sale=inputs.apply_vat_on_sale,
        cgt_rate=cgt_rate,
        cgt_override=cgt_override,
        vat_sale_rate=vat_sale_rate,
        vat_on_commission_rate=vat_on_commission_rate,
    )
