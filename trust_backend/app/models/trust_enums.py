"""
Trust account enumerations.
"""

import enum


class TrustStatus(str, enum.Enum):
    """Trust account status. Moves forward only."""
    OPEN = "OPEN"  # Holding buyer funds, settlement not yet accepted
    SETTLED = "SETTLED"  # Settlement accepted and locked, disbursing
    CLOSED = "CLOSED"  # Terminal, ledger locked


class WorkflowStage(str, enum.Enum):
    """Finer-grained UI stage tracked alongside TrustStatus."""
    VALUED = "VALUED"
    LISTED = "LISTED"
    DEPOSIT_RECEIVED = "DEPOSIT_RECEIVED"
    TRUST_OPEN = "TRUST_OPEN"
    TAX_PENDING = "TAX_PENDING"
    SETTLED = "SETTLED"
    TRANSFER_COMPLETE = "TRANSFER_COMPLETE"
    TRUST_CLOSED = "TRUST_CLOSED"


class LedgerEntryType(str, enum.Enum):
    """Ledger entry type enumeration."""
    BUYER_PAYMENT = "BUYER_PAYMENT"
    COMMISSION_DEDUCTION = "COMMISSION_DEDUCTION"
    CGT_DEDUCTION = "CGT_DEDUCTION"
    VAT_DEDUCTION = "VAT_DEDUCTION"
    VAT_ON_COMMISSION_DEDUCTION = "VAT_ON_COMMISSION_DEDUCTION"
    SELLER_PAYOUT = "SELLER_PAYOUT"
    ADJUSTMENT = "ADJUSTMENT"


class DeductionType(str, enum.Enum):
    """Settlement deduction types, listed in display order."""
    COMMISSION = "COMMISSION"
    VAT_ON_COMMISSION = "VAT_ON_COMMISSION"
    CGT = "CGT"
    VAT_ON_SALE = "VAT_ON_SALE"


class TaxType(str, enum.Enum):
    """Tax types remitted to ZIMRA."""
    CGT = "CGT"
    VAT = "VAT"
    VAT_ON_COMMISSION = "VAT_ON_COMMISSION"


# Deduction -> (ledger entry type, tax type) for the deductions that are taxes
TAX_DEDUCTIONS = {
    DeductionType.VAT_ON_COMMISSION: (LedgerEntryType.VAT_ON_COMMISSION_DEDUCTION, TaxType.VAT_ON_COMMISSION),
    DeductionType.CGT: (LedgerEntryType.CGT_DEDUCTION, TaxType.CGT),
    DeductionType.VAT_ON_SALE: (LedgerEntryType.VAT_DEDUCTION, TaxType.VAT),
}
