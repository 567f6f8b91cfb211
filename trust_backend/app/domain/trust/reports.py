"""
Trust account reports.

build_report turns a read-only TrustAccountView into a presentation-neutral
TrustReport (rows + totals). Rendering sits behind ReportRenderer; the
HTML renderer is the bundled implementation.
"""

import enum
import html
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List

from trust_backend.app.core.money import to_major
from trust_backend.app.domain.trust.parties import party_label
from trust_backend.app.domain.trust.trust_account_service import TrustAccountView


class ReportType(str, enum.Enum):
    BUYER_STATEMENT = "buyer-statement"
    SELLER_SETTLEMENT = "seller-settlement"
    TRUST_RECONCILIATION = "trust-reconciliation"
    TAX_ZIMRA = "tax-zimra"
    AUDIT_LOG = "audit-log"


REPORT_TITLES = {
    ReportType.BUYER_STATEMENT: "Buyer Statement",
    ReportType.SELLER_SETTLEMENT: "Seller Settlement Statement",
    ReportType.TRUST_RECONCILIATION: "Trust Reconciliation",
    ReportType.TAX_ZIMRA: "ZIMRA Tax Schedule",
    ReportType.AUDIT_LOG: "Audit Log",
}


@dataclass
class TrustReport:
    report_type: ReportType
    title: str
    trust_account_id: int
    property_label: str
    buyer: str
    seller: str
    audit_reference: str
    generated_at: datetime
    columns: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)


def build_report(view: TrustAccountView, report_type: ReportType) -> TrustReport:
    account = view.account
    recon = view.reconciliation
    generated_at = datetime.now(timezone.utc)

    if report_type == ReportType.BUYER_STATEMENT:
        columns = ["date", "type", "debit", "credit", "running_balance", "reference"]
        rows = [
            {
                "date": entry.created_at,
                "type": entry.entry_type.value,
                "debit": to_major(entry.debit),
                "credit": to_major(entry.credit),
                "running_balance": to_major(entry.running_balance),
                "reference": entry.reference or "",
            }
            for entry in sorted(view.ledger, key=lambda e: e.sequence)
        ]
        totals = {
            "trust_balance": to_major(recon.trust_bank_balance),
            "buyer_funds_held": to_major(recon.total_buyer_funds_held),
        }
    elif report_type == ReportType.SELLER_SETTLEMENT:
        settlement = view.settlement
        columns = ["type", "amount"]
        rows = [
            {"type": d.type.value, "amount": to_major(d.amount)}
            for d in (settlement.deductions if settlement else ())
        ]
        totals = {
            "sale_price": to_major(settlement.sale_price if settlement else 0),
            "gross_proceeds": to_major(settlement.gross_proceeds if settlement else 0),
            "net_payout": to_major(settlement.net_payout if settlement else 0),
        }
    elif report_type == ReportType.TAX_ZIMRA:
        summary = view.tax_summary
        columns = ["tax_type", "amount", "settlement_version", "paid_to_zimra", "payment_reference"]
        rows = [
            {
                "tax_type": record.tax_type.value,
                "amount": to_major(record.amount),
                "settlement_version": record.settlement_version,
                "paid_to_zimra": "Yes" if record.paid_to_zimra else "No",
                "payment_reference": record.payment_reference or "",
            }
            for record in summary.records
        ]
        totals = {
            "cgt": to_major(summary.cgt),
            "vat": to_major(summary.vat),
            "vat_on_commission": to_major(summary.vat_on_commission),
            "total": to_major(summary.total),
        }
    elif report_type == ReportType.AUDIT_LOG:
        columns = ["timestamp", "entity_type", "action", "entity_id", "actor"]
        rows = [
            {
                "timestamp": log.timestamp,
                "entity_type": log.entity_type,
                "action": log.action,
                "entity_id": log.entity_id,
                "actor": log.actor_username or "",
            }
            for log in view.audit_logs
        ]
        totals = {"events": len(rows)}
    else:
        columns = ["trust_bank_balance", "ledger_balance", "buyer_funds_held", "seller_liability", "variance", "chain_valid"]
        rows = [{
            "trust_bank_balance": to_major(recon.trust_bank_balance),
            "ledger_balance": to_major(recon.ledger_balance),
            "buyer_funds_held": to_major(recon.total_buyer_funds_held),
            "seller_liability": to_major(recon.seller_liability),
            "variance": to_major(recon.variance),
            "chain_valid": "Yes" if recon.chain_valid else "No",
        }]
        totals = {
            "trust_bank_balance": to_major(recon.trust_bank_balance),
            "seller_liability": to_major(recon.seller_liability),
            "variance": to_major(recon.variance),
            "healthy": "Yes" if recon.healthy else "No",
        }

    return TrustReport(
        report_type=report_type,
        title=REPORT_TITLES[report_type],
        trust_account_id=account.id,
        property_label=account.property_label or f"Property #{account.property_id}",
        buyer=party_label(account.buyer),
        seller=party_label(account.seller),
        audit_reference=f"TRUST-{account.id}-{generated_at.strftime('%Y%m%d%H%M%S')}",
        generated_at=generated_at,
        columns=columns,
        rows=rows,
        totals=totals,
    )


class ReportRenderer(ABC):
    """Turns a TrustReport into a downloadable document."""

    media_type: str
    extension: str

    @abstractmethod
    def render(self, report: TrustReport) -> bytes:
        ...

    def filename(self, report: TrustReport) -> str:
        return f"trust-{report.report_type.value}-{report.trust_account_id}.{self.extension}"


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    if isinstance(value, Decimal):
        return f"{value:,.2f}"
    return str(value)


def _label(key: str) -> str:
    return key.replace("_", " ").title()


class HtmlReportRenderer(ReportRenderer):
    media_type = "text/html"
    extension = "html"

    def render(self, report: TrustReport) -> bytes:
        esc = html.escape
        head = "".join(f"<th>{esc(_label(c))}</th>" for c in report.columns)
        body = "".join(
            "<tr>" + "".join(f"<td>{esc(_cell(row.get(c)))}</td>" for c in report.columns) + "</tr>"
            for row in report.rows
        ) or f'<tr><td colspan="{len(report.columns)}">No records</td></tr>'
        totals = "".join(
            f"<tr><th>{esc(_label(k))}</th><td>{esc(_cell(v))}</td></tr>" for k, v in report.totals.items()
        )

        document = (
            "<!DOCTYPE html>"
            f"<html><head><meta charset=\"utf-8\"><title>{esc(report.title)}</title></head><body>"
            f"<h1>{esc(report.title)}</h1>"
            f"<p>Property: {esc(report.property_label)}<br>"
            f"Buyer: {esc(report.buyer)}<br>"
            f"Seller: {esc(report.seller)}<br>"
            f"Audit reference: {esc(report.audit_reference)}<br>"
            f"Generated: {esc(_cell(report.generated_at))} UTC</p>"
            f"<table class=\"rows\"><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"
            f"<table class=\"totals\">{totals}</table>"
            "</body></html>"
        )
        return document.encode("utf-8")
