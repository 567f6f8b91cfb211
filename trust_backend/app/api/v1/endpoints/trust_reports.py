"""
Trust Account Report Endpoints.

Reports are built from one consistent read of the account and returned as
a downloadable document.
"""

from fastapi import APIRouter, Depends, Path
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from trust_backend.app.db.session import get_db
from trust_backend.app.core.guards import require_role, READ_ROLES
from trust_backend.app.domain.trust.reports import ReportType, ReportRenderer, HtmlReportRenderer, build_report
from trust_backend.app.domain.trust.trust_account_service import TrustAccountService

router = APIRouter(prefix="/trust-accounts", tags=["Trust Account Reports"])


def get_report_renderer() -> ReportRenderer:
    return HtmlReportRenderer()


@router.get("/{trust_account_id}/reports/{report_type}")
async def generate_trust_report(
    report_type: ReportType,
    trust_account_id: int = Path(..., gt=0),
    renderer: ReportRenderer = Depends(get_report_renderer),
    current_user: dict = Depends(require_role(READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Render a trust account report.

    report_type: buyer-statement, seller-settlement, trust-reconciliation,
    tax-zimra or audit-log.
    """
    account = await TrustAccountService.get_account(db, trust_account_id, current_user["company_id"])
    view = await TrustAccountService.get_full_view(db, account)
    report = build_report(view, report_type)

    return Response(
        content=renderer.render(report),
        media_type=renderer.media_type,
        headers={"Content-Disposition": f'attachment; filename="{renderer.filename(report)}"'}
    )
