"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from trust_backend.app.api.v1.endpoints import trust_accounts, trust_reports

router = APIRouter()

# Trust account ledger, settlement and workflow
router.include_router(trust_accounts.router)

# Trust account reports
router.include_router(trust_reports.router)
