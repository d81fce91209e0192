"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import accounts, documents, ledger, rollover

router = APIRouter()

# Balances, journal and snapshots
router.include_router(ledger.router)

# Daily rollover (external cron + admin)
router.include_router(rollover.cron_router)
router.include_router(rollover.admin_router)

# Accounts the ledger tracks, and the daily balance confirmation
router.include_router(accounts.bank_accounts_router)
router.include_router(accounts.cards_router)
router.include_router(accounts.confirmation_router)

# Business documents settled through the ledger
router.include_router(documents.sales_router)
router.include_router(documents.purchases_router)
router.include_router(documents.expenses_router)
