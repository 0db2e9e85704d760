from fastapi import APIRouter

from affiliate_ledger.api.v1.endpoints import commissions


api_router = APIRouter(prefix="/api/v1")

# Commission lifecycle, adjustment ledger and reports
api_router.include_router(
    commissions.router,
    prefix="/commissions",
    tags=["Commissions"],
)
