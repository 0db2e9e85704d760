# API v1 endpoints
from affiliate_ledger.api.v1.endpoints import commissions

__all__ = ["commissions"]
