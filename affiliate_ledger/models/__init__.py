from affiliate_ledger.models.marketer import Marketer, MarketerStatus
from affiliate_ledger.models.product import Product, ProductStatus, CommissionCalculationType
from affiliate_ledger.models.commission import (
    Commission,
    CommissionAdjustment,
    CommissionStatus,
    AdjustmentType,
    ClawbackType,
    compute_eligible_for_payout_date,
)

__all__ = [
    "Marketer",
    "MarketerStatus",
    "Product",
    "ProductStatus",
    "CommissionCalculationType",
    "Commission",
    "CommissionAdjustment",
    "CommissionStatus",
    "AdjustmentType",
    "ClawbackType",
    "compute_eligible_for_payout_date",
]
