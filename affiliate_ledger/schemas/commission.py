"""Pydantic schemas for the affiliate commission ledger."""
from datetime import datetime, date
from typing import Optional, List, Dict
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, Field

from affiliate_ledger.schemas.base import BaseResponseSchema, BaseCreateSchema


# ==================== Commission Schemas ====================

class CommissionCalculateRequest(BaseCreateSchema):
    """Schema for recording a conversion and calculating its commission."""
    marketer_id: UUID
    customer_id: str = Field(..., max_length=100)
    product_id: UUID
    tracking_code: str = Field(..., max_length=100)
    initial_spend_amount: Decimal
    conversion_date: datetime
    clearance_period_days: Optional[int] = None

    # Admin override
    custom_commission_rate: Optional[Decimal] = None
    custom_commission_amount: Optional[Decimal] = None
    override_product_rules: bool = False


class CommissionBatchCalculateRequest(BaseModel):
    """Schema for batch commission calculation."""
    conversions: List[CommissionCalculateRequest]


class CommissionResponse(BaseResponseSchema):
    """Response schema for Commission."""
    id: UUID
    marketer_id: UUID
    customer_id: str
    product_id: UUID
    tracking_code: str
    initial_spend_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    original_commission_amount: Decimal
    status: str
    conversion_date: datetime
    clearance_period_days: int
    eligible_for_payout_date: datetime
    approval_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class CommissionListResponse(BaseModel):
    """Response for listing commissions."""
    items: List[CommissionResponse]
    total: int
    page: int = 1
    size: int = 10
    pages: int = 1


class BatchItemError(BaseModel):
    index: int
    message: str


class CommissionBatchCalculateResponse(BaseModel):
    """Created commissions plus per-item failures."""
    commissions: List[CommissionResponse]
    errors: List[BatchItemError]


# ==================== Status Lifecycle Schemas ====================

class CommissionStatusUpdateRequest(BaseModel):
    """Schema for a direct status change."""
    status: str
    rejection_reason: Optional[str] = None


class CommissionApproveRequest(BaseModel):
    """Schema for approving a commission."""
    override_clearance_period: bool = False


class CommissionRejectRequest(BaseModel):
    """Schema for rejecting a commission."""
    rejection_reason: str = Field(..., max_length=1000)


class CommissionMarkPaidRequest(BaseModel):
    """Schema for marking a commission as paid."""
    payment_reference: Optional[str] = Field(None, max_length=100)


class CommissionRecalculateRequest(BaseModel):
    """Schema for recalculating a pending commission."""
    new_amount: Optional[Decimal] = None
    new_rate: Optional[Decimal] = None


class StatusHistoryEntry(BaseModel):
    status: str
    timestamp: datetime
    admin_id: Optional[str] = None
    reason: str


class CommissionStatusHistoryResponse(BaseModel):
    """Commission with its status history, oldest first."""
    commission: Optional[CommissionResponse] = None
    status_history: List[StatusHistoryEntry]


# ==================== Adjustment Ledger Schemas ====================

class CommissionClawbackRequest(BaseModel):
    """Schema for a full or partial clawback."""
    amount: Decimal
    reason: str = Field(..., max_length=1000)
    clawback_type: str = "manual"


class CommissionAdjustmentRequest(BaseModel):
    """Schema for a manual bonus or correction."""
    amount: Decimal
    adjustment_type: str
    reason: str = Field(..., max_length=1000)


class CommissionAdjustmentResponse(BaseResponseSchema):
    """Response schema for a ledger entry."""
    id: UUID
    commission_id: UUID
    adjustment_type: str
    amount: Decimal
    reason: str
    clawback_type: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    admin_id: Optional[str] = None
    created_at: datetime


class CommissionLedgerWriteResponse(BaseModel):
    """Commission after a ledger write plus the entry that was appended."""
    commission: CommissionResponse
    adjustment: CommissionAdjustmentResponse


class CommissionWithAdjustmentsResponse(BaseModel):
    """Commission, its ledger and the net amount."""
    commission: Optional[CommissionResponse] = None
    adjustments: List[CommissionAdjustmentResponse]
    total_adjustments: Decimal
    net_amount: Decimal


class LedgerReplayResponse(BaseModel):
    commission_id: UUID
    stored_amount: Decimal
    replayed_amount: Decimal
    in_sync: bool


# ==================== Clearance Schemas ====================

class BulkApproveError(BaseModel):
    commission_id: str
    error: str


class BulkApproveResponse(BaseModel):
    """Result of approving every eligible commission."""
    approved: int
    errors: List[BulkApproveError]


class AutomatedProcessingResponse(BaseModel):
    auto_approved: int
    errors: List[BulkApproveError]
    summary: str


# ==================== Report Schemas ====================

class CommissionSummaryResponse(BaseModel):
    """Per-status commission totals for a marketer."""
    total_earned: Decimal
    pending_amount: Decimal
    approved_amount: Decimal
    paid_amount: Decimal
    clawed_back_amount: Decimal
    total_commissions: int


class AvailableBalanceResponse(BaseModel):
    marketer_id: UUID
    available_balance: Decimal


class LifecycleStatsResponse(BaseModel):
    """Commission lifecycle statistics."""
    total_commissions: int
    status_breakdown: Dict[str, int]
    average_clearance_time: float
    pending_commissions: int
    eligible_for_approval: int


class ClawbackTypeStats(BaseModel):
    count: int
    amount: Decimal


class ClawbackStatsResponse(BaseModel):
    """Clawback statistics grouped by clawback type."""
    total_clawbacks: int
    total_clawback_amount: Decimal
    clawbacks_by_type: Dict[str, ClawbackTypeStats]
    affected_commissions: int
    clawback_rate: float


class DailyCommissionAnalytics(BaseModel):
    date: date
    total_commissions: int
    total_amount: Decimal
    avg_amount: Decimal
    status_breakdown: Dict[str, int]


class StatusAmountStats(BaseModel):
    count: int
    amount: Decimal


class ProductPerformanceResponse(BaseModel):
    """Commission totals for a product."""
    total_commissions: int
    total_amount: Decimal
    average_commission: Decimal
    status_breakdown: Dict[str, StatusAmountStats]
