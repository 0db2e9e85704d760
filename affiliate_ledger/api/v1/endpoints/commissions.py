"""API endpoints for the affiliate commission ledger."""
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, status, Query

from affiliate_ledger.schemas.commission import (
    # Commission
    CommissionCalculateRequest, CommissionBatchCalculateRequest,
    CommissionResponse, CommissionListResponse, CommissionBatchCalculateResponse,
    # Status lifecycle
    CommissionStatusUpdateRequest, CommissionApproveRequest, CommissionRejectRequest,
    CommissionMarkPaidRequest, CommissionRecalculateRequest, CommissionStatusHistoryResponse,
    # Ledger
    CommissionClawbackRequest, CommissionAdjustmentRequest, CommissionLedgerWriteResponse,
    CommissionWithAdjustmentsResponse, LedgerReplayResponse,
    # Clearance
    BulkApproveResponse, AutomatedProcessingResponse,
    # Reports
    CommissionSummaryResponse, AvailableBalanceResponse, LifecycleStatsResponse,
    ClawbackStatsResponse, DailyCommissionAnalytics, ProductPerformanceResponse,
)
from affiliate_ledger.api.deps import DB, AdminId, Publisher
from affiliate_ledger.services.commission_service import CommissionService
from affiliate_ledger.services.commission_ledger_service import CommissionLedgerService
from affiliate_ledger.services.clearance_service import ClearanceService
from affiliate_ledger.services.commission_report_service import CommissionReportService

router = APIRouter()


# ==================== Commission Calculation ====================

@router.post("", response_model=CommissionResponse, status_code=status.HTTP_201_CREATED)
async def calculate_commission(
    data: CommissionCalculateRequest,
    db: DB,
    publisher: Publisher,
):
    """Record a conversion and calculate its pending commission."""
    service = CommissionService(db, publisher)
    return await service.calculate_commission(**data.model_dump())


@router.post("/batch", response_model=CommissionBatchCalculateResponse)
async def batch_calculate_commissions(
    data: CommissionBatchCalculateRequest,
    db: DB,
    publisher: Publisher,
):
    """Calculate commissions for many conversions; failures are reported per item."""
    service = CommissionService(db, publisher)
    return await service.batch_calculate_commissions([c.model_dump() for c in data.conversions])


@router.get("", response_model=CommissionListResponse)
async def list_commissions(
    db: DB,
    marketer_id: Optional[UUID] = None,
    product_id: Optional[UUID] = None,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = "conversion_date",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
):
    """List commissions with filters and pagination."""
    service = CommissionService(db)
    result = await service.get_commissions(
        marketer_id=marketer_id,
        product_id=product_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        max_amount=max_amount,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    pagination = result["pagination"]
    return CommissionListResponse(
        items=[CommissionResponse.model_validate(c) for c in result["commissions"]],
        total=pagination["total"],
        page=pagination["page"],
        size=pagination["limit"],
        pages=pagination["pages"],
    )


# ==================== Clearance ====================

@router.get("/eligible", response_model=List[CommissionResponse])
async def list_commissions_eligible_for_approval(db: DB):
    """Pending commissions whose clearance period has elapsed."""
    service = ClearanceService(db)
    return await service.get_commissions_eligible_for_approval()


@router.get("/approaching-clearance", response_model=List[CommissionResponse])
async def list_commissions_approaching_clearance(
    db: DB,
    days_before: Optional[int] = Query(None, ge=0, le=365),
):
    """Pending commissions that clear within the next few days."""
    service = ClearanceService(db)
    return await service.get_commissions_approaching_clearance(days_before=days_before)


@router.post("/bulk-approve", response_model=BulkApproveResponse)
async def bulk_approve_eligible_commissions(db: DB, publisher: Publisher):
    """Approve every commission past its clearance period."""
    service = ClearanceService(db, publisher)
    return await service.bulk_approve_eligible_commissions()


@router.post("/process-automated", response_model=AutomatedProcessingResponse)
async def process_automated_commission_updates(db: DB, publisher: Publisher):
    """Run the automated lifecycle pass on demand."""
    service = ClearanceService(db, publisher)
    return await service.process_automated_commission_updates()


# ==================== Reports ====================

@router.get("/stats/lifecycle", response_model=LifecycleStatsResponse)
async def get_commission_lifecycle_stats(
    db: DB,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    """Commission lifecycle statistics by conversion date."""
    service = CommissionReportService(db)
    return await service.get_commission_lifecycle_stats(start_date, end_date)


@router.get("/stats/clawbacks", response_model=ClawbackStatsResponse)
async def get_clawback_statistics(
    db: DB,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    marketer_id: Optional[UUID] = None,
):
    """Clawback statistics grouped by clawback type."""
    service = CommissionReportService(db)
    return await service.get_clawback_statistics(start_date, end_date, marketer_id)


@router.get("/analytics", response_model=List[DailyCommissionAnalytics])
async def get_commission_analytics(
    db: DB,
    start_date: datetime,
    end_date: datetime,
    marketer_id: Optional[UUID] = None,
):
    """Per-day commission analytics."""
    service = CommissionReportService(db)
    return await service.get_commission_analytics(start_date, end_date, marketer_id)


@router.get("/marketers/{marketer_id}/summary", response_model=CommissionSummaryResponse)
async def get_commission_summary(marketer_id: UUID, db: DB):
    """Commission totals per status for a marketer."""
    service = CommissionReportService(db)
    return await service.get_commission_summary(marketer_id)


@router.get("/marketers/{marketer_id}/balance", response_model=AvailableBalanceResponse)
async def get_available_balance(marketer_id: UUID, db: DB):
    """Approved commission total available for payout."""
    service = CommissionReportService(db)
    balance = await service.get_available_balance(marketer_id)
    return AvailableBalanceResponse(marketer_id=marketer_id, available_balance=balance)


@router.get("/products/{product_id}/performance", response_model=ProductPerformanceResponse)
async def get_product_commission_performance(product_id: UUID, db: DB):
    """Commission totals for a product."""
    service = CommissionReportService(db)
    return await service.get_product_commission_performance(product_id)


# ==================== Single Commission ====================

@router.get("/{commission_id}", response_model=CommissionResponse)
async def get_commission(commission_id: UUID, db: DB):
    """Get commission by ID."""
    service = CommissionService(db)
    return await service.get_commission_or_raise(commission_id)


@router.patch("/{commission_id}/status", response_model=CommissionResponse)
async def update_commission_status(
    commission_id: UUID,
    data: CommissionStatusUpdateRequest,
    db: DB,
    admin_id: AdminId,
    publisher: Publisher,
):
    """Move a commission to a new status."""
    service = CommissionService(db, publisher)
    return await service.update_commission_status(
        commission_id, data.status, admin_id, data.rejection_reason
    )


@router.post("/{commission_id}/approve", response_model=CommissionResponse)
async def approve_commission(
    commission_id: UUID,
    db: DB,
    admin_id: AdminId,
    publisher: Publisher,
    data: Optional[CommissionApproveRequest] = None,
):
    """Approve a pending commission."""
    service = CommissionService(db, publisher)
    override = data.override_clearance_period if data else False
    return await service.approve_commission(commission_id, admin_id, override_clearance_period=override)


@router.post("/{commission_id}/reject", response_model=CommissionResponse)
async def reject_commission(
    commission_id: UUID,
    data: CommissionRejectRequest,
    db: DB,
    admin_id: AdminId,
    publisher: Publisher,
):
    """Reject a pending commission."""
    service = CommissionService(db, publisher)
    return await service.reject_commission(commission_id, data.rejection_reason, admin_id)


@router.post("/{commission_id}/pay", response_model=CommissionResponse)
async def mark_commission_as_paid(
    commission_id: UUID,
    db: DB,
    admin_id: AdminId,
    publisher: Publisher,
    data: Optional[CommissionMarkPaidRequest] = None,
):
    """Mark an approved commission as paid."""
    service = CommissionService(db, publisher)
    reference = data.payment_reference if data else None
    return await service.mark_commission_as_paid(commission_id, admin_id, reference)


@router.post("/{commission_id}/recalculate", response_model=CommissionResponse)
async def recalculate_commission(
    commission_id: UUID,
    data: CommissionRecalculateRequest,
    db: DB,
    admin_id: AdminId,
    publisher: Publisher,
):
    """Recalculate a pending commission."""
    service = CommissionService(db, publisher)
    return await service.recalculate_commission(commission_id, data.new_amount, data.new_rate, admin_id)


@router.get("/{commission_id}/history", response_model=CommissionStatusHistoryResponse)
async def get_commission_status_history(commission_id: UUID, db: DB):
    """Status history of a commission, oldest first."""
    service = CommissionService(db)
    return await service.get_commission_status_history(commission_id)


# ==================== Adjustment Ledger ====================

@router.post("/{commission_id}/clawback", response_model=CommissionLedgerWriteResponse)
async def process_clawback(
    commission_id: UUID,
    data: CommissionClawbackRequest,
    db: DB,
    admin_id: AdminId,
    publisher: Publisher,
):
    """Claw back a commission in full."""
    service = CommissionLedgerService(db, publisher)
    return await service.process_clawback(
        commission_id, data.amount, data.reason, admin_id, data.clawback_type
    )


@router.post("/{commission_id}/partial-clawback", response_model=CommissionLedgerWriteResponse)
async def process_partial_clawback(
    commission_id: UUID,
    data: CommissionClawbackRequest,
    db: DB,
    admin_id: AdminId,
    publisher: Publisher,
):
    """Claw back part of a commission."""
    service = CommissionLedgerService(db, publisher)
    return await service.process_partial_clawback(
        commission_id, data.amount, data.reason, admin_id, data.clawback_type
    )


@router.post(
    "/{commission_id}/adjustments",
    response_model=CommissionLedgerWriteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def apply_manual_adjustment(
    commission_id: UUID,
    data: CommissionAdjustmentRequest,
    db: DB,
    admin_id: AdminId,
    publisher: Publisher,
):
    """Apply a manual bonus or correction."""
    service = CommissionLedgerService(db, publisher)
    return await service.apply_manual_adjustment(
        commission_id, data.amount, data.adjustment_type, data.reason, admin_id
    )


@router.get("/{commission_id}/adjustments", response_model=CommissionWithAdjustmentsResponse)
async def get_commission_with_adjustments(commission_id: UUID, db: DB):
    """Commission with its ledger entries and net amount."""
    service = CommissionLedgerService(db)
    return await service.get_commission_with_adjustments(commission_id)


@router.get("/{commission_id}/ledger-replay", response_model=LedgerReplayResponse)
async def replay_commission_amount(commission_id: UUID, db: DB):
    """Compare the stored commission amount with the amount implied by the ledger."""
    service = CommissionLedgerService(db)
    return await service.replay_commission_amount(commission_id)
