"""
Commission Report Service

Read-only aggregations over commissions and their adjustment ledger:
- Marketer summary and available balance
- Lifecycle statistics (status breakdown, clearance time)
- Clawback statistics
- Daily analytics and product performance
"""

import uuid
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from sqlalchemy import select, func, distinct
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.clock import utcnow, as_utc
from affiliate_ledger.core.money import quantize_money, to_uuid
from affiliate_ledger.models.commission import (
    AdjustmentType,
    ClawbackType,
    Commission,
    CommissionAdjustment,
    CommissionStatus,
)


IdType = Union[str, uuid.UUID]

SECONDS_PER_DAY = 24 * 60 * 60


def _money(value: Any) -> Decimal:
    """Normalize driver aggregate results (float on SQLite, Decimal on PostgreSQL)."""
    if value is None:
        return Decimal("0")
    return quantize_money(Decimal(str(value)))


class CommissionReportService:
    """Service for commission balances and statistics."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========================================================================
    # Marketer Balances
    # ========================================================================

    async def get_commission_summary(self, marketer_id: IdType) -> Dict[str, Any]:
        """Per-status amounts for a marketer; total_earned excludes clawed-back commissions."""
        result = await self.db.execute(
            select(
                Commission.status,
                func.count(Commission.id).label("count"),
                func.sum(Commission.commission_amount).label("total_amount"),
            )
            .where(Commission.marketer_id == to_uuid(marketer_id, "marketer_id"))
            .group_by(Commission.status)
        )

        amounts = {status.value: Decimal("0") for status in CommissionStatus}
        total_commissions = 0
        for row in result.all():
            amounts[row.status] = _money(row.total_amount)
            total_commissions += row.count

        pending = amounts[CommissionStatus.PENDING.value]
        approved = amounts[CommissionStatus.APPROVED.value]
        paid = amounts[CommissionStatus.PAID.value]

        return {
            "total_earned": pending + approved + paid,
            "pending_amount": pending,
            "approved_amount": approved,
            "paid_amount": paid,
            "clawed_back_amount": amounts[CommissionStatus.CLAWED_BACK.value],
            "total_commissions": total_commissions,
        }

    async def get_available_balance(self, marketer_id: IdType) -> Decimal:
        """
        Sum of commission_amount over the marketer's approved commissions.

        Bonuses and partial clawbacks in the ledger are not netted in here;
        use the ledger's net amount for per-commission figures.
        """
        total = await self.db.scalar(
            select(func.sum(Commission.commission_amount)).where(
                Commission.marketer_id == to_uuid(marketer_id, "marketer_id"),
                Commission.status == CommissionStatus.APPROVED.value,
            )
        )
        return _money(total)

    # ========================================================================
    # Lifecycle Statistics
    # ========================================================================

    async def get_commission_lifecycle_stats(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Status breakdown, eligible count and average clearance time (days) by conversion date."""
        filters = []
        if start_date:
            filters.append(Commission.conversion_date >= as_utc(start_date))
        if end_date:
            filters.append(Commission.conversion_date <= as_utc(end_date))

        status_result = await self.db.execute(
            select(Commission.status, func.count(Commission.id).label("count"))
            .where(*filters)
            .group_by(Commission.status)
        )
        status_breakdown: Dict[str, int] = {}
        total_commissions = 0
        for row in status_result.all():
            status_breakdown[row.status] = row.count
            total_commissions += row.count

        clearance_result = await self.db.execute(
            select(Commission.conversion_date, Commission.approval_date)
            .where(Commission.approval_date.is_not(None), *filters)
        )
        clearance_days = [
            (as_utc(row.approval_date) - as_utc(row.conversion_date)).total_seconds() / SECONDS_PER_DAY
            for row in clearance_result.all()
        ]
        average_clearance_time = (
            round(sum(clearance_days) / len(clearance_days), 2) if clearance_days else 0
        )

        eligible_for_approval = await self.db.scalar(
            select(func.count(Commission.id)).where(
                Commission.status == CommissionStatus.PENDING.value,
                Commission.eligible_for_payout_date <= utcnow(),
                *filters,
            )
        )

        return {
            "total_commissions": total_commissions,
            "status_breakdown": status_breakdown,
            "average_clearance_time": average_clearance_time,
            "pending_commissions": status_breakdown.get(CommissionStatus.PENDING.value, 0),
            "eligible_for_approval": eligible_for_approval or 0,
        }

    # ========================================================================
    # Clawback Statistics
    # ========================================================================

    async def get_clawback_statistics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        marketer_id: Optional[IdType] = None,
    ) -> Dict[str, Any]:
        """Clawback counts and amounts, grouped by clawback type, plus the clawback rate."""
        adjustment_filters = [CommissionAdjustment.adjustment_type == AdjustmentType.CLAWBACK.value]
        commission_filters = []
        if start_date:
            adjustment_filters.append(CommissionAdjustment.created_at >= as_utc(start_date))
            commission_filters.append(Commission.created_at >= as_utc(start_date))
        if end_date:
            adjustment_filters.append(CommissionAdjustment.created_at <= as_utc(end_date))
            commission_filters.append(Commission.created_at <= as_utc(end_date))

        totals_query = select(
            func.count(CommissionAdjustment.id).label("total_clawbacks"),
            func.sum(func.abs(CommissionAdjustment.amount)).label("total_amount"),
            func.count(distinct(CommissionAdjustment.commission_id)).label("affected"),
        )
        by_type_query = select(
            CommissionAdjustment.clawback_type,
            func.count(CommissionAdjustment.id).label("count"),
            func.sum(func.abs(CommissionAdjustment.amount)).label("amount"),
        )

        if marketer_id:
            marketer_uuid = to_uuid(marketer_id, "marketer_id")
            adjustment_filters.append(Commission.marketer_id == marketer_uuid)
            commission_filters.append(Commission.marketer_id == marketer_uuid)
            totals_query = totals_query.join(Commission, Commission.id == CommissionAdjustment.commission_id)
            by_type_query = by_type_query.join(Commission, Commission.id == CommissionAdjustment.commission_id)

        totals = (await self.db.execute(totals_query.where(*adjustment_filters))).one()
        by_type_rows = (
            await self.db.execute(
                by_type_query.where(*adjustment_filters).group_by(CommissionAdjustment.clawback_type)
            )
        ).all()

        clawbacks_by_type: Dict[str, Dict[str, Any]] = {}
        for row in by_type_rows:
            # Entries written before clawback_type existed count as manual
            key = row.clawback_type or ClawbackType.MANUAL.value
            bucket = clawbacks_by_type.setdefault(key, {"count": 0, "amount": Decimal("0")})
            bucket["count"] += row.count
            bucket["amount"] += _money(row.amount)

        total_commissions = await self.db.scalar(
            select(func.count(Commission.id)).where(*commission_filters)
        ) or 0
        affected = totals.affected or 0

        return {
            "total_clawbacks": totals.total_clawbacks or 0,
            "total_clawback_amount": _money(totals.total_amount),
            "clawbacks_by_type": clawbacks_by_type,
            "affected_commissions": affected,
            "clawback_rate": (affected / total_commissions) * 100 if total_commissions > 0 else 0,
        }

    # ========================================================================
    # Analytics
    # ========================================================================

    async def get_commission_analytics(
        self,
        start_date: datetime,
        end_date: datetime,
        marketer_id: Optional[IdType] = None,
    ) -> list:
        """Per-day commission count, total and average amount over a conversion-date range."""
        query = select(Commission.conversion_date, Commission.commission_amount, Commission.status).where(
            Commission.conversion_date >= as_utc(start_date),
            Commission.conversion_date <= as_utc(end_date),
        )
        if marketer_id:
            query = query.where(Commission.marketer_id == to_uuid(marketer_id, "marketer_id"))

        days: Dict[Any, Dict[str, Any]] = defaultdict(
            lambda: {"total_commissions": 0, "total_amount": Decimal("0"), "status_breakdown": defaultdict(int)}
        )
        for row in (await self.db.execute(query)).all():
            day = as_utc(row.conversion_date).date()
            bucket = days[day]
            bucket["total_commissions"] += 1
            bucket["total_amount"] += row.commission_amount
            bucket["status_breakdown"][row.status] += 1

        analytics = []
        for day in sorted(days):
            bucket = days[day]
            analytics.append({
                "date": day,
                "total_commissions": bucket["total_commissions"],
                "total_amount": bucket["total_amount"],
                "avg_amount": quantize_money(bucket["total_amount"] / bucket["total_commissions"]),
                "status_breakdown": dict(bucket["status_breakdown"]),
            })
        return analytics

    async def get_product_commission_performance(self, product_id: IdType) -> Dict[str, Any]:
        """Commission totals for one product, broken down by status."""
        result = await self.db.execute(
            select(
                Commission.status,
                func.count(Commission.id).label("count"),
                func.sum(Commission.commission_amount).label("total_amount"),
            )
            .where(Commission.product_id == to_uuid(product_id, "product_id"))
            .group_by(Commission.status)
        )

        status_breakdown: Dict[str, Dict[str, Any]] = {}
        total_count = 0
        total_amount = Decimal("0")
        for row in result.all():
            amount = _money(row.total_amount)
            status_breakdown[row.status] = {"count": row.count, "amount": amount}
            total_count += row.count
            total_amount += amount

        return {
            "total_commissions": total_count,
            "total_amount": total_amount,
            "average_commission": quantize_money(total_amount / total_count) if total_count else Decimal("0"),
            "status_breakdown": status_breakdown,
        }
