"""
Clearance Period Service

Finds pending commissions whose clearance period has elapsed and approves
them. The unit of work is idempotent: a re-run only touches commissions
that are still pending and eligible. Scheduling lives in affiliate_ledger.jobs.
"""

import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.config import settings
from affiliate_ledger.core.clock import utcnow
from affiliate_ledger.core.exceptions import LedgerError
from affiliate_ledger.models.commission import Commission, CommissionStatus
from affiliate_ledger.services.commission_events import CommissionEventPublisher
from affiliate_ledger.services.commission_service import CommissionService


logger = logging.getLogger(__name__)


class ClearanceService:
    """Service for clearance-period automation."""

    def __init__(
        self,
        db: AsyncSession,
        publisher: Optional[CommissionEventPublisher] = None,
        page_size: Optional[int] = None,
    ):
        self.db = db
        self.commissions = CommissionService(db, publisher)
        self.page_size = page_size or settings.AUTO_APPROVAL_PAGE_SIZE

    async def get_commissions_eligible_for_approval(self, now: Optional[datetime] = None) -> List[Commission]:
        """Pending commissions past their clearance period, oldest conversion first."""
        now = now or utcnow()
        result = await self.db.execute(
            select(Commission)
            .where(
                Commission.status == CommissionStatus.PENDING.value,
                Commission.eligible_for_payout_date <= now,
            )
            .order_by(Commission.conversion_date.asc(), Commission.id.asc())
        )
        return list(result.scalars().all())

    async def _eligible_page(
        self,
        now: datetime,
        after: Optional[Tuple[datetime, uuid.UUID]],
    ) -> List[Tuple[uuid.UUID, datetime]]:
        """One page of eligible (id, conversion_date) pairs after a keyset cursor."""
        query = select(Commission.id, Commission.conversion_date).where(
            Commission.status == CommissionStatus.PENDING.value,
            Commission.eligible_for_payout_date <= now,
        )
        if after:
            last_date, last_id = after
            query = query.where(
                or_(
                    Commission.conversion_date > last_date,
                    and_(Commission.conversion_date == last_date, Commission.id > last_id),
                )
            )
        query = query.order_by(Commission.conversion_date.asc(), Commission.id.asc()).limit(self.page_size)
        result = await self.db.execute(query)
        return [(row.id, row.conversion_date) for row in result.all()]

    async def bulk_approve_eligible_commissions(self) -> Dict[str, Any]:
        """
        Approve every eligible commission.

        Each commission is approved in its own transaction; a failure is
        recorded and processing moves on to the next one.
        """
        now = utcnow()
        approved = 0
        errors: List[Dict[str, str]] = []
        cursor: Optional[Tuple[datetime, uuid.UUID]] = None

        while True:
            page = await self._eligible_page(now, cursor)
            if not page:
                break

            for commission_id, conversion_date in page:
                try:
                    await self.commissions.approve_commission(commission_id)
                    approved += 1
                except LedgerError as e:
                    errors.append({"commission_id": str(commission_id), "error": e.message})
                    logger.warning(f"Failed to approve commission {commission_id}: {e.message}")
                except Exception as e:
                    await self.db.rollback()
                    errors.append({"commission_id": str(commission_id), "error": str(e)})
                    logger.warning(f"Failed to approve commission {commission_id}: {e}")

            last_id, last_date = page[-1]
            cursor = (last_date, last_id)
            if len(page) < self.page_size:
                break

        logger.info(f"Bulk approval: {approved} approved, {len(errors)} failed")
        return {"approved": approved, "errors": errors}

    async def process_automated_commission_updates(self) -> Dict[str, Any]:
        """
        Run the automated lifecycle pass and summarize it.

        Meant to be triggered by an external scheduler (see affiliate_ledger.jobs).
        """
        start = time.monotonic()
        result = await self.bulk_approve_eligible_commissions()
        elapsed_ms = int((time.monotonic() - start) * 1000)

        summary = (
            f"Automated commission processing completed in {elapsed_ms}ms. "
            f"Auto-approved: {result['approved']} commissions. "
            f"Errors: {len(result['errors'])}"
        )
        return {
            "auto_approved": result["approved"],
            "errors": result["errors"],
            "summary": summary,
        }

    async def get_commissions_approaching_clearance(
        self,
        days_before: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[Commission]:
        """Pending commissions whose clearance period ends within the next N days."""
        now = now or utcnow()
        days_before = settings.APPROACHING_CLEARANCE_DAYS if days_before is None else days_before
        horizon = now + timedelta(days=days_before)
        result = await self.db.execute(
            select(Commission)
            .where(
                Commission.status == CommissionStatus.PENDING.value,
                Commission.eligible_for_payout_date > now,
                Commission.eligible_for_payout_date <= horizon,
            )
            .order_by(Commission.eligible_for_payout_date.asc())
        )
        return list(result.scalars().all())
