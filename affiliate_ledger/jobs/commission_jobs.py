"""
Commission Lifecycle Jobs

Background jobs for managing commission lifecycle tasks:
- Auto-approval of commissions past their clearance period
- Lifecycle statistics reporting
- Approaching-clearance checks
"""

import logging
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


async def process_eligible_commissions() -> Dict[str, Any]:
    """
    Approve every pending commission whose clearance period has elapsed.

    Each commission is approved in its own transaction; failures are
    collected and do not stop the run.
    """
    logger.info("Starting eligible commissions processing...")
    start_time = datetime.now(timezone.utc)

    try:
        from affiliate_ledger.database import get_db_session
        from affiliate_ledger.services.clearance_service import ClearanceService

        async with get_db_session() as session:
            result = await ClearanceService(session).bulk_approve_eligible_commissions()

        elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(
            f"Eligible commissions processing completed: "
            f"approved {result['approved']}, failed {len(result['errors'])} "
            f"in {elapsed:.2f}s"
        )
        return result

    except Exception as e:
        logger.error(f"Eligible commissions processing failed: {e}")
        raise


async def run_automated_processing() -> Dict[str, Any]:
    """
    Run the automated commission lifecycle pass.

    This is the job the scheduler triggers on AUTO_APPROVAL_INTERVAL_MINUTES.
    Re-running it is safe: only commissions still pending and eligible are touched.
    """
    logger.info("Starting automated commission processing...")

    try:
        from affiliate_ledger.database import get_db_session
        from affiliate_ledger.services.clearance_service import ClearanceService

        async with get_db_session() as session:
            result = await ClearanceService(session).process_automated_commission_updates()

        logger.info(result["summary"])
        for error in result["errors"]:
            logger.warning(f"Commission {error['commission_id']} not approved: {error['error']}")
        return result

    except Exception as e:
        logger.error(f"Automated commission processing failed: {e}")
        raise


async def generate_lifecycle_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Log commission lifecycle statistics for the given conversion-date window."""
    logger.info("Generating commission lifecycle report...")

    try:
        from affiliate_ledger.database import get_db_session
        from affiliate_ledger.services.commission_report_service import CommissionReportService

        async with get_db_session() as session:
            stats = await CommissionReportService(session).get_commission_lifecycle_stats(
                start_date=start_date,
                end_date=end_date,
            )

        logger.info(
            f"Lifecycle report: {stats['total_commissions']} commissions, "
            f"{stats['pending_commissions']} pending, "
            f"{stats['eligible_for_approval']} eligible for approval, "
            f"average clearance {stats['average_clearance_time']} days"
        )
        return stats

    except Exception as e:
        logger.error(f"Lifecycle report generation failed: {e}")
        raise


async def check_approaching_clearance(days_before: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    List pending commissions whose clearance period ends soon.

    Returns one entry per commission so callers can notify marketers.
    """
    logger.info("Checking commissions approaching clearance...")

    try:
        from affiliate_ledger.database import get_db_session
        from affiliate_ledger.services.clearance_service import ClearanceService

        async with get_db_session() as session:
            commissions = await ClearanceService(session).get_commissions_approaching_clearance(
                days_before=days_before,
            )
            upcoming = [
                {
                    "commission_id": str(c.id),
                    "marketer_id": str(c.marketer_id),
                    "commission_amount": c.commission_amount,
                    "eligible_for_payout_date": c.eligible_for_payout_date,
                }
                for c in commissions
            ]

        logger.info(f"{len(upcoming)} commissions approaching clearance")
        return upcoming

    except Exception as e:
        logger.error(f"Approaching clearance check failed: {e}")
        raise
