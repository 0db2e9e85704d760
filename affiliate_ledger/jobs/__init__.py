"""
Background Jobs Module

Handles scheduled tasks for:
- Automated approval of commissions past their clearance period
- Lifecycle reporting
- Approaching-clearance checks
"""

from affiliate_ledger.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from affiliate_ledger.jobs.commission_jobs import (
    process_eligible_commissions,
    run_automated_processing,
    generate_lifecycle_report,
    check_approaching_clearance,
)

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "process_eligible_commissions",
    "run_automated_processing",
    "generate_lifecycle_report",
    "check_approaching_clearance",
]
