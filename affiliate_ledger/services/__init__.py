# Services module
from affiliate_ledger.services.commission_service import CommissionService, calculate_commission_amount
from affiliate_ledger.services.commission_ledger_service import CommissionLedgerService
from affiliate_ledger.services.clearance_service import ClearanceService
from affiliate_ledger.services.commission_report_service import CommissionReportService

# Events
from affiliate_ledger.services.commission_events import (
    CommissionEvent,
    CommissionEventPublisher,
    CommissionEventType,
    LoggingEventPublisher,
    RecordingEventPublisher,
)

__all__ = [
    "CommissionService",
    "calculate_commission_amount",
    "CommissionLedgerService",
    "ClearanceService",
    "CommissionReportService",
    # Events
    "CommissionEvent",
    "CommissionEventPublisher",
    "CommissionEventType",
    "LoggingEventPublisher",
    "RecordingEventPublisher",
]
