"""
Commission Adjustment Ledger Service

Append-only ledger of commission adjustments:
- Full clawback (moves the commission to clawed_back)
- Partial clawback (ledger entry only, status unchanged)
- Manual bonus / correction
- Adjustment history and net amount
- Ledger replay to verify the stored commission amount

Amount mutations and their ledger entries are written in one transaction.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.config import settings
from affiliate_ledger.core.clock import utcnow
from affiliate_ledger.core.exceptions import (
    BusinessRuleError,
    InvalidTransitionError,
    ValidationError,
)
from affiliate_ledger.core.money import quantize_money, to_decimal, to_uuid
from affiliate_ledger.models.commission import (
    AdjustmentType,
    ClawbackType,
    Commission,
    CommissionAdjustment,
    CommissionStatus,
)
from affiliate_ledger.services.commission_events import (
    CommissionEvent,
    CommissionEventPublisher,
    CommissionEventType,
    publish_safely,
)
from affiliate_ledger.services.commission_service import CommissionService
from affiliate_ledger.services.commission_state_machine import CLAWBACK_ELIGIBLE_STATUSES


logger = logging.getLogger(__name__)

IdType = Union[str, uuid.UUID]

MANUAL_ADJUSTMENT_TYPES = (AdjustmentType.BONUS.value, AdjustmentType.CORRECTION.value)


class CommissionLedgerService:
    """Service for clawbacks, manual adjustments and ledger reads."""

    def __init__(self, db: AsyncSession, publisher: Optional[CommissionEventPublisher] = None):
        self.db = db
        self.commissions = CommissionService(db, publisher)
        self.publisher = self.commissions.publisher

    # ========================================================================
    # Clawbacks
    # ========================================================================

    async def process_clawback(
        self,
        commission_id: IdType,
        clawback_amount: Any,
        reason: str,
        admin_id: Optional[str],
        clawback_type: Union[str, ClawbackType] = ClawbackType.MANUAL,
    ) -> Dict[str, Any]:
        """
        Claw back an approved or paid commission and move it to clawed_back.

        The clawback may not exceed the commission amount.
        """
        clawback_kind = _clawback_type(clawback_type)
        reason = _require_reason(reason)
        commission = await self.commissions.get_commission_for_update(commission_id)
        old_status = commission.status

        if old_status not in CLAWBACK_ELIGIBLE_STATUSES:
            raise InvalidTransitionError(
                old_status,
                CommissionStatus.CLAWED_BACK.value,
                f"Cannot process clawback for commission with status {old_status}",
            )

        amount = to_decimal(clawback_amount, "clawback_amount")
        if amount <= 0:
            raise BusinessRuleError("Clawback amount must be positive")
        if amount > commission.commission_amount:
            raise BusinessRuleError(
                "Clawback amount cannot exceed original commission amount",
                {"clawback_amount": str(amount), "commission_amount": str(commission.commission_amount)},
            )

        adjustment = CommissionAdjustment(
            commission_id=commission.id,
            adjustment_type=AdjustmentType.CLAWBACK.value,
            amount=-quantize_money(amount),
            reason=f"{clawback_kind.upper()} clawback: {reason}",
            clawback_type=clawback_kind,
            from_status=old_status,
            to_status=CommissionStatus.CLAWED_BACK.value,
            admin_id=admin_id,
        )

        try:
            await self.commissions.compare_and_set(
                commission,
                old_status,
                {"status": CommissionStatus.CLAWED_BACK.value, "updated_at": utcnow()},
                expected_amount=commission.commission_amount,
            )
            self.db.add(adjustment)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Commission {commission.id} clawed back ({clawback_kind}): {amount} by admin {admin_id}"
        )
        await publish_safely(self.publisher, CommissionEvent(
            event_type=CommissionEventType.COMMISSION_CLAWED_BACK,
            commission_id=commission.id,
            marketer_id=commission.marketer_id,
            payload={"amount": str(amount), "clawback_type": clawback_kind, "from_status": old_status},
        ))
        return {"commission": commission, "adjustment": adjustment}

    async def process_partial_clawback(
        self,
        commission_id: IdType,
        clawback_amount: Any,
        reason: str,
        admin_id: Optional[str],
        clawback_type: Union[str, ClawbackType] = ClawbackType.MANUAL,
    ) -> Dict[str, Any]:
        """
        Claw back part of an approved or paid commission.

        Only the ledger entry is written; the commission keeps its status and amount.
        """
        clawback_kind = _clawback_type(clawback_type)
        reason = _require_reason(reason)
        commission = await self.commissions.get_commission_for_update(commission_id)

        if commission.status not in CLAWBACK_ELIGIBLE_STATUSES:
            raise BusinessRuleError(
                f"Cannot process partial clawback for commission with status {commission.status}"
            )

        amount = to_decimal(clawback_amount, "clawback_amount")
        if amount <= 0:
            raise BusinessRuleError("Clawback amount must be positive")
        if amount >= commission.commission_amount:
            raise BusinessRuleError(
                "Use full clawback for amounts equal to or greater than commission amount",
                {"clawback_amount": str(amount), "commission_amount": str(commission.commission_amount)},
            )

        adjustment = CommissionAdjustment(
            commission_id=commission.id,
            adjustment_type=AdjustmentType.CLAWBACK.value,
            amount=-quantize_money(amount),
            reason=f"Partial {clawback_kind.upper()} clawback: {reason}",
            clawback_type=clawback_kind,
            admin_id=admin_id,
        )

        try:
            # Bound was checked against this amount
            await self.commissions.compare_and_set(
                commission,
                commission.status,
                {"updated_at": utcnow()},
                expected_amount=commission.commission_amount,
            )
            self.db.add(adjustment)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Partial clawback ({clawback_kind}) of {amount} on commission {commission.id}")
        await publish_safely(self.publisher, CommissionEvent(
            event_type=CommissionEventType.PARTIAL_CLAWBACK,
            commission_id=commission.id,
            marketer_id=commission.marketer_id,
            payload={"amount": str(amount), "clawback_type": clawback_kind},
        ))
        return {"commission": commission, "adjustment": adjustment}

    # ========================================================================
    # Manual Adjustments
    # ========================================================================

    async def apply_manual_adjustment(
        self,
        commission_id: IdType,
        adjustment_amount: Any,
        adjustment_type: Union[str, AdjustmentType],
        reason: str,
        admin_id: Optional[str],
    ) -> Dict[str, Any]:
        """
        Apply a bonus or correction.

        Corrections change commission_amount in the same transaction as the
        ledger entry; bonuses live only in the ledger.
        """
        adjustment_kind = adjustment_type.value if isinstance(adjustment_type, AdjustmentType) else adjustment_type
        if adjustment_kind not in MANUAL_ADJUSTMENT_TYPES:
            raise ValidationError(
                f"Invalid manual adjustment type: {adjustment_kind}",
                {"allowed": list(MANUAL_ADJUSTMENT_TYPES)},
            )
        reason = _require_reason(reason)
        commission = await self.commissions.get_commission_for_update(commission_id)
        status = commission.status

        if status in (CommissionStatus.CLAWED_BACK.value, CommissionStatus.REJECTED.value):
            raise BusinessRuleError(f"Cannot apply adjustment to commission with status {status}")

        amount = quantize_money(to_decimal(adjustment_amount, "adjustment_amount"))
        if amount == 0:
            raise BusinessRuleError("Adjustment amount cannot be zero")
        if amount < 0 and abs(amount) > commission.commission_amount:
            raise BusinessRuleError(
                "Negative adjustment cannot exceed original commission amount",
                {"adjustment_amount": str(amount), "commission_amount": str(commission.commission_amount)},
            )

        adjustment = CommissionAdjustment(
            commission_id=commission.id,
            adjustment_type=adjustment_kind,
            amount=amount,
            reason=f"Manual {adjustment_kind}: {reason}",
            admin_id=admin_id,
        )

        values: Dict[str, Any] = {"updated_at": utcnow()}
        if adjustment_kind == AdjustmentType.CORRECTION.value:
            values["commission_amount"] = commission.commission_amount + amount

        try:
            self.db.add(adjustment)
            await self.commissions.compare_and_set(
                commission, status, values, expected_amount=commission.commission_amount
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Manual {adjustment_kind} of {amount} applied to commission {commission.id}")
        await publish_safely(self.publisher, CommissionEvent(
            event_type=CommissionEventType.COMMISSION_ADJUSTED,
            commission_id=commission.id,
            marketer_id=commission.marketer_id,
            payload={
                "adjustment_type": adjustment_kind,
                "amount": str(amount),
                "commission_amount": str(commission.commission_amount),
            },
        ))
        return {"commission": commission, "adjustment": adjustment}

    # ========================================================================
    # Ledger Reads
    # ========================================================================

    async def get_commission_adjustments(self, commission_id: IdType) -> List[CommissionAdjustment]:
        """All adjustments for a commission, most recent first."""
        result = await self.db.execute(
            select(CommissionAdjustment)
            .where(CommissionAdjustment.commission_id == to_uuid(commission_id, "commission_id"))
            .order_by(CommissionAdjustment.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_commission_with_adjustments(self, commission_id: IdType) -> Dict[str, Any]:
        """
        Commission, its adjustments, their total and the net amount (never negative).

        net_amount is commission_amount plus every ledger entry, payments included.
        A paid commission therefore reports twice its amount: the payment entry
        records money sent, not a reduction of what was earned. It is not the
        amount still owed to the marketer.
        """
        commission = await self.commissions.get_commission(commission_id)
        if not commission:
            return {
                "commission": None,
                "adjustments": [],
                "total_adjustments": Decimal("0"),
                "net_amount": Decimal("0"),
            }

        adjustments = await self.get_commission_adjustments(commission.id)
        total_adjustments = sum((a.amount for a in adjustments), Decimal("0"))
        net_amount = max(Decimal("0"), commission.commission_amount + total_adjustments)

        return {
            "commission": commission,
            "adjustments": adjustments,
            "total_adjustments": total_adjustments,
            "net_amount": net_amount,
        }

    async def replay_commission_amount(self, commission_id: IdType) -> Dict[str, Any]:
        """
        Rebuild commission_amount from the ledger: original amount plus every correction.

        in_sync is False when the stored amount drifted from its ledger.
        """
        commission = await self.commissions.get_commission_or_raise(commission_id)
        corrections = await self.db.scalar(
            select(func.coalesce(func.sum(CommissionAdjustment.amount), 0)).where(
                CommissionAdjustment.commission_id == commission.id,
                CommissionAdjustment.adjustment_type == AdjustmentType.CORRECTION.value,
            )
        )
        replayed = quantize_money(commission.original_commission_amount + Decimal(str(corrections)))
        stored = quantize_money(commission.commission_amount)
        if replayed != stored:
            logger.warning(f"Commission {commission.id} amount drift: stored {stored}, ledger {replayed}")
        return {
            "commission_id": commission.id,
            "stored_amount": stored,
            "replayed_amount": replayed,
            "in_sync": replayed == stored,
        }


def _clawback_type(value: Union[str, ClawbackType]) -> str:
    if isinstance(value, ClawbackType):
        return value.value
    try:
        return ClawbackType(str(value).lower()).value
    except ValueError:
        raise ValidationError(
            f"Invalid clawback type: {value}",
            {"allowed": [t.value for t in ClawbackType]},
        )


def _require_reason(reason: Optional[str]) -> str:
    if not reason or not reason.strip():
        raise ValidationError("Reason is required")
    reason = reason.strip()
    if len(reason) > settings.MAX_ADJUSTMENT_REASON_LENGTH:
        raise ValidationError(
            f"Reason cannot exceed {settings.MAX_ADJUSTMENT_REASON_LENGTH} characters"
        )
    return reason
