"""Adjustment ledger: clawbacks, manual adjustments, net amount and replay."""
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from affiliate_ledger.core.exceptions import BusinessRuleError, InvalidTransitionError, ValidationError
from affiliate_ledger.models import AdjustmentType, ClawbackType, Commission, CommissionAdjustment, CommissionStatus
from affiliate_ledger.services.commission_events import CommissionEventType
from affiliate_ledger.services.commission_ledger_service import CommissionLedgerService


class TestFullClawback:

    async def test_approved_commission_clawed_back(self, ledger_service, publisher, make_commission):
        commission = await make_commission(status="approved", commission_amount="50")

        result = await ledger_service.process_clawback(commission.id, Decimal("50"), "customer refund", "admin-1")

        assert result["commission"].status == CommissionStatus.CLAWED_BACK.value
        adjustment = result["adjustment"]
        assert adjustment.amount == Decimal("-50")
        assert adjustment.adjustment_type == AdjustmentType.CLAWBACK.value
        assert adjustment.clawback_type == ClawbackType.MANUAL.value
        assert adjustment.reason == "MANUAL clawback: customer refund"
        assert adjustment.from_status == "approved"
        assert adjustment.to_status == "clawed_back"
        assert len(publisher.of_type(CommissionEventType.COMMISSION_CLAWED_BACK)) == 1

    async def test_second_clawback_fails(self, ledger_service, make_commission):
        commission = await make_commission(status="approved", commission_amount="50")
        await ledger_service.process_clawback(commission.id, Decimal("50"), "customer refund", "admin-1")

        with pytest.raises(InvalidTransitionError, match="Cannot process clawback for commission with status clawed_back"):
            await ledger_service.process_clawback(commission.id, Decimal("10"), "again", "admin-1")

    async def test_paid_commission_with_chargeback(self, ledger_service, make_commission):
        commission = await make_commission(status="paid", commission_amount="80")

        result = await ledger_service.process_clawback(
            commission.id, "30", "bank dispute", "admin-1", clawback_type="Chargeback"
        )

        assert result["commission"].status == CommissionStatus.CLAWED_BACK.value
        assert result["adjustment"].clawback_type == ClawbackType.CHARGEBACK.value
        assert result["adjustment"].reason == "CHARGEBACK clawback: bank dispute"

    @pytest.mark.parametrize("amount", ["0", "-5"])
    async def test_amount_must_be_positive(self, ledger_service, make_commission, amount):
        commission = await make_commission(status="approved", commission_amount="50")
        with pytest.raises(BusinessRuleError, match="Clawback amount must be positive"):
            await ledger_service.process_clawback(commission.id, amount, "refund", "admin-1")

    async def test_amount_cannot_exceed_commission(self, ledger_service, make_commission):
        commission = await make_commission(status="approved", commission_amount="50")
        with pytest.raises(BusinessRuleError, match="cannot exceed original commission amount"):
            await ledger_service.process_clawback(commission.id, "50.01", "refund", "admin-1")
        assert commission.status == CommissionStatus.APPROVED.value

    @pytest.mark.parametrize("status", ["pending", "rejected"])
    async def test_ineligible_status(self, ledger_service, make_commission, status):
        commission = await make_commission(status=status)
        with pytest.raises(InvalidTransitionError, match=f"Cannot process clawback for commission with status {status}"):
            await ledger_service.process_clawback(commission.id, "10", "refund", "admin-1")

    async def test_reason_required(self, ledger_service, make_commission):
        commission = await make_commission(status="approved")
        with pytest.raises(ValidationError, match="Reason is required"):
            await ledger_service.process_clawback(commission.id, "10", "   ", "admin-1")

    async def test_unknown_clawback_type(self, ledger_service, make_commission):
        commission = await make_commission(status="approved")
        with pytest.raises(ValidationError, match="Invalid clawback type"):
            await ledger_service.process_clawback(commission.id, "10", "refund", "admin-1", clawback_type="fraud")


class TestPartialClawback:

    async def test_status_and_amount_unchanged(self, ledger_service, make_commission):
        commission = await make_commission(status="approved", commission_amount="50")

        result = await ledger_service.process_partial_clawback(
            commission.id, "20", "partial refund", "admin-1", ClawbackType.REFUND
        )

        assert result["commission"].status == CommissionStatus.APPROVED.value
        assert result["commission"].commission_amount == Decimal("50")
        assert result["adjustment"].amount == Decimal("-20")
        assert result["adjustment"].reason == "Partial REFUND clawback: partial refund"
        assert result["adjustment"].to_status is None

    @pytest.mark.parametrize("amount", ["50", "60"])
    async def test_full_amount_needs_full_clawback(self, ledger_service, make_commission, amount):
        commission = await make_commission(status="paid", commission_amount="50")
        with pytest.raises(BusinessRuleError, match="Use full clawback"):
            await ledger_service.process_partial_clawback(commission.id, amount, "refund", "admin-1")

    async def test_pending_commission(self, ledger_service, make_commission):
        commission = await make_commission(status="pending")
        with pytest.raises(BusinessRuleError, match="Cannot process partial clawback"):
            await ledger_service.process_partial_clawback(commission.id, "5", "refund", "admin-1")


class TestManualAdjustment:

    async def test_negative_correction_beyond_amount_fails(self, ledger_service, make_commission):
        commission = await make_commission(status="approved", commission_amount="50")

        with pytest.raises(BusinessRuleError, match="Negative adjustment cannot exceed original commission amount"):
            await ledger_service.apply_manual_adjustment(
                commission.id, Decimal("-75"), AdjustmentType.CORRECTION, "overpaid", "admin-1"
            )
        assert commission.commission_amount == Decimal("50")

    async def test_negative_correction_updates_amount(self, db, ledger_service, make_commission):
        commission = await make_commission(status="approved", commission_amount="50")

        result = await ledger_service.apply_manual_adjustment(
            commission.id, Decimal("-15"), "correction", "overpaid", "admin-1"
        )

        assert result["commission"].commission_amount == Decimal("35")
        assert result["adjustment"].reason == "Manual correction: overpaid"
        stored = await db.scalar(select(Commission.commission_amount).where(Commission.id == commission.id))
        assert stored == Decimal("35")

    async def test_bonus_only_touches_ledger(self, ledger_service, make_commission):
        commission = await make_commission(status="paid", commission_amount="50")

        result = await ledger_service.apply_manual_adjustment(commission.id, "10", "bonus", "top performer", "admin-1")

        assert result["commission"].commission_amount == Decimal("50")
        assert result["adjustment"].amount == Decimal("10")
        assert result["adjustment"].reason == "Manual bonus: top performer"

    async def test_pending_commission_can_be_adjusted(self, ledger_service, make_commission):
        commission = await make_commission(status="pending", commission_amount="50")
        result = await ledger_service.apply_manual_adjustment(commission.id, "5", "correction", "typo", "admin-1")
        assert result["commission"].commission_amount == Decimal("55")

    @pytest.mark.parametrize("status", ["clawed_back", "rejected"])
    async def test_closed_commission(self, ledger_service, make_commission, status):
        commission = await make_commission(status=status)
        with pytest.raises(BusinessRuleError, match=f"Cannot apply adjustment to commission with status {status}"):
            await ledger_service.apply_manual_adjustment(commission.id, "5", "bonus", "goodwill", "admin-1")

    async def test_zero_amount(self, ledger_service, make_commission):
        commission = await make_commission(status="approved")
        with pytest.raises(BusinessRuleError, match="Adjustment amount cannot be zero"):
            await ledger_service.apply_manual_adjustment(commission.id, "0", "bonus", "nothing", "admin-1")

    @pytest.mark.parametrize("adjustment_type", ["payment", "clawback", "status_change", "gift"])
    async def test_only_bonus_or_correction(self, ledger_service, make_commission, adjustment_type):
        commission = await make_commission(status="approved")
        with pytest.raises(ValidationError, match="Invalid manual adjustment type"):
            await ledger_service.apply_manual_adjustment(commission.id, "5", adjustment_type, "reason", "admin-1")

    async def test_reason_too_long(self, ledger_service, make_commission):
        commission = await make_commission(status="approved")
        with pytest.raises(ValidationError, match="Reason cannot exceed"):
            await ledger_service.apply_manual_adjustment(commission.id, "5", "bonus", "x" * 1001, "admin-1")


class TestLedgerReads:

    async def test_adjustments_newest_first(self, ledger_service, make_commission):
        commission = await make_commission(status="approved", commission_amount="50")
        await ledger_service.apply_manual_adjustment(commission.id, "5", "bonus", "first", "admin-1")
        await ledger_service.apply_manual_adjustment(commission.id, "-5", "correction", "second", "admin-1")

        adjustments = await ledger_service.get_commission_adjustments(commission.id)

        assert [a.reason for a in adjustments] == ["Manual correction: second", "Manual bonus: first"]

    async def test_net_amount(self, ledger_service, make_commission):
        commission = await make_commission(status="approved", commission_amount="50")
        await ledger_service.apply_manual_adjustment(commission.id, "10", "bonus", "bonus", "admin-1")
        await ledger_service.process_partial_clawback(commission.id, "20", "refund", "admin-1")

        result = await ledger_service.get_commission_with_adjustments(commission.id)

        assert result["commission"].id == commission.id
        assert len(result["adjustments"]) == 2
        assert result["total_adjustments"] == Decimal("-10")
        assert result["net_amount"] == Decimal("40")

    async def test_net_amount_never_negative(self, ledger_service, make_commission):
        commission = await make_commission(status="approved", commission_amount="50")
        await ledger_service.process_partial_clawback(commission.id, "45", "refund", "admin-1")
        await ledger_service.process_partial_clawback(commission.id, "45", "second refund", "admin-1")

        result = await ledger_service.get_commission_with_adjustments(commission.id)

        assert result["total_adjustments"] == Decimal("-90")
        assert result["net_amount"] == Decimal("0")

    async def test_paid_commission_counts_payment_entry(self, ledger_service, commission_service, make_commission):
        commission = await make_commission(status="approved", commission_amount="50")
        await commission_service.mark_commission_as_paid(commission.id, payment_reference="PAY-7")

        result = await ledger_service.get_commission_with_adjustments(commission.id)

        assert [a.adjustment_type for a in result["adjustments"]] == [AdjustmentType.PAYMENT.value]
        assert result["total_adjustments"] == Decimal("50")
        assert result["net_amount"] == Decimal("100")

    async def test_unknown_commission(self, ledger_service):
        assert await ledger_service.get_commission_with_adjustments(uuid.uuid4()) == {
            "commission": None,
            "adjustments": [],
            "total_adjustments": Decimal("0"),
            "net_amount": Decimal("0"),
        }


class TestLedgerReplay:

    async def test_corrections_replay_to_stored_amount(self, ledger_service, commission_service, make_commission):
        commission = await make_commission(status="pending", commission_amount="50")
        await commission_service.recalculate_commission(commission.id, new_amount="70", admin_id="admin-1")
        await ledger_service.apply_manual_adjustment(commission.id, "-15", "correction", "overpaid", "admin-1")
        await ledger_service.apply_manual_adjustment(commission.id, "25", "bonus", "bonus", "admin-1")

        result = await ledger_service.replay_commission_amount(commission.id)

        assert result["stored_amount"] == Decimal("55")
        assert result["replayed_amount"] == Decimal("55")
        assert result["in_sync"] is True

    async def test_detects_drift(self, db, ledger_service, make_commission):
        commission = await make_commission(status="approved", commission_amount="50")
        await db.execute(
            update(Commission).where(Commission.id == commission.id).values(commission_amount=Decimal("99"))
        )
        await db.commit()

        result = await ledger_service.replay_commission_amount(commission.id)

        assert result["stored_amount"] == Decimal("99")
        assert result["replayed_amount"] == Decimal("50")
        assert result["in_sync"] is False

    async def test_every_amount_change_has_one_entry(self, db, ledger_service, make_commission):
        commission = await make_commission(status="approved", commission_amount="50")
        await ledger_service.apply_manual_adjustment(commission.id, "-15", "correction", "overpaid", "admin-1")

        entries = (await db.execute(
            select(CommissionAdjustment).where(
                CommissionAdjustment.commission_id == commission.id,
                CommissionAdjustment.adjustment_type == AdjustmentType.CORRECTION.value,
            )
        )).scalars().all()
        assert len(entries) == 1
        assert commission.original_commission_amount + entries[0].amount == commission.commission_amount


class TestConcurrentLedgerWrites:

    async def test_correction_applies_to_committed_amount(self, ledger_service, make_commission, session_factory):
        commission = await make_commission(status="approved", commission_amount="50")

        # Another session corrects the amount after this session loaded it
        async with session_factory() as other:
            await CommissionLedgerService(other).apply_manual_adjustment(
                commission.id, "-15", "correction", "overpaid", "admin-2"
            )
        assert commission.commission_amount == Decimal("50")

        result = await ledger_service.apply_manual_adjustment(
            commission.id, "-10", "correction", "second overpayment", "admin-1"
        )

        assert result["commission"].commission_amount == Decimal("25")
        replay = await ledger_service.replay_commission_amount(commission.id)
        assert replay["stored_amount"] == Decimal("25")
        assert replay["in_sync"] is True

    async def test_negative_bound_uses_committed_amount(self, ledger_service, make_commission, session_factory):
        commission = await make_commission(status="approved", commission_amount="50")

        async with session_factory() as other:
            await CommissionLedgerService(other).apply_manual_adjustment(
                commission.id, "-30", "correction", "overpaid", "admin-2"
            )

        with pytest.raises(BusinessRuleError, match="Negative adjustment cannot exceed"):
            await ledger_service.apply_manual_adjustment(commission.id, "-25", "correction", "again", "admin-1")

    async def test_clawback_bound_uses_committed_amount(self, ledger_service, make_commission, session_factory):
        commission = await make_commission(status="paid", commission_amount="50")

        async with session_factory() as other:
            await CommissionLedgerService(other).apply_manual_adjustment(
                commission.id, "-30", "correction", "overpaid", "admin-2"
            )

        with pytest.raises(BusinessRuleError, match="cannot exceed original commission amount"):
            await ledger_service.process_clawback(commission.id, "50", "refund", "admin-1")
        with pytest.raises(BusinessRuleError, match="Use full clawback"):
            await ledger_service.process_partial_clawback(commission.id, "20", "refund", "admin-1")
