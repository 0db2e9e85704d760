"""Balances and statistics."""
from datetime import timedelta
from decimal import Decimal

from affiliate_ledger.core.clock import utcnow


class TestMarketerBalances:

    async def test_summary(self, report_service, make_commission, marketer, other_marketer):
        await make_commission(status="pending", commission_amount="50")
        await make_commission(status="approved", commission_amount="30")
        await make_commission(status="paid", commission_amount="20")
        await make_commission(status="clawed_back", commission_amount="10")
        await make_commission(status="rejected", commission_amount="5")
        await make_commission(status="approved", commission_amount="100", marketer_id=other_marketer.id)

        summary = await report_service.get_commission_summary(marketer.id)

        assert summary == {
            "total_earned": Decimal("100"),
            "pending_amount": Decimal("50"),
            "approved_amount": Decimal("30"),
            "paid_amount": Decimal("20"),
            "clawed_back_amount": Decimal("10"),
            "total_commissions": 5,
        }

    async def test_summary_for_marketer_without_commissions(self, report_service, marketer):
        summary = await report_service.get_commission_summary(marketer.id)
        assert summary["total_earned"] == Decimal("0")
        assert summary["total_commissions"] == 0

    async def test_available_balance_sums_approved(self, report_service, make_commission, marketer):
        await make_commission(status="approved", commission_amount="30")
        await make_commission(status="approved", commission_amount="15.5")
        await make_commission(status="pending", commission_amount="50")
        await make_commission(status="paid", commission_amount="20")

        assert await report_service.get_available_balance(marketer.id) == Decimal("45.5")

    async def test_available_balance_ignores_ledger(self, report_service, ledger_service, make_commission, marketer):
        commission = await make_commission(status="approved", commission_amount="30")
        await ledger_service.apply_manual_adjustment(commission.id, "10", "bonus", "bonus", "admin-1")
        await ledger_service.process_partial_clawback(commission.id, "5", "refund", "admin-1")

        assert await report_service.get_available_balance(marketer.id) == Decimal("30")


class TestLifecycleStats:

    async def test_breakdown_and_clearance_time(self, report_service, make_commission):
        now = utcnow()
        await make_commission(status="approved", days_old=35, approval_date=now - timedelta(days=4))
        await make_commission(status="paid", days_old=40, approval_date=now - timedelta(days=8))
        await make_commission(status="pending", days_old=33)
        await make_commission(status="pending", days_old=2)
        await make_commission(status="rejected", days_old=10)

        stats = await report_service.get_commission_lifecycle_stats()

        assert stats["total_commissions"] == 5
        assert stats["status_breakdown"] == {"approved": 1, "paid": 1, "pending": 2, "rejected": 1}
        assert stats["pending_commissions"] == 2
        assert stats["eligible_for_approval"] == 1
        assert stats["average_clearance_time"] == 31.5

    async def test_date_window(self, report_service, make_commission):
        await make_commission(status="pending", days_old=40)
        await make_commission(status="pending", days_old=20)

        stats = await report_service.get_commission_lifecycle_stats(start_date=utcnow() - timedelta(days=30))

        assert stats["total_commissions"] == 1
        assert stats["eligible_for_approval"] == 0

    async def test_empty(self, report_service):
        stats = await report_service.get_commission_lifecycle_stats()
        assert stats == {
            "total_commissions": 0,
            "status_breakdown": {},
            "average_clearance_time": 0,
            "pending_commissions": 0,
            "eligible_for_approval": 0,
        }


class TestClawbackStatistics:

    async def test_grouped_by_type(self, report_service, ledger_service, make_commission):
        refunded = await make_commission(status="approved", commission_amount="50")
        disputed = await make_commission(status="paid", commission_amount="40")
        await make_commission(status="pending")
        await make_commission(status="approved")

        await ledger_service.process_clawback(refunded.id, "50", "refund", "admin-1", "refund")
        await ledger_service.process_partial_clawback(disputed.id, "10", "dispute", "admin-1", "chargeback")
        await ledger_service.process_partial_clawback(disputed.id, "5", "dispute", "admin-1", "chargeback")

        stats = await report_service.get_clawback_statistics()

        assert stats["total_clawbacks"] == 3
        assert stats["total_clawback_amount"] == Decimal("65")
        assert stats["affected_commissions"] == 2
        assert stats["clawbacks_by_type"] == {
            "refund": {"count": 1, "amount": Decimal("50")},
            "chargeback": {"count": 2, "amount": Decimal("15")},
        }
        assert stats["clawback_rate"] == 50.0

    async def test_marketer_filter(self, report_service, ledger_service, make_commission, marketer, other_marketer):
        mine = await make_commission(status="approved", commission_amount="50")
        theirs = await make_commission(status="approved", commission_amount="50", marketer_id=other_marketer.id)
        await ledger_service.process_clawback(mine.id, "50", "refund", "admin-1", "refund")
        await ledger_service.process_clawback(theirs.id, "50", "manual review", "admin-1")

        stats = await report_service.get_clawback_statistics(marketer_id=other_marketer.id)

        assert stats["total_clawbacks"] == 1
        assert stats["clawbacks_by_type"] == {"manual": {"count": 1, "amount": Decimal("50")}}
        assert stats["clawback_rate"] == 100.0

    async def test_no_commissions(self, report_service):
        stats = await report_service.get_clawback_statistics()
        assert stats["total_clawbacks"] == 0
        assert stats["total_clawback_amount"] == Decimal("0")
        assert stats["clawback_rate"] == 0


class TestAnalytics:

    async def test_daily_buckets(self, report_service, make_commission):
        await make_commission(status="pending", days_old=3, commission_amount="50")
        await make_commission(status="approved", days_old=3, commission_amount="30")
        await make_commission(status="pending", days_old=1, commission_amount="10")

        now = utcnow()
        analytics = await report_service.get_commission_analytics(now - timedelta(days=5), now)

        assert [day["total_commissions"] for day in analytics] == [2, 1]
        assert analytics[0]["total_amount"] == Decimal("80")
        assert analytics[0]["avg_amount"] == Decimal("40")
        assert analytics[0]["status_breakdown"] == {"pending": 1, "approved": 1}

    async def test_product_performance(self, report_service, make_commission, percentage_product, flat_product):
        await make_commission(status="approved", commission_amount="30")
        await make_commission(status="approved", commission_amount="20")
        await make_commission(status="pending", commission_amount="10")
        await make_commission(status="pending", commission_amount="99", product_id=flat_product.id)

        performance = await report_service.get_product_commission_performance(percentage_product.id)

        assert performance["total_commissions"] == 3
        assert performance["total_amount"] == Decimal("60")
        assert performance["average_commission"] == Decimal("20")
        assert performance["status_breakdown"]["approved"] == {"count": 2, "amount": Decimal("50")}
