"""Commission and CommissionAdjustment models.

A Commission is owed to a marketer for one customer's conversion on one
product. Every status change, payment, bonus, correction and clawback is
recorded as an append-only CommissionAdjustment row; those rows are the
audit trail and the record of truth for amount changes.
"""
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text
from sqlalchemy import UniqueConstraint, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_ledger.core.clock import utcnow, as_utc
from affiliate_ledger.database import Base
from affiliate_ledger.db_types import UUIDType, MoneyType, RateType


DEFAULT_CLEARANCE_PERIOD_DAYS = 30


class CommissionStatus(str, Enum):
    """Commission lifecycle status."""
    PENDING = "pending"             # Waiting out the clearance period
    APPROVED = "approved"           # Cleared, owed to the marketer
    REJECTED = "rejected"           # Terminal - never payable
    PAID = "paid"                   # Paid out
    CLAWED_BACK = "clawed_back"     # Terminal - reversed after approval/payment


class AdjustmentType(str, Enum):
    """Ledger entry type."""
    STATUS_CHANGE = "status_change"
    PAYMENT = "payment"
    BONUS = "bonus"
    CORRECTION = "correction"
    CLAWBACK = "clawback"


class ClawbackType(str, Enum):
    """Why a commission was clawed back."""
    REFUND = "refund"
    CHARGEBACK = "chargeback"
    MANUAL = "manual"


def compute_eligible_for_payout_date(conversion_date: datetime, clearance_period_days: int) -> datetime:
    """Date the clearance period ends: conversion date plus N whole days."""
    return as_utc(conversion_date) + timedelta(days=clearance_period_days)


class Commission(Base):
    """
    Commission owed to a marketer for a customer conversion.
    Exactly one per (customer, product).
    """
    __tablename__ = "commissions"
    __table_args__ = (
        UniqueConstraint("customer_id", "product_id", name="uq_commission_customer_product"),
        Index("ix_commissions_marketer_status", "marketer_id", "status"),
        Index("ix_commissions_status_eligible", "status", "eligible_for_payout_date"),
        Index("ix_commissions_marketer_conversion", "marketer_id", "conversion_date"),
        CheckConstraint("initial_spend_amount >= 0", name="ck_commission_spend_non_negative"),
        CheckConstraint("commission_amount >= 0", name="ck_commission_amount_non_negative"),
        CheckConstraint(
            "clearance_period_days >= 0 AND clearance_period_days <= 365",
            name="ck_commission_clearance_range",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Parties
    marketer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("marketers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    customer_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    tracking_code: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Amounts
    initial_spend_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(
        RateType,
        nullable=False,
        default=Decimal("0"),
        comment="Fraction 0..1; informational for flat commissions"
    )
    commission_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Owed amount; changes only through correction adjustments"
    )
    original_commission_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Amount at creation; base for ledger replay"
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CommissionStatus.PENDING.value,
        index=True
    )
    conversion_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    clearance_period_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_CLEARANCE_PERIOD_DAYS
    )
    eligible_for_payout_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True
    )
    approval_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("status", CommissionStatus.PENDING.value)
        if kwargs.get("clearance_period_days") is None:
            kwargs["clearance_period_days"] = DEFAULT_CLEARANCE_PERIOD_DAYS
        if "original_commission_amount" not in kwargs and "commission_amount" in kwargs:
            kwargs["original_commission_amount"] = kwargs["commission_amount"]
        if kwargs.get("eligible_for_payout_date") is None and kwargs.get("conversion_date") is not None:
            kwargs["eligible_for_payout_date"] = compute_eligible_for_payout_date(
                kwargs["conversion_date"], kwargs["clearance_period_days"]
            )
        super().__init__(**kwargs)

    @property
    def is_terminal(self) -> bool:
        return self.status in (CommissionStatus.REJECTED.value, CommissionStatus.CLAWED_BACK.value)

    def is_past_clearance(self, now: Optional[datetime] = None) -> bool:
        """True once the clearance period has elapsed."""
        return (now or utcnow()) >= as_utc(self.eligible_for_payout_date)

    def __repr__(self) -> str:
        return f"<Commission(id={self.id}, status='{self.status}', amount={self.commission_amount})>"


class CommissionAdjustment(Base):
    """
    Immutable ledger entry for a commission.
    commission_id is a weak reference: entries outlive later commission mutations.
    """
    __tablename__ = "commission_adjustments"
    __table_args__ = (
        Index("ix_commission_adjustments_commission_created", "commission_id", "created_at"),
        CheckConstraint("length(reason) > 0", name="ck_adjustment_reason_not_empty"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    commission_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)

    adjustment_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        default=Decimal("0"),
        comment="Signed; negative for clawbacks and negative corrections"
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    # Set on clawback entries only
    clawback_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)

    # Set on entries that moved the commission between statuses
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    admin_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<CommissionAdjustment(type='{self.adjustment_type}', amount={self.amount})>"
