"""
Commission Service

Handles the commission lifecycle for affiliate marketers:
- Commission calculation from a conversion (percentage, flat, tiered, admin override)
- Batch calculation with per-item error isolation
- Recalculation of pending commissions
- Status transitions (approve, reject, mark as paid) with audit entries
- Status history reconstruction from the adjustment ledger
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import select, update, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.config import settings
from affiliate_ledger.core.clock import utcnow, as_utc
from affiliate_ledger.core.exceptions import (
    BusinessRuleError,
    DuplicateError,
    InvalidTransitionError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from affiliate_ledger.core.money import (
    quantize_money,
    quantize_rate,
    to_decimal,
    to_optional_decimal,
    to_uuid,
)
from affiliate_ledger.models.commission import (
    AdjustmentType,
    Commission,
    CommissionAdjustment,
    CommissionStatus,
)
from affiliate_ledger.models.marketer import Marketer
from affiliate_ledger.models.product import CommissionCalculationType, Product
from affiliate_ledger.services.commission_events import (
    CommissionEvent,
    CommissionEventPublisher,
    CommissionEventType,
    LoggingEventPublisher,
    publish_safely,
)
from affiliate_ledger.services.commission_state_machine import (
    status_change_reason,
    validate_transition,
)


logger = logging.getLogger(__name__)

IdType = Union[str, uuid.UUID]


def calculate_commission_amount(
    initial_spend_amount: Decimal,
    commission_type: str,
    commission_rate: Optional[Decimal] = None,
    commission_flat_amount: Optional[Decimal] = None,
    tiered_rates: Optional[Sequence[Mapping[str, Any]]] = None,
    custom_rate: Optional[Decimal] = None,
    custom_amount: Optional[Decimal] = None,
    override_rules: bool = False,
) -> Tuple[Decimal, Decimal]:
    """
    Compute (commission_amount, commission_rate) for a spend.

    Precedence: admin override, matching spend tier, product percentage/flat terms.
    For flat commissions the returned rate is flat / spend and is informational only.
    """
    if override_rules and (custom_rate is not None or custom_amount is not None):
        if custom_amount is not None:
            rate = custom_amount / initial_spend_amount if initial_spend_amount > 0 else Decimal("0")
            return quantize_money(custom_amount), quantize_rate(rate)
        return quantize_money(initial_spend_amount * custom_rate), custom_rate

    if tiered_rates:
        tiers = sorted(tiered_rates, key=lambda t: Decimal(str(t.get("min_amount", 0))))
        for tier in tiers:
            min_amount = Decimal(str(tier.get("min_amount", 0)))
            max_amount = tier.get("max_amount")
            if initial_spend_amount >= min_amount and (
                max_amount is None or initial_spend_amount <= Decimal(str(max_amount))
            ):
                rate = Decimal(str(tier["rate"]))
                return quantize_money(initial_spend_amount * rate), rate

    if commission_type == CommissionCalculationType.PERCENTAGE.value:
        if not commission_rate:
            raise BusinessRuleError("Product commission rate is not defined")
        return quantize_money(initial_spend_amount * commission_rate), commission_rate

    if commission_type == CommissionCalculationType.FLAT.value:
        if not commission_flat_amount:
            raise BusinessRuleError("Product flat commission amount is not defined")
        rate = commission_flat_amount / initial_spend_amount if initial_spend_amount > 0 else Decimal("0")
        return quantize_money(commission_flat_amount), quantize_rate(rate)

    raise BusinessRuleError(f"Invalid commission type: {commission_type}")


class CommissionService:
    """Service for commission calculation and status lifecycle."""

    def __init__(self, db: AsyncSession, publisher: Optional[CommissionEventPublisher] = None):
        self.db = db
        self.publisher = publisher or LoggingEventPublisher()

    # ========================================================================
    # Lookups
    # ========================================================================

    async def get_commission(self, commission_id: IdType) -> Optional[Commission]:
        return await self.db.get(Commission, to_uuid(commission_id, "commission_id"))

    async def get_commission_or_raise(self, commission_id: IdType) -> Commission:
        commission = await self.get_commission(commission_id)
        if not commission:
            raise NotFoundError("Commission not found", {"commission_id": str(commission_id)})
        return commission

    async def get_commission_for_update(self, commission_id: IdType) -> Commission:
        """
        Load the commission from the database for an amount-dependent write.

        Bypasses the identity map so bounds are checked against the committed
        amount; on PostgreSQL the row is also locked until commit.
        """
        result = await self.db.execute(
            select(Commission)
            .where(Commission.id == to_uuid(commission_id, "commission_id"))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        commission = result.scalar_one_or_none()
        if not commission:
            raise NotFoundError("Commission not found", {"commission_id": str(commission_id)})
        return commission

    async def get_commissions(
        self,
        marketer_id: Optional[IdType] = None,
        product_id: Optional[IdType] = None,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "conversion_date",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        """List commissions with filters and pagination."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        sort_column = getattr(Commission, sort_by, None)
        if sort_column is None or sort_by.startswith("_"):
            raise ValidationError(f"Cannot sort by {sort_by}")

        filters = []
        if marketer_id:
            filters.append(Commission.marketer_id == to_uuid(marketer_id, "marketer_id"))
        if product_id:
            filters.append(Commission.product_id == to_uuid(product_id, "product_id"))
        if status:
            filters.append(Commission.status == _status_value(status))
        if start_date:
            filters.append(Commission.conversion_date >= as_utc(start_date))
        if end_date:
            filters.append(Commission.conversion_date <= as_utc(end_date))
        if min_amount is not None:
            filters.append(Commission.commission_amount >= to_decimal(min_amount, "min_amount"))
        if max_amount is not None:
            filters.append(Commission.commission_amount <= to_decimal(max_amount, "max_amount"))

        query = select(Commission)
        count_query = select(func.count(Commission.id))
        if filters:
            query = query.where(and_(*filters))
            count_query = count_query.where(and_(*filters))

        total = (await self.db.execute(count_query)).scalar() or 0

        order = sort_column.asc() if sort_order == "asc" else sort_column.desc()
        query = query.order_by(order, Commission.id).offset((page - 1) * limit).limit(limit)
        commissions = list((await self.db.execute(query)).scalars().all())

        return {
            "commissions": commissions,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    # ========================================================================
    # Commission Calculation
    # ========================================================================

    async def calculate_commission(
        self,
        marketer_id: IdType,
        customer_id: str,
        product_id: IdType,
        tracking_code: str,
        initial_spend_amount: Any,
        conversion_date: datetime,
        clearance_period_days: Optional[int] = None,
        custom_commission_rate: Any = None,
        custom_commission_amount: Any = None,
        override_product_rules: bool = False,
    ) -> Commission:
        """
        Calculate and record a pending commission for a conversion.
        """
        marketer_uuid = to_uuid(marketer_id, "marketer_id")
        product_uuid = to_uuid(product_id, "product_id")
        if not customer_id or not str(customer_id).strip():
            raise ValidationError("Customer ID is required")
        if not tracking_code or not str(tracking_code).strip():
            raise ValidationError("Tracking code is required")
        if not isinstance(conversion_date, datetime):
            raise ValidationError("Conversion date is required")

        spend = to_decimal(initial_spend_amount, "initial_spend_amount")
        if spend < 0:
            raise ValidationError("Initial spend amount cannot be negative")

        if clearance_period_days is None:
            clearance_period_days = settings.DEFAULT_CLEARANCE_PERIOD_DAYS
        if not isinstance(clearance_period_days, int) or isinstance(clearance_period_days, bool):
            raise ValidationError("Clearance period must be a whole number of days")
        if clearance_period_days < 0 or clearance_period_days > settings.MAX_CLEARANCE_PERIOD_DAYS:
            raise ValidationError(
                f"Clearance period must be between 0 and {settings.MAX_CLEARANCE_PERIOD_DAYS} days"
            )

        custom_rate = to_optional_decimal(custom_commission_rate, "custom_commission_rate")
        custom_amount = to_optional_decimal(custom_commission_amount, "custom_commission_amount")
        if custom_rate is not None and not (Decimal("0") <= custom_rate <= Decimal("1")):
            raise ValidationError("Custom commission rate must be between 0 and 1")
        if custom_amount is not None and custom_amount < 0:
            raise ValidationError("Custom commission amount cannot be negative")

        marketer = await self.db.get(Marketer, marketer_uuid)
        if not marketer or not marketer.is_active:
            raise BusinessRuleError("Invalid or inactive marketer", {"marketer_id": str(marketer_uuid)})

        product = await self.db.get(Product, product_uuid)
        if not product or not product.is_active:
            raise BusinessRuleError("Invalid or inactive product", {"product_id": str(product_uuid)})

        if not override_product_rules and spend < product.min_initial_spend:
            raise BusinessRuleError(
                f"Initial spend amount {spend} is below minimum required {product.min_initial_spend}",
                {"initial_spend_amount": str(spend), "min_initial_spend": str(product.min_initial_spend)},
            )

        existing = await self.db.execute(
            select(Commission.id).where(
                Commission.customer_id == customer_id,
                Commission.product_id == product_uuid,
            )
        )
        if existing.first():
            raise DuplicateError(
                "Commission already exists for this customer and product combination",
                {"customer_id": customer_id, "product_id": str(product_uuid)},
            )

        commission_amount, commission_rate = calculate_commission_amount(
            spend,
            product.commission_type,
            commission_rate=product.commission_rate,
            commission_flat_amount=product.commission_flat_amount,
            tiered_rates=product.tiered_rates,
            custom_rate=custom_rate,
            custom_amount=custom_amount,
            override_rules=override_product_rules,
        )

        commission = Commission(
            marketer_id=marketer_uuid,
            customer_id=customer_id,
            product_id=product_uuid,
            tracking_code=tracking_code,
            initial_spend_amount=spend,
            commission_rate=commission_rate,
            commission_amount=commission_amount,
            status=CommissionStatus.PENDING.value,
            conversion_date=as_utc(conversion_date),
            clearance_period_days=clearance_period_days,
        )
        self.db.add(commission)

        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent insert for the same customer + product
            await self.db.rollback()
            raise DuplicateError(
                "Commission already exists for this customer and product combination",
                {"customer_id": customer_id, "product_id": str(product_uuid)},
            )

        logger.info(
            f"Commission {commission.id} created for marketer {marketer_uuid}: "
            f"{commission.commission_amount} ({product.commission_type})"
        )
        await publish_safely(self.publisher, CommissionEvent(
            event_type=CommissionEventType.COMMISSION_CREATED,
            commission_id=commission.id,
            marketer_id=commission.marketer_id,
            payload={
                "commission_amount": str(commission.commission_amount),
                "tracking_code": tracking_code,
                "eligible_for_payout_date": commission.eligible_for_payout_date.isoformat(),
            },
        ))
        return commission

    async def batch_calculate_commissions(
        self,
        conversions: Sequence[Mapping[str, Any]],
    ) -> Dict[str, List]:
        """
        Calculate commissions for many conversions.

        Each conversion is processed independently; failures are collected
        by index and never abort the remaining items.
        """
        commissions: List[Commission] = []
        errors: List[Dict[str, Any]] = []

        for index, data in enumerate(conversions):
            try:
                commission = await self.calculate_commission(**data)
            except TypeError as e:
                errors.append({"index": index, "message": f"Invalid conversion data: {e}"})
                continue
            except LedgerError as e:
                errors.append({"index": index, "message": e.message})
                logger.warning(f"Batch item {index} failed: {e.message}")
                continue
            except Exception as e:
                await self.db.rollback()
                errors.append({"index": index, "message": str(e)})
                logger.warning(f"Batch item {index} failed: {e}")
                continue

            # Detach so a later rollback cannot expire already-committed results
            self.db.expunge(commission)
            commissions.append(commission)

        logger.info(f"Batch calculation: {len(commissions)} created, {len(errors)} failed")
        return {"commissions": commissions, "errors": errors}

    async def recalculate_commission(
        self,
        commission_id: IdType,
        new_amount: Any = None,
        new_rate: Any = None,
        admin_id: Optional[str] = None,
    ) -> Commission:
        """
        Recalculate a pending commission with a custom amount/rate, or with
        the product's current terms when neither is given.

        The amount change is recorded as one correction adjustment.
        """
        commission = await self.get_commission_for_update(commission_id)

        if commission.status != CommissionStatus.PENDING.value:
            raise BusinessRuleError("Only pending commissions can be recalculated")

        custom_amount = to_optional_decimal(new_amount, "new_amount")
        custom_rate = to_optional_decimal(new_rate, "new_rate")
        if custom_amount is not None and custom_amount < 0:
            raise ValidationError("Commission amount cannot be negative")
        if custom_rate is not None and not (Decimal("0") <= custom_rate <= Decimal("1")):
            raise ValidationError("Commission rate must be between 0 and 1")

        product = await self.db.get(Product, commission.product_id)
        if not product:
            raise NotFoundError("Product not found", {"product_id": str(commission.product_id)})

        amount, rate = calculate_commission_amount(
            commission.initial_spend_amount,
            product.commission_type,
            commission_rate=product.commission_rate,
            commission_flat_amount=product.commission_flat_amount,
            tiered_rates=product.tiered_rates,
            custom_rate=custom_rate,
            custom_amount=custom_amount,
            override_rules=True,
        )
        old_amount = commission.commission_amount
        difference = amount - old_amount

        try:
            await self.compare_and_set(
                commission,
                CommissionStatus.PENDING.value,
                {"commission_amount": amount, "commission_rate": rate, "updated_at": utcnow()},
                expected_amount=old_amount,
            )
            if difference != 0:
                self.db.add(CommissionAdjustment(
                    commission_id=commission.id,
                    adjustment_type=AdjustmentType.CORRECTION.value,
                    amount=difference,
                    reason="Manual recalculation",
                    admin_id=admin_id,
                ))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Commission {commission.id} recalculated: {old_amount} -> {amount}")
        await publish_safely(self.publisher, CommissionEvent(
            event_type=CommissionEventType.COMMISSION_RECALCULATED,
            commission_id=commission.id,
            marketer_id=commission.marketer_id,
            payload={"old_amount": str(old_amount), "new_amount": str(amount)},
        ))
        return commission

    # ========================================================================
    # Status Lifecycle
    # ========================================================================

    async def update_commission_status(
        self,
        commission_id: IdType,
        new_status: str,
        admin_id: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> Commission:
        """
        Move a commission to a new status.

        An audit entry is written only for admin-initiated changes.
        """
        new_status = _status_value(new_status)
        commission = await self.get_commission_or_raise(commission_id)
        old_status = commission.status

        if new_status == CommissionStatus.CLAWED_BACK.value:
            raise InvalidTransitionError(
                old_status,
                new_status,
                "Commissions can only be clawed back through the clawback operation",
            )

        validate_transition(old_status, new_status)

        try:
            await self._apply_transition(commission, new_status, admin_id, rejection_reason)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self._after_transition(commission, old_status, new_status, admin_id)
        return commission

    async def approve_commission(
        self,
        commission_id: IdType,
        admin_id: Optional[str] = None,
        override_clearance_period: bool = False,
    ) -> Commission:
        """Approve a pending commission once its clearance period has elapsed."""
        commission = await self.get_commission_or_raise(commission_id)

        if commission.status != CommissionStatus.PENDING.value:
            raise InvalidTransitionError(
                commission.status,
                CommissionStatus.APPROVED.value,
                f"Cannot approve commission with status {commission.status}",
            )

        if not override_clearance_period and not commission.is_past_clearance():
            raise BusinessRuleError(
                "Commission is still within clearance period and cannot be approved yet",
                {"eligible_for_payout_date": as_utc(commission.eligible_for_payout_date).isoformat()},
            )

        return await self.update_commission_status(commission.id, CommissionStatus.APPROVED.value, admin_id)

    async def reject_commission(
        self,
        commission_id: IdType,
        rejection_reason: str,
        admin_id: Optional[str] = None,
    ) -> Commission:
        """Reject a pending commission; the reason is mandatory."""
        if not rejection_reason or not rejection_reason.strip():
            raise ValidationError("Rejection reason is required")

        commission = await self.get_commission_or_raise(commission_id)

        if commission.status != CommissionStatus.PENDING.value:
            raise InvalidTransitionError(
                commission.status,
                CommissionStatus.REJECTED.value,
                f"Cannot reject commission with status {commission.status}",
            )

        return await self.update_commission_status(
            commission.id, CommissionStatus.REJECTED.value, admin_id, rejection_reason.strip()
        )

    async def mark_commission_as_paid(
        self,
        commission_id: IdType,
        admin_id: Optional[str] = None,
        payment_reference: Optional[str] = None,
    ) -> Commission:
        """Mark an approved commission as paid and record the payment in the ledger."""
        commission = await self.get_commission_for_update(commission_id)
        old_status = commission.status

        if old_status != CommissionStatus.APPROVED.value:
            raise InvalidTransitionError(
                old_status,
                CommissionStatus.PAID.value,
                f"Cannot mark commission as paid with status {old_status}",
            )

        reason = "Payment processed"
        if payment_reference:
            reason = f"Payment processed - Reference: {payment_reference}"

        try:
            await self._apply_transition(
                commission, CommissionStatus.PAID.value, admin_id,
                expected_amount=commission.commission_amount,
            )
            self.db.add(CommissionAdjustment(
                commission_id=commission.id,
                adjustment_type=AdjustmentType.PAYMENT.value,
                amount=commission.commission_amount,
                reason=reason,
                admin_id=admin_id,
            ))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self._after_transition(commission, old_status, CommissionStatus.PAID.value, admin_id)
        await publish_safely(self.publisher, CommissionEvent(
            event_type=CommissionEventType.COMMISSION_PAID,
            commission_id=commission.id,
            marketer_id=commission.marketer_id,
            payload={"amount": str(commission.commission_amount), "payment_reference": payment_reference},
        ))
        return commission

    async def get_commission_status_history(self, commission_id: IdType) -> Dict[str, Any]:
        """Commission plus its status history, oldest first."""
        commission = await self.get_commission(commission_id)
        if not commission:
            return {"commission": None, "status_history": []}

        result = await self.db.execute(
            select(CommissionAdjustment)
            .where(
                CommissionAdjustment.commission_id == commission.id,
                CommissionAdjustment.to_status.is_not(None),
            )
            .order_by(CommissionAdjustment.created_at.asc())
        )

        status_history = [{
            "status": CommissionStatus.PENDING.value,
            "timestamp": commission.created_at,
            "admin_id": None,
            "reason": "Commission created",
        }]
        for adjustment in result.scalars().all():
            status_history.append({
                "status": adjustment.to_status,
                "timestamp": adjustment.created_at,
                "admin_id": adjustment.admin_id,
                "reason": adjustment.reason,
            })

        return {"commission": commission, "status_history": status_history}

    # ========================================================================
    # Status Write Helpers
    # ========================================================================

    async def compare_and_set(
        self,
        commission: Commission,
        expected_status: str,
        values: Dict[str, Any],
        expected_amount: Optional[Decimal] = None,
    ) -> None:
        """
        Update the commission only if its stored status is still expected_status
        and, when expected_amount is given, its stored amount is unchanged.

        A concurrent writer that changed either first makes the update match
        no row; that surfaces as InvalidTransitionError.
        """
        commission_id = commission.id
        conditions = [Commission.id == commission_id, Commission.status == expected_status]
        if expected_amount is not None:
            conditions.append(Commission.commission_amount == expected_amount)

        result = await self.db.execute(
            update(Commission).where(*conditions).values(**values)
        )
        if result.rowcount != 1:
            row = (await self.db.execute(
                select(Commission.status, Commission.commission_amount).where(Commission.id == commission_id)
            )).first()
            current = row.status if row else None
            found = f"status {current}"
            expected = f"status {expected_status}"
            if row and current == expected_status and expected_amount is not None:
                found = f"amount {row.commission_amount}"
                expected = f"amount {expected_amount}"
            raise InvalidTransitionError(
                current or expected_status,
                values.get("status", expected_status),
                f"Commission {commission_id} was modified concurrently "
                f"(expected {expected}, found {found})",
            )

    async def _apply_transition(
        self,
        commission: Commission,
        new_status: str,
        admin_id: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        expected_amount: Optional[Decimal] = None,
    ) -> None:
        """Compare-and-set the status and stage the audit entry; caller commits."""
        old_status = commission.status
        now = utcnow()
        values: Dict[str, Any] = {"status": new_status, "updated_at": now}
        if new_status == CommissionStatus.APPROVED.value:
            values["approval_date"] = now

        await self.compare_and_set(commission, old_status, values, expected_amount)

        if admin_id:
            self.db.add(CommissionAdjustment(
                commission_id=commission.id,
                adjustment_type=AdjustmentType.STATUS_CHANGE.value,
                amount=Decimal("0"),
                reason=status_change_reason(old_status, new_status, rejection_reason),
                from_status=old_status,
                to_status=new_status,
                admin_id=admin_id,
            ))

    async def _after_transition(
        self,
        commission: Commission,
        old_status: str,
        new_status: str,
        admin_id: Optional[str],
    ) -> None:
        logger.info(
            f"Commission {commission.id} status {old_status} -> {new_status}"
            f"{f' by admin {admin_id}' if admin_id else ''}"
        )
        await publish_safely(self.publisher, CommissionEvent(
            event_type=CommissionEventType.STATUS_CHANGED,
            commission_id=commission.id,
            marketer_id=commission.marketer_id,
            payload={"from_status": old_status, "to_status": new_status, "admin_id": admin_id},
        ))


def _status_value(status: Union[str, CommissionStatus]) -> str:
    try:
        return CommissionStatus(status).value
    except ValueError:
        raise ValidationError(
            f"Invalid commission status: {status}",
            {"allowed": [s.value for s in CommissionStatus]},
        )
