"""Shared fixtures: in-memory SQLite database, parties and commission factory."""
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from affiliate_ledger.core.clock import utcnow
from affiliate_ledger.database import Base
from affiliate_ledger.models import (
    Commission,
    CommissionCalculationType,
    CommissionStatus,
    Marketer,
    MarketerStatus,
    Product,
    ProductStatus,
)
from affiliate_ledger.services.clearance_service import ClearanceService
from affiliate_ledger.services.commission_events import RecordingEventPublisher
from affiliate_ledger.services.commission_ledger_service import CommissionLedgerService
from affiliate_ledger.services.commission_report_service import CommissionReportService
from affiliate_ledger.services.commission_service import CommissionService


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher():
    return RecordingEventPublisher()


@pytest.fixture
def commission_service(db, publisher):
    return CommissionService(db, publisher)


@pytest.fixture
def ledger_service(db, publisher):
    return CommissionLedgerService(db, publisher)


@pytest.fixture
def clearance_service(db, publisher):
    return ClearanceService(db, publisher)


@pytest.fixture
def report_service(db):
    return CommissionReportService(db)


# ==================== Parties ====================

@pytest_asyncio.fixture
async def marketer(db):
    marketer = Marketer(email="marketer@example.com", name="Active Marketer", status=MarketerStatus.ACTIVE.value)
    db.add(marketer)
    await db.commit()
    return marketer


@pytest_asyncio.fixture
async def other_marketer(db):
    marketer = Marketer(email="other@example.com", name="Other Marketer", status=MarketerStatus.ACTIVE.value)
    db.add(marketer)
    await db.commit()
    return marketer


@pytest_asyncio.fixture
async def inactive_marketer(db):
    marketer = Marketer(email="suspended@example.com", status=MarketerStatus.SUSPENDED.value)
    db.add(marketer)
    await db.commit()
    return marketer


@pytest_asyncio.fixture
async def percentage_product(db):
    product = Product(
        name="Water Purifier",
        commission_type=CommissionCalculationType.PERCENTAGE.value,
        commission_rate=Decimal("0.05"),
        min_initial_spend=Decimal("100"),
        status=ProductStatus.ACTIVE.value,
    )
    db.add(product)
    await db.commit()
    return product


@pytest_asyncio.fixture
async def flat_product(db):
    product = Product(
        name="Annual Service Plan",
        commission_type=CommissionCalculationType.FLAT.value,
        commission_flat_amount=Decimal("100"),
        min_initial_spend=Decimal("0"),
        status=ProductStatus.ACTIVE.value,
    )
    db.add(product)
    await db.commit()
    return product


@pytest_asyncio.fixture
async def inactive_product(db):
    product = Product(
        name="Discontinued Filter",
        commission_type=CommissionCalculationType.PERCENTAGE.value,
        commission_rate=Decimal("0.05"),
        status=ProductStatus.INACTIVE.value,
    )
    db.add(product)
    await db.commit()
    return product


# ==================== Commission Factory ====================

@pytest.fixture
def make_commission(db, marketer, percentage_product):
    """Insert a commission directly, bypassing calculation rules."""

    async def _make(
        status=CommissionStatus.PENDING,
        commission_amount="50",
        days_old: int = 35,
        clearance_period_days: int = 30,
        customer_id: Optional[str] = None,
        marketer_id=None,
        product_id=None,
        approval_date=None,
    ) -> Commission:
        commission = Commission(
            marketer_id=marketer_id or marketer.id,
            customer_id=customer_id or f"cust-{uuid.uuid4().hex[:12]}",
            product_id=product_id or percentage_product.id,
            tracking_code="TRK-TEST",
            initial_spend_amount=Decimal("1000"),
            commission_rate=Decimal("0.05"),
            commission_amount=Decimal(str(commission_amount)),
            status=CommissionStatus(status).value,
            conversion_date=utcnow() - timedelta(days=days_old),
            clearance_period_days=clearance_period_days,
            approval_date=approval_date,
        )
        db.add(commission)
        await db.commit()
        return commission

    return _make
