"""Product model (read-only to the commission engine)."""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_ledger.core.clock import utcnow
from affiliate_ledger.database import Base
from affiliate_ledger.db_types import UUIDType, MoneyType, RateType, JSONType


class ProductStatus(str, Enum):
    """Product status enumeration."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class CommissionCalculationType(str, Enum):
    """How a product pays commission."""
    PERCENTAGE = "percentage"
    FLAT = "flat"


class Product(Base):
    """Product a marketer promotes, with its commission terms."""
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Commission terms
    commission_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CommissionCalculationType.PERCENTAGE.value
    )
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        RateType,
        nullable=True,
        comment="Fraction 0..1 for percentage products"
    )
    commission_flat_amount: Mapped[Optional[Decimal]] = mapped_column(
        MoneyType,
        nullable=True,
        comment="Fixed commission for flat products"
    )
    min_initial_spend: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    tiered_rates: Mapped[Optional[List[dict]]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Spend tiers"
    )
    # Example: [{"min_amount": 0, "max_amount": 1000, "rate": 0.05}, {"min_amount": 1000, "rate": 0.08}]

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ProductStatus.ACTIVE.value)

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

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Product(name='{self.name}', type='{self.commission_type}')>"
