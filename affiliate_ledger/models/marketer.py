"""Marketer model (read-only to the commission engine)."""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_ledger.core.clock import utcnow
from affiliate_ledger.database import Base
from affiliate_ledger.db_types import UUIDType


class MarketerStatus(str, Enum):
    """Marketer account status."""
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class Marketer(Base):
    """Affiliate marketer who earns commissions."""
    __tablename__ = "marketers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=MarketerStatus.PENDING.value)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    @property
    def is_active(self) -> bool:
        return self.status == MarketerStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Marketer(email='{self.email}', status='{self.status}')>"
