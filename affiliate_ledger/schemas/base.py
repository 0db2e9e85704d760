"""
Shared configuration for ledger schemas.

Responses are built straight from ORM rows (Commission, CommissionAdjustment),
so they read attributes rather than dict keys. Money stays Decimal and is
rendered as a string in JSON, which keeps the 4 decimal places intact.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base for schemas that wrap ORM rows.

    Usage:
        class CommissionAdjustmentResponse(BaseResponseSchema):
            id: UUID
            amount: Decimal
            adjustment_type: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            UUID: str,
            datetime: lambda v: v.isoformat() if v else None,
        },
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Base for inbound conversion payloads; unknown keys from trackers are dropped."""
    model_config = ConfigDict(
        extra='ignore',
        str_strip_whitespace=True,
    )
