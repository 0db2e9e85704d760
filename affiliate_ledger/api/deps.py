from typing import Annotated, Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.database import get_db
from affiliate_ledger.services.commission_events import CommissionEventPublisher, LoggingEventPublisher

_default_publisher = LoggingEventPublisher()


def get_event_publisher() -> CommissionEventPublisher:
    """
    Dependency returning the publisher handed to lifecycle services.

    Override with app.dependency_overrides to plug in a queue producer.
    """
    return _default_publisher


async def get_admin_id(
    x_admin_id: Annotated[Optional[str], Header(alias="X-Admin-Id", max_length=100)] = None,
) -> Optional[str]:
    """
    Acting admin for audit entries.

    Authentication happens upstream; the gateway forwards the admin id in X-Admin-Id.
    """
    if not x_admin_id or not x_admin_id.strip():
        return None
    return x_admin_id.strip()


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
AdminId = Annotated[Optional[str], Depends(get_admin_id)]
Publisher = Annotated[CommissionEventPublisher, Depends(get_event_publisher)]
