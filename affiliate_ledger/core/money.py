"""Decimal coercion for money, rate and id inputs."""
import uuid
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Union

from affiliate_ledger.core.exceptions import ValidationError
from affiliate_ledger.db_types import MONEY_QUANTUM, RATE_QUANTUM


def to_decimal(value: Any, field_name: str) -> Decimal:
    """Convert int/float/str/Decimal to Decimal; floats go through str to avoid binary noise."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValidationError(f"{field_name} must be a number", {"field": field_name})
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field_name} must be a number", {"field": field_name})
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be a finite number", {"field": field_name})
    return result


def to_optional_decimal(value: Any, field_name: str) -> Optional[Decimal]:
    if value is None:
        return None
    return to_decimal(value, field_name)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_rate(value: Decimal) -> Decimal:
    return value.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def to_uuid(value: Union[str, uuid.UUID], field_name: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        raise ValidationError(f"Invalid {field_name}: {value}", {"field": field_name})
