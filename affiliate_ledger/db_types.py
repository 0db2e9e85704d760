"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from decimal import Decimal

from sqlalchemy import JSON, Numeric, Uuid

# Use JSON instead of JSONB for cross-database compatibility
# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# UUID type that works with both databases (native on PostgreSQL, CHAR(32) on SQLite)
UUIDType = Uuid

# Money columns: 4 decimal places so percentage commissions are stored without rounding to cents
MoneyType = Numeric(14, 4, asdecimal=True)

# Commission rates are fractions in [0, 1]
RateType = Numeric(9, 6, asdecimal=True)

MONEY_QUANTUM = Decimal("0.0001")
RATE_QUANTUM = Decimal("0.000001")
