"""SQLite persistence for policies, claims and payments."""

from insurance_core.db.database import get_connection, init_db
from insurance_core.db.repository import (
    ClaimRepository,
    PaymentRepository,
    PolicyRepository,
    generate_id,
)

__all__ = [
    "ClaimRepository",
    "PaymentRepository",
    "PolicyRepository",
    "generate_id",
    "get_connection",
    "init_db",
]
