"""Shared enums and the caller identity consumed by every lifecycle operation."""

from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Caller role supplied by the external identity layer."""

    CUSTOMER = "customer"
    AGENT = "agent"
    ADMIN = "admin"


STAFF_ROLES = (Role.AGENT, Role.ADMIN)


class PremiumFrequency(str, Enum):
    """Cadence at which premium payments recur."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi-annual"
    ANNUAL = "annual"


class Actor(BaseModel):
    """Authenticated caller. Ownership checks compare ``id`` with entity references."""

    id: str = Field(..., min_length=1, description="User ID of the caller")
    role: Role = Field(..., description="Caller role: customer, agent or admin")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_customer(self) -> bool:
        return self.role == Role.CUSTOMER
