"""Pydantic models for policies, their beneficiaries and payment history."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from insurance_core.models.common import PremiumFrequency


class PolicyType(str, Enum):
    LIFE = "life"
    HEALTH = "health"
    AUTO = "auto"
    HOME = "home"
    TRAVEL = "travel"
    BUSINESS = "business"


class RiskCategory(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Beneficiary(BaseModel):
    """Party entitled to a share of the policy payout."""

    name: str = Field(..., min_length=2, description="Beneficiary name")
    relationship: str = Field(..., min_length=2, description="Relationship to the insured")
    percentage: float = Field(..., ge=0, le=100, description="Share of payout (0-100)")


class PaymentHistoryEntry(BaseModel):
    """Settled payment summary appended to a policy."""

    amount: float = Field(..., description="Amount paid")
    payment_date: datetime = Field(..., description="When the payment settled")
    payment_method: str = Field(..., description="Payment method")
    transaction_id: str = Field(..., description="Transaction reference")
    status: str = Field(default="completed", description="Settlement status")


class PolicyCreate(BaseModel):
    """Input payload for policy creation."""

    policy_type: PolicyType = Field(..., description="Line of business")
    policy_name: str = Field(..., min_length=5, max_length=100)
    description: str = Field(..., min_length=10, max_length=500)
    coverage_amount: float = Field(..., gt=0, description="Maximum payout")
    premium_amount: float = Field(..., gt=0, description="Premium per period")
    premium_frequency: PremiumFrequency = Field(default=PremiumFrequency.ANNUAL)
    duration_years: int = Field(..., ge=1, le=50, description="Policy term in years")
    customer_id: str = Field(..., min_length=1, description="Insured customer user ID")
    agent_id: Optional[str] = Field(default=None, description="Managing agent user ID")
    beneficiaries: list[Beneficiary] = Field(default_factory=list)
    start_date: Optional[date] = Field(
        default=None, description="Coverage start (defaults to today)"
    )
    terms: str = Field(..., min_length=1, description="Policy terms text")
    exclusions: list[str] = Field(default_factory=list)
    risk_category: RiskCategory = Field(default=RiskCategory.MEDIUM)


class PolicyUpdate(BaseModel):
    """Editable policy fields. None leaves a field unchanged."""

    policy_name: Optional[str] = Field(default=None, min_length=5, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=500)
    coverage_amount: Optional[float] = Field(default=None, gt=0)
    premium_amount: Optional[float] = Field(default=None, gt=0)
    premium_frequency: Optional[PremiumFrequency] = None
    beneficiaries: Optional[list[Beneficiary]] = None
    terms: Optional[str] = Field(default=None, min_length=1)
    exclusions: Optional[list[str]] = None
    risk_category: Optional[RiskCategory] = None


class Policy(BaseModel):
    """Persisted policy aggregate."""

    id: str
    policy_number: str
    policy_type: PolicyType
    policy_name: str
    description: str
    coverage_amount: float
    premium_amount: float
    premium_frequency: PremiumFrequency
    duration_years: int
    customer_id: str
    agent_id: Optional[str] = None
    beneficiaries: list[Beneficiary] = Field(default_factory=list)
    start_date: date
    end_date: date
    next_payment_due: date
    status: str
    terms: str
    exclusions: list[str] = Field(default_factory=list)
    risk_category: RiskCategory = RiskCategory.MEDIUM
    payment_history: list[PaymentHistoryEntry] = Field(default_factory=list)
    claims_history: list[str] = Field(default_factory=list)
    is_active: bool = True
    version: int = 1
    created_at: datetime
    updated_at: datetime

    @property
    def beneficiary_total(self) -> float:
        return sum(b.percentage for b in self.beneficiaries)

    def covers(self, day: date) -> bool:
        """True if ``day`` falls inside the coverage window, both ends inclusive."""
        return self.start_date <= day <= self.end_date

    def days_until_expiration(self, today: date) -> int:
        """Days left until ``end_date``; negative once the policy has run out."""
        return (self.end_date - today).days

    def policy_age(self, today: date) -> int:
        """Whole days since ``start_date``."""
        return (today - self.start_date).days
