"""Pydantic models for policies, claims and payments."""

from insurance_core.models.claim import (
    Claim,
    ClaimCreate,
    ClaimDocument,
    ClaimPriority,
    ClaimType,
    ClaimUpdate,
    Investigation,
    StatusHistoryEntry,
)
from insurance_core.models.common import Actor, PremiumFrequency, Role
from insurance_core.models.payment import (
    Currency,
    Fees,
    Payment,
    PaymentCreate,
    PaymentMethod,
    PaymentType,
    Receipt,
    Refund,
    Taxes,
)
from insurance_core.models.policy import (
    Beneficiary,
    PaymentHistoryEntry,
    Policy,
    PolicyCreate,
    PolicyType,
    PolicyUpdate,
    RiskCategory,
)

__all__ = [
    "Actor",
    "Beneficiary",
    "Claim",
    "ClaimCreate",
    "ClaimDocument",
    "ClaimPriority",
    "ClaimType",
    "ClaimUpdate",
    "Currency",
    "Fees",
    "Investigation",
    "Payment",
    "PaymentCreate",
    "PaymentHistoryEntry",
    "PaymentMethod",
    "PaymentType",
    "Policy",
    "PolicyCreate",
    "PolicyType",
    "PolicyUpdate",
    "PremiumFrequency",
    "Receipt",
    "Refund",
    "RiskCategory",
    "Role",
    "StatusHistoryEntry",
    "Taxes",
]
