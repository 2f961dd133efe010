"""Pydantic models for claims, their audit trail and investigation sub-record."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ClaimType(str, Enum):
    DEATH = "death"
    DISABILITY = "disability"
    MEDICAL = "medical"
    ACCIDENT = "accident"
    PROPERTY_DAMAGE = "property_damage"
    THEFT = "theft"
    FIRE = "fire"
    NATURAL_DISASTER = "natural_disaster"
    OTHER = "other"


class ClaimPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class StatusHistoryEntry(BaseModel):
    """One audit-trail row. Appended on every status change, never rewritten."""

    status: str = Field(..., description="Status entered")
    actor_id: str = Field(..., description="User who made the change")
    timestamp: datetime = Field(..., description="When the change committed")
    comment: Optional[str] = Field(default=None, description="Free-text comment")
    reason: Optional[str] = Field(default=None, description="Rejection reason, if any")


class Investigation(BaseModel):
    investigator_id: Optional[str] = None
    start_date: Optional[datetime] = None
    findings: Optional[str] = None
    recommendation: Optional[str] = None
    notes: list[str] = Field(default_factory=list)


class ClaimDocument(BaseModel):
    """Reference to an uploaded file. The url is opaque to the engine."""

    name: str = Field(..., min_length=1, description="Original file name")
    url: str = Field(..., min_length=1, description="Storage URL returned by the upload layer")
    document_type: str = Field(default="other", description="Document category")
    uploaded_at: Optional[datetime] = None
    verified: bool = False


class ClaimCreate(BaseModel):
    """Input payload for filing a claim."""

    policy_id: str = Field(..., min_length=1, description="Policy the claim is filed against")
    claim_type: ClaimType = Field(..., description="Kind of insured incident")
    incident_date: date = Field(..., description="Date of incident")
    claim_amount: float = Field(..., gt=0, description="Requested payout")
    description: str = Field(..., min_length=10, max_length=1000)
    incident_location: Optional[str] = Field(default=None, description="Where it happened")
    witnesses: list[str] = Field(default_factory=list)
    priority: Optional[ClaimPriority] = Field(
        default=None, description="Handling priority (staff only)"
    )
    documents: list[ClaimDocument] = Field(default_factory=list)


class ClaimUpdate(BaseModel):
    """Fields editable while a claim is still submitted. None leaves a field unchanged."""

    claim_amount: Optional[float] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, min_length=10, max_length=1000)
    incident_location: Optional[str] = None
    witnesses: Optional[list[str]] = None
    priority: Optional[ClaimPriority] = None


class Claim(BaseModel):
    """Persisted claim aggregate."""

    id: str
    claim_number: str
    policy_id: str
    customer_id: str
    claim_type: ClaimType
    incident_date: date
    claim_amount: float
    approved_amount: Optional[float] = None
    rejection_reason: Optional[str] = None
    description: str
    incident_location: Optional[str] = None
    witnesses: list[str] = Field(default_factory=list)
    priority: ClaimPriority = ClaimPriority.MEDIUM
    status: str
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    investigation: Investigation = Field(default_factory=Investigation)
    assigned_to: Optional[str] = None
    documents: list[ClaimDocument] = Field(default_factory=list)
    version: int = 1
    created_at: datetime
    updated_at: datetime
