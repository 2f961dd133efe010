"""Status constants and transition graphs for policies, claims and payments.

The transition maps are the single source of truth for which status changes
the lifecycle managers accept.
"""

# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

POLICY_PENDING = "pending"
POLICY_ACTIVE = "active"
POLICY_INACTIVE = "inactive"
POLICY_CANCELLED = "cancelled"
POLICY_EXPIRED = "expired"
POLICY_SUSPENDED = "suspended"

POLICY_STATUSES = (
    POLICY_PENDING,
    POLICY_ACTIVE,
    POLICY_INACTIVE,
    POLICY_CANCELLED,
    POLICY_EXPIRED,
    POLICY_SUSPENDED,
)

POLICY_TERMINAL_STATUSES = (POLICY_CANCELLED, POLICY_EXPIRED)

POLICY_TRANSITIONS: dict[str, tuple[str, ...]] = {
    POLICY_PENDING: (POLICY_ACTIVE, POLICY_CANCELLED),
    POLICY_ACTIVE: (POLICY_SUSPENDED, POLICY_INACTIVE, POLICY_CANCELLED, POLICY_EXPIRED),
    POLICY_SUSPENDED: (POLICY_ACTIVE, POLICY_CANCELLED),
    POLICY_INACTIVE: (POLICY_ACTIVE, POLICY_CANCELLED),
    POLICY_CANCELLED: (),
    POLICY_EXPIRED: (),
}

# ---------------------------------------------------------------------------
# Claim
# ---------------------------------------------------------------------------

CLAIM_SUBMITTED = "submitted"
CLAIM_UNDER_REVIEW = "under_review"
CLAIM_INVESTIGATING = "investigating"
CLAIM_APPROVED = "approved"
CLAIM_REJECTED = "rejected"
CLAIM_CLOSED = "closed"
CLAIM_CANCELLED = "cancelled"

CLAIM_STATUSES = (
    CLAIM_SUBMITTED,
    CLAIM_UNDER_REVIEW,
    CLAIM_INVESTIGATING,
    CLAIM_APPROVED,
    CLAIM_REJECTED,
    CLAIM_CLOSED,
    CLAIM_CANCELLED,
)

CLAIM_TERMINAL_STATUSES = (CLAIM_REJECTED, CLAIM_CLOSED, CLAIM_CANCELLED)

# Statuses only an admin may enter
CLAIM_DECISION_STATUSES = (CLAIM_APPROVED, CLAIM_REJECTED)

# Entering one of these assigns the claim to the acting user
CLAIM_ASSIGNING_STATUSES = (CLAIM_UNDER_REVIEW, CLAIM_INVESTIGATING)

CLAIM_TRANSITIONS: dict[str, tuple[str, ...]] = {
    CLAIM_SUBMITTED: (CLAIM_UNDER_REVIEW, CLAIM_INVESTIGATING, CLAIM_CANCELLED),
    CLAIM_UNDER_REVIEW: (CLAIM_INVESTIGATING, CLAIM_APPROVED, CLAIM_REJECTED),
    CLAIM_INVESTIGATING: (CLAIM_APPROVED, CLAIM_REJECTED),
    CLAIM_APPROVED: (CLAIM_CLOSED,),
    CLAIM_REJECTED: (),
    CLAIM_CLOSED: (),
    CLAIM_CANCELLED: (),
}

# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------

PAYMENT_PENDING = "pending"
PAYMENT_PROCESSING = "processing"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_REFUNDED = "refunded"

PAYMENT_STATUSES = (
    PAYMENT_PENDING,
    PAYMENT_PROCESSING,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_CANCELLED,
    PAYMENT_REFUNDED,
)

PAYMENT_TERMINAL_STATUSES = (PAYMENT_FAILED, PAYMENT_CANCELLED, PAYMENT_REFUNDED)

# completed -> refunded is only reachable through process_refund
PAYMENT_TRANSITIONS: dict[str, tuple[str, ...]] = {
    PAYMENT_PENDING: (PAYMENT_PROCESSING, PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_CANCELLED),
    PAYMENT_PROCESSING: (PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_CANCELLED),
    PAYMENT_COMPLETED: (),
    PAYMENT_FAILED: (),
    PAYMENT_CANCELLED: (),
    PAYMENT_REFUNDED: (),
}

REFUND_PROCESSING = "processing"


def can_transition(transitions: dict[str, tuple[str, ...]], current: str, target: str) -> bool:
    """Return True if ``target`` is reachable from ``current`` in one step."""
    return target in transitions.get(current, ())
